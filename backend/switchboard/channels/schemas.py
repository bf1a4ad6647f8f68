from pydantic import BaseModel


class MetaWebhookResponse(BaseModel):
    received: bool
    processed_messages: int
    ignored_events: int
