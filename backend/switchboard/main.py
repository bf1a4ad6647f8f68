import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError

from switchboard.channels.router import webhook_router as channels_webhook_router
from switchboard.core.config import settings
from switchboard.db.init_db import init_db
from switchboard.db.session import engine
from switchboard.dispatch.router import router as dispatch_router
from switchboard.embed.router import public_router as widget_public_router
from switchboard.handoff.router import admin_router as handoff_admin_router
from switchboard.subscriptions.router import admin_router as subscriptions_admin_router

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Switchboard",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Bot-Key"],
)


@app.on_event("startup")
def on_startup() -> None:
    db_url = make_url(settings.DATABASE_URL)
    logger.info(
        "Config sanity: env=%s db_host=%s cors_origins=%s dispatch_timeout_ms=%s dispatch_concurrency=%s",
        settings.ENV,
        db_url.host or "local",
        len(settings.CORS_ORIGINS),
        settings.DISPATCH_DEFAULT_TIMEOUT_MS,
        settings.DISPATCH_MAX_CONCURRENCY,
    )
    init_db()


# --- Routers ---
app.include_router(dispatch_router, prefix="/api/v1", tags=["ingress"])
app.include_router(channels_webhook_router, prefix="/api/v1/channels", tags=["channels-webhook"])
app.include_router(handoff_admin_router, prefix="/api/v1/admin/handoff", tags=["handoff-admin"])
app.include_router(subscriptions_admin_router, prefix="/api/v1/admin/subscriptions", tags=["subscriptions-admin"])
app.include_router(widget_public_router, prefix="/api/v1/public/widget", tags=["public-widget"])


# --- System ---
@app.get("/health", tags=["system"])
def health():
    return {"status": "ok"}


@app.get("/ready", tags=["system"])
def readiness():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ready"}
