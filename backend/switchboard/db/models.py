from switchboard.tenants.models import Tenant, TenantAgentBinding  # noqa: F401
from switchboard.channels.models import TenantChannelAccount  # noqa: F401
from switchboard.auth.models import User  # noqa: F401
from switchboard.embed.models import TenantBotCredential  # noqa: F401
from switchboard.subscriptions.models import DeliveryAttempt, Subscription  # noqa: F401
from switchboard.operators.models import HumanAgent  # noqa: F401
from switchboard.handoff.models import HandoffMessage, HandoffSession  # noqa: F401
