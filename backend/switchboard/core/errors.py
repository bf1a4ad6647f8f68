"""
Service-layer error taxonomy.

Routers translate these into HTTP responses; every error carries a short
``reason`` code so clients can tell an expected negative result (a lost
claim race) apart from a system failure.
"""

from fastapi import HTTPException


class SwitchboardError(Exception):
    reason = "error"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class ResolutionFailure(SwitchboardError):
    reason = "not_found"


class TenantNotFound(ResolutionFailure):
    reason = "tenant_not_found"


class HandoffNotFound(ResolutionFailure):
    reason = "handoff_not_found"


class AgentNotFound(ResolutionFailure):
    reason = "agent_not_found"


class SubscriptionAbsent(SwitchboardError):
    reason = "subscription_absent"


class DispatchError(SwitchboardError):
    reason = "dispatch_error"


class DispatchTimeout(DispatchError):
    reason = "timeout"


class DispatchNetworkFailure(DispatchError):
    reason = "network_failure"


class DispatchUpstreamError(DispatchError):
    reason = "upstream_error"

    def __init__(self, message: str, *, status_code: int, body=None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ClaimConflict(SwitchboardError):
    reason = "claim_conflict"


class InvalidTransition(SwitchboardError):
    reason = "invalid_transition"


class NotAssignedOperator(SwitchboardError):
    reason = "not_assigned"


class StoreUnavailable(SwitchboardError):
    reason = "store_unavailable"


def error_detail(exc: SwitchboardError) -> dict:
    return {"reason": exc.reason, "message": exc.message}


_STATUS_BY_ERROR = (
    (ResolutionFailure, 404),
    (SubscriptionAbsent, 404),
    (DispatchTimeout, 504),
    (DispatchNetworkFailure, 502),
    (ClaimConflict, 409),
    (InvalidTransition, 409),
    (NotAssignedOperator, 403),
    (StoreUnavailable, 503),
)


def http_status_for(exc: SwitchboardError) -> int:
    if isinstance(exc, DispatchUpstreamError):
        return exc.status_code
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def to_http_exception(exc: SwitchboardError) -> HTTPException:
    return HTTPException(status_code=http_status_for(exc), detail=error_detail(exc))
