import logging
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi.concurrency import run_in_threadpool

from switchboard.core.errors import DispatchNetworkFailure, DispatchTimeout, DispatchUpstreamError
from switchboard.db.session import SessionLocal
from switchboard.dispatch.dispatcher import DeliveryOutcome, SessionFactory, deliver, record_results
from switchboard.dispatch.events import build_function_payload
from switchboard.subscriptions.service import DeliveryTarget, load_function_target
from switchboard.tenants.models import Tenant

logger = logging.getLogger(__name__)


@dataclass
class FunctionReply:
    subscription_id: str
    status_code: int
    body: Any
    latency_ms: int


def _load_target(session_factory: SessionFactory, tenant_id: str, function_name: str) -> DeliveryTarget:
    db = session_factory()
    try:
        return load_function_target(db, tenant_id=tenant_id, function_name=function_name)
    finally:
        db.close()


async def call_function(
    tenant: Tenant,
    function_name: str,
    payload: dict,
    *,
    session_factory: SessionFactory = SessionLocal,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FunctionReply:
    """
    Forward a function call to the tenant's single registered endpoint and
    return its reply.

    Raises SubscriptionAbsent when no active route exists, DispatchTimeout /
    DispatchNetworkFailure / DispatchUpstreamError on delivery failure. The
    outcome is recorded in the subscription statistics either way.
    """
    target = await run_in_threadpool(_load_target, session_factory, tenant.id, function_name)

    body = build_function_payload(
        function_name,
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        agent_id=str(payload.get("agent_id") or ""),
        call_id=payload.get("call_id"),
        args=payload.get("args"),
        original=payload,
    )
    async with httpx.AsyncClient(transport=transport, timeout=None) as client:
        result = await deliver(client, target, body)

    await run_in_threadpool(record_results, session_factory, [target], [result])

    if result.outcome is DeliveryOutcome.TIMEOUT:
        logger.warning("Function call timed out: tenant=%s function=%s", tenant.id, function_name)
        raise DispatchTimeout(f"Function {function_name} did not respond within {target.timeout_ms}ms")
    if result.outcome is DeliveryOutcome.NETWORK_FAILURE:
        logger.warning("Function call failed: tenant=%s function=%s error=%s", tenant.id, function_name, result.error)
        raise DispatchNetworkFailure(f"Function {function_name} is unreachable")
    if result.outcome is DeliveryOutcome.UPSTREAM_ERROR:
        logger.warning(
            "Function call rejected upstream: tenant=%s function=%s status=%s",
            tenant.id,
            function_name,
            result.status_code,
        )
        raise DispatchUpstreamError(
            f"Function {function_name} returned {result.status_code}",
            status_code=result.status_code or 502,
            body=result.body,
        )

    logger.info("Function call ok: tenant=%s function=%s latency_ms=%s", tenant.id, function_name, result.latency_ms)
    return FunctionReply(
        subscription_id=target.subscription_id,
        status_code=result.status_code or 200,
        body=result.body,
        latency_ms=result.latency_ms,
    )
