"""
Outbound fan-out of tenant events to subscribed endpoints.

Each subscription is called independently and concurrently. A delivery is
bounded by its own timeout and the in-flight request is cancelled when it
expires. Failures never propagate to sibling deliveries or to the caller;
they land in the subscription counters and the delivery-attempt log.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from switchboard.core.config import settings
from switchboard.db.session import SessionLocal
from switchboard.dispatch.events import EventType, build_event_payload
from switchboard.subscriptions.service import DeliveryTarget, load_event_targets, record_delivery

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

_semaphore: asyncio.Semaphore | None = None
_semaphore_loop: asyncio.AbstractEventLoop | None = None


class DeliveryOutcome(str, enum.Enum):
    SUCCESS = "success"
    UPSTREAM_ERROR = "upstream_error"
    TIMEOUT = "timeout"
    NETWORK_FAILURE = "network_failure"


@dataclass
class DeliveryResult:
    subscription_id: str
    outcome: DeliveryOutcome
    status_code: int | None = None
    latency_ms: int = 0
    error: str | None = None
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome is DeliveryOutcome.SUCCESS


@dataclass
class DispatchReport:
    tenant_id: str
    event_type: str
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.delivered


def _delivery_slots() -> asyncio.Semaphore:
    # one semaphore per running loop; tests spin up a fresh loop per asyncio.run
    global _semaphore, _semaphore_loop
    loop = asyncio.get_running_loop()
    if _semaphore is None or _semaphore_loop is not loop:
        _semaphore = asyncio.Semaphore(settings.DISPATCH_MAX_CONCURRENCY)
        _semaphore_loop = loop
    return _semaphore


def outbound_headers(target: DeliveryTarget) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-Tenant-ID": target.tenant_id,
    }
    if target.auth_token:
        headers["Authorization"] = f"Bearer {target.auth_token}"
    return headers


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def deliver(client: httpx.AsyncClient, target: DeliveryTarget, payload: dict) -> DeliveryResult:
    """POST one payload to one target and classify what happened."""
    started = time.perf_counter()

    def elapsed() -> int:
        return int((time.perf_counter() - started) * 1000)

    try:
        async with _delivery_slots():
            response = await asyncio.wait_for(
                client.post(target.endpoint_url, json=payload, headers=outbound_headers(target)),
                timeout=target.timeout_seconds,
            )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return DeliveryResult(
            subscription_id=target.subscription_id,
            outcome=DeliveryOutcome.TIMEOUT,
            latency_ms=elapsed(),
            error=f"No response within {target.timeout_ms}ms",
        )
    except httpx.TransportError as exc:
        return DeliveryResult(
            subscription_id=target.subscription_id,
            outcome=DeliveryOutcome.NETWORK_FAILURE,
            latency_ms=elapsed(),
            error=str(exc) or exc.__class__.__name__,
        )

    body = _response_body(response)
    if 200 <= response.status_code < 300:
        return DeliveryResult(
            subscription_id=target.subscription_id,
            outcome=DeliveryOutcome.SUCCESS,
            status_code=response.status_code,
            latency_ms=elapsed(),
            body=body,
        )
    return DeliveryResult(
        subscription_id=target.subscription_id,
        outcome=DeliveryOutcome.UPSTREAM_ERROR,
        status_code=response.status_code,
        latency_ms=elapsed(),
        error=response.text[:500],
        body=body,
    )


def _load_targets(session_factory: SessionFactory, tenant_id: str, event_type: EventType) -> list[DeliveryTarget]:
    db = session_factory()
    try:
        return load_event_targets(db, tenant_id=tenant_id, event_type=event_type)
    finally:
        db.close()


def record_results(session_factory: SessionFactory, targets: list[DeliveryTarget], results: list[DeliveryResult]) -> None:
    db = session_factory()
    try:
        for target, result in zip(targets, results):
            try:
                record_delivery(
                    db,
                    target=target,
                    outcome=result.outcome.value,
                    status_code=result.status_code,
                    latency_ms=result.latency_ms,
                    error=result.error,
                )
            except Exception:
                db.rollback()
                logger.exception("Failed to record delivery stats for subscription %s", target.subscription_id)
    finally:
        db.close()


async def dispatch(
    tenant_id: str,
    event_type: EventType | str,
    data: dict,
    *,
    session_factory: SessionFactory = SessionLocal,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DispatchReport:
    event_type = EventType(event_type)
    report = DispatchReport(tenant_id=tenant_id, event_type=event_type.value)

    targets = await run_in_threadpool(_load_targets, session_factory, tenant_id, event_type)
    if not targets:
        logger.info("No active subscriptions: tenant=%s event=%s", tenant_id, event_type.value)
        return report

    # per-delivery deadlines are enforced by wait_for
    async with httpx.AsyncClient(transport=transport, timeout=None) as client:
        payloads = [
            build_event_payload(
                event_type,
                tenant_id=t.tenant_id,
                tenant_name=t.tenant_name,
                data=data,
            )
            for t in targets
        ]
        report.results = list(
            await asyncio.gather(*(deliver(client, t, p) for t, p in zip(targets, payloads)))
        )

    await run_in_threadpool(record_results, session_factory, targets, report.results)

    for target, result in zip(targets, report.results):
        if not result.ok:
            logger.warning(
                "Delivery failed: tenant=%s event=%s subscription=%s outcome=%s status=%s error=%s",
                tenant_id,
                event_type.value,
                target.subscription_id,
                result.outcome.value,
                result.status_code,
                result.error,
            )
    logger.info(
        "Dispatched event: tenant=%s event=%s delivered=%s failed=%s",
        tenant_id,
        event_type.value,
        report.delivered,
        report.failed,
    )
    return report


async def dispatch_in_background(tenant_id: str, event_type: EventType | str, data: dict) -> None:
    """Entry point for BackgroundTasks; a dispatch failure must never surface to the request."""
    try:
        await dispatch(tenant_id, event_type, data)
    except Exception:
        logger.exception("Dispatch crashed: tenant=%s event=%s", tenant_id, event_type)
