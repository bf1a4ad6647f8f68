"""
Periodic housekeeping, meant for cron or a k8s CronJob:

- operators whose heartbeat is older than OPERATOR_OFFLINE_AFTER_SECONDS go offline
- pending handoffs older than HANDOFF_PENDING_TTL_MINUTES are resolved as expired

Active handoffs are never touched.
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

# backend/scripts/sweep_operators.py -> parents[1] == backend/
sys.path.append(str(Path(__file__).resolve().parents[1]))

from switchboard.core.config import settings  # noqa: E402
from switchboard.db.session import SessionLocal  # noqa: E402
from switchboard.handoff.service import expire_stale_pending  # noqa: E402
from switchboard.operators.service import mark_stale_offline  # noqa: E402

logger = logging.getLogger("switchboard.sweep")


def run(*, offline_after_seconds: int, pending_ttl_minutes: int, expire_pending: bool) -> tuple[int, int]:
    db = SessionLocal()
    try:
        offline = mark_stale_offline(db, threshold_seconds=offline_after_seconds)
        expired = 0
        if expire_pending:
            cutoff = datetime.utcnow() - timedelta(minutes=pending_ttl_minutes)
            expired = expire_stale_pending(db, older_than=cutoff)
        return offline, expired
    finally:
        db.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mark stale operators offline and expire abandoned handoffs.")
    parser.add_argument("--offline-after", type=int, default=settings.OPERATOR_OFFLINE_AFTER_SECONDS)
    parser.add_argument("--pending-ttl", type=int, default=settings.HANDOFF_PENDING_TTL_MINUTES)
    parser.add_argument("--skip-pending", action="store_true", help="only sweep operator presence")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
    offline, expired = run(
        offline_after_seconds=args.offline_after,
        pending_ttl_minutes=args.pending_ttl,
        expire_pending=not args.skip_pending,
    )
    logger.info("Sweep done: operators_offline=%s handoffs_expired=%s", offline, expired)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
