"""Scheduled ledger maintenance: monthly quota reset and retention cleanup."""

from __future__ import annotations

import argparse
import asyncio

from gateway.config import configure_logging, settings
from gateway.database import AsyncSessionLocal, engine
from gateway.services.quota import QuotaLedger, period_key_for
from gateway.services.rate_limiter import RateLimiter
from gateway.services.request_log import RequestLogService


async def reset_quotas(period: str | None) -> int:
    period = period or period_key_for()
    rows = await QuotaLedger(AsyncSessionLocal).reset_period(period)
    print(f"Reset {rows} quota rows for {period}")
    return 0


async def cleanup(retention_days: int) -> int:
    logs = await RequestLogService(AsyncSessionLocal).cleanup_old(retention_days)
    buckets = await RateLimiter(AsyncSessionLocal, settings.rate_limit_policy()).cleanup_stale(
        settings.rate_limit_idle_seconds
    )
    print(f"Removed {logs} request log rows and {buckets} idle rate limit buckets")
    return 0


async def main() -> int:
    parser = argparse.ArgumentParser(description="Gateway ledger maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    reset = sub.add_parser("reset-quotas", help="Zero quota counters for a month")
    reset.add_argument("--period", default=None, help="Month as YYYY-MM (default: current month)")

    clean = sub.add_parser("cleanup", help="Apply log retention and drop idle buckets")
    clean.add_argument(
        "--retention-days",
        type=int,
        default=settings.request_log_retention_days,
        help="Keep request logs newer than this many days",
    )

    args = parser.parse_args()
    configure_logging()
    try:
        if args.command == "reset-quotas":
            return await reset_quotas(args.period)
        return await cleanup(args.retention_days)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
