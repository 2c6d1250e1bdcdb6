"""Admin router for quota resets and ledger maintenance."""

from fastapi import APIRouter, Depends, status

from gateway.auth.dependencies import (
    SystemClock,
    get_clock,
    get_quota_ledger,
    get_rate_limiter,
    get_request_log,
    require_admin,
)
from gateway.config import settings
from gateway.schemas.usage import CleanupResponse, ResetQuotaRequest, ResetQuotaResponse
from gateway.services.quota import QuotaLedger, period_key_for
from gateway.services.rate_limiter import RateLimiter
from gateway.services.request_log import RequestLogService
from gateway.services.store import call_store

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


@router.post(
    "/quotas/reset",
    response_model=ResetQuotaResponse,
    status_code=status.HTTP_200_OK,
)
async def reset_quotas(
    data: ResetQuotaRequest | None = None,
    ledger: QuotaLedger = Depends(get_quota_ledger),
    clock: SystemClock = Depends(get_clock),
) -> ResetQuotaResponse:
    """
    Reset quota counters for a period (default: current month).

    Idempotent; intended for a scheduler at the start of each month.
    """
    period = (data.period if data else None) or period_key_for(clock.now())
    rows_reset = await call_store(
        lambda: ledger.reset_period(period),
        attempts=settings.store_retry_attempts,
        name="quota reset",
    )
    return ResetQuotaResponse(period=period, rows_reset=rows_reset)


@router.post(
    "/maintenance/cleanup",
    response_model=CleanupResponse,
    status_code=status.HTTP_200_OK,
)
async def cleanup(
    request_log: RequestLogService = Depends(get_request_log),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> CleanupResponse:
    """Apply the request log retention policy and drop idle rate limit buckets."""
    logs_removed = await call_store(
        lambda: request_log.cleanup_old(settings.request_log_retention_days),
        attempts=settings.store_retry_attempts,
        name="request log cleanup",
    )
    buckets_removed = await call_store(
        lambda: limiter.cleanup_stale(settings.rate_limit_idle_seconds),
        attempts=settings.store_retry_attempts,
        name="rate limit cleanup",
    )
    return CleanupResponse(
        request_logs_removed=logs_removed,
        rate_limit_buckets_removed=buckets_removed,
    )
