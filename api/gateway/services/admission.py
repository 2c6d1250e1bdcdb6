"""
Admission pipeline for the moderation surface.

Per request, in fixed order and terminal on the first rejection:

    KeyLookup -> QuotaCheck -> RateCheck -> [RuleOwnershipCheck] -> Forward

Each stage is one atomic store operation. Infrastructure faults are retried
a bounded number of times and then fail closed with ``StoreUnavailable``.
Quota and tokens consumed by an admitted request are kept regardless of
what the backend does afterwards.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from gateway.errors import AuthorizationError, QuotaExceeded, RateLimited
from gateway.models.developer import APIKey
from gateway.services.key_registry import KeyRegistry
from gateway.services.quota import QuotaDecision, QuotaLedger, period_key_for
from gateway.services.rate_limiter import RateDecision, RateLimiter
from gateway.services.rules import RuleOwnership
from gateway.services.store import call_store

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Admission:
    """An admitted request: the caller's key plus the ledger readings."""

    api_key: APIKey
    quota: QuotaDecision
    rate: RateDecision
    requests_per_minute: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.requests_per_minute),
            "X-RateLimit-Remaining": str(int(self.rate.tokens_remaining)),
            "X-Quota-Limit": str(self.quota.limit),
            "X-Quota-Remaining": str(self.quota.remaining),
            "X-Quota-Reset": self.quota.reset_at.isoformat(),
        }


class AdmissionPipeline:
    def __init__(
        self,
        registry: KeyRegistry,
        quota: QuotaLedger,
        limiter: RateLimiter,
        rules: RuleOwnership,
        *,
        store_retry_attempts: int = 2,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.quota = quota
        self.limiter = limiter
        self.rules = rules
        self.store_retry_attempts = store_retry_attempts
        self.clock = clock

    async def _store(self, operation, name: str):
        return await call_store(operation, attempts=self.store_retry_attempts, name=name)

    async def admit(self, raw_key: str | None) -> Admission:
        """
        Authenticate the caller and charge one request to quota and rate limit.

        Raises:
            AuthenticationError: 401 invalid_api_key
            QuotaExceeded: 429 quota_exceeded
            RateLimited: 429 rate_limited
            StoreUnavailable: 503 service_unavailable
        """
        api_key = await self._store(lambda: self.registry.lookup(raw_key), "key lookup")

        period_key = period_key_for(self.clock())
        quota = await self._store(
            lambda: self.quota.check_and_increment(api_key.id, period_key, api_key.monthly_quota),
            "quota check",
        )
        if not quota.admitted:
            raise QuotaExceeded(limit=quota.limit, reset_at=quota.reset_at)

        rate = await self._store(lambda: self.limiter.consume(api_key.id), "rate limit check")
        if not rate.admitted:
            raise RateLimited(rate.retry_after_seconds)

        return Admission(
            api_key=api_key,
            quota=quota,
            rate=rate,
            requests_per_minute=self.limiter.policy.requests_per_minute,
        )

    async def check_ownership(self, api_key: APIKey, rule_id: str) -> None:
        """Reject access to a rule the calling key did not create."""
        owner = await self._store(lambda: self.rules.owner_of(rule_id), "rule ownership check")
        if owner != api_key.id:
            logger.info("API key %s denied access to rule %s", api_key.id, rule_id)
            raise AuthorizationError("Rule does not belong to this API key")

    async def record_rule(self, api_key: APIKey, rule_id: str) -> None:
        """Make ``api_key`` the owner of a rule the backend just created."""
        await self._store(lambda: self.rules.record(rule_id, api_key.id), "rule ownership record")

    async def forget_rule(self, api_key: APIKey, rule_id: str) -> None:
        await self._store(lambda: self.rules.forget(rule_id, api_key.id), "rule ownership removal")
