"""
Token bucket rate limiter backed by the shared store.

Each API key owns one bucket holding up to ``burst_limit`` tokens that
refill continuously at ``requests_per_minute / 60`` tokens per second.
Refill, the ``tokens >= 1`` test and the decrement are computed inside a
single conditional UPDATE so concurrent gateways never spend the same token
twice.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import case, delete, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.config import RateLimitPolicy
from gateway.database import dialect_insert
from gateway.models.rate_limit import RateLimitBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateDecision:
    admitted: bool
    tokens_remaining: float
    retry_after_seconds: float = 0.0


class RateLimiter:
    """Per-key token buckets."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: RateLimitPolicy,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self.clock = clock

    def _refilled(self, tokens: float, elapsed: float) -> float:
        accrued = tokens + max(0.0, elapsed) * self.policy.requests_per_minute / 60.0
        return min(float(self.policy.burst_limit), accrued)

    async def consume(self, api_key_id: UUID) -> RateDecision:
        """Take one token from the key's bucket if one is available."""
        now = self.clock()
        capacity = float(self.policy.burst_limit)
        rpm = float(self.policy.requests_per_minute)

        elapsed = case(
            (RateLimitBucket.last_refill_at < now, literal(now) - RateLimitBucket.last_refill_at),
            else_=literal(0.0),
        )
        accrued = RateLimitBucket.tokens + elapsed * rpm / 60.0
        refilled = case((accrued > capacity, literal(capacity)), else_=accrued)
        refill_mark = case(
            (RateLimitBucket.last_refill_at < now, literal(now)),
            else_=RateLimitBucket.last_refill_at,
        )

        async with self.session_factory() as session, session.begin():
            await session.execute(
                dialect_insert(session, RateLimitBucket.__table__)
                .values(api_key_id=api_key_id, tokens=capacity, last_refill_at=now)
                .on_conflict_do_nothing(index_elements=["api_key_id"])
            )

            result = await session.execute(
                update(RateLimitBucket)
                .where(RateLimitBucket.api_key_id == api_key_id)
                .where(refilled >= 1.0)
                .values(tokens=refilled - 1.0, last_refill_at=refill_mark)
                .returning(RateLimitBucket.tokens)
                .execution_options(synchronize_session=False)
            )
            remaining = result.scalar_one_or_none()
            if remaining is not None:
                return RateDecision(admitted=True, tokens_remaining=max(0.0, remaining))

            bucket = await session.execute(
                select(RateLimitBucket.tokens, RateLimitBucket.last_refill_at).where(
                    RateLimitBucket.api_key_id == api_key_id
                )
            )
            row = bucket.one()

        available = self._refilled(row.tokens, now - row.last_refill_at)
        retry_after = (1.0 - available) * 60.0 / rpm
        logger.debug("Rate limited API key %s, retry after %.3fs", api_key_id, retry_after)
        return RateDecision(
            admitted=False,
            tokens_remaining=available,
            retry_after_seconds=max(0.0, retry_after),
        )

    async def cleanup_stale(self, max_idle_seconds: float) -> int:
        """Delete buckets idle long enough to have refilled completely anyway."""
        idle_floor = self.policy.burst_limit * 60.0 / self.policy.requests_per_minute
        cutoff = self.clock() - max(max_idle_seconds, idle_floor)
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                delete(RateLimitBucket)
                .where(RateLimitBucket.last_refill_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        logger.info("Removed %d idle rate limit buckets", result.rowcount)
        return result.rowcount
