"""Quota ledger: per-key, per-calendar-month request counters."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.database import dialect_insert
from gateway.models.developer import APIKey
from gateway.models.quota import QuotaUsage

logger = logging.getLogger(__name__)


def period_key_for(moment: datetime | None = None) -> str:
    """Calendar year-month (UTC) of ``moment``, e.g. ``2026-10``."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def reset_at_for(period_key: str) -> datetime:
    """First instant of the month following ``period_key``."""
    year, month = (int(part) for part in period_key.split("-"))
    if month == 12:
        return datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(year, month + 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    """Outcome of one check-and-increment."""

    admitted: bool
    used: int
    limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@dataclass(frozen=True, slots=True)
class QuotaUsageInfo:
    period_key: str
    used: int
    limit: int
    remaining: int
    reset_at: datetime


class QuotaLedger:
    """Monthly quota counters backed by the ``quota_usage`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _ensure_row(self, session: AsyncSession, api_key_id: UUID, period_key: str) -> None:
        now = datetime.now(timezone.utc)
        stmt = (
            dialect_insert(session, QuotaUsage.__table__)
            .values(
                id=uuid.uuid4(),
                api_key_id=api_key_id,
                month_year=period_key,
                requests_used=0,
                last_reset=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["api_key_id", "month_year"])
        )
        await session.execute(stmt)

    async def check_and_increment(self, api_key_id: UUID, period_key: str, limit: int) -> QuotaDecision:
        """
        Admit one request against the key's quota for ``period_key``.

        The predicate ``requests_used < limit`` and the increment are one
        conditional UPDATE; if it matches no row the request is not admitted
        and nothing is written.
        """
        reset_at = reset_at_for(period_key)

        async with self.session_factory() as session, session.begin():
            await self._ensure_row(session, api_key_id, period_key)

            result = await session.execute(
                update(QuotaUsage)
                .where(QuotaUsage.api_key_id == api_key_id)
                .where(QuotaUsage.month_year == period_key)
                .where(QuotaUsage.requests_used < limit)
                .values(requests_used=QuotaUsage.requests_used + 1)
                .returning(QuotaUsage.requests_used)
                .execution_options(synchronize_session=False)
            )
            used = result.scalar_one_or_none()
            if used is not None:
                return QuotaDecision(admitted=True, used=used, limit=limit, reset_at=reset_at)

            current = await session.execute(
                select(QuotaUsage.requests_used)
                .where(QuotaUsage.api_key_id == api_key_id)
                .where(QuotaUsage.month_year == period_key)
            )
            used = current.scalar_one()

        logger.info("Quota exhausted for API key %s in %s (%d/%d)", api_key_id, period_key, used, limit)
        return QuotaDecision(admitted=False, used=used, limit=limit, reset_at=reset_at)

    async def usage(self, api_key_id: UUID, period_key: str, limit: int) -> QuotaUsageInfo:
        """Read-only view of a key's consumption; a missing row reads as zero."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuotaUsage.requests_used)
                .where(QuotaUsage.api_key_id == api_key_id)
                .where(QuotaUsage.month_year == period_key)
            )
            used = result.scalar_one_or_none() or 0

        return QuotaUsageInfo(
            period_key=period_key,
            used=used,
            limit=limit,
            remaining=max(0, limit - used),
            reset_at=reset_at_for(period_key),
        )

    async def reset_period(self, period_key: str) -> int:
        """
        Zero every counter of ``period_key`` and seed rows for active keys lacking one.

        Safe to call repeatedly. Returns the number of existing rows reset.
        """
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(QuotaUsage)
                .where(QuotaUsage.month_year == period_key)
                .values(requests_used=0, last_reset=now)
                .execution_options(synchronize_session=False)
            )
            reset_count = result.rowcount

            missing = await session.execute(
                select(APIKey.id)
                .where(APIKey.is_active.is_(True))
                .where(
                    ~exists()
                    .where(QuotaUsage.api_key_id == APIKey.id)
                    .where(QuotaUsage.month_year == period_key)
                )
            )
            key_ids = list(missing.scalars().all())
            if key_ids:
                await session.execute(
                    dialect_insert(session, QuotaUsage.__table__)
                    .values(
                        [
                            {
                                "id": uuid.uuid4(),
                                "api_key_id": key_id,
                                "month_year": period_key,
                                "requests_used": 0,
                                "last_reset": now,
                                "created_at": now,
                                "updated_at": now,
                            }
                            for key_id in key_ids
                        ]
                    )
                    .on_conflict_do_nothing(index_elements=["api_key_id", "month_year"])
                )

        logger.info(
            "Reset quota period %s: %d rows reset, %d rows seeded", period_key, reset_count, len(key_ids)
        )
        return reset_count
