"""Ownership records for moderation rules created through the gateway."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.database import dialect_insert
from gateway.models.rule import ModerationRule

logger = logging.getLogger(__name__)


class RuleOwnership:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def owner_of(self, rule_id: str) -> UUID | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ModerationRule.api_key_id).where(ModerationRule.id == rule_id)
            )
            return result.scalar_one_or_none()

    async def record(self, rule_id: str, api_key_id: UUID) -> None:
        """Remember that ``api_key_id`` created ``rule_id``; the first owner wins."""
        async with self.session_factory() as session, session.begin():
            await session.execute(
                dialect_insert(session, ModerationRule.__table__)
                .values(id=rule_id, api_key_id=api_key_id, created_at=datetime.now(timezone.utc))
                .on_conflict_do_nothing(index_elements=["id"])
            )
        logger.info("Recorded moderation rule %s for API key %s", rule_id, api_key_id)

    async def forget(self, rule_id: str, api_key_id: UUID) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(
                delete(ModerationRule)
                .where(ModerationRule.id == rule_id)
                .where(ModerationRule.api_key_id == api_key_id)
                .execution_options(synchronize_session=False)
            )
