"""Key registry: developers' API keys and the active-key cap."""

import logging
import uuid
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import TIMESTAMP, Boolean, Integer, String, Uuid, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.auth.api_key import generate_api_key, is_valid_api_key
from gateway.config import KeyPolicy
from gateway.errors import (
    AuthenticationError,
    AuthorizationError,
    KeyLimitExceeded,
    NotFound,
    StoreUnavailable,
)
from gateway.models.developer import APIKey, Developer

logger = logging.getLogger(__name__)

# Collisions on a 128-bit random part are not expected; the bound only
# keeps a broken generator from looping forever.
KEY_GENERATION_ATTEMPTS = 3


class KeyRegistry:
    """Creates, resolves and revokes API keys."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], policy: KeyPolicy):
        self.session_factory = session_factory
        self.policy = policy

    async def create_key(
        self,
        developer_id: UUID,
        name: str | None = None,
        monthly_quota: int | None = None,
    ) -> APIKey:
        """
        Create a key for an active developer.

        The active-key count and the insert run as one conditional
        ``INSERT ... SELECT ... WHERE count < cap`` while the developer row is
        locked, so concurrent requests cannot push a developer past the cap.

        Raises:
            NotFound: developer missing or deactivated
            KeyLimitExceeded: developer already holds ``max_active_keys`` keys
            StoreUnavailable: no unique key value after ``KEY_GENERATION_ATTEMPTS`` tries
        """
        quota = monthly_quota if monthly_quota is not None else self.policy.default_monthly_quota

        for attempt in range(1, KEY_GENERATION_ATTEMPTS + 1):
            key_id = uuid.uuid4()
            key_value = generate_api_key(self.policy)
            try:
                await self._insert_if_below_cap(developer_id, key_id, key_value, name, quota)
            except IntegrityError:
                logger.warning(
                    "API key value collision for developer %s (attempt %d)", developer_id, attempt
                )
                continue

            async with self.session_factory() as session:
                api_key = await session.get(APIKey, key_id)
            logger.info("Created API key %s for developer %s", key_id, developer_id)
            return api_key

        logger.error(
            "Gave up generating a unique API key for developer %s after %d attempts",
            developer_id,
            KEY_GENERATION_ATTEMPTS,
        )
        raise StoreUnavailable("Could not generate a unique API key value")

    async def _insert_if_below_cap(
        self,
        developer_id: UUID,
        key_id: UUID,
        key_value: str,
        name: str | None,
        quota: int,
    ) -> None:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as session, session.begin():
            developer = await session.execute(
                select(Developer.id)
                .where(Developer.id == developer_id)
                .where(Developer.is_active.is_(True))
                .with_for_update()
            )
            if developer.scalar_one_or_none() is None:
                raise NotFound("Developer not found")

            active_count = (
                select(func.count(APIKey.id))
                .where(APIKey.developer_id == developer_id)
                .where(APIKey.is_active.is_(True))
                .correlate(None)
                .scalar_subquery()
            )
            row = select(
                literal(key_id, Uuid),
                literal(developer_id, Uuid),
                literal(key_value, String),
                literal(name, String),
                literal(quota, Integer),
                literal(True, Boolean),
                literal(now, TIMESTAMP(timezone=True)),
                literal(now, TIMESTAMP(timezone=True)),
            ).where(active_count < self.policy.max_active_keys)

            result = await session.execute(
                insert(APIKey.__table__).from_select(
                    [
                        "id",
                        "developer_id",
                        "key_value",
                        "name",
                        "monthly_quota",
                        "is_active",
                        "created_at",
                        "updated_at",
                    ],
                    row,
                )
            )
            if result.rowcount == 0:
                raise KeyLimitExceeded(self.policy.max_active_keys)

    async def lookup(self, value: str | None) -> APIKey:
        """
        Resolve a caller-supplied key value to an active key.

        Malformed, unknown and revoked keys all raise the same error.
        """
        if not is_valid_api_key(value, self.policy.prefix):
            raise AuthenticationError()

        async with self.session_factory() as session:
            result = await session.execute(
                select(APIKey)
                .join(Developer, Developer.id == APIKey.developer_id)
                .where(APIKey.key_value == value)
                .where(APIKey.is_active.is_(True))
                .where(Developer.is_active.is_(True))
            )
            api_key = result.scalar_one_or_none()

        if api_key is None:
            raise AuthenticationError()
        return api_key

    async def revoke(self, developer_id: UUID, key_id: UUID) -> None:
        """
        Soft-delete a key owned by ``developer_id``.

        Raises:
            NotFound: no active key with this id
            AuthorizationError: the key belongs to another developer
        """
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(APIKey)
                .where(APIKey.id == key_id)
                .where(APIKey.developer_id == developer_id)
                .where(APIKey.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                logger.info("Revoked API key %s", key_id)
                return

            owner = await session.execute(
                select(APIKey.developer_id, APIKey.is_active).where(APIKey.id == key_id)
            )
            row = owner.first()

        if row is None or not row.is_active:
            raise NotFound("API key not found")
        raise AuthorizationError("API key belongs to another developer")

    async def count_active(self, developer_id: UUID) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(APIKey.id))
                .where(APIKey.developer_id == developer_id)
                .where(APIKey.is_active.is_(True))
            )
            return result.scalar_one()

    async def list_keys(self, developer_id: UUID) -> list[APIKey]:
        """Active keys for a developer, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(APIKey)
                .where(APIKey.developer_id == developer_id)
                .where(APIKey.is_active.is_(True))
                .order_by(APIKey.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_key(self, developer_id: UUID, key_id: UUID) -> APIKey:
        """An active key owned by ``developer_id``; raises like ``revoke``."""
        async with self.session_factory() as session:
            api_key = await session.get(APIKey, key_id)

        if api_key is None or not api_key.is_active:
            raise NotFound("API key not found")
        if api_key.developer_id != developer_id:
            raise AuthorizationError("API key belongs to another developer")
        return api_key

    async def deactivate_developer(self, developer_id: UUID) -> int:
        """
        Deactivate a developer and every key they own in one transaction.

        Returns the number of keys deactivated.
        """
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                update(Developer)
                .where(Developer.id == developer_id)
                .where(Developer.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise NotFound("Developer not found")

            keys = await session.execute(
                update(APIKey)
                .where(APIKey.developer_id == developer_id)
                .where(APIKey.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            revoked = keys.rowcount

        logger.info("Deactivated developer %s and %d API keys", developer_id, revoked)
        return revoked
