"""Request log sink for the moderation surface."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.models.request_log import RequestLog

logger = logging.getLogger(__name__)


class RequestLogService:
    """Appends one row per request; never read back by admission logic."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        *,
        endpoint: str,
        method: str,
        status_code: int,
        api_key_id: UUID | None = None,
        error_code: str | None = None,
        response_time_ms: int | None = None,
        request_size_bytes: int | None = None,
        response_size_bytes: int | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
        request_id: str | None = None,
    ) -> None:
        """
        Append a log row in its own transaction.

        A failing log write is reported through ``logging`` and does not
        change the outcome already decided for the request.
        """
        entry = RequestLog(
            api_key_id=api_key_id,
            endpoint=endpoint[:255],
            method=method[:10],
            status_code=status_code,
            error_code=error_code,
            response_time_ms=response_time_ms,
            request_size_bytes=request_size_bytes,
            response_size_bytes=response_size_bytes,
            user_agent=(user_agent or "")[:500] or None,
            ip_address=ip_address,
            request_id=request_id,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self.session_factory() as session, session.begin():
                session.add(entry)
        except SQLAlchemyError:
            logger.exception(
                "Failed to write request log for %s %s (status %d)", method, endpoint, status_code
            )

    async def cleanup_old(self, retention_days: int = 90) -> int:
        """Delete log rows older than ``retention_days``."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        async with self.session_factory() as session, session.begin():
            result = await session.execute(
                delete(RequestLog)
                .where(RequestLog.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        logger.info("Removed %d request log rows older than %d days", result.rowcount, retention_days)
        return result.rowcount
