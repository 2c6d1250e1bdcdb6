"""FastAPI dependencies: clock, ledgers and caller authentication."""

import hmac
import time
from datetime import datetime, timezone
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.auth.jwt import decode_token
from gateway.config import settings
from gateway.database import get_session_factory
from gateway.errors import AuthorizationError, UnauthorizedError
from gateway.models.developer import APIKey, Developer
from gateway.services.admission import AdmissionPipeline
from gateway.services.forwarder import ProxyForwarder
from gateway.services.key_registry import KeyRegistry
from gateway.services.quota import QuotaLedger
from gateway.services.rate_limiter import RateLimiter
from gateway.services.request_log import RequestLogService
from gateway.services.rules import RuleOwnership
from gateway.services.store import call_store


class SystemClock:
    """Wall clock; replaced in tests to simulate elapsed time and month rollover."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def time(self) -> float:
        return time.time()


_system_clock = SystemClock()


def get_clock() -> SystemClock:
    return _system_clock


def get_key_registry(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> KeyRegistry:
    return KeyRegistry(session_factory, settings.key_policy())


def get_quota_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> QuotaLedger:
    return QuotaLedger(session_factory)


def get_rate_limiter(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock: SystemClock = Depends(get_clock),
) -> RateLimiter:
    return RateLimiter(session_factory, settings.rate_limit_policy(), clock=clock.time)


def get_request_log(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RequestLogService:
    return RequestLogService(session_factory)


def get_rule_ownership(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RuleOwnership:
    return RuleOwnership(session_factory)


def get_admission_pipeline(
    registry: KeyRegistry = Depends(get_key_registry),
    quota: QuotaLedger = Depends(get_quota_ledger),
    limiter: RateLimiter = Depends(get_rate_limiter),
    rules: RuleOwnership = Depends(get_rule_ownership),
    clock: SystemClock = Depends(get_clock),
) -> AdmissionPipeline:
    return AdmissionPipeline(
        registry,
        quota,
        limiter,
        rules,
        store_retry_attempts=settings.store_retry_attempts,
        clock=clock.now,
    )


def get_forwarder(request: Request) -> ProxyForwarder:
    """The process-wide forwarder created in the lifespan."""
    forwarder = getattr(request.app.state, "forwarder", None)
    if forwarder is None:
        raise RuntimeError("Moderation backend forwarder is not initialized; run the app with its lifespan")
    return forwarder


async def get_current_developer(
    authorization: str | None = Header(default=None, alias="Authorization"),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Developer:
    """
    Resolve a portal-issued bearer token to an active developer.

    Raises:
        UnauthorizedError: 401 if the token is missing, invalid, expired,
            or names a deactivated developer
    """
    if not authorization:
        raise UnauthorizedError("Bearer token required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthorizedError("Bearer token required")

    payload = decode_token(token)
    if not payload or payload.get("type") != "access":
        raise UnauthorizedError("Invalid or expired token")

    try:
        developer_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise UnauthorizedError("Invalid or expired token")

    async def _load() -> Developer | None:
        async with session_factory() as session:
            result = await session.execute(
                select(Developer)
                .where(Developer.id == developer_id)
                .where(Developer.is_active.is_(True))
            )
            return result.scalar_one_or_none()

    developer = await call_store(_load, attempts=settings.store_retry_attempts, name="developer lookup")
    if developer is None:
        raise UnauthorizedError("Developer account not found or inactive")
    return developer


async def get_current_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    registry: KeyRegistry = Depends(get_key_registry),
) -> APIKey:
    """Authenticate an API key without charging quota or rate limit."""
    return await call_store(
        lambda: registry.lookup(x_api_key),
        attempts=settings.store_retry_attempts,
        name="key lookup",
    )


async def require_admin(
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> None:
    """
    Require the operator token configured as ``ADMIN_TOKEN``.

    Raises:
        UnauthorizedError: 401 if the header is missing
        AuthorizationError: 403 if the token does not match
    """
    if not x_admin_token:
        raise UnauthorizedError("Admin token required")
    if not hmac.compare_digest(x_admin_token.encode(), settings.admin_token.encode()):
        raise AuthorizationError("Invalid admin token")
