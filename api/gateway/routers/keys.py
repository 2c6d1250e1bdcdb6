"""Developer portal router: API key management and account removal."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from gateway.auth.dependencies import (
    SystemClock,
    get_clock,
    get_current_developer,
    get_key_registry,
    get_quota_ledger,
)
from gateway.config import settings
from gateway.errors import NotFound
from gateway.middleware.rate_limit import limiter
from gateway.models.developer import APIKey, Developer
from gateway.schemas.keys import (
    ApiKeyInfo,
    CreateApiKeyRequest,
    CreateApiKeyResponse,
    DeactivateDeveloperResponse,
    ListApiKeysResponse,
)
from gateway.schemas.usage import QuotaUsageResponse
from gateway.services.key_registry import KeyRegistry
from gateway.services.quota import QuotaLedger, period_key_for
from gateway.services.store import call_store

router = APIRouter(prefix="/api/v1", tags=["Keys"])


def _parse_key_id(key_id: str) -> UUID:
    try:
        return UUID(key_id)
    except ValueError:
        raise NotFound("API key not found")


def _key_info(api_key: APIKey) -> ApiKeyInfo:
    return ApiKeyInfo(
        id=str(api_key.id),
        name=api_key.name,
        monthly_quota=api_key.monthly_quota,
        created_at=api_key.created_at.isoformat(),
    )


@router.post(
    "/keys",
    response_model=CreateApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.api_key_create_rate_limit)
async def create_api_key(
    request: Request,
    data: CreateApiKeyRequest,
    developer: Developer = Depends(get_current_developer),
    registry: KeyRegistry = Depends(get_key_registry),
) -> CreateApiKeyResponse:
    """
    Create a new API key for the authenticated developer.

    The key value is only returned once. Returns 409 when the developer
    already holds the maximum number of active keys.
    """
    api_key = await call_store(
        lambda: registry.create_key(developer.id, data.name),
        attempts=settings.store_retry_attempts,
        name="key creation",
    )
    return CreateApiKeyResponse(
        **_key_info(api_key).model_dump(),
        api_key=api_key.key_value,
    )


@router.get(
    "/keys",
    response_model=ListApiKeysResponse,
    status_code=status.HTTP_200_OK,
)
async def list_api_keys(
    developer: Developer = Depends(get_current_developer),
    registry: KeyRegistry = Depends(get_key_registry),
) -> ListApiKeysResponse:
    """List the developer's active keys, newest first."""
    api_keys = await call_store(
        lambda: registry.list_keys(developer.id),
        attempts=settings.store_retry_attempts,
        name="key listing",
    )
    return ListApiKeysResponse(
        items=[_key_info(key) for key in api_keys],
        limit=registry.policy.max_active_keys,
    )


@router.delete(
    "/keys/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_api_key(
    key_id: str,
    developer: Developer = Depends(get_current_developer),
    registry: KeyRegistry = Depends(get_key_registry),
) -> Response:
    """
    Revoke an API key (soft delete).

    The key is rejected by the very next admission check.
    """
    key_uuid = _parse_key_id(key_id)
    await call_store(
        lambda: registry.revoke(developer.id, key_uuid),
        attempts=settings.store_retry_attempts,
        name="key revocation",
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/keys/{key_id}/usage",
    response_model=QuotaUsageResponse,
    status_code=status.HTTP_200_OK,
)
async def get_key_usage(
    key_id: str,
    developer: Developer = Depends(get_current_developer),
    registry: KeyRegistry = Depends(get_key_registry),
    ledger: QuotaLedger = Depends(get_quota_ledger),
    clock: SystemClock = Depends(get_clock),
) -> QuotaUsageResponse:
    """Current month's quota consumption for one of the developer's keys."""
    key_uuid = _parse_key_id(key_id)
    api_key = await call_store(
        lambda: registry.get_key(developer.id, key_uuid),
        attempts=settings.store_retry_attempts,
        name="key lookup",
    )
    usage = await call_store(
        lambda: ledger.usage(api_key.id, period_key_for(clock.now()), api_key.monthly_quota),
        attempts=settings.store_retry_attempts,
        name="quota usage",
    )
    return QuotaUsageResponse(
        api_key_id=str(api_key.id),
        period=usage.period_key,
        used=usage.used,
        limit=usage.limit,
        remaining=usage.remaining,
        reset_at=usage.reset_at.isoformat(),
    )


@router.delete(
    "/developers/me",
    response_model=DeactivateDeveloperResponse,
    status_code=status.HTTP_200_OK,
)
async def deactivate_account(
    developer: Developer = Depends(get_current_developer),
    registry: KeyRegistry = Depends(get_key_registry),
) -> DeactivateDeveloperResponse:
    """Deactivate the developer account and every key it owns."""
    revoked = await call_store(
        lambda: registry.deactivate_developer(developer.id),
        attempts=settings.store_retry_attempts,
        name="developer deactivation",
    )
    return DeactivateDeveloperResponse(developer_id=str(developer.id), revoked_keys=revoked)
