"""Pydantic schemas for request/response validation."""

from gateway.schemas.keys import (
    ApiKeyInfo,
    CreateApiKeyRequest,
    CreateApiKeyResponse,
    DeactivateDeveloperResponse,
    ListApiKeysResponse,
)
from gateway.schemas.usage import (
    CleanupResponse,
    QuotaUsageResponse,
    ResetQuotaRequest,
    ResetQuotaResponse,
)

__all__ = [
    "CreateApiKeyRequest",
    "CreateApiKeyResponse",
    "ApiKeyInfo",
    "ListApiKeysResponse",
    "DeactivateDeveloperResponse",
    "QuotaUsageResponse",
    "ResetQuotaRequest",
    "ResetQuotaResponse",
    "CleanupResponse",
]
