"""API key schemas for request/response validation."""

from pydantic import BaseModel, Field


class CreateApiKeyRequest(BaseModel):
    """Request to create a new API key."""

    name: str | None = Field(default=None, max_length=100)


class ApiKeyInfo(BaseModel):
    """API key as shown in listings (value is never repeated)."""

    id: str
    name: str | None
    monthly_quota: int
    created_at: str


class CreateApiKeyResponse(ApiKeyInfo):
    """Response after creating an API key (includes the key value)."""

    api_key: str


class ListApiKeysResponse(BaseModel):
    items: list[ApiKeyInfo]
    limit: int


class DeactivateDeveloperResponse(BaseModel):
    developer_id: str
    revoked_keys: int
