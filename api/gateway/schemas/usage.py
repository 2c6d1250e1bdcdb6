"""Quota usage and maintenance schemas."""

import re

from pydantic import BaseModel, field_validator


class QuotaUsageResponse(BaseModel):
    """Quota consumption for one key in one period."""

    api_key_id: str
    period: str
    used: int
    limit: int
    remaining: int
    reset_at: str


class ResetQuotaRequest(BaseModel):
    period: str | None = None  # defaults to the current month

    @field_validator("period")
    @classmethod
    def validate_period(cls, v: str | None) -> str | None:
        """Period must be a calendar month formatted YYYY-MM."""
        if v is not None and not re.match(r"^\d{4}-(0[1-9]|1[0-2])$", v):
            raise ValueError("Period must be formatted YYYY-MM")
        return v


class ResetQuotaResponse(BaseModel):
    period: str
    rows_reset: int


class CleanupResponse(BaseModel):
    request_logs_removed: int
    rate_limit_buckets_removed: int
