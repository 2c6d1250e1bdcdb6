"""Database models for the moderation gateway."""

from gateway.models.developer import APIKey, Developer
from gateway.models.quota import QuotaUsage
from gateway.models.rate_limit import RateLimitBucket
from gateway.models.request_log import RequestLog
from gateway.models.rule import ModerationRule

__all__ = [
    "Developer",
    "APIKey",
    "QuotaUsage",
    "RateLimitBucket",
    "RequestLog",
    "ModerationRule",
]
