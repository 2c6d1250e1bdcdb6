"""Services for the moderation gateway."""

from gateway.services.admission import Admission, AdmissionPipeline
from gateway.services.forwarder import BackendResponse, ProxyForwarder
from gateway.services.key_registry import KeyRegistry
from gateway.services.quota import QuotaDecision, QuotaLedger, QuotaUsageInfo, period_key_for, reset_at_for
from gateway.services.rate_limiter import RateDecision, RateLimiter
from gateway.services.request_log import RequestLogService
from gateway.services.rules import RuleOwnership

__all__ = [
    "Admission",
    "AdmissionPipeline",
    "BackendResponse",
    "ProxyForwarder",
    "KeyRegistry",
    "QuotaDecision",
    "QuotaLedger",
    "QuotaUsageInfo",
    "period_key_for",
    "reset_at_for",
    "RateDecision",
    "RateLimiter",
    "RequestLogService",
    "RuleOwnership",
]
