"""Token bucket model for per-API-key rate limiting."""

from sqlalchemy import TIMESTAMP, Column, Float, ForeignKey, Uuid

from gateway.database import Base
from gateway.models.developer import _utcnow


class RateLimitBucket(Base):
    """
    Token bucket state for one API key.

    ``last_refill_at`` is stored as epoch seconds so the refill arithmetic
    can run inside a single UPDATE statement on any supported dialect.
    """

    __tablename__ = "rate_limit_buckets"

    api_key_id = Column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tokens = Column(Float, nullable=False)
    last_refill_at = Column(Float, nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), default=_utcnow, onupdate=_utcnow)
