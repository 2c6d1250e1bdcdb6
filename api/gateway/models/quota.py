"""Monthly quota usage model."""

import uuid

from sqlalchemy import (
    TIMESTAMP,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)

from gateway.database import Base
from gateway.models.developer import _utcnow


class QuotaUsage(Base):
    """
    Requests admitted for one API key in one calendar month (UTC).

    ``month_year`` is the period key, formatted ``YYYY-MM``. Rows are created
    lazily on the first request of a period and never deleted.
    """

    __tablename__ = "quota_usage"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_key_id = Column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )
    month_year = Column(String(7), nullable=False)
    requests_used = Column(Integer, nullable=False, default=0, server_default=text("0"))
    last_reset = Column(TIMESTAMP(timezone=True), default=_utcnow)
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("api_key_id", "month_year", name="uq_quota_usage_key_month"),
        CheckConstraint("requests_used >= 0", name="ck_quota_usage_non_negative"),
        Index("idx_quota_usage_month_year", "month_year"),
    )
