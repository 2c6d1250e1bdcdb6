"""Append-only request log."""

import uuid

from sqlalchemy import TIMESTAMP, Column, ForeignKey, Index, Integer, String, Uuid

from gateway.database import Base
from gateway.models.developer import _utcnow


class RequestLog(Base):
    """One row per admitted or rejected request on the moderation surface."""

    __tablename__ = "request_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    api_key_id = Column(Uuid, ForeignKey("api_keys.id", ondelete="SET NULL"))
    endpoint = Column(String(255), nullable=False)
    method = Column(String(10), nullable=False)
    status_code = Column(Integer, nullable=False)
    error_code = Column(String(50))
    response_time_ms = Column(Integer)
    request_size_bytes = Column(Integer)
    response_size_bytes = Column(Integer)
    user_agent = Column(String(500))
    ip_address = Column(String(45))
    request_id = Column(String(64))
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_request_logs_api_key_id", "api_key_id"),
        Index("idx_request_logs_created_at", "created_at"),
        Index("idx_request_logs_status_code", "status_code"),
    )
