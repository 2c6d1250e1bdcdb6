"""Developer and APIKey models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from gateway.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Developer(Base):
    """Developer account; credentials are managed by the portal."""

    __tablename__ = "developers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (Index("idx_developers_active", "is_active"),)

    api_keys = relationship("APIKey", back_populates="developer")


class APIKey(Base):
    """API key issued to a developer for calling the moderation surface."""

    __tablename__ = "api_keys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    developer_id = Column(
        Uuid,
        ForeignKey("developers.id", ondelete="CASCADE"),
        nullable=False,
    )
    key_value = Column(String(255), unique=True, nullable=False)
    name = Column(String(100))
    monthly_quota = Column(Integer, nullable=False, server_default=text("100"))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_api_keys_developer_active", "developer_id", "is_active"),
    )

    developer = relationship("Developer", back_populates="api_keys")
