"""Moderation rule ownership model."""

from sqlalchemy import TIMESTAMP, Column, ForeignKey, Index, String, Uuid

from gateway.database import Base
from gateway.models.developer import _utcnow


class ModerationRule(Base):
    """Records which API key created a rule on the moderation backend."""

    __tablename__ = "moderation_rules"

    id = Column(String(128), primary_key=True)
    api_key_id = Column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at = Column(TIMESTAMP(timezone=True), default=_utcnow)

    __table_args__ = (Index("idx_moderation_rules_api_key_id", "api_key_id"),)
