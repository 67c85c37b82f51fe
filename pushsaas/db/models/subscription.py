"""Web Push subscription model."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from pushsaas.db.base import Base


class Subscription(Base):
    """One browser's push endpoint together with its encryption keys."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    endpoint = Column(Text, nullable=False, unique=True)
    p256dh = Column(Text, nullable=False)
    auth = Column(Text, nullable=False)

    user_agent = Column(Text)
    ip = Column(String(64))
    site_id = Column(Integer, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Subscription id={self.id} site_id={self.site_id}>"
