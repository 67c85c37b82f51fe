"""Audience segment model."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from pushsaas.db.base import Base
from pushsaas.db.types import JSONObject


class Segment(Base):
    """Named, reusable targeting rule evaluated at dispatch time."""

    __tablename__ = "audience_segments"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    site_id = Column(Integer, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    conditions = Column(JSONObject, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
