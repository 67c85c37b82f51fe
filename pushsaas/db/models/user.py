"""User database model."""
import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from pushsaas.db.base import Base


ADMIN_ROLES = frozenset({"admin", "superadmin"})


class User(Base):
    """Account owning sites, segments and campaigns.

    Accounts are managed by the auth service; this service only reads them.
    """

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    role = Column(String(20), nullable=False, default="user")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    is_active = Column(Boolean, default=True)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
