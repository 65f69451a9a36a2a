"""User model with the five-role RBAC enum."""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from helpdesk.database import Base


class UserRole(str, Enum):
    """User roles, broadest first."""
    SUPER_ADMIN = "super_admin"
    AGENT_ADMIN = "agent_admin"
    AGENT = "agent"
    ORG_ADMIN = "org_admin"
    USER = "user"


# Plain string values: roles are stored and compared as strings.
INTERNAL_ROLES = frozenset({UserRole.SUPER_ADMIN.value, UserRole.AGENT_ADMIN.value, UserRole.AGENT.value})
MANAGER_ROLES = frozenset({UserRole.SUPER_ADMIN.value, UserRole.AGENT_ADMIN.value})


class User(Base):
    """User with optional tenant association and role."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    email = Column(String(255), nullable=False, unique=True)  # stored lowercased
    name = Column(String(255), nullable=False)
    password_hash = Column(String(64), nullable=False)  # SHA-256 hex
    salt = Column(String(32), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)
    is_active = Column(Boolean, nullable=False, default=True)
    must_change_password = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="users")
