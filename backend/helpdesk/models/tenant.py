"""Tenant (organization) and its allow-listed email domains."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from helpdesk.database import Base


class Tenant(Base):
    """Organization; top-level multi-tenancy boundary."""

    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    users = relationship("User", back_populates="tenant")
    domains = relationship(
        "TenantDomain",
        back_populates="tenant",
        cascade="all, delete-orphan",
        order_by="TenantDomain.domain",
    )
    tickets = relationship("Ticket", back_populates="tenant")

    @property
    def domain_names(self) -> list[str]:
        return [d.domain for d in self.domains]


class TenantDomain(Base):
    """Email domain allowed to self-register into a tenant. A domain maps to one tenant."""

    __tablename__ = "tenant_domains"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    domain = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="domains")
