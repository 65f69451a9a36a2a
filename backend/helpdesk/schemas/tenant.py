"""Tenant schemas."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class TenantCreate(BaseModel):
    """Create tenant request."""
    name: str
    domain: str | None = None


class TenantRead(BaseModel):
    """Tenant response."""
    id: int
    name: str
    slug: str
    is_active: bool
    domains: list[str] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TenantListItem(TenantRead):
    user_count: int = 0


class DomainRequest(BaseModel):
    domain: str


class SystemSettingsUpdate(BaseModel):
    """Partial update of persisted system settings."""
    timezone: str | None = None
    session_timeout_minutes: int | None = None
    pending_auto_resolve_days: int | None = None
    auto_assign_enabled: bool | None = None
    otp_enabled: bool | None = None
    email_enabled: bool | None = None
