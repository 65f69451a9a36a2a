"""User schemas."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class UserBase(BaseModel):
    """Base user schema."""
    email: str
    name: str
    role: str = "user"


class UserCreate(UserBase):
    """Admin create-user request. Omit the password to have one generated."""
    password: str | None = None
    tenant_id: int | None = None


class UserRead(UserBase):
    """User response."""
    id: int
    tenant_id: int | None = None
    is_active: bool
    must_change_password: bool = False
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserCreated(BaseModel):
    """Create-user response; the generated password is shown once."""
    user: UserRead
    generated_password: str | None = None


class UserSummary(BaseModel):
    """Minimal user entry for pickers."""
    id: int
    name: str
    email: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class RoleChange(BaseModel):
    role: str
