"""Authentication, registration and password-reset schemas."""
from pydantic import BaseModel


class SetupRequest(BaseModel):
    """First-run setup. Credentials come from ADMIN_INIT_* settings."""
    name: str
    organization: str
    domain: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class SessionUser(BaseModel):
    """The authenticated user as seen by the client."""
    id: int
    email: str
    name: str
    role: str
    tenant_id: int | None = None
    must_change_password: bool = False
    session_timeout_minutes: int | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class CodeRequest(BaseModel):
    email: str


class CodeRequested(BaseModel):
    message: str
    expires_in: int = 0
    next_request_in: int = 0
    requests_remaining: int = 0


class VerifyCodeRequest(BaseModel):
    email: str
    code: str


class VerificationToken(BaseModel):
    token: str
    expires_in: int


class RegisterComplete(BaseModel):
    """The email is bound to the token, never taken from the form."""
    token: str
    name: str
    password: str
    password_confirm: str


class PasswordResetComplete(BaseModel):
    token: str
    password: str
    password_confirm: str


class MessageResponse(BaseModel):
    message: str
