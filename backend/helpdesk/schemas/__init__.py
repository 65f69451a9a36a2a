"""Pydantic schemas for API request/response."""
from helpdesk.schemas.tenant import (
    TenantCreate, TenantRead, TenantListItem, DomainRequest, SystemSettingsUpdate
)
from helpdesk.schemas.user import UserCreate, UserRead, UserCreated, UserSummary, RoleChange
from helpdesk.schemas.auth import (
    SetupRequest, LoginRequest, SessionUser, ChangePasswordRequest,
    CodeRequest, CodeRequested, VerifyCodeRequest, VerificationToken,
    RegisterComplete, PasswordResetComplete, MessageResponse,
)
from helpdesk.schemas.ticket import (
    TicketCreate, TicketRead, TicketDetailRead, MessageRead, MessageCreate,
    ParticipantRead, CapabilitiesRead, StatusChange, ReassignRequest,
    ParticipantAdd, SecureKeyCreate, SecureKeyCreated, SecureKeyValue,
)
from helpdesk.schemas.metrics import AgentStatsRead, MetricsRead

__all__ = [
    "TenantCreate", "TenantRead", "TenantListItem", "DomainRequest", "SystemSettingsUpdate",
    "UserCreate", "UserRead", "UserCreated", "UserSummary", "RoleChange",
    "SetupRequest", "LoginRequest", "SessionUser", "ChangePasswordRequest",
    "CodeRequest", "CodeRequested", "VerifyCodeRequest", "VerificationToken",
    "RegisterComplete", "PasswordResetComplete", "MessageResponse",
    "TicketCreate", "TicketRead", "TicketDetailRead", "MessageRead", "MessageCreate",
    "ParticipantRead", "CapabilitiesRead", "StatusChange", "ReassignRequest",
    "ParticipantAdd", "SecureKeyCreate", "SecureKeyCreated", "SecureKeyValue",
    "AgentStatsRead", "MetricsRead",
]
