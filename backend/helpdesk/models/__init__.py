"""Database models."""
from helpdesk.models.tenant import Tenant, TenantDomain
from helpdesk.models.user import User, UserRole, INTERNAL_ROLES, MANAGER_ROLES
from helpdesk.models.ticket import (
    Ticket,
    Message,
    TicketParticipant,
    TicketStatus,
    TicketPriority,
    STATUS_LABELS,
    PRIORITY_RANK,
)
from helpdesk.models.secure_key import SecureKey
from helpdesk.models.system_setting import SystemSetting

__all__ = [
    "Tenant",
    "TenantDomain",
    "User",
    "UserRole",
    "INTERNAL_ROLES",
    "MANAGER_ROLES",
    "Ticket",
    "Message",
    "TicketParticipant",
    "TicketStatus",
    "TicketPriority",
    "STATUS_LABELS",
    "PRIORITY_RANK",
    "SecureKey",
    "SystemSetting",
]
