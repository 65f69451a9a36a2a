"""Ticket, message and secure-key schemas."""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class TicketCreate(BaseModel):
    title: str
    description: str = ""
    priority: str = "medium"
    on_behalf_of: int | None = None
    tenant_id: int | None = None


class TicketRead(BaseModel):
    """Ticket response."""
    id: int
    tenant_id: int
    title: str
    description: str
    priority: str
    status: str
    created_by: int
    created_by_agent: int | None = None
    assigned_to: int | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageRead(BaseModel):
    id: int
    user_id: int
    content: str
    is_internal: bool
    created_at: datetime
    secure_key_ids: list[int] = []

    model_config = ConfigDict(from_attributes=True)


class ParticipantRead(BaseModel):
    user_id: int
    added_by: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CapabilitiesRead(BaseModel):
    can_view: bool
    can_message: bool
    can_post_internal: bool
    can_view_internal: bool
    can_change_status: bool
    can_self_assign: bool
    can_reassign: bool
    can_manage_participants: bool
    can_add_participants: bool
    can_view_secure_keys: bool
    can_add_secure_keys: bool
    can_delete_secure_keys: bool
    acts_as_internal: bool

    model_config = ConfigDict(from_attributes=True)


class TicketDetailRead(BaseModel):
    ticket: TicketRead
    capabilities: CapabilitiesRead
    messages: list[MessageRead]
    participants: list[ParticipantRead]
    secure_key_ids: list[int] = Field(default_factory=list, description="Keys not attached to a message")


class MessageCreate(BaseModel):
    content: str
    is_internal: bool = False
    keep_participants: list[int] | None = None
    add_participants: list[int] = []
    secure_key_value: str | None = None
    secure_key_confirmed: bool = False


class StatusChange(BaseModel):
    status: str
    message: str


class ReassignRequest(BaseModel):
    agent_id: int


class ParticipantAdd(BaseModel):
    user_id: int


class SecureKeyCreate(BaseModel):
    value: str


class SecureKeyCreated(BaseModel):
    id: int
    ticket_id: int
    message_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SecureKeyValue(BaseModel):
    id: int
    value: str
