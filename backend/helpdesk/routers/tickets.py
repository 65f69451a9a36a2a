"""Ticket router: listing, detail, lifecycle actions, messages and secure keys."""
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from helpdesk.database import get_db, unit_of_work
from helpdesk.models import User
from helpdesk.routers.auth import get_active_user, get_system_settings
from helpdesk.schemas.ticket import (
    CapabilitiesRead,
    MessageCreate,
    MessageRead,
    ParticipantAdd,
    ParticipantRead,
    ReassignRequest,
    SecureKeyCreate,
    SecureKeyCreated,
    SecureKeyValue,
    StatusChange,
    TicketCreate,
    TicketDetailRead,
    TicketRead,
)
from helpdesk.services import tickets as ticket_service
from helpdesk.services.system_settings import SystemSettingsService

router = APIRouter(prefix="/tickets", tags=["tickets"])


def _detail_response(db: Session, user: User, ticket_id: int) -> TicketDetailRead:
    detail = ticket_service.ticket_detail(db, user, ticket_id)
    messages = []
    for message in detail.messages:
        item = MessageRead.model_validate(message)
        item.secure_key_ids = detail.secure_keys.get(message.id, [])
        messages.append(item)
    return TicketDetailRead(
        ticket=TicketRead.model_validate(detail.ticket),
        capabilities=CapabilitiesRead.model_validate(detail.capabilities),
        messages=messages,
        participants=[ParticipantRead.model_validate(p) for p in detail.participants],
        secure_key_ids=detail.secure_keys.get(None, []),
    )


@router.get("", response_model=List[TicketRead])
async def list_tickets(
    closed: bool = Query(False, description="Closed tickets instead of active ones"),
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    """List the tickets visible to the current user."""
    return ticket_service.list_tickets(db, current_user, closed=closed)


@router.post("", response_model=TicketRead, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreate,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    auto_assign = system_settings.is_enabled(db, "auto_assign_enabled")
    with unit_of_work(db):
        ticket = ticket_service.create_ticket(
            db,
            current_user,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            on_behalf_of=payload.on_behalf_of,
            tenant_id=payload.tenant_id,
            auto_assign=auto_assign,
        )
    db.refresh(ticket)
    return ticket


@router.get("/{ticket_id}", response_model=TicketDetailRead)
async def get_ticket(
    ticket_id: int,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    """Ticket with its visible messages, participants and the caller's capabilities."""
    return _detail_response(db, current_user, ticket_id)


@router.post("/{ticket_id}/assign", response_model=TicketRead)
async def self_assign(
    ticket_id: int,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        ticket = ticket_service.self_assign(db, current_user, ticket_id)
    db.refresh(ticket)
    return ticket


@router.post("/{ticket_id}/reassign", response_model=TicketRead)
async def reassign(
    ticket_id: int,
    payload: ReassignRequest,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        ticket = ticket_service.reassign(db, current_user, ticket_id, payload.agent_id)
    db.refresh(ticket)
    return ticket


@router.post("/{ticket_id}/status", response_model=TicketRead)
async def change_status(
    ticket_id: int,
    payload: StatusChange,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        ticket = ticket_service.change_status(db, current_user, ticket_id, payload.status, payload.message)
    db.refresh(ticket)
    return ticket


@router.post("/{ticket_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def post_message(
    ticket_id: int,
    payload: MessageCreate,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        message = ticket_service.post_message(
            db,
            current_user,
            ticket_id,
            payload.content,
            is_internal=payload.is_internal,
            keep_participants=payload.keep_participants,
            add_participants=payload.add_participants,
            secure_key_value=payload.secure_key_value,
            secure_key_confirmed=payload.secure_key_confirmed,
        )
    db.refresh(message)
    item = MessageRead.model_validate(message)
    item.secure_key_ids = [key.id for key in message.secure_keys]
    return item


@router.post("/{ticket_id}/participants", response_model=ParticipantRead, status_code=status.HTTP_201_CREATED)
async def add_participant(
    ticket_id: int,
    payload: ParticipantAdd,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        participant = ticket_service.add_participant(db, current_user, ticket_id, payload.user_id)
    db.refresh(participant)
    return participant


# ============ Secure keys ============

@router.post("/{ticket_id}/secure-keys", response_model=SecureKeyCreated, status_code=status.HTTP_201_CREATED)
async def add_secure_key(
    ticket_id: int,
    payload: SecureKeyCreate,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        key = ticket_service.add_secure_key(db, current_user, ticket_id, payload.value)
    db.refresh(key)
    return key


@router.get("/{ticket_id}/secure-keys/{key_id}", response_model=SecureKeyValue)
async def reveal_secure_key(
    ticket_id: int,
    key_id: int,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    """Decrypt a secure key for an authorized viewer."""
    value = ticket_service.reveal_secure_key(db, current_user, ticket_id, key_id)
    return SecureKeyValue(id=key_id, value=value)


@router.delete("/{ticket_id}/secure-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_secure_key(
    ticket_id: int,
    key_id: int,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        ticket_service.remove_secure_key(db, current_user, ticket_id, key_id)
