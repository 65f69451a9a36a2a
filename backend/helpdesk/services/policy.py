"""
Ticket capability matrix.

Every ticket operation asks `capabilities_for` once and checks the flag it
needs. Roles:

    super_admin, agent_admin  managers, global scope
    agent                     internal; lists every ticket, acts only on tickets assigned to them
    org_admin                 client admin, scoped to their own tenant
    user                      own tickets plus tickets they participate in
"""
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.orm import Query, Session

from helpdesk.models import (
    INTERNAL_ROLES,
    MANAGER_ROLES,
    Ticket,
    TicketParticipant,
    TicketStatus,
    User,
    UserRole,
)


@dataclass(frozen=True)
class TicketCapabilities:
    can_view: bool = False
    can_message: bool = False
    can_post_internal: bool = False
    can_view_internal: bool = False
    can_change_status: bool = False
    can_self_assign: bool = False
    can_reassign: bool = False
    can_manage_participants: bool = False
    can_add_participants: bool = False
    can_view_secure_keys: bool = False
    can_add_secure_keys: bool = False
    can_delete_secure_keys: bool = False
    acts_as_internal: bool = False


def is_internal(user: User) -> bool:
    return user.role in INTERNAL_ROLES


def is_manager(user: User) -> bool:
    return user.role in MANAGER_ROLES


def acts_as_internal(user: User, ticket: Ticket) -> bool:
    """Internal team with scope on this ticket: managers everywhere, agents on their assignments."""
    if is_manager(user):
        return True
    return user.role == UserRole.AGENT.value and ticket.assigned_to == user.id


def is_participant(db: Session, user: User, ticket: Ticket) -> bool:
    return (
        db.query(TicketParticipant.id)
        .filter(TicketParticipant.ticket_id == ticket.id, TicketParticipant.user_id == user.id)
        .first()
        is not None
    )


def capabilities_for(user: User, ticket: Ticket, participant: bool = False) -> TicketCapabilities:
    """Resolve what `user` may do on `ticket`. `participant` is whether they are on its participant list."""
    closed = ticket.status == TicketStatus.CLOSED.value
    internal = is_internal(user)
    scoped = acts_as_internal(user, ticket)
    creator = ticket.created_by == user.id
    same_tenant_admin = (
        user.role == UserRole.ORG_ADMIN.value
        and user.tenant_id is not None
        and user.tenant_id == ticket.tenant_id
    )

    can_view = internal or same_tenant_admin or creator or participant
    message_access = scoped or same_tenant_admin or creator or participant

    return TicketCapabilities(
        can_view=can_view,
        can_message=message_access and (not closed or scoped),
        can_post_internal=scoped,
        can_view_internal=internal,
        can_change_status=scoped and (not closed or user.role == UserRole.SUPER_ADMIN.value),
        can_self_assign=internal and ticket.status == TicketStatus.OPEN.value and ticket.assigned_to is None,
        can_reassign=is_manager(user) and not closed,
        can_manage_participants=not closed and (scoped or same_tenant_admin or creator),
        can_add_participants=not closed and message_access,
        can_view_secure_keys=message_access,
        can_add_secure_keys=message_access and not closed,
        can_delete_secure_keys=not closed and (scoped or creator),
        acts_as_internal=scoped,
    )


def resolve_capabilities(db: Session, user: User, ticket: Ticket) -> TicketCapabilities:
    return capabilities_for(user, ticket, is_participant(db, user, ticket))


def visible_tickets(db: Session, user: User) -> Query:
    """Base query of the tickets `user` may list."""
    query = db.query(Ticket)
    if is_internal(user):
        return query
    if user.role == UserRole.ORG_ADMIN.value:
        return query.filter(Ticket.tenant_id == user.tenant_id)

    participating = select(TicketParticipant.ticket_id).where(TicketParticipant.user_id == user.id)
    return query.filter(or_(Ticket.created_by == user.id, Ticket.id.in_(participating)))
