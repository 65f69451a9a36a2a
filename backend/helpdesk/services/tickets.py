"""
Ticket lifecycle engine.

Every operation loads the ticket, resolves the caller's capabilities once
(see `policy.capabilities_for`) and then applies the mutation together with the
audit/system messages that describe it. Functions only flush; the caller wraps
them in `unit_of_work` so a mutation and its audit trail commit together.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from helpdesk.config import Settings
from helpdesk.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from helpdesk.models import (
    INTERNAL_ROLES,
    PRIORITY_RANK,
    STATUS_LABELS,
    Message,
    SecureKey,
    Ticket,
    TicketParticipant,
    TicketPriority,
    TicketStatus,
    User,
    UserRole,
)
from helpdesk.services import vault
from helpdesk.services.policy import (
    TicketCapabilities,
    is_internal,
    resolve_capabilities,
    visible_tickets,
)

logger = logging.getLogger(__name__)

STATUS_VALUES = {s.value for s in TicketStatus}
PRIORITY_VALUES = {p.value for p in TicketPriority}


@dataclass
class TicketDetail:
    ticket: Ticket
    capabilities: TicketCapabilities
    messages: list[Message] = field(default_factory=list)
    participants: list[TicketParticipant] = field(default_factory=list)
    # message_id (None for standalone keys) -> secure key ids
    secure_keys: dict[int | None, list[int]] = field(default_factory=dict)


def _add_message(db: Session, ticket: Ticket, author: User, content: str, internal: bool) -> Message:
    message = Message(user_id=author.id, content=content, is_internal=internal)
    ticket.messages.append(message)
    return message


# ============ Lookup & access ============

def get_ticket(db: Session, ticket_id: int) -> Ticket:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


def load_ticket(db: Session, user: User, ticket_id: int) -> tuple[Ticket, TicketCapabilities]:
    """Ticket plus the caller's capabilities. Raises when the caller may not view it."""
    ticket = get_ticket(db, ticket_id)
    caps = resolve_capabilities(db, user, ticket)
    if not caps.can_view:
        raise AuthorizationError("You do not have access to this ticket")
    return ticket, caps


def list_tickets(db: Session, user: User, closed: bool = False) -> list[Ticket]:
    """
    Tickets visible to `user`.

    Active tickets come urgent first, then newest first. Closed tickets come
    most recently updated first.
    """
    query = visible_tickets(db, user)
    if closed:
        return (
            query.filter(Ticket.status == TicketStatus.CLOSED.value)
            .order_by(Ticket.updated_at.desc(), Ticket.id.desc())
            .all()
        )

    priority_order = case(PRIORITY_RANK, value=Ticket.priority, else_=len(PRIORITY_RANK))
    return (
        query.filter(Ticket.status != TicketStatus.CLOSED.value)
        .order_by(priority_order, Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


def ticket_detail(db: Session, user: User, ticket_id: int) -> TicketDetail:
    ticket, caps = load_ticket(db, user, ticket_id)

    messages = [m for m in ticket.messages if caps.can_view_internal or not m.is_internal]
    keys: dict[int | None, list[int]] = {}
    if caps.can_view_secure_keys:
        visible_ids = {m.id for m in messages}
        for key in ticket.secure_keys:
            if key.message_id is None or key.message_id in visible_ids:
                keys.setdefault(key.message_id, []).append(key.id)

    return TicketDetail(
        ticket=ticket,
        capabilities=caps,
        messages=messages,
        participants=list(ticket.participants),
        secure_keys=keys,
    )


# ============ Creation & assignment ============

def pick_available_agent(db: Session) -> User | None:
    """Active `agent` with the fewest non-closed assigned tickets. Ties go to the lowest id."""
    load = (
        db.query(Ticket.assigned_to.label("user_id"), func.count(Ticket.id).label("open_count"))
        .filter(Ticket.assigned_to.isnot(None), Ticket.status != TicketStatus.CLOSED.value)
        .group_by(Ticket.assigned_to)
        .subquery()
    )
    return (
        db.query(User)
        .outerjoin(load, load.c.user_id == User.id)
        .filter(User.role == UserRole.AGENT.value, User.is_active.is_(True))
        .order_by(func.coalesce(load.c.open_count, 0), User.id)
        .first()
    )


def create_ticket(
    db: Session,
    actor: User,
    *,
    title: str,
    description: str = "",
    priority: str = TicketPriority.MEDIUM.value,
    on_behalf_of: int | None = None,
    tenant_id: int | None = None,
    auto_assign: bool = False,
) -> Ticket:
    """
    Open a ticket, optionally on behalf of another user.

    Internal roles and org_admin may file on behalf of an active user (org_admin
    only inside its own tenant). `created_by_agent` records the real author.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    priority = priority or TicketPriority.MEDIUM.value
    if priority not in PRIORITY_VALUES:
        raise ValidationError("Invalid priority")

    created_by = actor
    created_by_agent = None
    if on_behalf_of is not None and on_behalf_of != actor.id:
        if actor.role not in INTERNAL_ROLES and actor.role != UserRole.ORG_ADMIN.value:
            raise AuthorizationError("You cannot create tickets on behalf of other users")
        target = (
            db.query(User)
            .filter(User.id == on_behalf_of, User.is_active.is_(True))
            .first()
        )
        if not target:
            raise NotFoundError("User not found")
        if actor.role == UserRole.ORG_ADMIN.value and target.tenant_id != actor.tenant_id:
            raise AuthorizationError("You can only create tickets for users of your organization")
        if is_internal(actor) and tenant_id is not None and tenant_id != target.tenant_id:
            raise ValidationError("The user does not belong to the selected organization")
        created_by = target
        created_by_agent = actor.id

    if created_by.tenant_id is None:
        raise ValidationError("Tickets must belong to an organization")

    ticket = Ticket(
        tenant_id=created_by.tenant_id,
        title=title,
        description=(description or "").strip(),
        priority=priority,
        status=TicketStatus.OPEN.value,
        created_by=created_by.id,
        created_by_agent=created_by_agent,
    )
    db.add(ticket)
    db.flush()

    if auto_assign:
        agent = pick_available_agent(db)
        if agent:
            ticket.assigned_to = agent.id
            ticket.status = TicketStatus.IN_PROGRESS.value
            _add_message(db, ticket, actor, f"Ticket automatically assigned to {agent.name}.", internal=False)
            logger.info(f"Ticket {ticket.id} auto-assigned to agent {agent.id}")
        else:
            logger.warning(f"Auto-assign enabled but no active agent available for ticket {ticket.id}")

    db.flush()
    logger.info(f"Ticket {ticket.id} created by {actor.id} for user {created_by.id}")
    return ticket


def self_assign(db: Session, user: User, ticket_id: int) -> Ticket:
    """Internal-team member takes an open, unassigned ticket; it moves to in_progress."""
    if not is_internal(user):
        raise AuthorizationError("Only the internal team can take tickets")
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_self_assign:
        raise StateConflictError("This ticket is already assigned or is not open")

    ticket.assigned_to = user.id
    ticket.status = TicketStatus.IN_PROGRESS.value
    ticket.touch()
    _add_message(db, ticket, user, f"{user.name} took this ticket and set it in progress.", internal=False)
    db.flush()
    logger.info(f"Ticket {ticket.id} self-assigned by {user.id}")
    return ticket


def reassign(db: Session, user: User, ticket_id: int, agent_id: int) -> Ticket:
    """Manager assigns or reassigns a non-closed ticket to an internal-team member."""
    ticket, caps = load_ticket(db, user, ticket_id)
    if user.role not in (UserRole.SUPER_ADMIN.value, UserRole.AGENT_ADMIN.value):
        raise AuthorizationError("Only agent managers can reassign tickets")
    if not caps.can_reassign:
        raise StateConflictError("A closed ticket cannot be reassigned")

    agent = (
        db.query(User)
        .filter(User.id == agent_id, User.is_active.is_(True), User.role.in_(sorted(INTERNAL_ROLES)))
        .first()
    )
    if not agent:
        raise NotFoundError("Agent not found or not eligible")
    if ticket.assigned_to == agent.id:
        return ticket

    previous = ticket.assigned_to
    ticket.assigned_to = agent.id
    if ticket.status == TicketStatus.OPEN.value:
        ticket.status = TicketStatus.IN_PROGRESS.value
    ticket.touch()
    verb = "reassigned" if previous else "assigned"
    _add_message(db, ticket, user, f"{user.name} {verb} this ticket to {agent.name}.", internal=False)
    db.flush()
    logger.info(f"Ticket {ticket.id} {verb} from {previous} to {agent.id} by {user.id}")
    return ticket


# ============ Status ============

def change_status(db: Session, user: User, ticket_id: int, status: str, message: str) -> Ticket:
    """
    Explicit status change with a mandatory justification.

    Allowed moves: any non-closed state to in_progress/pending/resolved/closed.
    A closed ticket can only be changed (including reopened) by a super admin.
    """
    ticket, caps = load_ticket(db, user, ticket_id)
    if status not in STATUS_VALUES:
        raise ValidationError("Invalid status")
    message = (message or "").strip()
    if not message:
        raise ValidationError("You must include a message when changing the status")

    if ticket.is_closed and user.role != UserRole.SUPER_ADMIN.value:
        raise AuthorizationError("Only a super admin can change the status of a closed ticket")
    if not caps.can_change_status:
        raise AuthorizationError("You cannot change the status of this ticket")
    if status == TicketStatus.OPEN.value and not ticket.is_closed:
        raise StateConflictError("Only a closed ticket can be reopened")

    previous = ticket.status
    ticket.status = status
    ticket.touch()
    label = STATUS_LABELS.get(status, status)
    _add_message(db, ticket, user, f'Status changed to "{label}"\n\n{message}', internal=False)
    db.flush()
    logger.info(f"Ticket {ticket.id} status {previous} -> {status} by {user.id}")
    return ticket


# ============ Participants ============

def _eligible_participant(db: Session, ticket: Ticket, user_id: int) -> User | None:
    candidate = db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()
    if not candidate or candidate.tenant_id != ticket.tenant_id or candidate.id == ticket.created_by:
        return None
    return candidate


def _sync_participants(
    db: Session,
    ticket: Ticket,
    actor: User,
    keep: list[int] | None,
    add: list[int] | None,
) -> list[str]:
    """Apply a participant diff. Returns the change lines for the audit message."""
    changes = []
    current = {p.user_id: p for p in ticket.participants}

    if keep is not None:
        keep_ids = set(keep) | set(add or [])
        for user_id, participant in current.items():
            if user_id in keep_ids:
                continue
            removed = db.query(User).filter(User.id == user_id).first()
            ticket.participants.remove(participant)
            if removed:
                changes.append(f"- {removed.name} was removed from the ticket")
        current = {uid: p for uid, p in current.items() if uid in keep_ids}

    for user_id in dict.fromkeys(add or []):
        if user_id in current:
            continue
        candidate = _eligible_participant(db, ticket, user_id)
        if candidate is None:
            logger.info(f"Skipping ineligible participant {user_id} for ticket {ticket.id}")
            continue
        participant = TicketParticipant(ticket_id=ticket.id, user_id=candidate.id, added_by=actor.id)
        ticket.participants.append(participant)
        current[candidate.id] = participant
        changes.append(f"+ {candidate.name} was added to the ticket")

    return changes


def add_participant(db: Session, user: User, ticket_id: int, participant_id: int) -> TicketParticipant:
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_add_participants:
        raise AuthorizationError("You cannot add participants to this ticket")

    candidate = _eligible_participant(db, ticket, participant_id)
    if candidate is None:
        raise ValidationError("The user cannot be added to this ticket")
    if any(p.user_id == candidate.id for p in ticket.participants):
        raise StateConflictError("The user is already a participant")

    participant = TicketParticipant(ticket_id=ticket.id, user_id=candidate.id, added_by=user.id)
    ticket.participants.append(participant)
    ticket.touch()
    _add_message(db, ticket, user, f"{user.name} added {candidate.name} to the ticket.", internal=False)
    db.flush()
    logger.info(f"User {candidate.id} added to ticket {ticket.id} by {user.id}")
    return participant


# ============ Messages ============

def post_message(
    db: Session,
    user: User,
    ticket_id: int,
    content: str,
    *,
    is_internal: bool = False,
    keep_participants: list[int] | None = None,
    add_participants: list[int] | None = None,
    secure_key_value: str | None = None,
    secure_key_confirmed: bool = False,
    settings: Settings | None = None,
) -> Message:
    """
    Append a message, optionally changing participants and attaching a secure key.

    On a closed ticket only the internal team with scope may post, and the note is
    forced internal. Callers outside the internal team always post publicly. A
    public message on a resolved ticket moves it back to in_progress.
    """
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_message:
        if ticket.is_closed:
            raise AuthorizationError("You cannot add messages to a closed ticket")
        raise AuthorizationError("You do not have access to this ticket")

    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")

    internal = bool(is_internal) and caps.can_post_internal
    if ticket.is_closed:
        internal = True

    has_secure_key = bool(secure_key_value and secure_key_value.strip())
    if has_secure_key:
        if not secure_key_confirmed:
            raise ValidationError("You must accept the risks before sending sensitive data")
        if not caps.can_add_secure_keys:
            raise AuthorizationError("You cannot attach secure keys to this ticket")

    if caps.can_manage_participants and (keep_participants is not None or add_participants):
        changes = _sync_participants(db, ticket, user, keep_participants, add_participants)
        if changes:
            _add_message(db, ticket, user, "Participant changes:\n" + "\n".join(changes), internal=True)

    message = _add_message(db, ticket, user, content, internal)
    db.flush()

    if has_secure_key:
        vault.create_secure_key(db, ticket, secure_key_value, user, message=message, settings=settings)

    ticket.touch()
    if ticket.status == TicketStatus.RESOLVED.value and not internal:
        ticket.status = TicketStatus.IN_PROGRESS.value
        _add_message(
            db, ticket, user,
            'The ticket went back to "In progress" because of a new message.',
            internal=True,
        )
        logger.info(f"Ticket {ticket.id} reopened to in_progress by a public reply")

    db.flush()
    return message


# ============ Secure keys ============

def _ticket_key(db: Session, ticket: Ticket, caps: TicketCapabilities, key_id: int) -> SecureKey:
    """Key of `ticket` visible to the caller. Keys on internal notes exist only for the internal team."""
    key = (
        db.query(SecureKey)
        .filter(SecureKey.id == key_id, SecureKey.ticket_id == ticket.id)
        .first()
    )
    if not key or (key.message is not None and key.message.is_internal and not caps.can_view_internal):
        raise NotFoundError("Secure key not found")
    return key


def add_secure_key(db: Session, user: User, ticket_id: int, value: str,
                   settings: Settings | None = None) -> SecureKey:
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_add_secure_keys:
        raise AuthorizationError("You cannot add secure keys to this ticket")
    key = vault.create_secure_key(db, ticket, value, user, settings=settings)
    ticket.touch()
    db.flush()
    return key


def reveal_secure_key(db: Session, user: User, ticket_id: int, key_id: int,
                      settings: Settings | None = None) -> str:
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_view_secure_keys:
        raise AuthorizationError("You cannot view secure keys on this ticket")
    key = _ticket_key(db, ticket, caps, key_id)
    logger.info(f"Secure key {key.id} revealed to user {user.id}")
    return vault.decrypt_secure_key(key, settings)


def remove_secure_key(db: Session, user: User, ticket_id: int, key_id: int):
    ticket, caps = load_ticket(db, user, ticket_id)
    if not caps.can_delete_secure_keys:
        raise AuthorizationError("You cannot delete secure keys on this ticket")
    key = _ticket_key(db, ticket, caps, key_id)
    vault.delete_secure_key(db, key, user)
    ticket.touch()
    db.flush()


# ============ Housekeeping ============

def auto_close_pending_tickets(db: Session, days: int, now: datetime | None = None) -> int:
    """
    Close `pending` tickets with no activity for `days` days.

    Each gets a public note authored by the first super admin. Returns the count.
    """
    author = (
        db.query(User)
        .filter(User.role == UserRole.SUPER_ADMIN.value)
        .order_by(User.id)
        .first()
    )
    if author is None:
        logger.warning("No super admin found, skipping auto-close of pending tickets")
        return 0

    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=days)
    stale = (
        db.query(Ticket)
        .filter(Ticket.status == TicketStatus.PENDING.value, Ticket.updated_at < cutoff)
        .all()
    )
    for ticket in stale:
        ticket.status = TicketStatus.CLOSED.value
        ticket.touch(now)
        _add_message(
            db, ticket, author,
            f"Ticket closed automatically after {days} day(s) pending without activity.",
            internal=False,
        )
    db.flush()
    if stale:
        logger.info(f"Auto-closed {len(stale)} pending ticket(s) older than {days} day(s)")
    return len(stale)
