"""User accounts: setup, login, administration and self-service."""
import logging
import re
from datetime import datetime

from sqlalchemy.orm import Session

from helpdesk.config import Settings, get_settings
from helpdesk.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from helpdesk.models import (
    INTERNAL_ROLES,
    Message,
    SecureKey,
    Tenant,
    Ticket,
    TicketParticipant,
    TicketStatus,
    User,
    UserRole,
)
from helpdesk.services import tenants as tenant_service
from helpdesk.services.security import (
    generate_password,
    generate_salt,
    hash_password,
    validate_password_strength,
    verify_password,
)
from helpdesk.services.system_settings import SystemSettingsService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ROLE_VALUES = {role.value for role in UserRole}


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    email = normalize_email(email)
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email address")
    return email


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def get_user_by_email(db: Session, email: str) -> User | None:
    """Case-insensitive lookup."""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def _set_password(user: User, password: str):
    user.salt = generate_salt()
    user.password_hash = hash_password(password, user.salt)


def _new_user(db: Session, *, email: str, name: str, role: str, tenant_id: int | None, password: str,
              must_change_password: bool = False) -> User:
    email = validate_email(email)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if get_user_by_email(db, email):
        raise StateConflictError("A user with this email already exists")

    user = User(
        email=email,
        name=name,
        role=role,
        tenant_id=tenant_id,
        is_active=True,
        must_change_password=must_change_password,
    )
    _set_password(user, password)
    db.add(user)
    db.flush()
    return user


# ============ Setup & login ============

def bootstrap(
    db: Session,
    system_settings: SystemSettingsService,
    name: str,
    organization: str,
    domain: str | None = None,
    settings: Settings | None = None,
) -> User:
    """
    One-time setup: first organization plus the super admin from ADMIN_INIT_* settings.

    The organization becomes the internal tenant, home of the internal team.
    """
    settings = settings or get_settings()
    if system_settings.is_enabled(db, "setup_completed"):
        raise StateConflictError("Setup has already been completed")
    if not settings.admin_init_email or not settings.admin_init_password:
        raise ValidationError("ADMIN_INIT_EMAIL and ADMIN_INIT_PASSWORD must be configured")

    tenant = tenant_service.create_tenant(db, organization, domain)
    admin = _new_user(
        db,
        email=settings.admin_init_email,
        name=name,
        role=UserRole.SUPER_ADMIN.value,
        tenant_id=tenant.id,
        password=settings.admin_init_password,
    )
    system_settings.set(db, "internal_tenant_id", tenant.id)
    system_settings.set(db, "setup_completed", True)
    logger.info(f"Setup completed: super admin {admin.email} in tenant {tenant.slug}")
    return admin


def authenticate(db: Session, email: str, password: str) -> User:
    """
    Verify credentials and record the login.

    Unknown email and wrong password are indistinguishable to the caller.
    """
    user = get_user_by_email(db, email)
    if not user or not verify_password(password or "", user.password_hash, user.salt):
        logger.info(f"Failed login for {normalize_email(email)}")
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("This account has been deactivated")
    if user.tenant_id is not None:
        tenant = db.query(Tenant).filter(Tenant.id == user.tenant_id).first()
        if tenant is None or not tenant.is_active:
            raise AuthenticationError("Your organization has been deactivated")

    user.last_login_at = datetime.utcnow()
    db.flush()
    logger.info(f"User {user.id} logged in")
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str,
                    confirm_password: str | None = None) -> User:
    if not verify_password(current_password or "", user.password_hash, user.salt):
        raise ValidationError("Current password is incorrect")
    if confirm_password is not None and new_password != confirm_password:
        raise ValidationError("Passwords do not match")
    if new_password == current_password:
        raise ValidationError("The new password must be different from the current one")
    validate_password_strength(new_password)

    _set_password(user, new_password)
    user.must_change_password = False
    db.flush()
    logger.info(f"User {user.id} changed their password")
    return user


# ============ Self-service ============

def register_user(db: Session, email: str, name: str, password: str) -> User:
    """Self-registration into the tenant that owns the email's domain. Always role `user`."""
    email = validate_email(email)
    tenant = tenant_service.find_tenant_for_email(db, email)
    if tenant is None:
        raise ValidationError("Your email domain is not registered with any organization")
    validate_password_strength(password)

    user = _new_user(
        db,
        email=email,
        name=name,
        role=UserRole.USER.value,
        tenant_id=tenant.id,
        password=password,
    )
    logger.info(f"User {user.email} self-registered into tenant {tenant.id}")
    return user


def reset_password(db: Session, email: str, new_password: str) -> User:
    user = get_user_by_email(db, email)
    if not user:
        raise NotFoundError("User not found")
    validate_password_strength(new_password)
    _set_password(user, new_password)
    user.must_change_password = False
    db.flush()
    logger.info(f"Password reset for user {user.id}")
    return user


# ============ Administration ============

def create_user(
    db: Session,
    actor: User,
    *,
    email: str,
    name: str,
    role: str = UserRole.USER.value,
    tenant_id: int | None = None,
    password: str | None = None,
    internal_tenant_id: int | None = None,
) -> tuple[User, str | None]:
    """
    Admin-created account. Returns (user, generated_password).

    super_admin creates any role in any tenant; org_admin creates `user` and
    `org_admin` accounts in its own tenant. The account must change its password
    at first login.
    """
    role = role.value if isinstance(role, UserRole) else role
    if role not in ROLE_VALUES:
        raise ValidationError("Invalid role")

    if actor.role == UserRole.SUPER_ADMIN.value:
        if role == UserRole.AGENT_ADMIN.value:
            tenant_id = None
        elif role in INTERNAL_ROLES:
            tenant_id = tenant_id or internal_tenant_id
        elif tenant_id is None:
            raise ValidationError("An organization is required for this role")
    elif actor.role == UserRole.ORG_ADMIN.value:
        if role not in (UserRole.USER.value, UserRole.ORG_ADMIN.value):
            raise AuthorizationError("You can only create users and organization admins")
        tenant_id = actor.tenant_id
    else:
        raise AuthorizationError("You do not have permission to create users")

    if tenant_id is not None:
        tenant_service.get_tenant(db, tenant_id)

    generated = None
    if password:
        validate_password_strength(password)
    else:
        password = generated = generate_password()

    user = _new_user(
        db,
        email=email,
        name=name,
        role=role,
        tenant_id=tenant_id,
        password=password,
        must_change_password=True,
    )
    logger.info(f"User {user.email} ({role}) created by {actor.id}")
    return user, generated


def toggle_user_active(db: Session, actor: User, target: User) -> User:
    if target.id == actor.id:
        raise StateConflictError("You cannot change your own status")
    if actor.role == UserRole.ORG_ADMIN.value:
        if target.tenant_id != actor.tenant_id:
            raise NotFoundError("User not found")
    elif actor.role != UserRole.SUPER_ADMIN.value:
        raise AuthorizationError("You do not have permission to change user status")

    target.is_active = not target.is_active
    db.flush()
    logger.info(f"User {target.id} {'activated' if target.is_active else 'deactivated'} by {actor.id}")
    return target


ORG_ROLE_CHANGES = {
    (UserRole.USER.value, UserRole.ORG_ADMIN.value),
    (UserRole.ORG_ADMIN.value, UserRole.USER.value),
}
AGENT_ROLE_CHANGES = {
    (UserRole.USER.value, UserRole.AGENT.value),
    (UserRole.AGENT.value, UserRole.USER.value),
}


def _release_assignments(db: Session, actor: User, target: User):
    """Unassign every ticket held by `target`; in-progress ones go back to the open queue."""
    tickets = db.query(Ticket).filter(Ticket.assigned_to == target.id).all()
    for ticket in tickets:
        ticket.assigned_to = None
        if ticket.status == TicketStatus.IN_PROGRESS.value:
            ticket.status = TicketStatus.OPEN.value
        ticket.touch()
        ticket.messages.append(Message(
            user_id=actor.id,
            content=f"{target.name} is no longer on the support team and was unassigned from this ticket.",
            is_internal=True,
        ))
    if tickets:
        logger.info(f"Released {len(tickets)} ticket(s) assigned to user {target.id}")


def change_role(db: Session, actor: User, target: User, new_role: str,
                internal_tenant_id: int | None = None) -> User:
    """
    Promote or demote a user.

    user <-> org_admin: super_admin only.
    user <-> agent: super_admin or agent_admin, members of the internal tenant only.
    Demoting an agent unassigns its tickets with an internal note on each.
    """
    if target.id == actor.id:
        raise StateConflictError("You cannot change your own role")

    new_role = new_role.value if isinstance(new_role, UserRole) else new_role
    change = (target.role, new_role)
    if change in ORG_ROLE_CHANGES:
        if actor.role != UserRole.SUPER_ADMIN.value:
            raise AuthorizationError("Only a super admin can change organization admin roles")
    elif change in AGENT_ROLE_CHANGES:
        if actor.role not in (UserRole.SUPER_ADMIN.value, UserRole.AGENT_ADMIN.value):
            raise AuthorizationError("Only agent managers can change agent roles")
        if internal_tenant_id is None or target.tenant_id != internal_tenant_id:
            raise StateConflictError("Only members of the internal organization can be agents")
    else:
        raise StateConflictError(f"Cannot change role from {target.role} to {new_role}")

    if change[0] in INTERNAL_ROLES and new_role not in INTERNAL_ROLES:
        _release_assignments(db, actor, target)

    target.role = new_role
    db.flush()
    logger.info(f"User {target.id} role changed {change[0]} -> {new_role} by {actor.id}")
    return target


def delete_user(db: Session, actor: User, target: User):
    """
    Hard-delete a user who never created a ticket.

    Assignments are cleared. The user's messages (with the keys attached to them)
    and participations are removed. Other references are nulled.
    """
    if actor.role != UserRole.SUPER_ADMIN.value:
        raise AuthorizationError("Only a super admin can delete users")
    if target.id == actor.id:
        raise StateConflictError("You cannot delete your own account")

    owned = db.query(Ticket.id).filter(Ticket.created_by == target.id).count()
    if owned:
        raise StateConflictError(
            f"This user has created {owned} ticket(s) and cannot be deleted. Deactivate the account instead."
        )

    user_id = target.id
    message_ids = [row.id for row in db.query(Message.id).filter(Message.user_id == user_id)]
    if message_ids:
        db.query(SecureKey).filter(SecureKey.message_id.in_(message_ids)).delete(synchronize_session=False)
        db.query(Message).filter(Message.id.in_(message_ids)).delete(synchronize_session=False)

    db.query(Ticket).filter(Ticket.assigned_to == user_id).update({Ticket.assigned_to: None}, synchronize_session=False)
    db.query(Ticket).filter(Ticket.created_by_agent == user_id).update(
        {Ticket.created_by_agent: None}, synchronize_session=False
    )
    db.query(TicketParticipant).filter(TicketParticipant.user_id == user_id).delete(synchronize_session=False)
    db.query(TicketParticipant).filter(TicketParticipant.added_by == user_id).update(
        {TicketParticipant.added_by: None}, synchronize_session=False
    )
    db.query(SecureKey).filter(SecureKey.created_by == user_id).update(
        {SecureKey.created_by: None}, synchronize_session=False
    )
    db.delete(target)
    db.flush()
    db.expire_all()
    logger.info(f"User {user_id} deleted by {actor.id}")


# ============ Directories ============

def list_users(db: Session, actor: User) -> list[User]:
    """Users visible to an administrator."""
    query = db.query(User)
    if actor.role == UserRole.ORG_ADMIN.value:
        query = query.filter(User.tenant_id == actor.tenant_id)
    elif actor.role not in (UserRole.SUPER_ADMIN.value, UserRole.AGENT_ADMIN.value):
        raise AuthorizationError("You do not have permission to list users")
    return query.order_by(User.name).all()


def list_internal_agents(db: Session) -> list[User]:
    """Active internal-team members, for assignment pickers."""
    return (
        db.query(User)
        .filter(User.role.in_(sorted(INTERNAL_ROLES)), User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )


def list_tenant_members(db: Session, tenant_id: int) -> list[User]:
    """Active users of a tenant, for participant pickers."""
    return (
        db.query(User)
        .filter(User.tenant_id == tenant_id, User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )
