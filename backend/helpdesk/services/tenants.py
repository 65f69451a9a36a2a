"""Tenant management and email-domain resolution."""
import logging
import re
import unicodedata

from sqlalchemy import func
from sqlalchemy.orm import Session

from helpdesk.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from helpdesk.models import Tenant, TenantDomain, User, UserRole

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")


def normalize_domain(domain: str) -> str:
    """Lowercase, trim and drop a leading '@'."""
    return (domain or "").strip().lower().lstrip("@")


def extract_domain(email: str) -> str:
    """Domain part of an email address, normalized. Empty string if there is none."""
    email = (email or "").strip().lower()
    if "@" not in email:
        return ""
    return normalize_domain(email.rsplit("@", 1)[1])


def validate_domain(domain: str) -> str:
    domain = normalize_domain(domain)
    if not DOMAIN_PATTERN.match(domain):
        raise ValidationError(f"Invalid domain: {domain or '(empty)'}")
    return domain


def slugify(name: str) -> str:
    """Accent-stripped, lowercase, dash-separated slug."""
    text = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return text or "tenant"


def _unique_slug(db: Session, name: str) -> str:
    base = slugify(name)
    slug = base
    counter = 2
    while db.query(Tenant.id).filter(Tenant.slug == slug).first() is not None:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def find_tenant_by_domain(db: Session, domain: str) -> Tenant | None:
    """Active tenant claiming a domain, or None."""
    domain = normalize_domain(domain)
    if not domain:
        return None
    return (
        db.query(Tenant)
        .join(TenantDomain, TenantDomain.tenant_id == Tenant.id)
        .filter(TenantDomain.domain == domain, Tenant.is_active.is_(True))
        .first()
    )


def find_tenant_for_email(db: Session, email: str) -> Tenant | None:
    return find_tenant_by_domain(db, extract_domain(email))


def get_tenant(db: Session, tenant_id: int) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise NotFoundError("Organization not found")
    return tenant


def add_domain(db: Session, tenant: Tenant, domain: str) -> TenantDomain:
    """
    Allow-list a domain for a tenant.

    Re-adding a domain the tenant already owns is a no-op. A domain owned by any
    other tenant (active or not) is rejected. The caller owns the commit.
    """
    domain = validate_domain(domain)
    existing = db.query(TenantDomain).filter(TenantDomain.domain == domain).first()
    if existing:
        if existing.tenant_id == tenant.id:
            return existing
        owner = db.query(Tenant).filter(Tenant.id == existing.tenant_id).first()
        owner_name = owner.name if owner else "another organization"
        raise StateConflictError(f"Domain {domain} is already registered to {owner_name}")

    record = TenantDomain(tenant_id=tenant.id, domain=domain)
    db.add(record)
    db.flush()
    logger.info(f"Domain {domain} added to tenant {tenant.id}")
    return record


def remove_domain(db: Session, tenant: Tenant, domain: str):
    domain = normalize_domain(domain)
    record = (
        db.query(TenantDomain)
        .filter(TenantDomain.tenant_id == tenant.id, TenantDomain.domain == domain)
        .first()
    )
    if not record:
        raise NotFoundError(f"Domain {domain} is not registered to this organization")
    db.delete(record)
    db.flush()
    logger.info(f"Domain {domain} removed from tenant {tenant.id}")


def create_tenant(db: Session, name: str, domain: str | None = None) -> Tenant:
    """Create an organization with a unique slug and an optional first domain."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Organization name is required")

    tenant = Tenant(name=name, slug=_unique_slug(db, name), is_active=True)
    db.add(tenant)
    db.flush()
    if domain:
        add_domain(db, tenant, domain)
    logger.info(f"Tenant created: {tenant.name} ({tenant.slug})")
    return tenant


def toggle_tenant_active(db: Session, actor: User, tenant: Tenant) -> Tenant:
    """Flip a tenant's active flag. Deactivation locks out every user of the tenant."""
    if actor.role != UserRole.SUPER_ADMIN.value:
        raise AuthorizationError("Only a super admin can change organization status")
    if tenant.is_active and actor.tenant_id == tenant.id:
        raise StateConflictError("You cannot deactivate your own organization")

    tenant.is_active = not tenant.is_active
    db.flush()
    logger.info(f"Tenant {tenant.id} {'activated' if tenant.is_active else 'deactivated'} by user {actor.id}")
    return tenant


def list_tenants(db: Session) -> list[dict]:
    """Tenants with their user counts and domains, by name."""
    counts = dict(
        db.query(User.tenant_id, func.count(User.id))
        .filter(User.tenant_id.isnot(None))
        .group_by(User.tenant_id)
        .all()
    )
    tenants = db.query(Tenant).order_by(Tenant.name).all()
    return [
        {
            "tenant": tenant,
            "user_count": counts.get(tenant.id, 0),
            "domains": tenant.domain_names,
        }
        for tenant in tenants
    ]
