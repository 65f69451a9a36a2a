"""Admin router for tenant, domain, user, system-settings management and metrics."""
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from helpdesk.database import get_db, unit_of_work
from helpdesk.errors import AuthorizationError, NotFoundError
from helpdesk.models import Tenant, User, UserRole
from helpdesk.routers.auth import get_active_user, get_system_settings, require_role
from helpdesk.schemas.metrics import MetricsRead
from helpdesk.schemas.tenant import (
    DomainRequest,
    SystemSettingsUpdate,
    TenantCreate,
    TenantListItem,
    TenantRead,
)
from helpdesk.schemas.user import RoleChange, UserCreate, UserCreated, UserRead, UserSummary
from helpdesk.services import metrics as metrics_service
from helpdesk.services import tenants as tenant_service
from helpdesk.services import users as user_service
from helpdesk.services.policy import is_internal
from helpdesk.services.system_settings import SystemSettingsService

router = APIRouter(prefix="/admin", tags=["admin"])

TENANT_ADMINS = (UserRole.SUPER_ADMIN, UserRole.ORG_ADMIN)


def _tenant_read(tenant: Tenant) -> TenantRead:
    return TenantRead(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        is_active=tenant.is_active,
        domains=tenant.domain_names,
        created_at=tenant.created_at,
    )


def _managed_tenant(db: Session, current_user: User, tenant_id: int) -> Tenant:
    """Tenant the caller administers: any for super_admin, its own for org_admin."""
    if current_user.role != UserRole.SUPER_ADMIN.value and current_user.tenant_id != tenant_id:
        raise AuthorizationError("You cannot manage this organization")
    return tenant_service.get_tenant(db, tenant_id)


# ============ Tenant Management ============

@router.get("/tenants", response_model=List[TenantListItem])
async def list_tenants(
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
):
    """List all tenants with user counts and domains."""
    return [
        TenantListItem(**_tenant_read(row["tenant"]).model_dump(), user_count=row["user_count"])
        for row in tenant_service.list_tenants(db)
    ]


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreate,
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        tenant = tenant_service.create_tenant(db, payload.name, payload.domain)
    db.refresh(tenant)
    return _tenant_read(tenant)


@router.get("/tenants/{tenant_id}", response_model=TenantRead)
async def get_tenant(
    tenant_id: int,
    current_user: User = Depends(require_role(*TENANT_ADMINS)),
    db: Session = Depends(get_db),
):
    return _tenant_read(_managed_tenant(db, current_user, tenant_id))


@router.post("/tenants/{tenant_id}/toggle", response_model=TenantRead)
async def toggle_tenant(
    tenant_id: int,
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
):
    """Activate or deactivate an organization."""
    tenant = tenant_service.get_tenant(db, tenant_id)
    with unit_of_work(db):
        tenant_service.toggle_tenant_active(db, current_user, tenant)
    db.refresh(tenant)
    return _tenant_read(tenant)


@router.post("/tenants/{tenant_id}/domains", response_model=TenantRead)
async def add_domain(
    tenant_id: int,
    payload: DomainRequest,
    current_user: User = Depends(require_role(*TENANT_ADMINS)),
    db: Session = Depends(get_db),
):
    tenant = _managed_tenant(db, current_user, tenant_id)
    with unit_of_work(db):
        tenant_service.add_domain(db, tenant, payload.domain)
    db.refresh(tenant)
    return _tenant_read(tenant)


@router.delete("/tenants/{tenant_id}/domains/{domain}", response_model=TenantRead)
async def remove_domain(
    tenant_id: int,
    domain: str,
    current_user: User = Depends(require_role(*TENANT_ADMINS)),
    db: Session = Depends(get_db),
):
    tenant = _managed_tenant(db, current_user, tenant_id)
    with unit_of_work(db):
        tenant_service.remove_domain(db, tenant, domain)
    db.refresh(tenant)
    return _tenant_read(tenant)


@router.get("/tenants/{tenant_id}/members", response_model=List[UserSummary])
async def list_tenant_members(
    tenant_id: int,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    """Active users of an organization, for participant and on-behalf pickers."""
    if not is_internal(current_user) and current_user.tenant_id != tenant_id:
        raise AuthorizationError("You cannot list members of this organization")
    return user_service.list_tenant_members(db, tenant_id)


# ============ User Management ============

@router.get("/users", response_model=List[UserRead])
async def list_users(
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.AGENT_ADMIN, UserRole.ORG_ADMIN)),
    db: Session = Depends(get_db),
):
    """List users (org_admin: own organization only)."""
    return user_service.list_users(db, current_user)


@router.post("/users", response_model=UserCreated, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    current_user: User = Depends(require_role(*TENANT_ADMINS)),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Create a user. A generated password is returned once when none is supplied."""
    with unit_of_work(db):
        user, generated = user_service.create_user(
            db,
            current_user,
            email=payload.email,
            name=payload.name,
            role=payload.role,
            tenant_id=payload.tenant_id,
            password=payload.password,
            internal_tenant_id=system_settings.internal_tenant_id(db),
        )
    db.refresh(user)
    return UserCreated(user=UserRead.model_validate(user), generated_password=generated)


@router.post("/users/{user_id}/toggle", response_model=UserRead)
async def toggle_user(
    user_id: int,
    current_user: User = Depends(require_role(*TENANT_ADMINS)),
    db: Session = Depends(get_db),
):
    target = user_service.get_user(db, user_id)
    with unit_of_work(db):
        user_service.toggle_user_active(db, current_user, target)
    db.refresh(target)
    return target


@router.post("/users/{user_id}/role", response_model=UserRead)
async def change_role(
    user_id: int,
    payload: RoleChange,
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.AGENT_ADMIN)),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Promote or demote between user and org_admin, or user and agent."""
    target = user_service.get_user(db, user_id)
    with unit_of_work(db):
        user_service.change_role(
            db, current_user, target, payload.role, system_settings.internal_tenant_id(db)
        )
    db.refresh(target)
    return target


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
):
    target = user_service.get_user(db, user_id)
    with unit_of_work(db):
        user_service.delete_user(db, current_user, target)


@router.get("/agents", response_model=List[UserSummary])
async def list_agents(
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
):
    """Active internal-team members, for assignment pickers."""
    if not is_internal(current_user):
        raise NotFoundError("Not found")
    return user_service.list_internal_agents(db)


# ============ System Settings ============

@router.get("/settings")
async def get_system_settings_values(
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    return system_settings.all(db)


@router.put("/settings")
async def update_system_settings(
    payload: SystemSettingsUpdate,
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN)),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Update persisted settings; values are validated before anything is written."""
    with unit_of_work(db):
        system_settings.update(db, payload.model_dump(exclude_none=True))
    return system_settings.all(db)


# ============ Metrics ============

@router.get("/metrics", response_model=MetricsRead)
async def get_metrics(
    month: str | None = Query(None, description="YYYY-MM; omit for all time"),
    current_user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.AGENT_ADMIN)),
    db: Session = Depends(get_db),
):
    """Ticket totals and agent rankings for the dashboard."""
    return metrics_service.collect_metrics(db, month)
