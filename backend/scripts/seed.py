"""Seed script: run first-time setup and create demo accounts."""
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from helpdesk.config import get_settings
from helpdesk.database import SessionLocal, init_db, unit_of_work
from helpdesk.errors import HelpdeskError
from helpdesk.models import UserRole
from helpdesk.services import tenants as tenant_service
from helpdesk.services import users as user_service
from helpdesk.services.system_settings import SystemSettingsService


def seed_database(organization: str = "Support Team", demo: bool = True):
    """Bootstrap the super admin and, optionally, a demo client organization."""
    settings = get_settings()
    system_settings = SystemSettingsService(ttl_seconds=0)
    init_db()
    db = SessionLocal()

    try:
        if system_settings.is_enabled(db, "setup_completed"):
            print("Setup already completed")
            admin = user_service.get_user_by_email(db, settings.admin_init_email)
        else:
            print("Running first-time setup...")
            with unit_of_work(db):
                admin = user_service.bootstrap(db, system_settings, "Administrator", organization)
            print(f"Created super admin: {admin.email}")

        if not demo or admin is None:
            return

        internal_tenant_id = system_settings.internal_tenant_id(db)
        demo_accounts = [
            ("agent@support.example.com", "Demo Agent", UserRole.AGENT.value, internal_tenant_id),
        ]

        client = tenant_service.find_tenant_by_domain(db, "acme.example.com")
        if client is None:
            with unit_of_work(db):
                client = tenant_service.create_tenant(db, "Acme Corp", "acme.example.com")
            print(f"Created tenant: {client.name} ({client.slug})")
        demo_accounts += [
            ("admin@acme.example.com", "Acme Admin", UserRole.ORG_ADMIN.value, client.id),
            ("user@acme.example.com", "Acme User", UserRole.USER.value, client.id),
        ]

        for email, name, role, tenant_id in demo_accounts:
            if user_service.get_user_by_email(db, email):
                print(f"User already exists: {email}")
                continue
            with unit_of_work(db):
                user, password = user_service.create_user(
                    db, admin, email=email, name=name, role=role,
                    tenant_id=tenant_id, internal_tenant_id=internal_tenant_id,
                )
            print(f"Created {role}: {email}")
            print(f"  Password: {password}")

    except HelpdeskError as e:
        print(f"Seed failed: {e.message}")
        raise

    finally:
        db.close()


if __name__ == "__main__":
    seed_database(demo="--no-demo" not in sys.argv)
