"""API routers."""
from helpdesk.routers.health import router as health_router
from helpdesk.routers.auth import router as auth_router
from helpdesk.routers.tickets import router as tickets_router
from helpdesk.routers.admin import router as admin_router

__all__ = [
    "health_router",
    "auth_router",
    "tickets_router",
    "admin_router",
]
