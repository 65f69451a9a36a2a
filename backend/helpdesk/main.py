"""FastAPI main application."""
import logging
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from helpdesk.config import get_settings
from helpdesk.database import init_db
from helpdesk.errors import HelpdeskError, OTPCooldownError, SessionInvalidError, TransientError
from helpdesk.routers import (
    health_router,
    auth_router,
    tickets_router,
    admin_router,
)
from helpdesk.services.notifier import EmailNotifier
from helpdesk.services.system_settings import SystemSettingsService

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    configure_logging()
    init_db()
    app.state.system_settings = SystemSettingsService(ttl_seconds=settings.settings_cache_ttl_seconds)
    app.state.notifier = EmailNotifier(settings)
    app.state.kv = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    try:
        app.state.kv.ping()
    except redis.exceptions.RedisError as e:
        logger.warning(f"Redis not reachable at startup: {e}")
    logger.info(f"{settings.app_name} {settings.app_version} started")
    yield
    # Shutdown
    app.state.kv.close()


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant support helpdesk",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HelpdeskError)
async def helpdesk_error_handler(request: Request, exc: HelpdeskError):
    content = {"detail": exc.message}
    if isinstance(exc, OTPCooldownError):
        content["next_request_in"] = exc.next_request_in
    if hasattr(exc, "remaining"):
        content["attempts_remaining"] = exc.remaining
    if isinstance(exc, TransientError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    response = JSONResponse(status_code=exc.status_code, content=content)
    if isinstance(exc, SessionInvalidError):
        response.delete_cookie(
            key=settings.session_cookie_name,
            path="/",
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
        )
    return response


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Mount routers under /api/v1
API_PREFIX = "/api/v1"

app.include_router(health_router)
app.include_router(health_router, prefix=API_PREFIX)
app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(tickets_router, prefix=API_PREFIX)
app.include_router(admin_router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health"
    }
