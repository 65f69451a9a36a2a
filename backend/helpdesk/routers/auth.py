"""Authentication router: session cookie, setup, login and OTP-driven self-service."""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from sqlalchemy.orm import Session

from helpdesk.config import get_settings
from helpdesk.database import get_db, unit_of_work
from helpdesk.errors import (
    AuthenticationError,
    AuthorizationError,
    OTPCooldownError,
    OTPLimitError,
    SessionInvalidError,
    StateConflictError,
    ValidationError,
)
from helpdesk.models import Tenant, User
from helpdesk.schemas.auth import (
    ChangePasswordRequest,
    CodeRequest,
    CodeRequested,
    LoginRequest,
    MessageResponse,
    PasswordResetComplete,
    RegisterComplete,
    SessionUser,
    SetupRequest,
    VerificationToken,
    VerifyCodeRequest,
)
from helpdesk.services import tenants as tenant_service
from helpdesk.services import users as user_service
from helpdesk.services.notifier import EmailNotifier, otp_email, welcome_email
from helpdesk.services.otp import OTPService, OTPType, VerificationTokens
from helpdesk.services.security import (
    SessionClaims,
    sign_session,
    validate_password_strength,
    verify_session,
)
from helpdesk.services.system_settings import SystemSettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


# ============ Injected services ============

def get_system_settings(request: Request) -> SystemSettingsService:
    return request.app.state.system_settings


def get_notifier(request: Request) -> EmailNotifier:
    return request.app.state.notifier


def get_otp_service(request: Request) -> OTPService:
    return OTPService(request.app.state.kv, settings)


def get_verification_tokens(request: Request) -> VerificationTokens:
    return VerificationTokens(request.app.state.kv, settings)


# ============ Session ============

def set_session_cookie(response: Response, user: User):
    token = sign_session(
        SessionClaims(id=user.id, email=user.email, name=user.name, role=user.role, tenant_id=user.tenant_id),
        settings.secret_key,
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


async def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Resolve the session cookie to a live user.

    Role and tenant are re-read from the database on every request; a disabled
    user or tenant invalidates the session.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise AuthenticationError("Not authenticated")

    claims = verify_session(token, settings.secret_key)
    if claims is None:
        raise SessionInvalidError()

    user = db.query(User).filter(User.id == claims.id).first()
    if user is None or not user.is_active:
        logger.info(f"Session rejected for missing or inactive user {claims.id}")
        raise SessionInvalidError()
    if user.tenant_id is not None:
        tenant = db.query(Tenant).filter(Tenant.id == user.tenant_id).first()
        if tenant is None or not tenant.is_active:
            logger.info(f"Session rejected for user {user.id}: tenant inactive")
            raise SessionInvalidError()
    return user


async def get_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Authenticated user who is not required to change their password first."""
    if current_user.must_change_password:
        raise AuthorizationError("You must change your password before continuing")
    return current_user


def require_role(*roles: str):
    """Dependency to require specific roles."""
    allowed = {getattr(role, "value", role) for role in roles}

    async def role_checker(current_user: User = Depends(get_active_user)):
        if current_user.role not in allowed:
            raise AuthorizationError("Insufficient permissions")
        return current_user
    return role_checker


def _session_user(user: User, db: Session, system_settings: SystemSettingsService) -> SessionUser:
    return SessionUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        tenant_id=user.tenant_id,
        must_change_password=bool(user.must_change_password),
        session_timeout_minutes=system_settings.session_timeout_minutes(db),
    )


# ============ Setup & login ============

@router.get("/setup")
async def setup_status(
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Whether first-run setup has been completed."""
    return {"setup_completed": system_settings.is_enabled(db, "setup_completed")}


@router.post("/setup", response_model=SessionUser)
async def setup(
    payload: SetupRequest,
    response: Response,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Create the first organization and the super admin, then sign in."""
    with unit_of_work(db):
        admin = user_service.bootstrap(db, system_settings, payload.name, payload.organization, payload.domain)
    set_session_cookie(response, admin)
    return _session_user(admin, db, system_settings)


@router.post("/login", response_model=SessionUser)
async def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    with unit_of_work(db):
        user = user_service.authenticate(db, payload.email, payload.password)
    set_session_cookie(response, user)
    return _session_user(user, db, system_settings)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response):
    clear_session_cookie(response)
    return MessageResponse(message="Signed out")


@router.get("/me", response_model=SessionUser)
async def get_me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Get current user info."""
    return _session_user(current_user, db, system_settings)


@router.post("/keepalive", response_model=SessionUser)
async def keepalive(
    response: Response,
    current_user: User = Depends(get_active_user),
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
):
    """Refresh the session cookie with current claims."""
    set_session_cookie(response, current_user)
    return _session_user(current_user, db, system_settings)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        user_service.change_password(
            db, current_user, payload.current_password, payload.new_password, payload.confirm_password
        )
    set_session_cookie(response, current_user)
    return MessageResponse(message="Password updated")


# ============ Self-service (OTP) ============

def _require_otp(db: Session, system_settings: SystemSettingsService):
    if not system_settings.is_enabled(db, "otp_enabled"):
        raise AuthorizationError("Email verification is not enabled")


def _check_passwords(password: str, confirm: str):
    if password != confirm:
        raise ValidationError("Passwords do not match")
    validate_password_strength(password)


def _queue_code_email(background_tasks: BackgroundTasks, notifier: EmailNotifier, email: str,
                      code: str, purpose: str):
    subject, body = otp_email(code, purpose, settings.otp_ttl_seconds // 60, settings.app_name)
    background_tasks.add_task(notifier.send, [email], subject, body)


@router.post("/register/request-code", response_model=CodeRequested)
async def register_request_code(
    payload: CodeRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    otp: OTPService = Depends(get_otp_service),
    notifier: EmailNotifier = Depends(get_notifier),
):
    """Send a registration code to a new address whose domain belongs to an organization."""
    _require_otp(db, system_settings)
    email = user_service.validate_email(payload.email)
    if user_service.get_user_by_email(db, email):
        raise StateConflictError("An account with this email already exists")
    if tenant_service.find_tenant_for_email(db, email) is None:
        raise ValidationError("Your email domain is not registered with any organization")

    issue = otp.create(email, OTPType.REGISTRATION)
    _queue_code_email(background_tasks, notifier, email, issue.code, "verify your email address")
    info = otp.info(email, OTPType.REGISTRATION)
    return CodeRequested(
        message="Verification code sent",
        expires_in=issue.expires_in,
        next_request_in=info.next_request_in,
        requests_remaining=issue.requests_remaining,
    )


@router.post("/register/verify", response_model=VerificationToken)
async def register_verify(
    payload: VerifyCodeRequest,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    otp: OTPService = Depends(get_otp_service),
    tokens: VerificationTokens = Depends(get_verification_tokens),
):
    _require_otp(db, system_settings)
    otp.validate(payload.email, OTPType.REGISTRATION, payload.code)
    token = tokens.issue(VerificationTokens.REGISTER, payload.email)
    return VerificationToken(token=token, expires_in=settings.verification_token_ttl_seconds)


@router.post("/register/complete", response_model=MessageResponse)
async def register_complete(
    payload: RegisterComplete,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    tokens: VerificationTokens = Depends(get_verification_tokens),
    notifier: EmailNotifier = Depends(get_notifier),
):
    """Create the account for the email bound to the verification token."""
    _require_otp(db, system_settings)
    _check_passwords(payload.password, payload.password_confirm)
    email = tokens.consume(VerificationTokens.REGISTER, payload.token)
    if email is None:
        raise ValidationError("Verification expired, please start again")

    with unit_of_work(db):
        user = user_service.register_user(db, email, payload.name, payload.password)

    if system_settings.is_enabled(db, "email_enabled"):
        subject, body = welcome_email(user.name, settings.app_url, settings.app_name)
        background_tasks.add_task(notifier.send, [user.email], subject, body)
    return MessageResponse(message="Account created, you can now sign in")


@router.post("/password-reset/request-code", response_model=CodeRequested)
async def password_reset_request_code(
    payload: CodeRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    otp: OTPService = Depends(get_otp_service),
    notifier: EmailNotifier = Depends(get_notifier),
):
    """Answers the same way whether or not the account exists."""
    _require_otp(db, system_settings)
    email = user_service.validate_email(payload.email)
    user = user_service.get_user_by_email(db, email)
    if user is not None and user.is_active:
        try:
            issue = otp.create(email, OTPType.PASSWORD_RESET)
        except (OTPCooldownError, OTPLimitError) as e:
            logger.info(f"Password reset code throttled for {email}: {e.message}")
        else:
            _queue_code_email(background_tasks, notifier, email, issue.code, "reset your password")
    return CodeRequested(
        message="If an account exists for this email, a code has been sent",
        expires_in=settings.otp_ttl_seconds,
        next_request_in=settings.otp_request_cooldown_seconds,
    )


@router.post("/password-reset/verify", response_model=VerificationToken)
async def password_reset_verify(
    payload: VerifyCodeRequest,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    otp: OTPService = Depends(get_otp_service),
    tokens: VerificationTokens = Depends(get_verification_tokens),
):
    _require_otp(db, system_settings)
    otp.validate(payload.email, OTPType.PASSWORD_RESET, payload.code)
    token = tokens.issue(VerificationTokens.RESET, payload.email)
    return VerificationToken(token=token, expires_in=settings.verification_token_ttl_seconds)


@router.post("/password-reset/complete", response_model=MessageResponse)
async def password_reset_complete(
    payload: PasswordResetComplete,
    db: Session = Depends(get_db),
    system_settings: SystemSettingsService = Depends(get_system_settings),
    tokens: VerificationTokens = Depends(get_verification_tokens),
):
    _require_otp(db, system_settings)
    _check_passwords(payload.password, payload.password_confirm)
    email = tokens.consume(VerificationTokens.RESET, payload.token)
    if email is None:
        raise ValidationError("Verification expired, please start again")

    with unit_of_work(db):
        user_service.reset_password(db, email, payload.password)
    return MessageResponse(message="Password updated, you can now sign in")
