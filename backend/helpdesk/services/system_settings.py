"""Persisted system settings served through an in-process TTL cache."""
import logging
import time
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from helpdesk.errors import ValidationError
from helpdesk.models import SystemSetting

logger = logging.getLogger(__name__)

DEFAULTS = {
    "timezone": "UTC",
    "session_timeout_minutes": "5",
    "pending_auto_resolve_days": "3",
    "auto_assign_enabled": "false",
    "otp_enabled": "false",
    "email_enabled": "false",
    "setup_completed": "false",
    "internal_tenant_id": "",
}

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off", ""}


def _validate_int_range(key: str, value: str, low: int, high: int) -> str:
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{key} must be a whole number")
    if not low <= number <= high:
        raise ValidationError(f"{key} must be between {low} and {high}")
    return str(number)


def _validate_bool(key: str, value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return "true"
    if text in FALSE_VALUES:
        return "false"
    raise ValidationError(f"{key} must be true or false")


def _validate_timezone(value: str) -> str:
    value = str(value).strip()
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Invalid timezone: {value}")
    return value


def validate_setting(key: str, value) -> str:
    """Normalized string value for a known key. Raises ValidationError otherwise."""
    if key == "timezone":
        return _validate_timezone(value)
    if key == "session_timeout_minutes":
        return _validate_int_range(key, value, 1, 480)
    if key == "pending_auto_resolve_days":
        return _validate_int_range(key, value, 1, 30)
    if key in ("auto_assign_enabled", "otp_enabled", "email_enabled", "setup_completed"):
        return _validate_bool(key, value)
    if key == "internal_tenant_id":
        return "" if value in (None, "") else _validate_int_range(key, value, 1, 2**31 - 1)
    raise ValidationError(f"Unknown setting: {key}")


class SystemSettingsService:
    """
    Read-mostly settings store.

    All rows are loaded together and kept for `ttl_seconds`; any write through
    this service drops the cache.
    """

    def __init__(self, ttl_seconds: int = 30, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: dict[str, str] | None = None
        self._loaded_at = 0.0

    def invalidate(self):
        self._cache = None

    def all(self, db: Session) -> dict[str, str]:
        if self._cache is None or self.clock() - self._loaded_at >= self.ttl_seconds:
            values = dict(DEFAULTS)
            values.update({row.key: row.value for row in db.query(SystemSetting).all()})
            self._cache = values
            self._loaded_at = self.clock()
        return dict(self._cache)

    def get(self, db: Session, key: str) -> str:
        return self.all(db).get(key, DEFAULTS.get(key, ""))

    def set(self, db: Session, key: str, value) -> str:
        """Validate and store one value. The caller owns the commit."""
        value = validate_setting(key, value)
        row = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if row:
            row.value = value
        else:
            db.add(SystemSetting(key=key, value=value))
        db.flush()
        self.invalidate()
        logger.info(f"System setting updated: {key}={value}")
        return value

    def update(self, db: Session, values: dict) -> dict[str, str]:
        """Validate every value first, then store them all."""
        cleaned = {key: validate_setting(key, value) for key, value in values.items()}
        for key, value in cleaned.items():
            self.set(db, key, value)
        return cleaned

    # Typed accessors

    def timezone(self, db: Session) -> str:
        return self.get(db, "timezone") or "UTC"

    def session_timeout_minutes(self, db: Session) -> int:
        return int(self.get(db, "session_timeout_minutes") or DEFAULTS["session_timeout_minutes"])

    def pending_auto_resolve_days(self, db: Session) -> int:
        return int(self.get(db, "pending_auto_resolve_days") or DEFAULTS["pending_auto_resolve_days"])

    def is_enabled(self, db: Session, key: str) -> bool:
        return self.get(db, key).strip().lower() in TRUE_VALUES

    def internal_tenant_id(self, db: Session) -> int | None:
        value = self.get(db, "internal_tenant_id")
        return int(value) if value else None
