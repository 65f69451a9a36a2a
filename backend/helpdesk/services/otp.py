"""
One-time password service backed by a key-value store (Redis).

One live record per (email, type) under `otp:<type>:<email>`, stored as JSON with
a TTL equal to the code lifetime. Re-requests are throttled by a cooldown and a
per-record request counter; validation is fail-closed.
"""
import json
import logging
import math
import secrets
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from redis.exceptions import RedisError

from helpdesk.config import Settings, get_settings
from helpdesk.errors import (
    OTPAttemptsExceededError,
    OTPCooldownError,
    OTPExpiredError,
    OTPInvalidCodeError,
    OTPLimitError,
    OTPNotFoundError,
    TransientError,
)

logger = logging.getLogger(__name__)


class OTPType(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


@dataclass
class OTPIssue:
    """Result of a successful code request. The code is for the mailer only."""
    code: str
    expires_in: int
    requests_remaining: int


@dataclass
class OTPInfo:
    exists: bool
    expires_in: int = 0
    attempts_remaining: int = 0
    next_request_in: int = 0
    requests_remaining: int = 0


@contextmanager
def _store_errors(operation: str):
    try:
        yield
    except RedisError as e:
        logger.error(f"Key-value store failure during {operation}: {e}")
        raise TransientError("Temporary error, please try again later") from e


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class OTPService:
    """Issue, throttle and validate numeric codes."""

    def __init__(
        self,
        client,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.clock = clock

    @staticmethod
    def key_for(email: str, otp_type: OTPType | str) -> str:
        return f"otp:{OTPType(otp_type).value}:{_normalize_email(email)}"

    def _generate_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self.settings.otp_length))

    def _fetch(self, key: str) -> dict | None:
        """Raw record, or None when missing or unreadable."""
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            float(record["expires_at"])
            if not isinstance(record["code"], (str, int)) or not str(record["code"]):
                raise ValueError("missing code")
            int(record.get("attempts", 0))
            int(record.get("request_count", 0))
            float(record.get("last_request_at", 0))
            return record
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Discarding corrupt OTP record {key}")
            self.client.delete(key)
            return None

    def _is_expired(self, record: dict) -> bool:
        return self.clock() >= float(record["expires_at"])

    def _load(self, key: str) -> dict | None:
        """Live record; an expired one is deleted and reported as absent."""
        record = self._fetch(key)
        if record is not None and self._is_expired(record):
            self.client.delete(key)
            return None
        return record

    def _write(self, key: str, record: dict, ttl: int):
        self.client.set(key, json.dumps(record), ex=max(1, ttl))

    def create(self, email: str, otp_type: OTPType | str) -> OTPIssue:
        """
        Generate a new code for (email, type).

        Raises:
            OTPCooldownError: previous request less than the cooldown ago
            OTPLimitError: request limit reached for the live record
        """
        email = _normalize_email(email)
        otp_type = OTPType(otp_type)
        key = self.key_for(email, otp_type)
        now = self.clock()

        with _store_errors("otp create"):
            existing = self._load(key)
            request_count = 1
            if existing is not None:
                elapsed = now - float(existing.get("last_request_at", 0))
                cooldown = self.settings.otp_request_cooldown_seconds
                if elapsed < cooldown:
                    raise OTPCooldownError(math.ceil(cooldown - elapsed))
                if int(existing.get("request_count", 0)) >= self.settings.otp_max_requests:
                    raise OTPLimitError()
                request_count = int(existing.get("request_count", 0)) + 1
                self.client.delete(key)

            ttl = self.settings.otp_ttl_seconds
            code = self._generate_code()
            record = {
                "code": code,
                "email": email,
                "type": otp_type.value,
                "attempts": 0,
                "created_at": now,
                "expires_at": now + ttl,
                "request_count": request_count,
                "last_request_at": now,
            }
            self._write(key, record, ttl)

        logger.info(f"OTP issued for {email} ({otp_type.value}), request {request_count}")
        return OTPIssue(
            code=code,
            expires_in=ttl,
            requests_remaining=max(0, self.settings.otp_max_requests - request_count),
        )

    def validate(self, email: str, otp_type: OTPType | str, code: str) -> bool:
        """
        Check a submitted code. Returns True and consumes the record on a match.

        Raises an OTPError subclass on every failure; the record is deleted once
        the attempt limit is reached.
        """
        key = self.key_for(email, otp_type)
        max_attempts = self.settings.otp_max_attempts

        with _store_errors("otp validate"):
            record = self._fetch(key)
            if record is None:
                raise OTPNotFoundError()
            if self._is_expired(record):
                self.client.delete(key)
                raise OTPExpiredError()

            attempts = int(record.get("attempts", 0))
            if attempts >= max_attempts:
                self.client.delete(key)
                raise OTPAttemptsExceededError()

            submitted = (code or "").strip().encode("utf-8")
            if secrets.compare_digest(submitted, str(record["code"]).encode("utf-8")):
                self.client.delete(key)
                logger.info(f"OTP validated for {record.get('email')} ({record.get('type')})")
                return True

            attempts += 1
            if attempts >= max_attempts:
                self.client.delete(key)
                logger.warning(f"OTP attempts exhausted for {record.get('email')}")
                raise OTPAttemptsExceededError()

            record["attempts"] = attempts
            remaining_ttl = math.ceil(float(record["expires_at"]) - self.clock())
            self._write(key, record, remaining_ttl)

        raise OTPInvalidCodeError(max_attempts - attempts)

    def info(self, email: str, otp_type: OTPType | str) -> OTPInfo:
        """Inspect the live record without mutating it (except expiring it)."""
        key = self.key_for(email, otp_type)
        with _store_errors("otp info"):
            record = self._load(key)
        if record is None:
            return OTPInfo(exists=False, requests_remaining=self.settings.otp_max_requests)

        now = self.clock()
        elapsed = now - float(record.get("last_request_at", 0))
        cooldown = self.settings.otp_request_cooldown_seconds
        return OTPInfo(
            exists=True,
            expires_in=max(0, math.ceil(float(record["expires_at"]) - now)),
            attempts_remaining=max(0, self.settings.otp_max_attempts - int(record.get("attempts", 0))),
            next_request_in=max(0, math.ceil(cooldown - elapsed)),
            requests_remaining=max(0, self.settings.otp_max_requests - int(record.get("request_count", 0))),
        )

    def delete(self, email: str, otp_type: OTPType | str):
        with _store_errors("otp delete"):
            self.client.delete(self.key_for(email, otp_type))


class VerificationTokens:
    """
    Short-lived tokens proving an email passed OTP verification.

    Stored as `<kind>:<uuid>` -> email; consuming a token deletes it.
    """

    REGISTER = "register_token"
    RESET = "reset_token"

    def __init__(self, client, settings: Settings | None = None):
        self.client = client
        self.settings = settings or get_settings()

    def issue(self, kind: str, email: str) -> str:
        token = str(uuid.uuid4())
        with _store_errors("verification token issue"):
            self.client.set(
                f"{kind}:{token}",
                _normalize_email(email),
                ex=self.settings.verification_token_ttl_seconds,
            )
        return token

    def consume(self, kind: str, token: str) -> str | None:
        """Email bound to the token, or None when unknown or expired."""
        if not token:
            return None
        key = f"{kind}:{token}"
        with _store_errors("verification token consume"):
            email = self.client.get(key)
            if email is None:
                return None
            self.client.delete(key)
        if isinstance(email, bytes):
            email = email.decode("utf-8")
        return email
