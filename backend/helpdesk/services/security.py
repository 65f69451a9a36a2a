"""
Credential and session primitives.

Passwords are stored as SHA-256(password + salt) with a per-user random salt.
Sessions are stateless signed tokens carried in a cookie:

    base64url(JSON(claims)) + "." + sha256hex(payload + server_secret)
"""
import base64
import hashlib
import hmac
import json
import logging
import re
import secrets
import string
from dataclasses import dataclass, asdict

from helpdesk.errors import ValidationError

logger = logging.getLogger(__name__)

GENERATED_PASSWORD_LENGTH = 16
PASSWORD_SYMBOLS = "!@#$%&*-_+=?"


# ============ Passwords ============

def generate_salt() -> str:
    """Random 16-byte salt, hex encoded."""
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Deterministic one-way digest of password + salt."""
    return hashlib.sha256(f"{password}{salt}".encode("utf-8")).hexdigest()


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    """Recompute the digest and compare in constant time."""
    if not password_hash or salt is None:
        return False
    return hmac.compare_digest(hash_password(password, salt).encode(), password_hash.encode())


def validate_password_strength(password: str) -> None:
    """Policy for user-chosen passwords. Raises ValidationError on the first failure."""
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", password):
        raise ValidationError("Password must contain at least one digit")


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    """
    Random password with at least one uppercase, lowercase, digit and symbol.

    Used for admin-created accounts; the user is forced to change it on first login.
    """
    groups = [string.ascii_uppercase, string.ascii_lowercase, string.digits, PASSWORD_SYMBOLS]
    alphabet = "".join(groups)
    chars = [secrets.choice(group) for group in groups]
    chars += [secrets.choice(alphabet) for _ in range(length - len(groups))]
    # Fisher-Yates with a CSPRNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


# ============ Session tokens ============

@dataclass
class SessionClaims:
    """Claims cached in the cookie. Role and tenant are re-read from the DB on every request."""
    id: int
    email: str
    name: str
    role: str
    tenant_id: int | None = None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _signature(payload: str, secret: str) -> str:
    return hashlib.sha256(f"{payload}{secret}".encode("utf-8")).hexdigest()


def sign_session(claims: SessionClaims, secret: str) -> str:
    """Serialize and sign session claims."""
    payload = _b64encode(json.dumps(asdict(claims), separators=(",", ":")).encode("utf-8"))
    return f"{payload}.{_signature(payload, secret)}"


def verify_session(token: str | None, secret: str) -> SessionClaims | None:
    """
    Return the claims of a well-formed, correctly signed token.

    Anything else (missing, tampered, undecodable, wrong shape) yields None.
    """
    if not token or token.count(".") != 1:
        return None

    payload, signature = token.split(".")
    if not hmac.compare_digest(_signature(payload, secret).encode(), signature.encode("utf-8")):
        logger.debug("Rejected session token with bad signature")
        return None

    try:
        data = json.loads(_b64decode(payload))
        return SessionClaims(
            id=int(data["id"]),
            email=str(data["email"]),
            name=str(data["name"]),
            role=str(data["role"]),
            tenant_id=int(data["tenant_id"]) if data.get("tenant_id") is not None else None,
        )
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Malformed session payload: {e}")
        return None
