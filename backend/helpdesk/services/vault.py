"""
Secure-key vault: per-ticket secrets encrypted with AES-256-GCM.

The key is derived from the application secret with PBKDF2-SHA256 and a fixed
application-wide salt. It is re-derived on every call. Each encryption uses a
fresh random 96-bit IV. Plaintext never reaches the logs.
"""
import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy.orm import Session

from helpdesk.config import Settings, get_settings
from helpdesk.errors import TransientError, ValidationError
from helpdesk.models import Message, SecureKey, Ticket, User

logger = logging.getLogger(__name__)

IV_BYTES = 12


def derive_key(settings: Settings | None = None) -> bytes:
    """32-byte AES key from the application secret."""
    settings = settings or get_settings()
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=settings.secure_key_salt.encode("utf-8"),
        iterations=settings.secure_key_iterations,
    )
    return kdf.derive(settings.secret_key.encode("utf-8"))


def encrypt_value(value: str, settings: Settings | None = None) -> tuple[str, str]:
    """Encrypt a secret. Returns (ciphertext_b64, iv_b64)."""
    iv = os.urandom(IV_BYTES)
    ciphertext = AESGCM(derive_key(settings)).encrypt(iv, value.encode("utf-8"), None)
    return base64.b64encode(ciphertext).decode("ascii"), base64.b64encode(iv).decode("ascii")


def decrypt_value(encrypted_value: str, iv: str, settings: Settings | None = None) -> str:
    """Decrypt a stored secret. Corrupt ciphertext or IV raises TransientError."""
    try:
        raw_iv = base64.b64decode(iv, validate=True)
        ciphertext = base64.b64decode(encrypted_value, validate=True)
        plaintext = AESGCM(derive_key(settings)).decrypt(raw_iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, binascii.Error, ValueError) as e:
        logger.error(f"Secure key decryption failed: {type(e).__name__}")
        raise TransientError("Decryption error") from e


def create_secure_key(
    db: Session,
    ticket: Ticket,
    value: str,
    created_by: User,
    message: Message | None = None,
    settings: Settings | None = None,
) -> SecureKey:
    """
    Encrypt and attach a secret to a ticket (optionally to one of its messages).

    Adds an internal audit message in the same session. The caller owns the commit.
    """
    if value is None or not value.strip():
        raise ValidationError("Secure key value cannot be empty")

    encrypted_value, iv = encrypt_value(value, settings)
    key = SecureKey(
        encrypted_value=encrypted_value,
        iv=iv,
        created_by=created_by.id,
        message=message,
    )
    ticket.secure_keys.append(key)
    ticket.messages.append(Message(
        user_id=created_by.id,
        content=f"{created_by.name} added a secure key",
        is_internal=True,
    ))
    db.flush()
    logger.info(f"Secure key {key.id} added to ticket {ticket.id} by user {created_by.id}")
    return key


def decrypt_secure_key(key: SecureKey, settings: Settings | None = None) -> str:
    return decrypt_value(key.encrypted_value, key.iv, settings)


def delete_secure_key(db: Session, key: SecureKey, actor: User):
    """Remove a secret and record an internal audit message. The caller owns the commit."""
    ticket = key.ticket
    ticket_id = ticket.id
    key_id = key.id
    ticket.secure_keys.remove(key)
    db.delete(key)
    ticket.messages.append(Message(
        user_id=actor.id,
        content=f"{actor.name} removed a secure key",
        is_internal=True,
    ))
    db.flush()
    logger.info(f"Secure key {key_id} removed from ticket {ticket_id} by user {actor.id}")
