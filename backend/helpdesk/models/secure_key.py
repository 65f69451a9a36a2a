"""Encrypted secret attached to a ticket or one of its messages."""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, ForeignKey, Text, String
from sqlalchemy.orm import relationship

from helpdesk.database import Base


class SecureKey(Base):
    """AES-256-GCM ciphertext; plaintext is never stored."""

    __tablename__ = "secure_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    encrypted_value = Column(Text, nullable=False)  # base64(ciphertext + tag)
    iv = Column(String(32), nullable=False)  # base64, 96-bit
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ticket = relationship("Ticket", back_populates="secure_keys")
    message = relationship("Message", back_populates="secure_keys")
