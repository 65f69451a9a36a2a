"""Ticket, message and participant models."""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from helpdesk.database import Base


class TicketStatus(str, Enum):
    """Ticket lifecycle states."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketPriority(str, Enum):
    """Ticket priority, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


STATUS_LABELS = {
    TicketStatus.OPEN.value: "Open",
    TicketStatus.IN_PROGRESS.value: "In progress",
    TicketStatus.PENDING.value: "Pending",
    TicketStatus.RESOLVED.value: "Resolved",
    TicketStatus.CLOSED.value: "Closed",
}

# Listing order, urgent first
PRIORITY_RANK = {
    TicketPriority.URGENT.value: 0,
    TicketPriority.HIGH.value: 1,
    TicketPriority.MEDIUM.value: 2,
    TicketPriority.LOW.value: 3,
}


class Ticket(Base):
    """Support ticket raised by a tenant user."""

    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    priority = Column(String(20), nullable=False, default=TicketPriority.MEDIUM.value)
    status = Column(String(20), nullable=False, default=TicketStatus.OPEN.value, index=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_agent = Column(Integer, ForeignKey("users.id"), nullable=True)  # filed on behalf
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="tickets")
    creator = relationship("User", foreign_keys=[created_by])
    creator_agent = relationship("User", foreign_keys=[created_by_agent])
    assignee = relationship("User", foreign_keys=[assigned_to])
    messages = relationship(
        "Message",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )
    participants = relationship(
        "TicketParticipant",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="TicketParticipant.id",
    )
    secure_keys = relationship(
        "SecureKey",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="SecureKey.id",
    )

    @property
    def is_closed(self) -> bool:
        return self.status == TicketStatus.CLOSED.value

    def touch(self, when: datetime | None = None):
        self.updated_at = when or datetime.utcnow()


class Message(Base):
    """Append-only entry in a ticket's conversation log."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ticket = relationship("Ticket", back_populates="messages")
    author = relationship("User")
    secure_keys = relationship("SecureKey", back_populates="message")


class TicketParticipant(Base):
    """User granted visibility into a ticket without owning it."""

    __tablename__ = "ticket_participants"
    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_ticket_participant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    added_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    ticket = relationship("Ticket", back_populates="participants")
    user = relationship("User", foreign_keys=[user_id])
