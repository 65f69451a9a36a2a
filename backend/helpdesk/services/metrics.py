"""Agent performance metrics for the admin dashboard."""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from helpdesk.errors import ValidationError
from helpdesk.models import INTERNAL_ROLES, Ticket, TicketStatus, User

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
RESOLVED_STATUSES = (TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value)
TOP_AGENTS = 5


@dataclass
class AgentStats:
    id: int
    name: str
    email: str
    tickets_resolved: int
    avg_resolution_hours: float
    efficiency_score: float


@dataclass
class TicketMetrics:
    month: str | None
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    resolved: int = 0
    assigned: int = 0
    assigned_resolved_ratio: float = 0.0
    unassigned_open: int = 0
    avg_resolution_hours: float = 0.0
    top_by_resolved: list[AgentStats] = field(default_factory=list)
    top_by_efficiency: list[AgentStats] = field(default_factory=list)


def month_range(month: str) -> tuple[datetime, datetime]:
    """[start, end) of a YYYY-MM month."""
    match = MONTH_PATTERN.match(month or "")
    if not match:
        raise ValidationError("Month must be formatted as YYYY-MM")
    year, number = int(match.group(1)), int(match.group(2))
    if not 1 <= number <= 12:
        raise ValidationError("Month must be formatted as YYYY-MM")
    start = datetime(year, number, 1)
    end = datetime(year + 1, 1, 1) if number == 12 else datetime(year, number + 1, 1)
    return start, end


def _hours(ticket_created: datetime, ticket_updated: datetime) -> float:
    return max(0.0, (ticket_updated - ticket_created).total_seconds() / 3600)


def collect_metrics(db: Session, month: str | None = None) -> TicketMetrics:
    """
    Ticket totals and agent rankings, optionally restricted to tickets created in `month`.

    Resolution time is the span from creation to the last update of a resolved or
    closed ticket. The unassigned count always reflects the current queue.
    """
    filters = []
    if month:
        start, end = month_range(month)
        filters = [Ticket.created_at >= start, Ticket.created_at < end]

    metrics = TicketMetrics(month=month or None)

    by_status = db.query(Ticket.status, func.count(Ticket.id)).filter(*filters).group_by(Ticket.status).all()
    metrics.by_status = {status.value: 0 for status in TicketStatus}
    metrics.by_status.update({status: count for status, count in by_status})
    metrics.total = sum(metrics.by_status.values())
    metrics.resolved = sum(metrics.by_status[status] for status in RESOLVED_STATUSES)

    metrics.assigned = db.query(func.count(Ticket.id)).filter(
        Ticket.assigned_to.isnot(None),
        *filters,
    ).scalar()
    if metrics.assigned:
        metrics.assigned_resolved_ratio = round(metrics.resolved / metrics.assigned * 100, 1)

    metrics.unassigned_open = db.query(func.count(Ticket.id)).filter(
        Ticket.assigned_to.is_(None),
        Ticket.status.notin_(RESOLVED_STATUSES),
    ).scalar()

    rows = db.query(User, Ticket.created_at, Ticket.updated_at).join(
        Ticket, Ticket.assigned_to == User.id
    ).filter(
        Ticket.status.in_(RESOLVED_STATUSES),
        *filters,
    ).all()

    durations = []
    per_agent: dict[int, tuple[User, list[float]]] = {}
    for user, created_at, updated_at in rows:
        hours = _hours(created_at, updated_at)
        durations.append(hours)
        if user.role in INTERNAL_ROLES:
            per_agent.setdefault(user.id, (user, []))[1].append(hours)

    if durations:
        metrics.avg_resolution_hours = round(sum(durations) / len(durations), 2)

    agents = []
    for user, hours in per_agent.values():
        average = sum(hours) / len(hours)
        agents.append(AgentStats(
            id=user.id,
            name=user.name,
            email=user.email,
            tickets_resolved=len(hours),
            avg_resolution_hours=round(average, 2),
            efficiency_score=round(len(hours) / average, 3) if average > 0 else 0.0,
        ))

    metrics.top_by_resolved = sorted(
        agents, key=lambda a: (-a.tickets_resolved, a.avg_resolution_hours, a.id)
    )[:TOP_AGENTS]
    metrics.top_by_efficiency = sorted(
        agents, key=lambda a: (-a.efficiency_score, a.id)
    )[:TOP_AGENTS]

    logger.info(f"Computed metrics for {month or 'all time'}: {metrics.total} tickets")
    return metrics
