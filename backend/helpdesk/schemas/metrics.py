"""Metrics dashboard schemas."""
from pydantic import BaseModel, ConfigDict


class AgentStatsRead(BaseModel):
    """One row of an agent ranking."""
    id: int
    name: str
    email: str
    tickets_resolved: int
    avg_resolution_hours: float
    efficiency_score: float

    model_config = ConfigDict(from_attributes=True)


class MetricsRead(BaseModel):
    """Admin dashboard payload."""
    month: str | None = None
    total: int
    by_status: dict[str, int]
    resolved: int
    assigned: int
    assigned_resolved_ratio: float
    unassigned_open: int
    avg_resolution_hours: float
    top_by_resolved: list[AgentStatsRead]
    top_by_efficiency: list[AgentStatsRead]

    model_config = ConfigDict(from_attributes=True)
