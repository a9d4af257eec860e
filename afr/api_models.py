from __future__ import annotations

from pydantic import BaseModel, Field


class ReconcileOut(BaseModel):
    fleet: str
    workload: str = Field(..., description="created|updated|unchanged")
    target_version: str = Field(..., description="Recommended agent version, empty if unknown")
    target_resolved: bool = Field(..., description="False when the version authority could not be reached")
    retired: list[str] = Field(default_factory=list, description="Pods replaced during the pass")
    status_written: bool
    finished_at: str


class FleetStateOut(BaseModel):
    fleet: str
    healthy: bool
    consecutive_failures: int
    authority_outages: int
    last_error: str | None = None
    last_result: ReconcileOut | None = None


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    fleet: str | None = None
    node: str | None = None
    pod: str | None = None
    message: str
