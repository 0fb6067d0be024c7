"""Pydantic request/response models for the editpulse HTTP API.

Separated from the route modules to keep routing logic distinct from data
contracts.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class DiagnosticsRequest(BaseModel):
    severities: list[str] = Field(default_factory=list, max_length=100_000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeasurementModel(BaseModel):
    activity: float
    hazard: float
    time: int


class HealthResponse(BaseModel):
    status: str
    state: str
    subscribers: int
    ticks: int
    tick_failures: int
    counters: dict[str, float]
    last_measurement: MeasurementModel | None = None


class HookFiredResponse(BaseModel):
    hook: str
    fired: int


class DiagnosticsResponse(BaseModel):
    count: int
