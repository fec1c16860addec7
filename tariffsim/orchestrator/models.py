"""Pydantic records for simulation inputs, outputs and the parameter audit trail."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tariffsim.cache.keys import SimulationParameterKey, iter_parameters, parse_key


def new_id() -> str:
    return str(uuid4())


class SimulationStatus(str, Enum):
    """Run lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({SimulationStatus.COMPLETED, SimulationStatus.FAILED})
ACTIVE_STATUSES = frozenset({SimulationStatus.RUNNING, SimulationStatus.PAUSED})


class RunSettings(BaseModel):
    """Monte Carlo settings that are not part of the cache key."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    iterations: int = Field(default=5000, gt=0)
    seed: Optional[int] = None


class RunConfig(BaseModel):
    """What a caller submits to start a run."""

    parameters: SimulationParameterKey
    settings: RunSettings = RunSettings()
    input_id: Optional[str] = Field(
        default=None, description="Reuse or edit an existing SimulationInput"
    )
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _infer_kind(cls, value):
        return parse_key(value) if isinstance(value, dict) else value

    def flat_parameters(self) -> Dict[str, Any]:
        return _flatten(self.parameters, self.settings)


class SimulationInput(BaseModel):
    """Immutable record of what was asked for."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    parameters: SimulationParameterKey
    settings: RunSettings = RunSettings()
    created_by: str
    created_at: datetime = Field(default_factory=datetime.now)
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _infer_kind(cls, value):
        return parse_key(value) if isinstance(value, dict) else value

    def flat_parameters(self) -> Dict[str, Any]:
        return _flatten(self.parameters, self.settings)


class RiskFactor(BaseModel):
    factor: str
    severity: float = Field(ge=0, le=1)
    mitigation: str


class AnalysisPayload(BaseModel):
    """Derived analysis attached to a completed output."""

    summary: str
    findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    risk_factors: List[RiskFactor] = Field(default_factory=list)


class SimulationOutput(BaseModel):
    """Mutable record of one run. Updated in place by progress and completion."""

    id: str = Field(default_factory=new_id)
    input_id: str
    status: SimulationStatus = SimulationStatus.IDLE
    progress_percentage: float = 0.0
    results: Optional[Dict[str, Any]] = None
    analysis: Optional[AnalysisPayload] = None
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    from_cache: bool = False
    compute_time_ms: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class ParameterChangeRecord(BaseModel):
    """Append-only audit entry for one edited parameter."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    simulation_id: str
    parameter_id: str
    old_value: Any = None
    new_value: Any = None
    changed_by: str
    timestamp: datetime = Field(default_factory=datetime.now)


class RunStatusReport(BaseModel):
    """Latest-run summary for one input, for status displays."""

    input_id: str
    output_id: str
    status: SimulationStatus
    progress: float
    error: Optional[str] = None
    has_results: bool = False
    has_analysis: bool = False


def _flatten(parameters, settings: RunSettings) -> Dict[str, Any]:
    flat = dict(iter_parameters(parameters))
    flat["iterations"] = settings.iterations
    if settings.seed is not None:
        flat["seed"] = settings.seed
    return flat
