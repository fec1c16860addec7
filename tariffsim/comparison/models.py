"""Pydantic models for run comparisons."""

from datetime import datetime
from typing import Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class DifferenceRecord(BaseModel):
    """One output measured against the baseline output."""

    model_config = ConfigDict(frozen=True)

    baseline_id: str
    other_id: str
    percentage_difference: float
    absolute_difference: float


class ParameterDifference(BaseModel):
    model_config = ConfigDict(frozen=True)

    parameter: str
    differences: Tuple[DifferenceRecord, ...] = ()


class ScenarioDifference(BaseModel):
    """Change in scenario probabilities, other minus baseline."""

    model_config = ConfigDict(frozen=True)

    baseline_id: str
    other_id: str
    pessimistic_difference: float
    realistic_difference: float
    optimistic_difference: float


class OutcomeComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    mean_differences: Tuple[DifferenceRecord, ...] = ()
    scenario_differences: Tuple[ScenarioDifference, ...] = ()


class SimulationComparison(BaseModel):
    """Immutable result of comparing two or more completed runs."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    simulation_ids: Tuple[str, ...] = Field(
        description="Output ids, baseline first"
    )
    difference_matrix: Tuple[ParameterDifference, ...] = ()
    outcome_comparison: OutcomeComparison = OutcomeComparison()

    @property
    def baseline_id(self) -> str:
        return self.simulation_ids[0]

    def differences_for(self, parameter: str) -> Tuple[DifferenceRecord, ...]:
        for row in self.difference_matrix:
            if row.parameter == parameter:
                return row.differences
        return ()
