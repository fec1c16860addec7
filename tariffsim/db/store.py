"""SimulationStore backed by SQLAlchemy repositories."""

import logging
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tariffsim.cache.keys import parse_key
from tariffsim.comparison.models import SimulationComparison
from tariffsim.errors import PersistenceError
from tariffsim.orchestrator.interfaces import SimulationStore
from tariffsim.orchestrator.models import (
    AnalysisPayload,
    ParameterChangeRecord,
    RunSettings,
    SimulationInput,
    SimulationOutput,
    SimulationStatus,
)
from tariffsim.db.models.simulation import SimulationInputRecord, SimulationOutputRecord
from tariffsim.db.models.parameter_change import ParameterChangeRow
from tariffsim.db.models.comparison import SimulationComparisonRecord
from tariffsim.db.repositories.simulation_repo import (
    SimulationInputRepository,
    SimulationOutputRepository,
)
from tariffsim.db.repositories.history_repo import ComparisonRepository, ParameterChangeRepository

logger = logging.getLogger(__name__)


class SqlSimulationStore(SimulationStore):
    """
    Maps the pydantic domain records onto ORM rows.

    Any SQLAlchemyError rolls the session back and surfaces as
    PersistenceError, so callers never see driver exceptions.
    """

    def __init__(self, session: Session):
        self.session = session
        self.inputs = SimulationInputRepository(session)
        self.outputs = SimulationOutputRepository(session)
        self.changes = ParameterChangeRepository(session)
        self.comparisons = ComparisonRepository(session)

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Database error during {operation}: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e

    # --- Inputs ---

    def save_input(self, simulation_input: SimulationInput) -> SimulationInput:
        with self._guard("save_input"):
            self.inputs.merge(_input_to_row(simulation_input))
        return simulation_input

    def get_input(self, input_id: str) -> Optional[SimulationInput]:
        with self._guard("get_input"):
            row = self.inputs.get(input_id)
            return _input_from_row(row) if row else None

    def list_inputs(self, created_by: Optional[str] = None, limit: int = 100) -> List[SimulationInput]:
        with self._guard("list_inputs"):
            return [_input_from_row(r) for r in self.inputs.list_inputs(created_by, limit)]

    # --- Outputs ---

    def save_output(self, output: SimulationOutput) -> SimulationOutput:
        with self._guard("save_output"):
            self.outputs.merge(_output_to_row(output))
        return output

    def get_output(self, output_id: str) -> Optional[SimulationOutput]:
        with self._guard("get_output"):
            row = self.outputs.get(output_id)
            return _output_from_row(row) if row else None

    def list_outputs(self, input_id: str) -> List[SimulationOutput]:
        with self._guard("list_outputs"):
            return [_output_from_row(r) for r in self.outputs.list_for_input(input_id)]

    # --- Parameter history ---

    def save_parameter_change(self, record: ParameterChangeRecord) -> ParameterChangeRecord:
        with self._guard("save_parameter_change"):
            self.changes.add(ParameterChangeRow(
                id=record.id,
                simulation_id=record.simulation_id,
                parameter_id=record.parameter_id,
                old_value=record.old_value,
                new_value=record.new_value,
                changed_by=record.changed_by,
                timestamp=record.timestamp,
            ))
        return record

    def list_parameter_changes(self, simulation_id: str) -> List[ParameterChangeRecord]:
        with self._guard("list_parameter_changes"):
            return [
                ParameterChangeRecord(
                    id=r.id,
                    simulation_id=r.simulation_id,
                    parameter_id=r.parameter_id,
                    old_value=r.old_value,
                    new_value=r.new_value,
                    changed_by=r.changed_by,
                    timestamp=r.timestamp,
                )
                for r in self.changes.list_for_simulation(simulation_id)
            ]

    # --- Comparisons ---

    def save_comparison(self, comparison: SimulationComparison) -> SimulationComparison:
        data = comparison.model_dump(mode="json")
        with self._guard("save_comparison"):
            self.comparisons.merge(SimulationComparisonRecord(
                id=comparison.id,
                name=comparison.name,
                description=comparison.description,
                simulation_ids=data["simulation_ids"],
                difference_matrix=data["difference_matrix"],
                outcome_comparison=data["outcome_comparison"],
                created_at=comparison.created_at,
            ))
        return comparison

    def get_comparison(self, comparison_id: str) -> Optional[SimulationComparison]:
        with self._guard("get_comparison"):
            row = self.comparisons.get(comparison_id)
            return _comparison_from_row(row) if row else None

    def list_comparisons(self) -> List[SimulationComparison]:
        with self._guard("list_comparisons"):
            return [_comparison_from_row(r) for r in self.comparisons.list_all()]


def _input_to_row(simulation_input: SimulationInput) -> SimulationInputRecord:
    params = simulation_input.parameters
    return SimulationInputRecord(
        id=simulation_input.id,
        kind=params.kind,
        country=params.country,
        parameters=params.canonical(),
        iterations=simulation_input.settings.iterations,
        seed=simulation_input.settings.seed,
        name=simulation_input.name,
        description=simulation_input.description,
        created_by=simulation_input.created_by,
        created_at=simulation_input.created_at,
    )


def _input_from_row(row: SimulationInputRecord) -> SimulationInput:
    return SimulationInput(
        id=row.id,
        parameters=parse_key(row.parameters),
        settings=RunSettings(iterations=row.iterations, seed=row.seed),
        created_by=row.created_by,
        created_at=row.created_at,
        name=row.name,
        description=row.description,
    )


def _output_to_row(output: SimulationOutput) -> SimulationOutputRecord:
    return SimulationOutputRecord(
        id=output.id,
        input_id=output.input_id,
        status=output.status.value,
        progress_percentage=output.progress_percentage,
        results=output.results,
        analysis=output.analysis.model_dump(mode="json") if output.analysis else None,
        error=output.error,
        from_cache=output.from_cache,
        compute_time_ms=output.compute_time_ms,
        start_time=output.start_time,
        end_time=output.end_time,
    )


def _output_from_row(row: SimulationOutputRecord) -> SimulationOutput:
    return SimulationOutput(
        id=row.id,
        input_id=row.input_id,
        status=SimulationStatus(row.status),
        progress_percentage=float(row.progress_percentage or 0.0),
        results=row.results,
        analysis=AnalysisPayload(**row.analysis) if row.analysis else None,
        start_time=row.start_time,
        end_time=row.end_time,
        error=row.error,
        from_cache=bool(row.from_cache),
        compute_time_ms=row.compute_time_ms,
    )


def _comparison_from_row(row: SimulationComparisonRecord) -> SimulationComparison:
    return SimulationComparison.model_validate({
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "created_at": row.created_at,
        "simulation_ids": row.simulation_ids,
        "difference_matrix": row.difference_matrix,
        "outcome_comparison": row.outcome_comparison or {},
    })
