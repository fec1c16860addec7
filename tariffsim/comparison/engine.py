"""ComparisonEngine - difference matrices between completed simulation runs."""

import logging
import numbers
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from tariffsim.errors import ComparisonError, SimulationNotFoundError
from tariffsim.orchestrator.interfaces import SimulationStore
from tariffsim.orchestrator.models import SimulationInput, SimulationOutput, SimulationStatus
from .models import (
    DifferenceRecord,
    OutcomeComparison,
    ParameterDifference,
    ScenarioDifference,
    SimulationComparison,
)

logger = logging.getLogger(__name__)


class ComparisonEngine:
    """
    Compare two or more completed runs against a baseline.

    The first output is the baseline. For every parameter found in any
    originating input, each other output gets one DifferenceRecord:
    1. Numeric values: absolute = other - baseline, percentage relative to |baseline|
    2. Anything else: 0 when equal, otherwise absolute 1 and percentage 100
    Pairs where either side lacks the parameter are skipped.
    """

    def __init__(self, store: SimulationStore):
        self.store = store

    def compare(
        self,
        outputs: Sequence[SimulationOutput],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SimulationComparison:
        """
        Build, persist and return a comparison.

        Raises:
            ComparisonError: Fewer than two outputs, an output that is not
                completed, or inputs of different simulation kinds
            SimulationNotFoundError: An output's input is missing from the store
        """
        if len(outputs) < 2:
            raise ComparisonError("At least two simulations are required for comparison")

        not_done = [o.id for o in outputs if o.status != SimulationStatus.COMPLETED]
        if not_done:
            raise ComparisonError(f"Outputs are not completed: {', '.join(not_done)}")

        inputs = [self._input_for(o) for o in outputs]
        kinds = {i.parameters.kind for i in inputs}
        if len(kinds) > 1:
            raise ComparisonError(f"Cannot compare different simulation kinds: {sorted(kinds)}")

        runs = list(zip(inputs, outputs))
        comparison = SimulationComparison(
            name=name or f"Comparison of {len(outputs)} simulations",
            description=description,
            simulation_ids=tuple(o.id for o in outputs),
            difference_matrix=tuple(self._difference_matrix(runs)),
            outcome_comparison=self._outcome_comparison(outputs),
        )

        logger.info(
            f"Created comparison {comparison.id} over {len(outputs)} runs "
            f"({len(comparison.difference_matrix)} parameters)"
        )
        return self.store.save_comparison(comparison)

    def _input_for(self, output: SimulationOutput) -> SimulationInput:
        simulation_input = self.store.get_input(output.input_id)
        if simulation_input is None:
            raise SimulationNotFoundError(f"Simulation input not found: {output.input_id}")
        return simulation_input

    def _difference_matrix(
        self, runs: List[Tuple[SimulationInput, SimulationOutput]]
    ) -> List[ParameterDifference]:
        values_by_run = [i.flat_parameters() for i, _ in runs]

        # Keep first-seen order so the matrix reads like the inputs
        parameters: Dict[str, None] = {}
        for values in values_by_run:
            for param in values:
                parameters.setdefault(param, None)

        baseline_values = values_by_run[0]
        baseline_id = runs[0][1].id
        matrix = []
        for param in parameters:
            differences = []
            for (_, output), values in zip(runs[1:], values_by_run[1:]):
                if param not in baseline_values or param not in values:
                    continue
                absolute, percentage = _difference(baseline_values[param], values[param])
                differences.append(DifferenceRecord(
                    baseline_id=baseline_id,
                    other_id=output.id,
                    absolute_difference=absolute,
                    percentage_difference=percentage,
                ))
            matrix.append(ParameterDifference(parameter=param, differences=tuple(differences)))
        return matrix

    def _outcome_comparison(self, outputs: Sequence[SimulationOutput]) -> OutcomeComparison:
        baseline = outputs[0]
        base_mean = _summary_mean(baseline)
        base_scenarios = _scenario_probabilities(baseline)

        others = [o for o in outputs[1:] if _summary_mean(o) is not None]
        mean_differences = []
        if base_mean is not None and others:
            other_means = np.array([_summary_mean(o) for o in others], dtype=float)
            absolute, percentage = _numeric_differences(base_mean, other_means)
            mean_differences = [
                DifferenceRecord(
                    baseline_id=baseline.id,
                    other_id=o.id,
                    absolute_difference=float(a),
                    percentage_difference=float(p),
                )
                for o, a, p in zip(others, absolute, percentage)
            ]

        scenario_differences = []
        if base_scenarios is not None:
            for other in outputs[1:]:
                probs = _scenario_probabilities(other)
                if probs is None:
                    continue
                delta = np.array(probs) - np.array(base_scenarios)
                scenario_differences.append(ScenarioDifference(
                    baseline_id=baseline.id,
                    other_id=other.id,
                    pessimistic_difference=float(delta[0]),
                    realistic_difference=float(delta[1]),
                    optimistic_difference=float(delta[2]),
                ))

        return OutcomeComparison(
            mean_differences=tuple(mean_differences),
            scenario_differences=tuple(scenario_differences),
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _numeric_differences(base: float, others: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    absolute = others - base
    if base != 0:
        percentage = absolute / abs(base) * 100
    else:
        # Any move away from zero counts as a full 100%
        percentage = np.where(absolute != 0, 100.0, 0.0)
    return absolute, percentage


def _difference(base: Any, other: Any) -> Tuple[float, float]:
    if _is_number(base) and _is_number(other):
        absolute, percentage = _numeric_differences(float(base), np.array([float(other)]))
        return float(absolute[0]), float(percentage[0])
    if base == other:
        return 0.0, 0.0
    return 1.0, 100.0


def _summary_mean(output: SimulationOutput) -> Optional[float]:
    summary = (output.results or {}).get("summary") or {}
    mean = summary.get("mean")
    return float(mean) if _is_number(mean) else None


def _scenario_probabilities(output: SimulationOutput) -> Optional[List[float]]:
    scenarios = (output.results or {}).get("scenarios") or {}
    try:
        return [
            float(scenarios[case]["probability"])
            for case in ("pessimistic", "realistic", "optimistic")
        ]
    except (KeyError, TypeError):
        return None


def comparison_to_frame(comparison: SimulationComparison):
    """Flatten the difference matrix into a DataFrame for export."""
    rows = [
        {
            "parameter": row.parameter,
            "baseline_id": diff.baseline_id,
            "other_id": diff.other_id,
            "absolute_difference": diff.absolute_difference,
            "percentage_difference": diff.percentage_difference,
        }
        for row in comparison.difference_matrix
        for diff in row.differences
    ]
    columns = ["parameter", "baseline_id", "other_id", "absolute_difference", "percentage_difference"]
    return pd.DataFrame(rows, columns=columns)
