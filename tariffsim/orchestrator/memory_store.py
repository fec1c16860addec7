"""In-process SimulationStore and the fallback wrapper around a durable store."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, TypeVar

from tariffsim.comparison.models import SimulationComparison
from tariffsim.errors import PersistenceError
from .interfaces import SimulationStore
from .models import ParameterChangeRecord, SimulationInput, SimulationOutput

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InMemorySimulationStore(SimulationStore):
    """
    Dict-backed store. Outputs are copied on save and load so callers never
    share mutable state with the store.
    """

    def __init__(self):
        self.inputs: Dict[str, SimulationInput] = {}
        self.outputs: Dict[str, SimulationOutput] = {}
        self.parameter_changes: Dict[str, ParameterChangeRecord] = {}
        self.comparisons: Dict[str, SimulationComparison] = {}

    # --- Inputs ---

    def save_input(self, simulation_input: SimulationInput) -> SimulationInput:
        self.inputs[simulation_input.id] = simulation_input
        return simulation_input

    def get_input(self, input_id: str) -> Optional[SimulationInput]:
        return self.inputs.get(input_id)

    def list_inputs(self, created_by: Optional[str] = None, limit: int = 100) -> List[SimulationInput]:
        inputs = [
            i for i in self.inputs.values()
            if created_by is None or i.created_by == created_by
        ]
        inputs.sort(key=lambda i: i.created_at, reverse=True)
        return inputs[:limit]

    # --- Outputs ---

    def save_output(self, output: SimulationOutput) -> SimulationOutput:
        self.outputs[output.id] = output.model_copy(deep=True)
        return output

    def get_output(self, output_id: str) -> Optional[SimulationOutput]:
        output = self.outputs.get(output_id)
        return output.model_copy(deep=True) if output else None

    def list_outputs(self, input_id: str) -> List[SimulationOutput]:
        outputs = [o.model_copy(deep=True) for o in self.outputs.values() if o.input_id == input_id]
        outputs.sort(key=lambda o: o.start_time)
        return outputs

    # --- Parameter history ---

    def save_parameter_change(self, record: ParameterChangeRecord) -> ParameterChangeRecord:
        self.parameter_changes[record.id] = record
        return record

    def list_parameter_changes(self, simulation_id: str) -> List[ParameterChangeRecord]:
        records = [r for r in self.parameter_changes.values() if r.simulation_id == simulation_id]
        records.sort(key=lambda r: r.timestamp)
        return records

    # --- Comparisons ---

    def save_comparison(self, comparison: SimulationComparison) -> SimulationComparison:
        self.comparisons[comparison.id] = comparison
        return comparison

    def get_comparison(self, comparison_id: str) -> Optional[SimulationComparison]:
        return self.comparisons.get(comparison_id)

    def list_comparisons(self) -> List[SimulationComparison]:
        return sorted(self.comparisons.values(), key=lambda c: c.created_at)

    # --- Retention ---

    def apply_retention_policy(
        self,
        now: Optional[datetime] = None,
        detailed_retention_days: int = 90,
        summary_retention_days: int = 365,
        max_distribution_bins: int = 20,
    ) -> Dict[str, int]:
        """
        Tiered retention for stored runs.

        Outputs started before the summary threshold are deleted. Outputs
        started before the detailed threshold keep their summary but lose raw
        samples, and their histogram is merged down to max_distribution_bins.
        Parameter history older than the detailed threshold is dropped, and so
        are inputs left without outputs.
        """
        now = now or datetime.now()
        detailed_threshold = now - timedelta(days=detailed_retention_days)
        summary_threshold = now - timedelta(days=summary_retention_days)
        stats = {"outputs_deleted": 0, "outputs_reduced": 0, "history_deleted": 0, "inputs_deleted": 0}

        for output_id, output in list(self.outputs.items()):
            if output.start_time < summary_threshold:
                del self.outputs[output_id]
                stats["outputs_deleted"] += 1
            elif output.start_time < detailed_threshold and output.results:
                results = dict(output.results)
                results.pop("samples", None)
                if len(results.get("distribution", [])) > max_distribution_bins:
                    results["distribution"] = reduce_distribution_resolution(
                        results["distribution"], max_distribution_bins
                    )
                output.results = results
                stats["outputs_reduced"] += 1

        for record_id, record in list(self.parameter_changes.items()):
            if record.timestamp < detailed_threshold:
                del self.parameter_changes[record_id]
                stats["history_deleted"] += 1

        referenced = {o.input_id for o in self.outputs.values()}
        for input_id in list(self.inputs):
            if input_id not in referenced:
                del self.inputs[input_id]
                stats["inputs_deleted"] += 1

        logger.info(f"Retention policy applied: {stats}")
        return stats


def reduce_distribution_resolution(distribution: List[dict], target_bins: int) -> List[dict]:
    """Merge adjacent histogram bins; frequencies add, cumulative takes the last."""
    if len(distribution) <= target_bins:
        return distribution

    ratio = -(-len(distribution) // target_bins)  # ceil
    reduced = []
    for start in range(0, len(distribution), ratio):
        chunk = distribution[start:start + ratio]
        reduced.append({
            "bin": chunk[0]["bin"],
            "frequency": sum(b["frequency"] for b in chunk),
            "cumulative": chunk[-1]["cumulative"],
        })
    return reduced


class FallbackSimulationStore(SimulationStore):
    """
    Writes to a primary store and downgrades to a fallback when it fails.

    Every record is also written to the fallback, so reads that miss or fail
    on the primary can still be served. Once the primary fails it is marked
    degraded and only the fallback is used.
    """

    def __init__(self, primary: SimulationStore, fallback: Optional[SimulationStore] = None):
        self.primary = primary
        self.fallback = fallback or InMemorySimulationStore()
        self.degraded = False

    def _write(self, name: str, op: Callable[[SimulationStore], T]) -> T:
        if not self.degraded:
            try:
                op(self.primary)
            except PersistenceError as e:
                logger.warning(f"Primary store failed on {name}, falling back to in-memory store: {e}")
                self.degraded = True
        return op(self.fallback)

    def _read(self, name: str, op: Callable[[SimulationStore], T]) -> T:
        if not self.degraded:
            try:
                found = op(self.primary)
                if found:
                    return found
            except PersistenceError as e:
                logger.warning(f"Primary store failed on {name}, reading from fallback: {e}")
                self.degraded = True
        return op(self.fallback)

    def save_input(self, simulation_input):
        return self._write("save_input", lambda s: s.save_input(simulation_input))

    def get_input(self, input_id):
        return self._read("get_input", lambda s: s.get_input(input_id))

    def list_inputs(self, created_by=None, limit=100):
        return self._read("list_inputs", lambda s: s.list_inputs(created_by, limit))

    def save_output(self, output):
        return self._write("save_output", lambda s: s.save_output(output))

    def get_output(self, output_id):
        return self._read("get_output", lambda s: s.get_output(output_id))

    def list_outputs(self, input_id):
        return self._read("list_outputs", lambda s: s.list_outputs(input_id))

    def save_parameter_change(self, record):
        return self._write("save_parameter_change", lambda s: s.save_parameter_change(record))

    def list_parameter_changes(self, simulation_id):
        return self._read("list_parameter_changes", lambda s: s.list_parameter_changes(simulation_id))

    def save_comparison(self, comparison):
        return self._write("save_comparison", lambda s: s.save_comparison(comparison))

    def get_comparison(self, comparison_id):
        return self._read("get_comparison", lambda s: s.get_comparison(comparison_id))

    def list_comparisons(self):
        return self._read("list_comparisons", lambda s: s.list_comparisons())
