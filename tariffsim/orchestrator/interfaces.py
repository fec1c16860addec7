"""Boundaries to the collaborators the orchestrator does not own."""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from tariffsim.cache.keys import SimulationParameterKey
from tariffsim.comparison.models import SimulationComparison
from .models import (
    AnalysisPayload,
    ParameterChangeRecord,
    RunSettings,
    SimulationInput,
    SimulationOutput,
    new_id,
)
from .state import WorkerMessage


class JobSpec(BaseModel):
    """Everything a compute worker needs to run one simulation."""

    output_id: str
    input_id: str
    parameters: SimulationParameterKey
    settings: RunSettings = RunSettings()


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=new_id)
    output_id: str


class ComputeWorker(ABC):
    """Asynchronous compute backend."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the worker can accept a job right now."""
        pass

    @abstractmethod
    async def dispatch(self, job: JobSpec) -> JobHandle:
        """Submit a job. Returns once the worker acknowledged it."""
        pass

    @abstractmethod
    async def poll(self, handle: JobHandle) -> List[WorkerMessage]:
        """Drain messages emitted for a job since the last poll, oldest first."""
        pass

    async def pause(self, handle: JobHandle) -> None:
        """Optional: stop producing batches for a job."""
        pass

    async def resume(self, handle: JobHandle) -> None:
        pass

    def release(self, handle: JobHandle) -> None:
        """
        Optional: the orchestrator will not poll this job again. Drop any
        state kept for it. This is not a cancel; the job may keep running.
        """
        pass

    async def close(self) -> None:
        pass


class AnalysisGenerator(ABC):
    """Produces the textual analysis of a completed run."""

    @abstractmethod
    async def generate(
        self, simulation_input: SimulationInput, output: SimulationOutput
    ) -> AnalysisPayload:
        pass


class SimulationStore(ABC):
    """
    Durable store for inputs, outputs, parameter history and comparisons.

    Implementations raise PersistenceError when the backend fails.
    """

    @abstractmethod
    def save_input(self, simulation_input: SimulationInput) -> SimulationInput:
        pass

    @abstractmethod
    def get_input(self, input_id: str) -> Optional[SimulationInput]:
        pass

    @abstractmethod
    def list_inputs(self, created_by: Optional[str] = None, limit: int = 100) -> List[SimulationInput]:
        pass

    @abstractmethod
    def save_output(self, output: SimulationOutput) -> SimulationOutput:
        pass

    @abstractmethod
    def get_output(self, output_id: str) -> Optional[SimulationOutput]:
        pass

    @abstractmethod
    def list_outputs(self, input_id: str) -> List[SimulationOutput]:
        """All outputs of one input, oldest first."""
        pass

    @abstractmethod
    def save_parameter_change(self, record: ParameterChangeRecord) -> ParameterChangeRecord:
        pass

    @abstractmethod
    def list_parameter_changes(self, simulation_id: str) -> List[ParameterChangeRecord]:
        pass

    @abstractmethod
    def save_comparison(self, comparison: SimulationComparison) -> SimulationComparison:
        pass

    @abstractmethod
    def get_comparison(self, comparison_id: str) -> Optional[SimulationComparison]:
        pass

    @abstractmethod
    def list_comparisons(self) -> List[SimulationComparison]:
        pass
