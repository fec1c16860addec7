"""SimulationLifecycleOrchestrator - creates, dispatches, tracks and finalizes simulation runs."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from tariffsim.cache.service import CacheMetadata, SimulationCache
from tariffsim.comparison.engine import ComparisonEngine
from tariffsim.comparison.models import SimulationComparison
from tariffsim.config.orchestrator import OrchestratorConfig
from tariffsim.errors import (
    PersistenceError,
    RunAlreadyActiveError,
    SimulationNotFoundError,
    WorkerError,
    WorkerUnavailableError,
)
from .interfaces import AnalysisGenerator, ComputeWorker, JobHandle, JobSpec, SimulationStore
from .models import (
    ParameterChangeRecord,
    RunConfig,
    RunStatusReport,
    SimulationInput,
    SimulationOutput,
    SimulationStatus,
)
from .state import (
    CompletionMessage,
    ErrorMessage,
    PauseMessage,
    ProgressMessage,
    ResumeMessage,
    RunMessage,
    StartMessage,
    StopMessage,
    TimeoutMessage,
    WorkerMessage,
    is_stale,
    next_status,
)

logger = logging.getLogger(__name__)

WORKER_UNAVAILABLE = "worker unavailable"

ConfigLike = Union[RunConfig, SimulationInput, Mapping[str, Any]]


class SimulationLifecycleOrchestrator:
    """
    Owns the lifecycle of simulation runs.

    A run:
    1. Persists (or reuses) a SimulationInput and creates a running SimulationOutput
    2. Completes straight from SimulationCache when a fresh result exists
    3. Otherwise dispatches to the compute worker and polls until the run is
       terminal or the hard deadline passes
    4. On completion caches the results and attaches a generated analysis

    Only one running or paused output may exist per input at a time.
    """

    def __init__(
        self,
        cache: SimulationCache,
        worker: ComputeWorker,
        store: SimulationStore,
        analysis_generator: Optional[AnalysisGenerator] = None,
        comparison_engine: Optional[ComparisonEngine] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.cache = cache
        self.worker = worker
        self.store = store
        self.analysis_generator = analysis_generator
        self.comparison_engine = comparison_engine or ComparisonEngine(store)
        self.config = config or OrchestratorConfig()

        # Live outputs are the source of truth while a run is in flight.
        # Finished outputs are dropped once the store holds their final state.
        self._outputs: Dict[str, SimulationOutput] = {}
        self._unsaved: Set[str] = set()
        self._active_runs: Dict[str, str] = {}  # input_id -> output_id
        self._handles: Dict[str, JobHandle] = {}  # output_id -> handle

    # ============= RUN LIFECYCLE =============

    async def start_run(self, config: RunConfig, actor: Optional[str] = None) -> SimulationOutput:
        """
        Run a simulation to a terminal state and return its output.

        Raises:
            RunAlreadyActiveError: The input already has a running or paused output
            SimulationNotFoundError: config.input_id does not exist
            PersistenceError: The store failed and has no fallback
        """
        actor = actor or self.config.default_actor

        # No suspension point between the active-run check and the claim below
        simulation_input = self._resolve_input(config, actor)
        active_id = self._active_runs.get(simulation_input.id)
        if active_id is not None:
            raise RunAlreadyActiveError(
                f"Input {simulation_input.id} already has an active run: {active_id}"
            )

        output = SimulationOutput(input_id=simulation_input.id)
        self._transition(output, StartMessage())
        self._outputs[output.id] = output
        self._active_runs[simulation_input.id] = output.id
        logger.info(f"Starting run {output.id} for input {simulation_input.id} ({actor})")

        try:
            self._persist(output, strict=True)

            cached = self.cache.get_cached_results(simulation_input.parameters)
            if cached is not None:
                logger.info(f"Cache hit for run {output.id}, skipping compute worker")
                await self._complete(output, simulation_input, cached.results, from_cache=True)
                return output

            handle = await self._dispatch(output, simulation_input)
            if handle is not None:
                await self._poll_until_terminal(output, handle)
            return output
        except asyncio.CancelledError:
            if not output.is_terminal:
                self._fail(output, "run cancelled", strict=False)
            raise
        except Exception as e:
            if not output.is_terminal:
                self._fail(output, f"{type(e).__name__}: {e}", strict=False)
            raise
        finally:
            self._release(output)

    async def rerun(self, input_id: str, new_config: RunConfig, actor: Optional[str] = None) -> SimulationOutput:
        """Edit an existing simulation: record what changed, then run the new parameters."""
        return await self.start_run(new_config.model_copy(update={"input_id": input_id}), actor)

    def on_progress(self, output_id: str, percentage: float) -> SimulationOutput:
        """Update progress. Never changes status; ignored once the run is terminal."""
        output = self._require_output(output_id)
        message = ProgressMessage(percentage=percentage)
        if is_stale(output.status, message):
            logger.debug(f"Ignoring stale progress for {output_id} ({output.status.value})")
            return output

        self._transition(output, message)
        output.progress_percentage = min(100.0, max(0.0, float(percentage)))
        self._persist(output, strict=False)
        return output

    async def on_completion(self, output_id: str, raw_results: Dict[str, Any]) -> SimulationOutput:
        """Finalize a run with results from the worker."""
        output = self._require_output(output_id)
        if is_stale(output.status, CompletionMessage()):
            logger.debug(f"Ignoring completion for already finished run {output_id}")
            return output

        simulation_input = self._require_input(output.input_id)
        await self._complete(output, simulation_input, raw_results, from_cache=False)
        return output

    def on_failure(self, output_id: str, error_message: str) -> SimulationOutput:
        """Mark a run failed. No retry."""
        output = self._require_output(output_id)
        self._fail(output, error_message, strict=True)
        return output

    async def pause_run(self, output_id: str) -> SimulationOutput:
        output = self._require_output(output_id)
        self._transition(output, PauseMessage())
        handle = self._handles.get(output_id)
        if handle is not None:
            await self.worker.pause(handle)
        self._persist(output, strict=False)
        logger.info(f"Paused run {output_id}")
        return output

    async def resume_run(self, output_id: str) -> SimulationOutput:
        output = self._require_output(output_id)
        self._transition(output, ResumeMessage())
        handle = self._handles.get(output_id)
        if handle is not None:
            await self.worker.resume(handle)
        self._persist(output, strict=False)
        logger.info(f"Resumed run {output_id}")
        return output

    def stop_run(self, output_id: str, reason: str = "stopped by user") -> SimulationOutput:
        """
        Abandon a run. The output fails immediately; the worker is not told
        and may keep computing, its late messages are ignored.
        """
        output = self._require_output(output_id)
        message = StopMessage(reason=reason)
        if is_stale(output.status, message):
            return output
        self._transition(output, message)
        output.error = reason
        output.end_time = datetime.now()
        self._persist(output, strict=False)
        self._release(output)
        logger.info(f"Stopped run {output_id}: {reason}")
        return output

    # ============= PARAMETER HISTORY =============

    def record_parameter_changes(
        self,
        simulation_id: str,
        old_config: ConfigLike,
        new_config: ConfigLike,
        actor: Optional[str] = None,
    ) -> List[ParameterChangeRecord]:
        """
        Append one ParameterChangeRecord per parameter present in both
        configs whose value differs (deep equality).
        """
        actor = actor or self.config.default_actor
        old_values = _flat_parameters(old_config)
        new_values = _flat_parameters(new_config)

        records = []
        for parameter_id, old_value in old_values.items():
            if parameter_id not in new_values:
                continue
            new_value = new_values[parameter_id]
            if old_value == new_value:
                continue
            record = ParameterChangeRecord(
                simulation_id=simulation_id,
                parameter_id=parameter_id,
                old_value=old_value,
                new_value=new_value,
                changed_by=actor,
            )
            self.store.save_parameter_change(record)
            records.append(record)

        if records:
            logger.info(
                f"Recorded {len(records)} parameter changes for {simulation_id}: "
                f"{[r.parameter_id for r in records]}"
            )
        return records

    def parameter_history(self, simulation_id: str) -> List[ParameterChangeRecord]:
        return self.store.list_parameter_changes(simulation_id)

    # ============= QUERIES =============

    def save_simulation(
        self, input_id: str, name: str, description: Optional[str] = None
    ) -> SimulationInput:
        """Name a simulation after the fact. Allowed once per input."""
        simulation_input = self._require_input(input_id)
        if simulation_input.name is not None:
            raise ValueError(f"Simulation {input_id} is already saved as '{simulation_input.name}'")

        named = simulation_input.model_copy(update={"name": name, "description": description})
        self.store.save_input(named)
        logger.info(f"Saved simulation {input_id} as '{name}'")
        return named

    def get_input(self, input_id: str) -> Optional[SimulationInput]:
        return self.store.get_input(input_id)

    def get_output(self, output_id: str) -> Optional[SimulationOutput]:
        return self._outputs.get(output_id) or self.store.get_output(output_id)

    def list_outputs(self, input_id: str) -> List[SimulationOutput]:
        stored = {o.id: o for o in self.store.list_outputs(input_id)}
        for output in self._outputs.values():
            if output.input_id == input_id:
                stored[output.id] = output
        return sorted(stored.values(), key=lambda o: o.start_time)

    def latest_completed_output(self, input_id: str) -> Optional[SimulationOutput]:
        completed = [
            o for o in self.list_outputs(input_id)
            if o.status == SimulationStatus.COMPLETED
        ]
        if not completed:
            return None
        return max(completed, key=lambda o: o.end_time or o.start_time)

    def get_status(self, input_id: str) -> Optional[RunStatusReport]:
        """Status of the most recently started run of an input."""
        outputs = self.list_outputs(input_id)
        if not outputs:
            return None
        latest = outputs[-1]
        return RunStatusReport(
            input_id=input_id,
            output_id=latest.id,
            status=latest.status,
            progress=latest.progress_percentage,
            error=latest.error,
            has_results=latest.results is not None,
            has_analysis=latest.analysis is not None,
        )

    def compare_runs(
        self,
        output_ids: Sequence[str],
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SimulationComparison:
        outputs = [self._require_output(output_id) for output_id in output_ids]
        return self.comparison_engine.compare(outputs, name=name, description=description)

    async def shutdown(self) -> None:
        """Fail runs still in flight and close the worker."""
        for output_id in list(self._active_runs.values()):
            self.stop_run(output_id, reason="orchestrator shut down")
        await self.worker.close()
        logger.info("Orchestrator shut down")

    # ============= INTERNALS =============

    def _resolve_input(self, config: RunConfig, actor: str) -> SimulationInput:
        if config.input_id is not None:
            existing = self._require_input(config.input_id)
            if existing.parameters == config.parameters and existing.settings == config.settings:
                return existing
            # Inputs are immutable: an edit records the diff and creates a new input
            self.record_parameter_changes(existing.id, existing, config, actor)

        simulation_input = SimulationInput(
            parameters=config.parameters,
            settings=config.settings,
            created_by=actor,
            name=config.name,
            description=config.description,
        )
        return self.store.save_input(simulation_input)

    async def _dispatch(self, output: SimulationOutput, simulation_input: SimulationInput) -> Optional[JobHandle]:
        if not self.worker.is_available():
            logger.error(f"Compute worker unavailable, failing run {output.id}")
            self._fail(output, WORKER_UNAVAILABLE, strict=True)
            return None

        job = JobSpec(
            output_id=output.id,
            input_id=simulation_input.id,
            parameters=simulation_input.parameters,
            settings=simulation_input.settings,
        )
        try:
            handle = await self.worker.dispatch(job)
        except WorkerUnavailableError:
            logger.error(f"Compute worker rejected run {output.id}: unavailable")
            self._fail(output, WORKER_UNAVAILABLE, strict=True)
            return None
        except WorkerError as e:
            self._fail(output, str(e), strict=True)
            return None

        self._handles[output.id] = handle
        logger.info(f"Dispatched run {output.id} as job {handle.job_id}")
        return handle

    async def _poll_until_terminal(self, output: SimulationOutput, handle: JobHandle) -> None:
        loop = asyncio.get_running_loop()
        timeout = self.config.run_timeout_seconds
        deadline = loop.time() + timeout
        pending: List[WorkerMessage] = []

        while not output.is_terminal:
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._timeout(output, timeout)
                return

            # A paused run is not fed worker messages until it resumes
            if output.status == SimulationStatus.RUNNING:
                if not pending:
                    try:
                        pending.extend(await asyncio.wait_for(self.worker.poll(handle), timeout=remaining))
                    except asyncio.TimeoutError:
                        self._timeout(output, timeout)
                        return
                    except WorkerError as e:
                        self._fail(output, str(e), strict=True)
                        return

                # The run may have been paused while the poll was in flight;
                # whatever is left over is replayed after resume
                while pending and output.status == SimulationStatus.RUNNING:
                    await self._handle_message(output, pending.pop(0))
                if output.is_terminal:
                    return

            await asyncio.sleep(min(self.config.poll_interval_seconds, max(0.0, deadline - loop.time())))

    async def _handle_message(self, output: SimulationOutput, message: RunMessage) -> None:
        if isinstance(message, ProgressMessage):
            self.on_progress(output.id, message.percentage)
        elif isinstance(message, CompletionMessage):
            await self.on_completion(output.id, message.results)
        elif isinstance(message, ErrorMessage):
            self.on_failure(output.id, message.error)
        else:
            raise TypeError(f"Unexpected worker message: {message!r}")

    async def _complete(
        self,
        output: SimulationOutput,
        simulation_input: SimulationInput,
        results: Dict[str, Any],
        from_cache: bool,
    ) -> None:
        self._transition(output, CompletionMessage(results=results))
        output.results = results
        output.progress_percentage = 100.0
        output.end_time = datetime.now()
        output.from_cache = from_cache
        output.compute_time_ms = (output.end_time - output.start_time).total_seconds() * 1000

        if not from_cache:
            self.cache.cache_results(
                simulation_input.parameters,
                results,
                CacheMetadata(
                    iterations_run=results.get("iterations_run", simulation_input.settings.iterations),
                    compute_time_ms=output.compute_time_ms,
                    convergence_achieved=results.get("convergence_achieved", True),
                ),
            )

        if self.config.generate_analysis and self.analysis_generator is not None:
            try:
                output.analysis = await self.analysis_generator.generate(simulation_input, output)
            except Exception as e:
                # The run still completed; it just has no analysis
                logger.warning(f"Analysis generation failed for {output.id}: {e}")

        self._persist(output, strict=True)
        logger.info(
            f"Run {output.id} completed"
            f"{' from cache' if from_cache else ''} in {output.compute_time_ms:.0f}ms"
        )
        self._release(output)

    def _fail(self, output: SimulationOutput, error_message: str, strict: bool) -> None:
        message = ErrorMessage(error=error_message)
        if is_stale(output.status, message):
            return
        self._transition(output, message)
        output.error = error_message
        output.end_time = datetime.now()
        logger.error(f"Run {output.id} failed: {error_message}")
        self._persist(output, strict=strict)
        self._release(output)

    def _timeout(self, output: SimulationOutput, timeout_seconds: float) -> None:
        self._transition(output, TimeoutMessage(timeout_seconds=timeout_seconds))
        output.error = f"Simulation timed out after {timeout_seconds:g}s"
        output.end_time = datetime.now()
        logger.error(f"Run {output.id} timed out after {timeout_seconds:g}s")
        self._persist(output, strict=False)
        self._release(output)

    def _transition(self, output: SimulationOutput, message: RunMessage) -> None:
        output.status = next_status(output.status, message)

    def _persist(self, output: SimulationOutput, strict: bool) -> None:
        try:
            self.store.save_output(output)
        except PersistenceError as e:
            self._unsaved.add(output.id)
            if strict:
                raise
            logger.warning(f"Could not persist output {output.id}: {e}")
        else:
            self._unsaved.discard(output.id)

    def _release(self, output: SimulationOutput) -> None:
        if not output.is_terminal:
            return
        if self._active_runs.get(output.input_id) == output.id:
            del self._active_runs[output.input_id]
        handle = self._handles.pop(output.id, None)
        if handle is not None:
            self.worker.release(handle)
        # An output the store never received stays readable from memory
        if output.id not in self._unsaved:
            self._outputs.pop(output.id, None)

    def _require_output(self, output_id: str) -> SimulationOutput:
        output = self.get_output(output_id)
        if output is None:
            raise SimulationNotFoundError(f"Simulation output not found: {output_id}")
        return output

    def _require_input(self, input_id: str) -> SimulationInput:
        simulation_input = self.store.get_input(input_id)
        if simulation_input is None:
            raise SimulationNotFoundError(f"Simulation input not found: {input_id}")
        return simulation_input


def _flat_parameters(config: ConfigLike) -> Dict[str, Any]:
    if isinstance(config, (RunConfig, SimulationInput)):
        return config.flat_parameters()
    return dict(config)
