import asyncio
import copy
from unittest.mock import AsyncMock, MagicMock

import pytest

from tariffsim.analysis.generator import StatisticalAnalysisGenerator
from tariffsim.cache.service import SimulationCache
from tariffsim.config.cache import CacheConfig
from tariffsim.config.orchestrator import OrchestratorConfig
from tariffsim.errors import (
    InvalidTransitionError,
    PersistenceError,
    RunAlreadyActiveError,
    SimulationNotFoundError,
)
from tariffsim.orchestrator.interfaces import AnalysisGenerator
from tariffsim.orchestrator.memory_store import FallbackSimulationStore, InMemorySimulationStore
from tariffsim.orchestrator.models import RunConfig, SimulationStatus
from tariffsim.orchestrator.service import SimulationLifecycleOrchestrator
from tariffsim.orchestrator.state import CompletionMessage, ErrorMessage, ProgressMessage
from conftest import RESULTS, ScriptedWorker, completing_script, make_orchestrator, tariff_params


class BrokenOutputStore(InMemorySimulationStore):
    def save_output(self, output):
        raise PersistenceError("database is down")


class HangingWorker(ScriptedWorker):
    async def poll(self, handle):
        await asyncio.sleep(10)
        return []


class LongPollWorker(ScriptedWorker):
    """Each poll blocks until the test opens the gate."""

    async def poll(self, handle):
        await self.gate.wait()
        return self.script.pop(0) if self.script else []


def run_config(**overrides):
    return RunConfig(parameters=tariff_params(**overrides))


def test_cache_hit_completes_without_worker(store):
    cache = SimulationCache(CacheConfig())
    cache.cache_results(tariff_params(), RESULTS)
    worker = ScriptedWorker()
    orchestrator = make_orchestrator(worker, store, cache=cache)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.COMPLETED
    assert output.from_cache is True
    assert output.results == RESULTS
    assert output.progress_percentage == 100
    assert worker.dispatched == []
    assert store.get_output(output.id).status == SimulationStatus.COMPLETED


def test_cache_miss_runs_worker_and_caches(store):
    cache = SimulationCache(CacheConfig())
    worker = ScriptedWorker(completing_script())
    orchestrator = make_orchestrator(
        worker, store, cache=cache, analysis_generator=StatisticalAnalysisGenerator()
    )

    output = asyncio.run(orchestrator.start_run(run_config(), actor="analyst"))

    assert output.status == SimulationStatus.COMPLETED
    assert output.from_cache is False
    assert output.end_time is not None
    assert output.analysis is not None
    assert len(worker.dispatched) == 1
    assert cache.contains(tariff_params())
    assert store.get_input(output.input_id).created_by == "analyst"


def test_worker_unavailable_fails_immediately(store):
    worker = ScriptedWorker(available=False)
    orchestrator = make_orchestrator(worker, store)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.FAILED
    assert output.error == "worker unavailable"
    assert worker.dispatched == []


def test_worker_error_propagates_verbatim(store):
    cache = SimulationCache(CacheConfig())
    worker = ScriptedWorker([[ProgressMessage(percentage=50), ErrorMessage(error="numerical instability")]])
    orchestrator = make_orchestrator(worker, store, cache=cache)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.FAILED
    assert output.error == "numerical instability"
    assert output.progress_percentage == 50
    assert not cache.contains(tariff_params())


def test_polling_deadline_fails_run(store):
    config = OrchestratorConfig(poll_interval_seconds=0.01, run_timeout_seconds=0.05)
    worker = ScriptedWorker()
    orchestrator = make_orchestrator(worker, store, config=config)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.FAILED
    assert output.error == "Simulation timed out after 0.05s"
    assert [h.output_id for h in worker.released] == [output.id]


def test_hanging_poll_is_cut_off_by_deadline(store):
    config = OrchestratorConfig(poll_interval_seconds=0.01, run_timeout_seconds=0.05)
    orchestrator = make_orchestrator(HangingWorker(), store, config=config)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.FAILED
    assert "timed out" in output.error


def test_one_active_run_per_input(store):
    worker = ScriptedWorker(gated=True)
    orchestrator = make_orchestrator(worker, store)

    async def scenario():
        task = asyncio.create_task(orchestrator.start_run(run_config()))
        await asyncio.sleep(0.02)

        input_id = store.list_inputs()[0].id
        running = orchestrator.list_outputs(input_id)[0]
        assert running.status == SimulationStatus.RUNNING

        with pytest.raises(RunAlreadyActiveError):
            await orchestrator.start_run(RunConfig(parameters=tariff_params(), input_id=input_id))

        orchestrator.stop_run(running.id)
        first = await task

        worker.gated = False
        worker.script = completing_script()
        second = await orchestrator.start_run(RunConfig(parameters=tariff_params(), input_id=input_id))
        return first, second

    first, second = asyncio.run(scenario())

    assert first.status == SimulationStatus.FAILED
    assert first.error == "stopped by user"
    assert second.status == SimulationStatus.COMPLETED
    assert second.input_id == first.input_id


def test_pause_and_resume(store):
    worker = ScriptedWorker(completing_script(), gated=True)
    orchestrator = make_orchestrator(worker, store)

    async def scenario():
        task = asyncio.create_task(orchestrator.start_run(run_config()))
        await asyncio.sleep(0.02)
        output_id = worker.dispatched[0].output_id

        paused = await orchestrator.pause_run(output_id)
        assert paused.status == SimulationStatus.PAUSED
        assert len(worker.paused) == 1

        # A paused run does not consume worker messages
        worker.gate.set()
        await asyncio.sleep(0.03)
        assert orchestrator.get_output(output_id).status == SimulationStatus.PAUSED
        assert len(worker.script) == 3

        with pytest.raises(InvalidTransitionError):
            await orchestrator.on_completion(output_id, RESULTS)

        await orchestrator.resume_run(output_id)
        assert len(worker.resumed) == 1
        return await task

    output = asyncio.run(scenario())
    assert output.status == SimulationStatus.COMPLETED


def test_late_signals_are_ignored(store):
    orchestrator = make_orchestrator(ScriptedWorker(completing_script()), store)
    output = asyncio.run(orchestrator.start_run(run_config()))

    orchestrator.on_progress(output.id, 10)
    asyncio.run(orchestrator.on_completion(output.id, {"other": True}))
    orchestrator.stop_run(output.id)

    assert output.status == SimulationStatus.COMPLETED
    assert output.progress_percentage == 100
    assert output.results == RESULTS


def test_completion_after_failure_is_ignored(store):
    orchestrator = make_orchestrator(ScriptedWorker(available=False), store)
    output = asyncio.run(orchestrator.start_run(run_config()))

    asyncio.run(orchestrator.on_completion(output.id, RESULTS))

    assert output.status == SimulationStatus.FAILED
    assert output.results is None


def test_analysis_failure_does_not_fail_run(store):
    generator = MagicMock(spec=AnalysisGenerator)
    generator.generate = AsyncMock(side_effect=RuntimeError("analysis backend down"))
    orchestrator = make_orchestrator(
        ScriptedWorker(completing_script()), store, analysis_generator=generator
    )

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.COMPLETED
    assert output.analysis is None
    generator.generate.assert_awaited_once()


def test_rerun_records_parameter_changes(store):
    worker = ScriptedWorker(completing_script())
    orchestrator = make_orchestrator(worker, store)
    first = asyncio.run(orchestrator.start_run(run_config(rate=3.5)))

    worker.script = completing_script()
    second = asyncio.run(orchestrator.rerun(first.input_id, run_config(rate=5.0), actor="analyst"))

    assert second.status == SimulationStatus.COMPLETED
    assert second.input_id != first.input_id

    history = orchestrator.parameter_history(first.input_id)
    assert [(r.parameter_id, r.old_value, r.new_value, r.changed_by) for r in history] == [
        ("tariff_rate", 3.5, 5.0, "analyst")
    ]


def test_record_parameter_changes_only_for_shared_keys(store):
    orchestrator = make_orchestrator(ScriptedWorker(), store)

    records = orchestrator.record_parameter_changes(
        "sim-1",
        {"rate": 1, "categories": ["a", "b"], "dropped": True},
        {"rate": 1, "categories": ["a", "c"], "added": 5},
        actor="analyst",
    )

    assert len(records) == 1
    assert records[0].parameter_id == "categories"
    assert store.list_parameter_changes("sim-1") == records


def test_save_simulation_only_once(store):
    orchestrator = make_orchestrator(ScriptedWorker(completing_script()), store)
    output = asyncio.run(orchestrator.start_run(run_config()))

    saved = orchestrator.save_simulation(output.input_id, "Vietnam baseline", "first pass")
    assert saved.name == "Vietnam baseline"
    assert store.get_input(output.input_id).description == "first pass"

    with pytest.raises(ValueError):
        orchestrator.save_simulation(output.input_id, "renamed")


def test_unknown_ids_raise(store):
    orchestrator = make_orchestrator(ScriptedWorker(), store)

    with pytest.raises(SimulationNotFoundError):
        orchestrator.on_failure("missing", "boom")
    with pytest.raises(SimulationNotFoundError):
        asyncio.run(orchestrator.start_run(RunConfig(parameters=tariff_params(), input_id="missing")))


def test_status_and_latest_output(store):
    orchestrator = make_orchestrator(ScriptedWorker(completing_script()), store)
    output = asyncio.run(orchestrator.start_run(run_config()))

    report = orchestrator.get_status(output.input_id)
    assert report.status == SimulationStatus.COMPLETED
    assert report.progress == 100
    assert report.has_results is True
    assert orchestrator.latest_completed_output(output.input_id).id == output.id
    assert orchestrator.get_status("unknown") is None


def test_persistence_failure_without_fallback_propagates():
    orchestrator = make_orchestrator(ScriptedWorker(completing_script()), BrokenOutputStore())

    with pytest.raises(PersistenceError):
        asyncio.run(orchestrator.start_run(run_config()))

    # Never stored, so the failed output stays readable from memory
    (output,) = orchestrator._outputs.values()
    assert orchestrator.get_output(output.id).status == SimulationStatus.FAILED


def test_persistence_failure_downgrades_to_fallback():
    store = FallbackSimulationStore(BrokenOutputStore())
    orchestrator = make_orchestrator(ScriptedWorker(completing_script()), store)

    output = asyncio.run(orchestrator.start_run(run_config()))

    assert output.status == SimulationStatus.COMPLETED
    assert store.degraded is True
    assert store.get_output(output.id).status == SimulationStatus.COMPLETED


def test_shutdown_fails_active_runs(store):
    worker = ScriptedWorker(gated=True)
    orchestrator = make_orchestrator(worker, store)

    async def scenario():
        task = asyncio.create_task(orchestrator.start_run(run_config()))
        await asyncio.sleep(0.02)
        await orchestrator.shutdown()
        return await task

    output = asyncio.run(scenario())

    assert output.status == SimulationStatus.FAILED
    assert output.error == "orchestrator shut down"
    assert worker.closed is True


def test_completion_drained_during_pause_is_applied_after_resume(store):
    worker = LongPollWorker([[CompletionMessage(results=RESULTS)]])
    orchestrator = make_orchestrator(worker, store)

    async def scenario():
        task = asyncio.create_task(orchestrator.start_run(run_config()))
        await asyncio.sleep(0.02)
        output_id = worker.dispatched[0].output_id

        # The poll is blocked on the gate when the pause arrives
        await orchestrator.pause_run(output_id)
        worker.gate.set()
        await asyncio.sleep(0.03)
        assert orchestrator.get_output(output_id).status == SimulationStatus.PAUSED
        assert worker.script == []

        await orchestrator.resume_run(output_id)
        return await task

    output = asyncio.run(scenario())

    assert output.status == SimulationStatus.COMPLETED
    assert output.error is None
    assert output.results == RESULTS


def test_edits_to_output_results_do_not_reach_cache(store):
    cache = SimulationCache(CacheConfig())
    worker = ScriptedWorker(completing_script(results=copy.deepcopy(RESULTS)))
    orchestrator = make_orchestrator(worker, store, cache=cache)

    computed = asyncio.run(orchestrator.start_run(run_config()))
    computed.results["summary"]["mean"] = 999.0

    from_cache = asyncio.run(orchestrator.start_run(run_config()))
    assert from_cache.from_cache is True
    assert from_cache.results["summary"]["mean"] == -12.0
    from_cache.results["summary"]["mean"] = 555.0

    assert cache.get_cached_results(tariff_params()).results["summary"]["mean"] == -12.0


def test_finished_outputs_are_read_back_from_store(store):
    worker = ScriptedWorker()
    orchestrator = make_orchestrator(worker, store)

    outputs = []
    for rate in (1.0, 2.0, 3.0):
        worker.script = completing_script()
        outputs.append(asyncio.run(orchestrator.start_run(run_config(rate=rate))))

    assert orchestrator._outputs == {}
    assert orchestrator._active_runs == {}
    assert len(worker.released) == 3
    for output in outputs:
        assert orchestrator.get_output(output.id).status == SimulationStatus.COMPLETED
    assert orchestrator.get_status(outputs[0].input_id).has_results is True


def test_default_config_is_built_per_instance(store):
    first = SimulationLifecycleOrchestrator(SimulationCache(), ScriptedWorker(), store)
    second = SimulationLifecycleOrchestrator(SimulationCache(), ScriptedWorker(), store)

    assert first.config == OrchestratorConfig()
    assert first.config is not second.config
