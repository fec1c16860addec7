import asyncio
from typing import List

import pytest

from tariffsim.cache.service import SimulationCache
from tariffsim.config.cache import CacheConfig
from tariffsim.config.orchestrator import OrchestratorConfig
from tariffsim.errors import WorkerUnavailableError
from tariffsim.orchestrator.interfaces import ComputeWorker, JobHandle, JobSpec
from tariffsim.orchestrator.memory_store import InMemorySimulationStore
from tariffsim.orchestrator.service import SimulationLifecycleOrchestrator
from tariffsim.orchestrator.state import CompletionMessage, ProgressMessage


class FakeClock:
    """Manually advanced clock, seconds."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedWorker(ComputeWorker):
    """
    Returns one scripted batch of messages per poll, then nothing.
    Polls block until `gate` is set, so tests can hold a run in flight.
    """

    def __init__(self, script=None, available: bool = True, gated: bool = False):
        self.script: List[list] = list(script or [])
        self.available = available
        self.dispatched: List[JobSpec] = []
        self.paused: List[JobHandle] = []
        self.resumed: List[JobHandle] = []
        self.released: List[JobHandle] = []
        self.closed = False
        self.gated = gated
        self.gate = None

    def is_available(self) -> bool:
        return self.available

    async def dispatch(self, job: JobSpec) -> JobHandle:
        if not self.available:
            raise WorkerUnavailableError("down")
        self.dispatched.append(job)
        self.gate = asyncio.Event()
        return JobHandle(output_id=job.output_id)

    async def poll(self, handle: JobHandle):
        if self.gated and not self.gate.is_set():
            return []
        return self.script.pop(0) if self.script else []

    async def pause(self, handle: JobHandle) -> None:
        self.paused.append(handle)

    async def resume(self, handle: JobHandle) -> None:
        self.resumed.append(handle)

    def release(self, handle: JobHandle) -> None:
        self.released.append(handle)

    async def close(self) -> None:
        self.closed = True


RESULTS = {
    "summary": {"mean": -12.0, "median": -11.5, "min": -30.0, "max": 4.0, "std": 5.0, "variance": 25.0},
    "scenarios": {
        "pessimistic": {"probability": 0.5, "mean": -16.0},
        "realistic": {"probability": 0.3, "mean": -6.0},
        "optimistic": {"probability": 0.2, "mean": 1.0},
    },
    "iterations_run": 1000,
    "convergence_achieved": True,
}


def tariff_params(country="Vietnam", rate=3.5, **overrides):
    params = {
        "country": country,
        "tariff_rate": rate,
        "time_horizon": 12,
        "product_categories": ["electronics", "textiles"],
        "scenarios": ["baseline"],
        "confidence_level": 0.95,
    }
    params.update(overrides)
    return params


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return SimulationCache(CacheConfig(max_size=3, default_ttl_seconds=100), clock=clock)


@pytest.fixture
def store():
    return InMemorySimulationStore()


def make_orchestrator(worker, store, cache=None, config=None, **kwargs):
    return SimulationLifecycleOrchestrator(
        cache=cache or SimulationCache(CacheConfig()),
        worker=worker,
        store=store,
        config=config or OrchestratorConfig(poll_interval_seconds=0.005, run_timeout_seconds=2),
        **kwargs,
    )


def completing_script(percentages=(25.0, 75.0), results=None):
    return [[ProgressMessage(percentage=p)] for p in percentages] + [
        [CompletionMessage(results=results or RESULTS)]
    ]
