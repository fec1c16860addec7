"""In-process compute worker running Monte Carlo jobs as asyncio tasks."""

import asyncio
import logging
from typing import Dict, List

import numpy as np

from tariffsim.errors import WorkerError, WorkerUnavailableError
from tariffsim.orchestrator.interfaces import ComputeWorker, JobHandle, JobSpec
from tariffsim.orchestrator.state import (
    CompletionMessage,
    ErrorMessage,
    ProgressMessage,
    WorkerMessage,
)
from .monte_carlo import draw_impacts, summarize

logger = logging.getLogger(__name__)


class _Job:
    def __init__(self, job_id: str, spec: JobSpec):
        self.job_id = job_id
        self.spec = spec
        self.messages: asyncio.Queue = asyncio.Queue()
        self.running = asyncio.Event()
        self.running.set()
        self.task: asyncio.Task = None
        self.released = False


class LocalComputeWorker(ComputeWorker):
    """
    Runs each job in batches, yielding to the event loop between batches.

    Emits one ProgressMessage per batch and a final CompletionMessage or
    ErrorMessage. A paused job stops drawing batches until resumed.
    """

    def __init__(self, batch_size: int = 500, max_concurrent_jobs: int = 4, available: bool = True):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.batch_size = batch_size
        self.max_concurrent_jobs = max_concurrent_jobs
        self.available = available
        self._jobs: Dict[str, _Job] = {}

    def is_available(self) -> bool:
        return self.available and self._running_jobs() < self.max_concurrent_jobs

    async def dispatch(self, job: JobSpec) -> JobHandle:
        if not self.is_available():
            raise WorkerUnavailableError("Local worker is at capacity or disabled")

        handle = JobHandle(output_id=job.output_id)
        state = _Job(handle.job_id, job)
        state.task = asyncio.create_task(self._run(state))
        self._jobs[handle.job_id] = state
        logger.debug(f"Dispatched job {handle.job_id} ({job.settings.iterations} iterations)")
        return handle

    async def poll(self, handle: JobHandle) -> List[WorkerMessage]:
        job = self._get(handle)
        messages = []
        while not job.messages.empty():
            messages.append(job.messages.get_nowait())
        if job.task.done() and job.messages.empty():
            del self._jobs[handle.job_id]
        return messages

    async def pause(self, handle: JobHandle) -> None:
        self._get(handle).running.clear()

    async def resume(self, handle: JobHandle) -> None:
        self._get(handle).running.set()

    def release(self, handle: JobHandle) -> None:
        job = self._jobs.get(handle.job_id)
        if job is None:
            return
        if job.task.done():
            del self._jobs[handle.job_id]
        else:
            # Still counts against capacity until the task finishes. A paused
            # job would never finish, so it is let run to the end.
            job.released = True
            job.running.set()

    async def close(self) -> None:
        tasks = [job.task for job in self._jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._jobs.clear()
        logger.info(f"Local worker closed ({len(tasks)} jobs cancelled)")

    async def _run(self, job: _Job) -> None:
        spec = job.spec
        iterations = spec.settings.iterations
        rng = np.random.default_rng(spec.settings.seed)
        try:
            batches = []
            done = 0
            while done < iterations:
                await job.running.wait()
                n = min(self.batch_size, iterations - done)
                batches.append(draw_impacts(spec.parameters, n, rng))
                done += n
                job.messages.put_nowait(ProgressMessage(percentage=done / iterations * 100))
                await asyncio.sleep(0)

            results = summarize(spec.parameters, np.concatenate(batches))
            job.messages.put_nowait(CompletionMessage(results=results))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Job for output {spec.output_id} failed: {e}")
            job.messages.put_nowait(ErrorMessage(error=f"{type(e).__name__}: {e}"))
        finally:
            if job.released:
                self._jobs.pop(job.job_id, None)

    def _get(self, handle: JobHandle) -> _Job:
        job = self._jobs.get(handle.job_id)
        if job is None:
            raise WorkerError(f"Unknown job: {handle.job_id}")
        return job

    def _running_jobs(self) -> int:
        return sum(1 for job in self._jobs.values() if job.task and not job.task.done())
