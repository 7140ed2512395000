import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

from flight_tracker.config import Settings
from flight_tracker.jobs.runner import JobRunner

logger = logging.getLogger(__name__)


class JobExecutor(ABC):
    """Where a freshly created job goes."""

    mode: str = "base"

    @abstractmethod
    async def submit(self, job_id: int) -> None:
        pass

    async def drain(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class LocalExecutor(JobExecutor):
    """
    Runs jobs in-process, one at a time.

    A single worker task consumes an asyncio.Queue, so at most one job
    applies side effects at any moment. The worker starts on the first
    submit and survives handler failures. An id already waiting is not
    queued twice.
    """

    mode = "local"

    def __init__(self, runner: JobRunner):
        self.runner = runner
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._waiting: Set[int] = set()

    def _ensure_worker(self):
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work(), name="job-worker")

    async def submit(self, job_id: int) -> None:
        self._ensure_worker()
        if job_id in self._waiting:
            return
        self._waiting.add(job_id)
        await self._queue.put(job_id)
        logger.debug(f"Job {job_id} queued locally ({self._queue.qsize()} waiting)")

    async def _work(self):
        while True:
            job_id = await self._queue.get()
            self._waiting.discard(job_id)
            try:
                await self.runner.run(job_id)
            except Exception:
                logger.exception(f"Unhandled error running job {job_id}")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every submitted job has been run."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None


class RemoteDelegatingExecutor(JobExecutor):
    """Leaves jobs queued for a remote agent to claim over HTTP."""

    mode = "remote"

    async def submit(self, job_id: int) -> None:
        logger.info(f"Job {job_id} left queued for the remote agent")


def build_executor(settings: Settings, runner: JobRunner) -> JobExecutor:
    if settings.execution_mode == "remote":
        return RemoteDelegatingExecutor()
    return LocalExecutor(runner)
