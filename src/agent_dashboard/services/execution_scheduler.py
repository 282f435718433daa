import asyncio
import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_RUNNING = "running"
JOB_STATUS_DONE = "done"
JOB_STATUS_CANCELLED = "cancelled"
JOB_STATUS_ERROR = "error"

# Final statuses kept after a job is dropped from the live tables.
_RECENT_LIMIT = 1024

JobFn = Callable[[], Awaitable[None]]


@dataclass
class _Job:
    job_id: str
    agent_id: str
    work: JobFn
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: str = JOB_STATUS_QUEUED
    cancelled: bool = False


class ExecutionScheduler:
    """FIFO queue in front of a fixed number of concurrent execution slots.

    Each job is an independent coroutine; queued and running jobs can be
    cancelled individually or per agent. Finished jobs leave the live tables
    at once; only their final status is remembered, for the last
    ``_RECENT_LIMIT`` jobs.
    """

    def __init__(self, max_concurrency: int = 4):
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be >= 1")
        self._max_concurrency = max_concurrency
        self._queue: asyncio.Queue[Tuple[int, str]] = asyncio.Queue()
        self._jobs: Dict[str, _Job] = {}
        self._futures: Dict[str, asyncio.Future[None]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._recent: "OrderedDict[str, str]" = OrderedDict()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._counter = itertools.count()
        self._dispatcher_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def _ensure_started(self) -> None:
        if self._started:
            return
        loop = asyncio.get_running_loop()
        self._semaphore = asyncio.Semaphore(self._max_concurrency)
        self._dispatcher_task = loop.create_task(self._dispatcher(), name="execution-scheduler-dispatcher")
        self._started = True

    async def shutdown(self) -> None:
        for job_id in list(self._jobs):
            self.cancel(job_id)
        if self._dispatcher_task is None:
            return
        self._dispatcher_task.cancel()
        try:
            await self._dispatcher_task
        except asyncio.CancelledError:
            pass
        self._dispatcher_task = None
        self._started = False

    async def enqueue(self, job_id: str, agent_id: str, work: JobFn) -> str:
        self._ensure_started()
        if job_id in self._jobs:
            raise ValueError(f"duplicate job id: {job_id}")
        self._jobs[job_id] = _Job(
            job_id=job_id,
            agent_id=agent_id,
            work=work,
            created_at=datetime.now(timezone.utc),
        )
        self._futures[job_id] = asyncio.get_running_loop().create_future()
        await self._queue.put((next(self._counter), job_id))
        return job_id

    async def wait(self, job_id: str) -> str:
        fut = self._futures.get(job_id)
        if fut is None:
            return self.job_status(job_id)
        await asyncio.shield(fut)
        return self.job_status(job_id)

    def job_status(self, job_id: str) -> str:
        job = self._jobs.get(job_id)
        if not job:
            return self._recent.get(job_id, "unknown")
        return job.status

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        fut = self._futures.get(job_id)
        if not job or not fut or fut.done():
            return False
        job.cancelled = True
        job.status = JOB_STATUS_CANCELLED
        job.completed_at = datetime.now(timezone.utc)
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()
        fut.set_result(None)
        self._forget(job)
        return True

    def cancel_agent(self, agent_id: str) -> List[str]:
        cancelled: List[str] = []
        for job in list(self._jobs.values()):
            if job.agent_id == agent_id and self.cancel(job.job_id):
                cancelled.append(job.job_id)
        return cancelled

    def stats(self) -> Dict[str, int]:
        counts = {JOB_STATUS_QUEUED: 0, JOB_STATUS_RUNNING: 0}
        for job in self._jobs.values():
            if job.status in counts:
                counts[job.status] += 1
        return {
            "max_concurrency": self._max_concurrency,
            "queued": counts[JOB_STATUS_QUEUED],
            "running": counts[JOB_STATUS_RUNNING],
        }

    async def _dispatcher(self) -> None:
        while True:
            _, job_id = await self._queue.get()
            job = self._jobs.get(job_id)
            fut = self._futures.get(job_id)
            if not job or not fut or fut.done() or job.cancelled:
                self._queue.task_done()
                continue
            self._tasks[job_id] = asyncio.create_task(self._run_job(job, fut), name=f"execution-job-{job_id}")
            self._queue.task_done()

    async def _run_job(self, job: _Job, fut: asyncio.Future[None]) -> None:
        assert self._semaphore is not None
        try:
            async with self._semaphore:
                if fut.done() or job.cancelled:
                    return
                job.status = JOB_STATUS_RUNNING
                job.started_at = datetime.now(timezone.utc)
                try:
                    await job.work()
                    job.status = JOB_STATUS_DONE
                except asyncio.CancelledError:
                    job.status = JOB_STATUS_CANCELLED
                    raise
                except Exception:
                    job.status = JOB_STATUS_ERROR
                    logger.exception("execution job failed job_id=%s agent_id=%s", job.job_id, job.agent_id)
                job.completed_at = datetime.now(timezone.utc)
                if not fut.done():
                    fut.set_result(None)
                    self._forget(job)
        finally:
            self._tasks.pop(job.job_id, None)

    def _forget(self, job: _Job) -> None:
        self._jobs.pop(job.job_id, None)
        self._futures.pop(job.job_id, None)
        self._recent[job.job_id] = job.status
        while len(self._recent) > _RECENT_LIMIT:
            self._recent.popitem(last=False)
