# app/workers/book_processor.py
"""
Background worker pool for post-write book jobs.

Jobs are fire-and-forget: ``submit_job`` never waits for queue space, each job
runs at most once, and results are only logged.
"""

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.core.config import settings
from app.core.exceptions import OperationTimeout, WorkerPoolError
from app.models.book_model import Book
from app.schemas.book_schema import BookCreate, BookUpdate

logger = logging.getLogger(__name__)


class JobType(IntEnum):
    VALIDATE = 0
    PROCESS = 1
    NOTIFY = 2


class PoolState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class BookResult:
    job_id: str
    success: bool = True
    error: Optional[str] = None
    book: Optional[Book] = None
    message: str = ""


@dataclass
class BookJob:
    type: Union[JobType, int]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    book_data: Optional[BookCreate] = None
    update_data: Optional[BookUpdate] = None
    callback: Optional[Callable[[BookResult], None]] = None


JobHandler = Callable[[BookJob], Awaitable[BookResult]]

# Marks the end of a queue; one is enqueued per consumer.
_CLOSED = object()


class BookProcessor:
    """
    Fixed-size pool of asyncio workers reading a bounded job queue.

    ``shutdown`` closes the queue, lets the workers finish what is already
    buffered and then stops the result collector.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        queue_size: Optional[int] = None,
        processing_delay: float = 0.05,
        delay_step: float = 0.01,
        handlers: Optional[Dict[int, JobHandler]] = None,
    ):
        self.workers = workers or settings.WORKER_COUNT
        self.queue_size = queue_size or settings.WORKER_QUEUE_SIZE
        self.processing_delay = processing_delay
        self.delay_step = delay_step

        self._handlers: Dict[int, JobHandler] = {
            JobType.VALIDATE: self._handle_validate,
            JobType.PROCESS: self._handle_process,
            JobType.NOTIFY: self._handle_notify,
        }
        if handlers:
            self._handlers.update(handlers)

        self._jobs: Optional[asyncio.Queue] = None
        self._results: Optional[asyncio.Queue] = None
        self._worker_tasks: List[asyncio.Task] = []
        self._collector_task: Optional[asyncio.Task] = None

        self._state = PoolState.CREATED
        self._processed = 0
        self._failed = 0
        self._metrics_lock = threading.Lock()

    @property
    def state(self) -> PoolState:
        return self._state

    def start(self) -> None:
        if self._state is not PoolState.CREATED:
            raise WorkerPoolError(f"processor cannot start from state {self._state.value}")

        self._jobs = asyncio.Queue(maxsize=self.queue_size)
        self._results = asyncio.Queue(maxsize=self.queue_size)
        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"book-worker-{i}")
            for i in range(self.workers)
        ]
        self._collector_task = asyncio.create_task(
            self._collect_results(), name="book-result-collector"
        )
        self._state = PoolState.RUNNING
        logger.info(f"Starting BookProcessor with {self.workers} workers")

    def submit_job(self, job: BookJob) -> None:
        """Enqueue a job without waiting. Raises ``WorkerPoolError`` if it cannot be taken."""
        if self._state is not PoolState.RUNNING:
            raise WorkerPoolError("processor is shutting down")
        try:
            self._jobs.put_nowait(job)
        except asyncio.QueueFull:
            raise WorkerPoolError("job queue is full") from None

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        if self._state is PoolState.CREATED:
            self._state = PoolState.STOPPED
            return
        if self._state is not PoolState.RUNNING:
            return

        logger.info("Stopping BookProcessor...")
        self._state = PoolState.SHUTTING_DOWN

        closing = asyncio.create_task(self._close_and_wait())
        done, _ = await asyncio.wait({closing}, timeout=timeout)
        if not done:
            closing.cancel()
            pending = [t for t in (*self._worker_tasks, self._collector_task) if not t.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(closing, *pending, return_exceptions=True)
            self._state = PoolState.STOPPED
            logger.warning(
                "BookProcessor did not stop in time", extra={"cancelled_tasks": len(pending)}
            )
            raise OperationTimeout("worker pool shutdown timed out")

        closing.result()
        self._state = PoolState.STOPPED
        logger.info("BookProcessor stopped")

    async def stop(self) -> None:
        await self.shutdown(timeout=None)

    def get_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            processed, failed = self._processed, self._failed
        return {
            "workers": self.workers,
            "queue_capacity": self.queue_size,
            "current_queue_size": self._jobs.qsize() if self._jobs is not None else 0,
            "state": self._state.value,
            "processed": processed,
            "failed": failed,
        }

    # Private Helper Methods

    async def _close_and_wait(self) -> None:
        for _ in self._worker_tasks:
            await self._jobs.put(_CLOSED)
        await asyncio.gather(*self._worker_tasks)
        await self._results.put(_CLOSED)
        await self._collector_task

    async def _worker(self, worker_id: int) -> None:
        logger.debug(f"Worker {worker_id} started")
        while True:
            job = await self._jobs.get()
            if job is _CLOSED:
                logger.debug(f"Worker {worker_id}: job queue closed, exiting")
                return

            logger.debug(f"Worker {worker_id} processing job {job.id} of type {int(job.type)}")
            result = await self._process_job(job)
            await self._results.put((job, result))

    async def _process_job(self, job: BookJob) -> BookResult:
        handler = self._handlers.get(int(job.type))
        if handler is None:
            return BookResult(
                job_id=job.id, success=False, error=f"unknown job type: {int(job.type)}"
            )
        try:
            return await handler(job)
        except Exception as e:
            return BookResult(job_id=job.id, success=False, error=str(e))

    async def _collect_results(self) -> None:
        while True:
            item = await self._results.get()
            if item is _CLOSED:
                logger.debug("Result collector: result queue closed, exiting")
                return

            job, result = item
            with self._metrics_lock:
                if result.success:
                    self._processed += 1
                else:
                    self._failed += 1

            if result.success:
                logger.info(f"Job {result.job_id} completed successfully: {result.message}")
            else:
                logger.warning(f"Job {result.job_id} failed: {result.error}")

            if job.callback is not None:
                try:
                    job.callback(result)
                except Exception:
                    logger.exception(f"Callback for job {result.job_id} failed")

    async def _simulate_work(self, job: BookJob) -> None:
        delay = self.processing_delay + int(job.type) * self.delay_step
        if delay > 0:
            await asyncio.sleep(delay)

    async def _handle_validate(self, job: BookJob) -> BookResult:
        await self._simulate_work(job)
        if job.book_data is not None and not job.book_data.title:
            return BookResult(
                job_id=job.id,
                success=False,
                error="title is required",
                message="Book validation completed",
            )
        return BookResult(job_id=job.id, message="Book validation completed")

    async def _handle_process(self, job: BookJob) -> BookResult:
        await self._simulate_work(job)
        preview = None
        if job.book_data is not None:
            preview = Book(
                title=job.book_data.title,
                author=job.book_data.author,
                isbn=job.book_data.isbn,
                pages=job.book_data.pages,
            )
        return BookResult(job_id=job.id, book=preview, message="Book processing completed")

    async def _handle_notify(self, job: BookJob) -> BookResult:
        await self._simulate_work(job)
        logger.info(f"Notification sent for job {job.id}")
        return BookResult(job_id=job.id, message="Notification sent")
