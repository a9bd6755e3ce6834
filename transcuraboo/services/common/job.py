"""
Common job and job queue implementation for event-based processing.

This module provides:
- Job: Base class for defining asynchronous jobs
- JobQueue: Event-based queue that runs exactly one job at a time
- JobStatus: Enum for tracking job states
"""

import asyncio
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from transcuraboo.services.common.errors import TranscuraError
from transcuraboo.utils import get_current_timestamp

logger = logging.getLogger(__name__)


class JobStatus(enum.Enum):
    """Status of a job in the queue."""

    QUEUED = "Queued"
    PROCESSING = "Processing"
    TRANSCRIBING = "Transcribing"
    DONE = "Done"
    ERROR = "Error"

    @property
    def is_terminal(self) -> bool:
        """Whether the job can no longer change state."""
        return self in (JobStatus.DONE, JobStatus.ERROR)


@dataclass
class Job(ABC):
    """
    Base class for a job that can be processed by a JobQueue.

    Attributes:
        job_id: Unique identifier for the job
        created_at: Timestamp when the job was created
        started_at: Timestamp when the job started processing (None if not started)
        finished_at: Timestamp when the job finished (None if not finished)
        status: Current status of the job
        error_message: Error message if the job failed (None if no error)
        metadata: Additional metadata for the job
    """

    job_id: str
    created_at: datetime = field(default_factory=get_current_timestamp)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    status: JobStatus = JobStatus.QUEUED
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @abstractmethod
    async def execute(self) -> None:
        """
        Execute the job's main logic.

        Raises:
            Exception: Any exception raised during execution is caught
                      by the JobQueue and marks the job as failed.
        """
        pass

    def mark_started(self) -> None:
        """Mark the job as claimed by the queue worker."""
        self.started_at = get_current_timestamp()
        self.status = JobStatus.PROCESSING

    def mark_transcribing(self) -> None:
        """Mark the job as dispatching work to the transcription service."""
        self.status = JobStatus.TRANSCRIBING

    def mark_completed(self) -> None:
        """Mark the job as completed."""
        self.finished_at = get_current_timestamp()
        self.status = JobStatus.DONE

    def mark_failed(self, error_message: str) -> None:
        """Mark the job as failed with an error message."""
        self.finished_at = get_current_timestamp()
        self.status = JobStatus.ERROR
        self.error_message = error_message


TJob = TypeVar("TJob", bound=Job)


def describe_error(error: BaseException) -> str:
    """Human-readable description of a job failure."""
    if isinstance(error, TranscuraError):
        return str(error) or type(error).__name__
    return f"{type(error).__name__}: {str(error)}"


class JobQueue(Generic[TJob]):
    """
    Event-based job queue that runs one job at a time.

    The queue is idle by default and activates when jobs are added.
    Jobs are claimed in FIFO order by a single worker task, which is the
    only globally-active slot: the next job is claimed only after the
    current one reaches a terminal state. Failed jobs are never retried.

    Attributes:
        on_job_complete: Optional callback when a job completes successfully
        on_job_failed: Optional callback when a job fails
        on_job_started: Optional callback when a job starts
    """

    def __init__(
        self,
        on_job_complete: Callable[[TJob], Any] | None = None,
        on_job_failed: Callable[[TJob], Any] | None = None,
        on_job_started: Callable[[TJob], Any] | None = None,
    ):
        self._queue: asyncio.Queue[TJob] = asyncio.Queue()
        self._worker_task: asyncio.Task | None = None
        self._is_running: bool = False
        self._shutdown_event: asyncio.Event = asyncio.Event()

        # Callbacks
        self._on_job_complete = on_job_complete
        self._on_job_failed = on_job_failed
        self._on_job_started = on_job_started

        # Statistics
        self._total_jobs_processed: int = 0
        self._total_jobs_failed: int = 0
        self._current_job: TJob | None = None

    async def add_job(self, job: TJob) -> None:
        """
        Add a job to the queue.

        If the worker is not running, it will be started automatically.

        Args:
            job: The job to add to the queue
        """
        await self._queue.put(job)

        if not self._is_running:
            await self.start()

    async def start(self) -> None:
        """Start the job queue worker."""
        if self._is_running:
            return

        self._is_running = True
        self._shutdown_event.clear()
        self._worker_task = asyncio.create_task(self._worker())

    async def stop(self, wait_for_completion: bool = True) -> None:
        """
        Stop the job queue worker.

        Args:
            wait_for_completion: If True, wait for current job to complete before stopping
        """
        if not self._is_running:
            return

        self._is_running = False
        self._shutdown_event.set()

        if self._worker_task:
            if wait_for_completion:
                await self._worker_task
            else:
                self._worker_task.cancel()
                try:
                    await self._worker_task
                except asyncio.CancelledError:
                    pass

        self._worker_task = None

    async def _worker(self) -> None:
        """
        Main worker loop that claims and runs jobs from the queue.

        This runs continuously until shutdown is requested.
        """
        while self._is_running:
            try:
                # Wait for a job with timeout to allow shutdown checks
                try:
                    job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    if self._shutdown_event.is_set():
                        break
                    continue

                self._current_job = job
                try:
                    await self._process_job(job)
                finally:
                    self._current_job = None
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
            except Exception:
                # Keep the worker alive; the job itself has already been marked
                logger.exception("Unexpected error in job queue worker")

    async def _process_job(self, job: TJob) -> None:
        """
        Run a single job and record its outcome.

        Args:
            job: The job to process
        """
        try:
            job.mark_started()
            await self._notify(self._on_job_started, job, "on_job_started")

            await job.execute()

            job.mark_completed()
            self._total_jobs_processed += 1
            await self._notify(self._on_job_complete, job, "on_job_complete")

        except asyncio.CancelledError:
            job.mark_failed("Job cancelled")
            self._total_jobs_failed += 1
            await self._notify(self._on_job_failed, job, "on_job_failed")
            raise
        except Exception as e:
            job.mark_failed(describe_error(e))
            self._total_jobs_failed += 1
            await self._notify(self._on_job_failed, job, "on_job_failed")

    async def _notify(self, callback: Callable[[TJob], Any] | None, job: TJob, name: str) -> None:
        """Invoke a sync or async callback, logging any error it raises."""
        if not callback:
            return
        try:
            result = callback(job)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.exception(f"Error in {name} callback for job {job.job_id}")

    def get_queue_size(self) -> int:
        """Get the current number of jobs waiting in the queue."""
        return self._queue.qsize()

    def get_current_job(self) -> TJob | None:
        """Get the currently processing job, if any."""
        return self._current_job

    def get_statistics(self) -> dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with statistics including:
            - is_running: Whether the worker is active
            - queue_size: Number of pending jobs
            - total_processed: Total jobs completed
            - total_failed: Total jobs failed
            - current_job_id: ID of current job (if any)
        """
        return {
            "is_running": self._is_running,
            "queue_size": self.get_queue_size(),
            "total_processed": self._total_jobs_processed,
            "total_failed": self._total_jobs_failed,
            "current_job_id": self._current_job.job_id if self._current_job else None,
            "current_job_status": (self._current_job.status.value if self._current_job else None),
        }

    async def wait_until_empty(self) -> None:
        """Wait until all jobs in the queue are processed."""
        await self._queue.join()

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return self._queue.empty()

    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._is_running
