"""
Transcription Job Manager Service.

This service manages a queue of file transcription jobs. It uses an
event-based job queue that:
- Processes one transcription job at a time
- Automatically activates when jobs are added
- Remains idle when no jobs are pending
- Republishes job state and progress to registered listeners
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiofiles

if TYPE_CHECKING:
    from transcuraboo.context import Context
    from transcuraboo.services.audio_manager.manager import AudioSource
    from transcuraboo.services.manager import ServicesManager

from transcuraboo.services.common.errors import SegmentTranscriptionFailure, WaveFailure
from transcuraboo.services.common.job import Job, JobQueue, JobStatus
from transcuraboo.services.common.waves import run_in_waves
from transcuraboo.services.manager import BaseTranscriptionJobManagerService
from transcuraboo.services.transcription_job_manager.compiler import (
    TranscriptionTurn,
    compile_transcript,
    compute_progress,
)
from transcuraboo.services.transcription_job_manager.planner import Segment, plan_segments
from transcuraboo.utils import TranscriptionConstants, generate_job_id


@dataclass
class FileTranscriptionJob(Job):
    """
    A job transcribing one audio file.

    Attributes:
        filename: Name of the submitted file
        data: Raw file bytes (released once the job terminates)
        progress: Integer percentage 0-100
        transcription: Ordered transcript, partial while transcribing
        chunk_seconds: Segment length in seconds
        concurrency: Maximum segment requests in flight per wave
        services: Reference to ServicesManager for accessing services
        on_update: Called whenever state, progress or transcript changes
    """

    filename: str = ""
    data: bytes = field(default=b"", repr=False)
    progress: int = 0
    transcription: list[TranscriptionTurn] = field(default_factory=list)
    chunk_seconds: float = TranscriptionConstants.CHUNK_SIZE_SECONDS
    concurrency: int = TranscriptionConstants.CONCURRENCY_LIMIT
    services: ServicesManager = field(default=None, repr=False)  # type: ignore
    on_update: Callable[[FileTranscriptionJob], Any] | None = field(default=None, repr=False)

    # -------------------------------------------------------------- #
    # Job Execution
    # -------------------------------------------------------------- #

    async def execute(self) -> None:
        """
        Execute the transcription job.

        This will:
        1. Decode the file and plan its segments
        2. Transcribe the segments in barrier-separated waves
        3. Merge results into the transcript after every wave

        Raises:
            DecodeFailure: if the file cannot be decoded
            WaveFailure: if any segment fails; earlier results stay on the job
        """
        if not self.services:
            raise RuntimeError("ServicesManager not provided to FileTranscriptionJob")

        logging_service = self.services.logging_service

        self.progress = TranscriptionConstants.DECODE_PROGRESS
        await self._publish()

        source = await self.services.audio_service_manager.decode(self.data, self.filename)
        segments = plan_segments(source, self.chunk_seconds)

        await logging_service.info(
            f"[{self.job_id}] Decoded {self.filename}: {source.duration:.2f}s, "
            f"{source.sample_rate} Hz, {source.channels} ch, {len(segments)} segments"
        )

        self.mark_transcribing()
        await self._publish()

        results: list[TranscriptionTurn | None] = [None] * len(segments)
        processed = 0

        async def transcribe(segment: Segment) -> TranscriptionTurn:
            return await self._transcribe_segment(source, segment)

        try:
            async for wave in run_in_waves(segments, self.concurrency, transcribe):
                for index, turn in wave:
                    results[index] = turn
                processed += len(wave)

                self.transcription = compile_transcript(results)
                self.progress = compute_progress(
                    processed,
                    len(segments),
                    TranscriptionConstants.DECODE_PROGRESS,
                    TranscriptionConstants.TRANSCRIBE_PROGRESS_SPAN,
                )
                await logging_service.debug(
                    f"[{self.job_id}] {processed}/{len(segments)} segments transcribed"
                )
                await self._publish()
        except WaveFailure as failure:
            # Keep what came back before the failing segment
            for index, turn in failure.completed:
                if index < failure.failed_index:
                    results[index] = turn
            self.transcription = compile_transcript(results)
            await logging_service.error(
                f"[{self.job_id}] Segment {failure.failed_index} failed: {failure}"
            )
            raise

        self.transcription = compile_transcript(results)

    async def _transcribe_segment(self, source: AudioSource, segment: Segment) -> TranscriptionTurn:
        """
        Transcribe one segment.

        Raises:
            SegmentTranscriptionFailure: on an error sentinel or a failed request
        """
        audio_service = self.services.audio_service_manager
        client = self.services.server.transcription_client

        samples = audio_service.extract_segment(source, segment)
        payload = await audio_service.encode_transport_payload(samples, source.sample_rate)

        try:
            text = await client.transcribe(
                payload,
                TranscriptionConstants.TRANSPORT_MIME_TYPE,
                TranscriptionConstants.TRANSCRIBE_INSTRUCTION,
            )
        except SegmentTranscriptionFailure:
            raise
        except Exception as e:
            raise SegmentTranscriptionFailure(
                f"{TranscriptionConstants.ERROR_MARKER} API call failed - {e}", segment.index
            ) from e

        if text.startswith(TranscriptionConstants.ERROR_MARKER):
            raise SegmentTranscriptionFailure(text, segment.index)

        return TranscriptionTurn(
            start_time=segment.start_time,
            end_time=segment.end_time,
            text=text.strip(),
        )

    async def _publish(self) -> None:
        if self.on_update is None:
            return
        result = self.on_update(self)
        if asyncio.iscoroutine(result):
            await result

    # -------------------------------------------------------------- #
    # Serialization
    # -------------------------------------------------------------- #

    def to_dict(self) -> dict:
        """Snapshot of the job for observers."""
        return {
            "job_id": self.job_id,
            "filename": self.filename,
            "status": self.status.value,
            "progress": self.progress,
            "transcription": [turn.to_dict() for turn in self.transcription],
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "metadata": self.metadata,
        }


def _validate_job_settings(chunk_seconds: float, concurrency: int) -> None:
    if chunk_seconds <= 0:
        raise ValueError("chunk_seconds must be positive")
    if concurrency <= 0:
        raise ValueError("concurrency must be at least 1")


class TranscriptionJobManagerService(BaseTranscriptionJobManagerService):
    """
    Service for managing the file transcription job queue.

    Submitted files become FileTranscriptionJobs in the Queued state. A
    single worker claims them in submission order, so exactly one job is
    active at any time.
    """

    def __init__(
        self,
        context: Context,
        chunk_seconds: float = TranscriptionConstants.CHUNK_SIZE_SECONDS,
        concurrency: int = TranscriptionConstants.CONCURRENCY_LIMIT,
    ):
        """
        Initialize the transcription job manager.

        Args:
            context: Application context
            chunk_seconds: Default segment length for new jobs
            concurrency: Default wave size for new jobs
        """
        super().__init__(context)
        _validate_job_settings(chunk_seconds, concurrency)

        self.chunk_seconds = chunk_seconds
        self.concurrency = concurrency

        self._job_queue: JobQueue[FileTranscriptionJob] | None = None
        self._jobs: dict[str, FileTranscriptionJob] = {}
        self._listeners: list[Callable[[FileTranscriptionJob], Any]] = []
        self._finished_events: dict[str, asyncio.Event] = {}

    async def on_start(self, services: ServicesManager) -> None:
        """
        Initialize the transcription job manager.

        Args:
            services: Services manager instance
        """
        await super().on_start(services)

        self._job_queue = JobQueue[FileTranscriptionJob](
            on_job_started=self._on_job_started,
            on_job_complete=self._on_job_complete,
            on_job_failed=self._on_job_failed,
        )

        await self.services.logging_service.info(
            f"Transcription Job Manager initialized (chunk={self.chunk_seconds}s, "
            f"concurrency={self.concurrency})"
        )

    async def on_close(self) -> None:
        """Cleanup when service is shutting down."""
        if self._job_queue and self._job_queue.is_running():
            await self.services.logging_service.info(
                "Shutting down transcription job queue, waiting for current job to complete..."
            )
            await self._job_queue.stop(wait_for_completion=True)

        await super().on_close()

    # -------------------------------------------------------------- #
    # Submission
    # -------------------------------------------------------------- #

    async def submit_audio(
        self,
        filename: str,
        data: bytes,
        chunk_seconds: float | None = None,
        concurrency: int | None = None,
    ) -> str:
        """
        Create a job for in-memory audio and add it to the queue.

        Args:
            filename: Display name of the audio
            data: Raw container bytes
            chunk_seconds: Segment length override for this job
            concurrency: Wave size override for this job

        Returns:
            The job ID of the created job

        Raises:
            ValueError: if an override is not positive
        """
        if self._job_queue is None:
            raise RuntimeError("Transcription job manager has not been started")

        if chunk_seconds is None:
            chunk_seconds = self.chunk_seconds
        if concurrency is None:
            concurrency = self.concurrency
        _validate_job_settings(chunk_seconds, concurrency)

        job = FileTranscriptionJob(
            job_id=generate_job_id(filename),
            filename=os.path.basename(filename),
            data=data,
            chunk_seconds=chunk_seconds,
            concurrency=concurrency,
            services=self.services,
            on_update=self._publish,
            metadata={"size_bytes": len(data)},
        )

        self._jobs[job.job_id] = job
        self._finished_events[job.job_id] = asyncio.Event()
        await self._publish(job)

        # Add job to queue (this will auto-start the worker if needed)
        await self._job_queue.add_job(job)

        await self.services.logging_service.info(
            f"Queued transcription job {job.job_id} for {job.filename} ({len(data)} bytes)"
        )
        return job.job_id

    async def submit_files(
        self,
        paths: list[str],
        chunk_seconds: float | None = None,
        concurrency: int | None = None,
    ) -> list[str]:
        """
        Read each file and queue one job per path, in the given order.

        Raises:
            OSError: if a file cannot be read; files before it stay queued
        """
        job_ids = []
        for path in paths:
            async with aiofiles.open(path, mode="rb") as f:
                data = await f.read()
            job_ids.append(await self.submit_audio(path, data, chunk_seconds, concurrency))
        return job_ids

    # -------------------------------------------------------------- #
    # Observation
    # -------------------------------------------------------------- #

    def get_job(self, job_id: str) -> FileTranscriptionJob | None:
        """Get a job by its ID."""
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[FileTranscriptionJob]:
        """All known jobs in submission order."""
        return list(self._jobs.values())

    async def get_job_status(self, job_id: str) -> dict:
        """
        Get the status of a specific job.

        Args:
            job_id: ID of the job to query

        Returns:
            Dictionary with job status information
        """
        job = self._jobs.get(job_id)
        if job is None:
            return {"error": "Job not found"}
        return job.to_dict()

    async def get_queue_statistics(self) -> dict:
        """
        Get statistics about the job queue.

        Returns:
            Dictionary with queue statistics
        """
        if not self._job_queue:
            return {"error": "Job queue not initialized"}

        stats = self._job_queue.get_statistics()
        stats["known_jobs_count"] = len(self._jobs)
        stats["queued_jobs_count"] = sum(
            1 for job in self._jobs.values() if job.status == JobStatus.QUEUED
        )
        return stats

    def add_listener(self, callback: Callable[[FileTranscriptionJob], Any]) -> None:
        """Register a sync or async callback invoked whenever a job changes."""
        self._listeners.append(callback)

    def clear_finished_jobs(self) -> int:
        """Forget Done and Error jobs. Returns how many were removed."""
        finished = [job_id for job_id, job in self._jobs.items() if job.status.is_terminal]
        for job_id in finished:
            del self._jobs[job_id]
            self._finished_events.pop(job_id, None)
        return len(finished)

    async def wait_for_job(self, job_id: str) -> FileTranscriptionJob:
        """Wait until a job reaches Done or Error."""
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        event = self._finished_events[job_id]
        await event.wait()
        return job

    async def wait_until_idle(self) -> None:
        """Wait until every submitted job has finished."""
        if self._job_queue:
            await self._job_queue.wait_until_empty()

    # -------------------------------------------------------------- #
    # Job Queue Callbacks
    # -------------------------------------------------------------- #

    async def _on_job_started(self, job: FileTranscriptionJob) -> None:
        await self.services.logging_service.info(
            f"Started transcription job {job.job_id} ({job.filename})"
        )
        await self._publish(job)

    async def _on_job_complete(self, job: FileTranscriptionJob) -> None:
        job.progress = TranscriptionConstants.DONE_PROGRESS
        job.data = b""
        await self.services.logging_service.info(
            f"Completed transcription job {job.job_id}: {len(job.transcription)} turns"
        )
        await self._publish(job)
        self._mark_finished(job)

    async def _on_job_failed(self, job: FileTranscriptionJob) -> None:
        # The partial transcript stays visible alongside the error
        job.progress = 0
        job.data = b""
        await self.services.logging_service.error(
            f"Transcription job {job.job_id} failed: {job.error_message}"
        )
        await self._publish(job)
        self._mark_finished(job)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    def _mark_finished(self, job: FileTranscriptionJob) -> None:
        event = self._finished_events.get(job.job_id)
        if event is not None:
            event.set()

    async def _publish(self, job: FileTranscriptionJob) -> None:
        """Notify listeners of a job change; listener errors are logged only."""
        for callback in list(self._listeners):
            try:
                result = callback(job)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                await self.services.logging_service.error(
                    f"Job listener failed for {job.job_id}: {type(e).__name__}: {e}"
                )
