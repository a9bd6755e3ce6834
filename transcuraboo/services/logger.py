import asyncio
import contextlib
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from transcuraboo.context import Context

from transcuraboo.services.manager import BaseAsyncLoggingService

_KNOWN_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class LogEntry:
    """One queued log message."""

    level: str
    message: str
    created: datetime = field(default_factory=datetime.now)

    @property
    def severity(self) -> int:
        return logging.getLevelName(self.level) if self.level in _KNOWN_LEVELS else logging.INFO

    def format(self) -> str:
        return f"[{self.created.isoformat()}] [{self.level}] {self.message}"


# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """
    Queued logger shared by every service.

    Entries are queued by the callers and written by one background task,
    which appends everything pending in a single file write. Once the
    writer is stopped, entries are written directly so messages from late
    shutdown steps still reach the file.
    """

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "DEBUG",
    ):
        """
        Args:
            context: Application context
            log_dir: Directory of the log file
            log_file: File name; defaults to "transcuraboo_<timestamp>.log",
                or "transcuraboo.log" when use_timestamp is False
            use_timestamp: Whether the default file name carries a timestamp
            console_output: Echo entries to stdout, or stderr for WARNING and up
            min_level: Entries below this level are dropped
        """
        super().__init__(context)
        self.console_output = console_output
        self.min_level = LogEntry(min_level.upper(), "").severity

        if log_file is None:
            log_file = "transcuraboo.log"
            if use_timestamp:
                log_file = f"transcuraboo_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        self.log_file = log_file
        self.log_path = Path(log_dir) / log_file

        self._queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._run_writer())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Let the writer catch up, stop it, then write whatever is still queued."""
        await super().on_close()

        writer, self._writer_task = self._writer_task, None
        if writer is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._queue.join(), timeout=2.0)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer

        remaining = self._take_pending()
        if remaining:
            await self._write(remaining)

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    async def log(self, message: str, level: str = "INFO") -> None:
        entry = LogEntry(level.upper(), message)
        if entry.severity < self.min_level:
            return

        if self._writer_task is None:
            await self._write([entry])
        else:
            self._queue.put_nowait(entry)

    async def debug(self, message: str) -> None:
        await self.log(message, "DEBUG")

    async def info(self, message: str) -> None:
        await self.log(message, "INFO")

    async def warning(self, message: str) -> None:
        await self.log(message, "WARNING")

    async def error(self, message: str) -> None:
        await self.log(message, "ERROR")

    async def critical(self, message: str) -> None:
        await self.log(message, "CRITICAL")

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _run_writer(self) -> None:
        while True:
            batch = [await self._queue.get()]
            batch.extend(self._take_pending(mark_done=False))
            try:
                await self._write(batch)
            finally:
                for _ in batch:
                    self._queue.task_done()

    def _take_pending(self, mark_done: bool = True) -> list[LogEntry]:
        entries = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return entries
            if mark_done:
                self._queue.task_done()

    async def _write(self, entries: list[LogEntry]) -> None:
        lines = [entry.format() for entry in entries]

        if self.console_output:
            for entry, line in zip(entries, lines):
                stream = sys.stderr if entry.severity >= logging.WARNING else sys.stdout
                print(line, file=stream, flush=True)

        try:
            async with aiofiles.open(self.log_path, mode="a", encoding="utf-8") as f:
                await f.write("\n".join(lines) + "\n")
        except OSError as e:
            print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)
