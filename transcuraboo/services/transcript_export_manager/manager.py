from __future__ import annotations

import asyncio
import json
import os
import re
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from transcuraboo.context import Context

from transcuraboo.services.manager import BaseTranscriptExportServiceManager
from transcuraboo.services.transcription_job_manager.compiler import TranscriptionTurn

# -------------------------------------------------------------- #
# Renderers
# -------------------------------------------------------------- #


def format_clock_timestamp(total_seconds: float) -> str:
    """HH:MM:SS, truncating fractional seconds."""
    total = max(0, int(total_seconds))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_srt_timestamp(total_seconds: float) -> str:
    """HH:MM:SS,mmm as used by SubRip cues."""
    total_ms = max(0, int(round(total_seconds * 1000)))
    total, milliseconds = divmod(total_ms, 1000)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{milliseconds:03d}"


def render_txt(turns: list[TranscriptionTurn]) -> str:
    return "\n".join(f"[{format_clock_timestamp(t.start_time)}] {t.text}" for t in turns)


def render_srt(turns: list[TranscriptionTurn]) -> str:
    cues = []
    for number, turn in enumerate(turns, start=1):
        start = format_srt_timestamp(turn.start_time)
        end = format_srt_timestamp(turn.end_time)
        cues.append(f"{number}\n{start} --> {end}\n{turn.text}\n")
    return "\n".join(cues)


def render_json(turns: list[TranscriptionTurn]) -> str:
    return json.dumps([turn.to_dict() for turn in turns], indent=2, ensure_ascii=False)


RENDERERS = {
    "txt": render_txt,
    "srt": render_srt,
    "json": render_json,
}

# -------------------------------------------------------------- #
# Transcript Export Manager Service
# -------------------------------------------------------------- #


class TranscriptExportManagerService(BaseTranscriptExportServiceManager):
    """Service that writes finished transcripts as TXT, SRT or JSON files."""

    def __init__(self, context: Context, export_path: str):
        super().__init__(context)
        self.export_path = export_path

    async def on_start(self, services):
        await super().on_start(services)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: os.makedirs(self.export_path, exist_ok=True))

        await self.services.logging_service.info(
            f"TranscriptExportManagerService initialized with export path: {self.export_path}"
        )

    async def on_close(self):
        await self.services.logging_service.info("TranscriptExportManagerService closed")

    # -------------------------------------------------------------- #
    # Export Methods
    # -------------------------------------------------------------- #

    def render(self, turns: list[TranscriptionTurn], export_format: str) -> str:
        """
        Render turns in an export format.

        Raises:
            ValueError: if the format is not one of txt, srt or json
        """
        renderer = RENDERERS.get(export_format.lower())
        if renderer is None:
            raise ValueError(
                f"Unsupported export format {export_format!r}; "
                f"expected one of {', '.join(RENDERERS)}"
            )
        return renderer(turns)

    async def export(
        self, turns: list[TranscriptionTurn], name: str, export_format: str = "txt"
    ) -> str:
        """
        Write turns to ``<export_path>/<name>.<format>``.

        The name is reduced to its base name without extension, so a source
        file name can be passed directly.

        Returns:
            Path of the written file
        """
        content = self.render(turns, export_format)
        file_path = os.path.join(
            self.export_path, f"{self._build_stem(name)}.{export_format.lower()}"
        )

        async with aiofiles.open(file_path, mode="w", encoding="utf-8") as f:
            await f.write(content)

        await self.services.logging_service.info(
            f"Exported {len(turns)} turns to {file_path}"
        )
        return file_path

    @staticmethod
    def _build_stem(name: str) -> str:
        stem = os.path.splitext(os.path.basename(name))[0]
        stem = re.sub(r"[^\w.-]+", "_", stem).strip("._")
        return stem or "transcript"
