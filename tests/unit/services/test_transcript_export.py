"""
Unit tests for the Transcript Export Manager Service.
"""

import json

import pytest

from transcuraboo.services.transcript_export_manager.manager import (
    format_clock_timestamp,
    format_srt_timestamp,
)
from transcuraboo.services.transcription_job_manager.compiler import TranscriptionTurn

TURNS = [
    TranscriptionTurn(0.0, 20.0, "Magandang umaga everyone."),
    TranscriptionTurn(20.0, 47.25, "Let's start the standup."),
]


@pytest.fixture
def exporter(services_manager):
    return services_manager.transcript_export_manager


@pytest.mark.unit
class TestTranscriptRendering:
    """Test the export formats."""

    def test_txt(self, exporter):
        """Plain text lists each turn with its start time."""
        text = exporter.render(TURNS, "txt")

        assert text == (
            "[00:00:00] Magandang umaga everyone.\n" "[00:00:20] Let's start the standup."
        )

    def test_srt(self, exporter):
        """SubRip output numbers cues and carries both time bounds."""
        srt = exporter.render(TURNS, "SRT")

        assert srt.split("\n\n")[1] == (
            "2\n00:00:20,000 --> 00:00:47,250\nLet's start the standup.\n"
        )
        assert srt.startswith("1\n00:00:00,000 --> 00:00:20,000\n")

    def test_json(self, exporter):
        data = json.loads(exporter.render(TURNS, "json"))

        assert data[1] == {"start_time": 20.0, "end_time": 47.25, "text": "Let's start the standup."}

    def test_unknown_format(self, exporter):
        with pytest.raises(ValueError):
            exporter.render(TURNS, "docx")

    def test_timestamps(self):
        assert format_clock_timestamp(3725.9) == "01:02:05"
        assert format_srt_timestamp(59.9996) == "00:01:00,000"
        assert format_srt_timestamp(-1) == "00:00:00,000"


@pytest.mark.unit
class TestTranscriptExport:
    """Test writing transcript files."""

    async def test_export_writes_file(self, exporter, tmp_path):
        """The file is named after the source without its extension."""
        # Act
        path = await exporter.export(TURNS, "/recordings/team standup.m4a", "srt")

        # Assert
        assert path == str(tmp_path / "exports" / "team_standup.srt")
        with open(path, encoding="utf-8") as f:
            assert f.read() == exporter.render(TURNS, "srt")

    async def test_export_empty_name(self, exporter, tmp_path):
        path = await exporter.export([], "", "txt")

        assert path == str(tmp_path / "exports" / "transcript.txt")
