"""Transcuraboo: chunked batch and real-time speech transcription."""

__version__ = "0.1.0"
