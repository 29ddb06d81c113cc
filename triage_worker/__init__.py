"""Transcribe recordings, sort sentences into important/noise/uncertain, export reviewed notes."""

__version__ = "1.0.0"
