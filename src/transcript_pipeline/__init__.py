"""Lease-based task queue driving the audio transcription and proofreading pipeline."""

__version__ = "0.1.0"
