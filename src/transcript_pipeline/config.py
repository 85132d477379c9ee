"""Runtime configuration for the task queue, storage, audio and providers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

BYTES_PER_SAMPLE = 2


@dataclass(slots=True)
class QueueSettings:
    """Lease and retry policy shared by dispatcher and reaper."""

    lease_seconds: int = 300
    max_retries: int = 3
    worker_id: str = "dispatcher"
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class StorageSettings:
    """Blob storage location."""

    root_dir: Path = Path(".transcript_pipeline_blobs")


@dataclass(slots=True)
class AudioSettings:
    """Audio normalization and segmentation settings."""

    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    sample_rate: int = 16_000
    max_segment_bytes: int = 20 * 1024 * 1024
    overlap_seconds: float = 10.0
    command_timeout_seconds: float = 600.0

    @property
    def max_segment_seconds(self) -> float:
        """Approximate segment duration that keeps a mono FLAC under the size cap."""

        return self.max_segment_bytes / (self.sample_rate * BYTES_PER_SAMPLE)


@dataclass(slots=True)
class TextSettings:
    """Proofreading chunk settings."""

    max_chunk_chars: int = 4_000


@dataclass(slots=True)
class ProviderSettings:
    """External speech-to-text and proofreading provider settings."""

    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "whisper-large-v3-turbo"
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1"
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.1
    gemini_max_output_tokens: int = 8_192
    request_timeout_seconds: float = 120.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".transcript_pipeline.db")
    queue: QueueSettings = field(default_factory=QueueSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    text: TextSettings = field(default_factory=TextSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("TRANSCRIPT_PIPELINE_DB_PATH", ".transcript_pipeline.db")),
            queue=QueueSettings(
                lease_seconds=int(os.getenv("TRANSCRIPT_PIPELINE_LEASE_SECONDS", "300")),
                max_retries=int(os.getenv("TRANSCRIPT_PIPELINE_MAX_RETRIES", "3")),
                worker_id=os.getenv("TRANSCRIPT_PIPELINE_WORKER_ID", "dispatcher"),
                busy_timeout_ms=int(os.getenv("TRANSCRIPT_PIPELINE_BUSY_TIMEOUT_MS", "5000")),
            ),
            storage=StorageSettings(
                root_dir=Path(
                    os.getenv("TRANSCRIPT_PIPELINE_STORAGE_ROOT", ".transcript_pipeline_blobs"),
                ),
            ),
            audio=AudioSettings(
                ffmpeg_binary=os.getenv("TRANSCRIPT_PIPELINE_FFMPEG_BINARY", "ffmpeg"),
                ffprobe_binary=os.getenv("TRANSCRIPT_PIPELINE_FFPROBE_BINARY", "ffprobe"),
                sample_rate=int(os.getenv("TRANSCRIPT_PIPELINE_SAMPLE_RATE", "16000")),
                max_segment_bytes=int(
                    os.getenv("TRANSCRIPT_PIPELINE_MAX_SEGMENT_BYTES", str(20 * 1024 * 1024)),
                ),
                overlap_seconds=float(os.getenv("TRANSCRIPT_PIPELINE_OVERLAP_SECONDS", "10")),
                command_timeout_seconds=float(
                    os.getenv("TRANSCRIPT_PIPELINE_AUDIO_COMMAND_TIMEOUT_SECONDS", "600"),
                ),
            ),
            text=TextSettings(
                max_chunk_chars=int(os.getenv("TRANSCRIPT_PIPELINE_MAX_CHUNK_CHARS", "4000")),
            ),
            providers=ProviderSettings(
                groq_api_key=os.getenv("GROQ_API_KEY", ""),
                groq_base_url=os.getenv(
                    "TRANSCRIPT_PIPELINE_GROQ_BASE_URL",
                    "https://api.groq.com/openai/v1",
                ),
                groq_model=os.getenv("TRANSCRIPT_PIPELINE_GROQ_MODEL", "whisper-large-v3-turbo"),
                gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
                gemini_base_url=os.getenv(
                    "TRANSCRIPT_PIPELINE_GEMINI_BASE_URL",
                    "https://generativelanguage.googleapis.com/v1",
                ),
                gemini_model=os.getenv("TRANSCRIPT_PIPELINE_GEMINI_MODEL", "gemini-2.0-flash"),
                gemini_temperature=float(
                    os.getenv("TRANSCRIPT_PIPELINE_GEMINI_TEMPERATURE", "0.1"),
                ),
                gemini_max_output_tokens=int(
                    os.getenv("TRANSCRIPT_PIPELINE_GEMINI_MAX_OUTPUT_TOKENS", "8192"),
                ),
                request_timeout_seconds=float(
                    os.getenv("TRANSCRIPT_PIPELINE_REQUEST_TIMEOUT_SECONDS", "120"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if queue, audio or text settings are inconsistent."""

        if self.queue.lease_seconds <= 0:
            raise ValueError("TRANSCRIPT_PIPELINE_LEASE_SECONDS must be > 0.")
        if self.queue.max_retries < 0:
            raise ValueError("TRANSCRIPT_PIPELINE_MAX_RETRIES must be >= 0.")
        if not self.queue.worker_id.strip():
            raise ValueError("TRANSCRIPT_PIPELINE_WORKER_ID must not be empty.")
        if self.audio.sample_rate <= 0:
            raise ValueError("TRANSCRIPT_PIPELINE_SAMPLE_RATE must be > 0.")
        if self.audio.max_segment_bytes <= 0:
            raise ValueError("TRANSCRIPT_PIPELINE_MAX_SEGMENT_BYTES must be > 0.")
        if self.audio.overlap_seconds < 0:
            raise ValueError("TRANSCRIPT_PIPELINE_OVERLAP_SECONDS must be >= 0.")
        if self.audio.overlap_seconds >= self.audio.max_segment_seconds:
            raise ValueError(
                "TRANSCRIPT_PIPELINE_OVERLAP_SECONDS must be shorter than the segment duration "
                f"({self.audio.max_segment_seconds:.1f}s).",
            )
        if self.text.max_chunk_chars <= 0:
            raise ValueError("TRANSCRIPT_PIPELINE_MAX_CHUNK_CHARS must be > 0.")

    def validate_for_providers(self) -> None:
        """Raise configuration error if external provider credentials are missing."""

        missing = [
            name
            for name, value in (
                ("GROQ_API_KEY", self.providers.groq_api_key),
                ("GEMINI_API_KEY", self.providers.gemini_api_key),
            )
            if not value.strip()
        ]
        if missing:
            raise ValueError(f"Missing provider credentials: {', '.join(missing)}.")
