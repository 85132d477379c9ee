"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from functools import partial
from pathlib import Path

import pytest

from transcript_pipeline.config import AudioSettings, Settings, StorageSettings, TextSettings
from transcript_pipeline.pipeline.runtime import PipelineRuntime, open_runtime
from transcript_pipeline.providers.base import ProofreadResult, TokenUsage, TranscriptionResult
from transcript_pipeline.queue.models import JobCreate, TaskCreate, TaskType
from transcript_pipeline.queue.repository import TaskRepository

# 10 seconds of 16 kHz mono 16-bit audio.
TEN_SECOND_SEGMENT_BYTES = 16_000 * 2 * 10


class FakeAudioProcessor:
    """Audio stand-in: fixed duration, each cut encodes its start second as text."""

    def __init__(self, duration: float = 25.0) -> None:
        self.duration = duration
        self.cuts: list[tuple[float, float]] = []

    def convert(self, data: bytes) -> bytes:
        return b"flac:" + data

    def probe_duration(self, data: bytes) -> float:
        return self.duration

    def cut(self, data: bytes, start: float, length: float) -> bytes:
        self.cuts.append((start, length))
        return f"Sentence {int(start)}.".encode()


class FakeSpeechToText:
    """Transcribes by decoding the segment bytes."""

    def __init__(self) -> None:
        self.languages: list[str | None] = []

    def transcribe(self, audio: bytes, *, language: str | None = None) -> TranscriptionResult:
        self.languages.append(language)
        return TranscriptionResult(text=audio.decode(), language=language or "en")


class FakeProofreader:
    """Upper-cases each chunk and reports fixed token usage."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, int, str | None]] = []

    def proofread(
        self,
        text: str,
        *,
        chunk_index: int,
        total_chunks: int,
        context: str | None = None,
    ) -> ProofreadResult:
        self.calls.append((chunk_index, total_chunks, context))
        return ProofreadResult(
            text=text.upper(),
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "pipeline.db",
        storage=StorageSettings(root_dir=tmp_path / "blobs"),
        audio=AudioSettings(max_segment_bytes=TEN_SECOND_SEGMENT_BYTES, overlap_seconds=1.0),
        text=TextSettings(max_chunk_chars=20),
    )


@pytest.fixture()
def audio_processor() -> FakeAudioProcessor:
    return FakeAudioProcessor()


@pytest.fixture()
def stt() -> FakeSpeechToText:
    return FakeSpeechToText()


@pytest.fixture()
def proofreader() -> FakeProofreader:
    return FakeProofreader()


@pytest.fixture()
def runtime(
    settings: Settings,
    audio_processor: FakeAudioProcessor,
    stt: FakeSpeechToText,
    proofreader: FakeProofreader,
) -> Iterator[PipelineRuntime]:
    with open_runtime(
        settings,
        stt=stt,
        proofreader=proofreader,
        audio_processor=audio_processor,
    ) as opened:
        yield opened


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "queue.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


def seed_job(
    repository: TaskRepository,
    *,
    job_id: str = "job-1",
    first_task_id: str = "task-save",
    max_retries: int = 3,
) -> None:
    """Create a job whose SAVE_FILE task is pending."""

    repository.create_job(
        JobCreate(
            job_id=job_id,
            original_filename="talk.wav",
            storage_path=f"jobs/1-{job_id}.wav/original",
            preferred_language="he",
            proofreading_context="medical lecture",
        ),
        first_task=TaskCreate(
            job_id=job_id,
            task_type=TaskType.SAVE_FILE,
            task_id=first_task_id,
            input_data={
                "file_path": f"jobs/1-{job_id}.wav/original",
                "storage_prefix": f"jobs/1-{job_id}.wav",
            },
            max_retries=max_retries,
        ),
    )


@pytest.fixture()
def make_job(repository: TaskRepository) -> Callable[..., None]:
    return partial(seed_job, repository)
