"""Wires settings into repository, blob storage, providers, dispatcher and reaper."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass

from transcript_pipeline.audio import AudioProcessor, FfmpegAudioProcessor
from transcript_pipeline.blobs import BlobStorage, LocalBlobStorage
from transcript_pipeline.config import Settings
from transcript_pipeline.handlers import build_handler_registry
from transcript_pipeline.pipeline.service import PipelineService
from transcript_pipeline.providers import (
    GeminiProofreader,
    GroqWhisperProvider,
    ProofreadingProvider,
    SpeechToTextProvider,
)
from transcript_pipeline.queue.flow import SuccessorResolver
from transcript_pipeline.queue.reaper import StuckTaskReaper
from transcript_pipeline.queue.repository import TaskRepository
from transcript_pipeline.queue.worker import TaskDispatcher


@dataclass(slots=True)
class PipelineRuntime:
    """Everything an entrypoint (HTTP or CLI) needs for one process."""

    settings: Settings
    repository: TaskRepository
    blobs: BlobStorage
    service: PipelineService
    dispatcher: TaskDispatcher
    reaper: StuckTaskReaper


@contextmanager
def open_runtime(
    settings: Settings,
    *,
    stt: SpeechToTextProvider | None = None,
    proofreader: ProofreadingProvider | None = None,
    audio_processor: AudioProcessor | None = None,
    blobs: BlobStorage | None = None,
) -> Iterator[PipelineRuntime]:
    """Build a runtime with a migrated database; providers default to Groq and Gemini."""

    settings.validate()
    if stt is None or proofreader is None:
        settings.validate_for_providers()
    resolver = SuccessorResolver(max_retries=settings.queue.max_retries)
    with ExitStack() as stack:
        repository = TaskRepository(
            settings.db_path,
            busy_timeout_ms=settings.queue.busy_timeout_ms,
        )
        stack.callback(repository.close)
        repository.init_schema()

        if blobs is None:
            blobs = LocalBlobStorage(settings.storage.root_dir)
        if stt is None:
            stt = stack.enter_context(
                GroqWhisperProvider(
                    api_key=settings.providers.groq_api_key,
                    base_url=settings.providers.groq_base_url,
                    model=settings.providers.groq_model,
                    timeout_seconds=settings.providers.request_timeout_seconds,
                ),
            )
        if proofreader is None:
            proofreader = stack.enter_context(
                GeminiProofreader(
                    api_key=settings.providers.gemini_api_key,
                    base_url=settings.providers.gemini_base_url,
                    model=settings.providers.gemini_model,
                    temperature=settings.providers.gemini_temperature,
                    max_output_tokens=settings.providers.gemini_max_output_tokens,
                    timeout_seconds=settings.providers.request_timeout_seconds,
                ),
            )
        if audio_processor is None:
            audio_processor = FfmpegAudioProcessor(
                ffmpeg_binary=settings.audio.ffmpeg_binary,
                ffprobe_binary=settings.audio.ffprobe_binary,
                sample_rate=settings.audio.sample_rate,
                timeout_seconds=settings.audio.command_timeout_seconds,
            )

        handlers = build_handler_registry(
            settings=settings,
            blobs=blobs,
            audio_processor=audio_processor,
            stt=stt,
            proofreader=proofreader,
        )
        yield PipelineRuntime(
            settings=settings,
            repository=repository,
            blobs=blobs,
            service=PipelineService(
                repository=repository,
                blobs=blobs,
                max_retries=settings.queue.max_retries,
            ),
            dispatcher=TaskDispatcher(
                repository=repository,
                handlers=handlers,
                resolver=resolver,
                worker_id=settings.queue.worker_id,
                lease_seconds=settings.queue.lease_seconds,
            ),
            reaper=StuckTaskReaper(repository=repository, resolver=resolver),
        )
