"""Task handlers, one per pipeline stage."""

from __future__ import annotations

from transcript_pipeline.audio import AudioProcessor
from transcript_pipeline.blobs import BlobStorage
from transcript_pipeline.config import Settings
from transcript_pipeline.handlers.audio import (
    ConvertAudioHandler,
    SaveFileHandler,
    SplitAudioHandler,
)
from transcript_pipeline.handlers.base import HandlerRegistry, TaskHandler
from transcript_pipeline.handlers.cleanup import CleanupHandler
from transcript_pipeline.handlers.proofreading import (
    MergeProofreadsHandler,
    ProofreadHandler,
    SplitTextHandler,
)
from transcript_pipeline.handlers.transcription import (
    MergeTranscriptionsHandler,
    TranscribeHandler,
)
from transcript_pipeline.providers.base import ProofreadingProvider, SpeechToTextProvider


def build_handler_registry(
    *,
    settings: Settings,
    blobs: BlobStorage,
    audio_processor: AudioProcessor,
    stt: SpeechToTextProvider,
    proofreader: ProofreadingProvider,
) -> HandlerRegistry:
    """Wire every stage handler to its collaborators."""

    return HandlerRegistry(
        [
            SaveFileHandler(blobs=blobs),
            ConvertAudioHandler(blobs=blobs, processor=audio_processor),
            SplitAudioHandler(
                blobs=blobs,
                processor=audio_processor,
                max_segment_seconds=settings.audio.max_segment_seconds,
                overlap_seconds=settings.audio.overlap_seconds,
            ),
            TranscribeHandler(blobs=blobs, provider=stt),
            MergeTranscriptionsHandler(),
            SplitTextHandler(max_chunk_chars=settings.text.max_chunk_chars),
            ProofreadHandler(provider=proofreader),
            MergeProofreadsHandler(),
            CleanupHandler(blobs=blobs),
        ],
    )


__all__ = [
    "HandlerRegistry",
    "TaskHandler",
    "build_handler_registry",
]
