"""Speech-to-text fan-out and its merge."""

from __future__ import annotations

from typing import Any

from transcript_pipeline.blobs import BlobStorage
from transcript_pipeline.providers.base import SpeechToTextProvider
from transcript_pipeline.queue.models import TaskType


def ordered_texts(parts: list[dict[str, Any]]) -> list[str]:
    """Part texts in sequence order, whatever order the siblings completed in.

    Parts of failed siblings are skipped.
    """

    ordered = sorted(parts, key=lambda part: int(part.get("sequence_order") or 0))
    return [str(part.get("text", "")).strip() for part in ordered if not part.get("failed")]


class TranscribeHandler:
    task_type = TaskType.TRANSCRIBE

    def __init__(self, *, blobs: BlobStorage, provider: SpeechToTextProvider) -> None:
        self.blobs = blobs
        self.provider = provider

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        audio = self.blobs.read(input_data["segment_path"])
        result = self.provider.transcribe(audio, language=input_data.get("language"))
        return result.to_dict()


class MergeTranscriptionsHandler:
    task_type = TaskType.MERGE_TRANSCRIPTIONS

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        parts = list(input_data.get("parts", []))
        merged = " ".join(text for text in ordered_texts(parts) if text)
        return {"merged_text": merged, "parts_count": len(parts)}
