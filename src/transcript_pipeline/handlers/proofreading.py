"""Text fan-out, LLM proofreading and the final merge."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from transcript_pipeline.handlers.transcription import ordered_texts
from transcript_pipeline.pipeline.chunking import chunk_text
from transcript_pipeline.providers.base import ProofreadingProvider, TokenUsage
from transcript_pipeline.queue.models import TaskType


class SplitTextHandler:
    task_type = TaskType.SPLIT_TEXT

    def __init__(self, *, max_chunk_chars: int) -> None:
        self.max_chunk_chars = max_chunk_chars

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        return {"chunks": chunk_text(str(input_data.get("text", "")), self.max_chunk_chars)}


class ProofreadHandler:
    """Proofreads one chunk; token usage is reported with the output of this call only."""

    task_type = TaskType.PROOFREAD

    def __init__(self, *, provider: ProofreadingProvider) -> None:
        self.provider = provider

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        result = self.provider.proofread(
            str(input_data["text"]),
            chunk_index=int(input_data["chunk_index"]),
            total_chunks=int(input_data["total_chunks"]),
            context=input_data.get("context"),
        )
        return {"text": result.text, "usage": asdict(result.usage)}


class MergeProofreadsHandler:
    """Joins proofread chunks and totals the token usage of the job's proofread calls."""

    task_type = TaskType.MERGE_PROOFREADS

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        parts = list(input_data.get("parts", []))
        final_text = "\n\n".join(text for text in ordered_texts(parts) if text)
        usage = TokenUsage()
        for part in parts:
            if part.get("usage"):
                usage = usage + TokenUsage(**part["usage"])
        return {"final_text": final_text, "parts_count": len(parts), "usage": asdict(usage)}
