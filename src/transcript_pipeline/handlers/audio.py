"""Handlers for the audio stages: save, convert and split."""

from __future__ import annotations

import logging
from typing import Any

from transcript_pipeline.audio import AudioProcessor, plan_segments
from transcript_pipeline.blobs import BlobStorage
from transcript_pipeline.errors import BlobNotFoundError
from transcript_pipeline.queue.models import TaskType

logger = logging.getLogger(__name__)

CONVERTED_NAME = "converted.flac"


def segment_path(prefix: str, index: int) -> str:
    return f"{prefix}/segments/segment_{index}.flac"


class SaveFileHandler:
    """Upload already stored the blob; confirm it and pass the path on."""

    task_type = TaskType.SAVE_FILE

    def __init__(self, *, blobs: BlobStorage) -> None:
        self.blobs = blobs

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        file_path = input_data["file_path"]
        if not self.blobs.exists(file_path):
            raise BlobNotFoundError(file_path)
        return {"file_path": file_path}


class ConvertAudioHandler:
    task_type = TaskType.CONVERT_AUDIO

    def __init__(self, *, blobs: BlobStorage, processor: AudioProcessor) -> None:
        self.blobs = blobs
        self.processor = processor

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        source = self.blobs.read(input_data["file_path"])
        converted = self.processor.convert(source)
        target = f"{input_data['storage_prefix']}/{CONVERTED_NAME}"
        self.blobs.write(target, converted)
        logger.info(
            "Converted %s -> %s (%d bytes)",
            input_data["file_path"],
            target,
            len(converted),
        )
        return {"file_path": target}


class SplitAudioHandler:
    """Cut the normalized audio into overlapping segments, one blob per segment."""

    task_type = TaskType.SPLIT_AUDIO

    def __init__(
        self,
        *,
        blobs: BlobStorage,
        processor: AudioProcessor,
        max_segment_seconds: float,
        overlap_seconds: float,
    ) -> None:
        self.blobs = blobs
        self.processor = processor
        self.max_segment_seconds = max_segment_seconds
        self.overlap_seconds = overlap_seconds

    def execute(self, input_data: dict[str, Any]) -> dict[str, Any]:
        prefix = input_data["storage_prefix"]
        audio = self.blobs.read(input_data["file_path"])
        duration = self.processor.probe_duration(audio)
        windows = plan_segments(duration, self.max_segment_seconds, self.overlap_seconds)

        segments = []
        for window in windows:
            path = segment_path(prefix, window.index)
            self.blobs.write(path, self.processor.cut(audio, window.start, window.length))
            segments.append(
                {
                    "path": path,
                    "index": window.index,
                    "start": window.start,
                    "duration": window.length,
                },
            )
        logger.info("Split %.1fs of audio into %d segment(s)", duration, len(segments))
        return {"segments": segments, "total_duration": duration}
