"""Audio normalization, probing and segmentation via ffmpeg/ffprobe."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

from transcript_pipeline.errors import AudioProcessingError

logger = logging.getLogger(__name__)

_STDERR_PREVIEW_CHARS = 400


@dataclass(frozen=True, slots=True)
class SegmentWindow:
    """One time window cut from the normalized audio."""

    index: int
    start: float
    length: float


class AudioProcessor(Protocol):
    """Byte-in/byte-out audio operations used by the audio handlers."""

    def convert(self, data: bytes) -> bytes:
        """Normalize to mono FLAC at the configured sample rate."""
        raise NotImplementedError

    def probe_duration(self, data: bytes) -> float:
        """Return audio duration in seconds."""
        raise NotImplementedError

    def cut(self, data: bytes, start: float, length: float) -> bytes:
        """Return the [start, start + length) window as FLAC."""
        raise NotImplementedError


def plan_segments(
    duration: float,
    max_segment_seconds: float,
    overlap_seconds: float,
) -> list[SegmentWindow]:
    """Split ``duration`` into ordered windows where each one re-covers the previous tail.

    Terminates for any input: the loop stops once a window reaches the end.
    """

    if max_segment_seconds <= 0:
        raise ValueError("max_segment_seconds must be > 0.")
    if not 0 <= overlap_seconds < max_segment_seconds:
        raise ValueError("overlap_seconds must be in [0, max_segment_seconds).")
    if duration <= 0:
        return []

    windows: list[SegmentWindow] = []
    start = 0.0
    while True:
        end = min(start + max_segment_seconds, duration)
        windows.append(SegmentWindow(index=len(windows), start=start, length=end - start))
        if end >= duration:
            return windows
        start = end - overlap_seconds


class FfmpegAudioProcessor:
    """AudioProcessor backed by the ffmpeg and ffprobe executables, piping bytes through stdio."""

    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        sample_rate: int = 16_000,
        timeout_seconds: float = 600.0,
    ) -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.sample_rate = sample_rate
        self.timeout_seconds = timeout_seconds

    def convert(self, data: bytes) -> bytes:
        return self._run(
            [self.ffmpeg_binary, "-hide_banner", "-loglevel", "error", "-i", "pipe:0"]
            + self._flac_output_args(),
            data,
        )

    def probe_duration(self, data: bytes) -> float:
        output = self._run(
            [
                self.ffprobe_binary,
                "-v",
                "quiet",
                "-i",
                "pipe:0",
                "-show_entries",
                "format=duration",
                "-of",
                "csv=p=0",
            ],
            data,
        )
        raw = output.decode("utf-8", errors="replace").strip()
        try:
            return float(raw)
        except ValueError as error:
            raise AudioProcessingError(f"ffprobe returned no duration: {raw!r}") from error

    def cut(self, data: bytes, start: float, length: float) -> bytes:
        return self._run(
            [
                self.ffmpeg_binary,
                "-hide_banner",
                "-loglevel",
                "error",
                "-i",
                "pipe:0",
                "-ss",
                f"{start:.3f}",
                "-t",
                f"{length:.3f}",
            ]
            + self._flac_output_args(),
            data,
        )

    def _flac_output_args(self) -> list[str]:
        return ["-ar", str(self.sample_rate), "-ac", "1", "-c:a", "flac", "-f", "flac", "pipe:1"]

    def _run(self, args: list[str], data: bytes) -> bytes:
        logger.debug("Running %s", " ".join(args))
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                input=data,
                capture_output=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise AudioProcessingError(f"Audio tool not found: {args[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise AudioProcessingError(
                f"{args[0]} timed out after {self.timeout_seconds:.0f}s",
            ) from error
        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise AudioProcessingError(
                f"{args[0]} exited with code {completed.returncode}: "
                f"{stderr[:_STDERR_PREVIEW_CHARS]}",
            )
        return completed.stdout
