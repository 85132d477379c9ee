"""Groq Whisper speech-to-text client (OpenAI-compatible transcription API)."""

from __future__ import annotations

import logging

import httpx

from transcript_pipeline.errors import ProviderError
from transcript_pipeline.providers.base import TranscriptionResult, TranscriptSegment, post

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Groq"


class GroqWhisperProvider:
    """SpeechToTextProvider posting one segment per request."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "whisper-large-v3-turbo",
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def transcribe(self, audio: bytes, *, language: str | None = None) -> TranscriptionResult:
        if not self.api_key:
            raise ProviderError("GROQ_API_KEY is not set", transient=False)

        data = {"model": self.model, "response_format": "verbose_json"}
        if language:
            data["language"] = language
        response = post(
            self._client,
            "/audio/transcriptions",
            provider=PROVIDER_NAME,
            headers={"Authorization": f"Bearer {self.api_key}"},
            data=data,
            files={"file": ("segment.flac", audio, "audio/flac")},
        )
        payload = response.json()
        if not isinstance(payload, dict) or "text" not in payload:
            raise ProviderError(f"{PROVIDER_NAME} returned no transcript text", transient=True)

        segments = [
            TranscriptSegment(
                start=float(item.get("start", 0.0)),
                end=float(item.get("end", 0.0)),
                text=str(item.get("text", "")),
            )
            for item in payload.get("segments") or []
            if isinstance(item, dict)
        ]
        logger.debug(
            "Transcribed %d bytes: %d chars, %d segments",
            len(audio),
            len(payload["text"]),
            len(segments),
        )
        return TranscriptionResult(
            text=str(payload["text"]),
            language=payload.get("language"),
            segments=segments,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GroqWhisperProvider:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
