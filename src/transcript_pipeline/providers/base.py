"""Provider contracts and shared HTTP error classification."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import httpx

from transcript_pipeline.errors import ProviderError

_ERROR_PREVIEW_CHARS = 500


@dataclass(slots=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(slots=True)
class TranscriptionResult:
    """Speech-to-text output for one audio segment."""

    text: str
    language: str | None = None
    segments: list[TranscriptSegment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "language": self.language,
            "segments": [asdict(segment) for segment in self.segments],
        }


@dataclass(slots=True)
class TokenUsage:
    """Token counters reported by one provider call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(slots=True)
class ProofreadResult:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class SpeechToTextProvider(Protocol):
    """External speech-to-text service."""

    def transcribe(self, audio: bytes, *, language: str | None = None) -> TranscriptionResult:
        """Transcribe one audio segment."""
        raise NotImplementedError


class ProofreadingProvider(Protocol):
    """External LLM proofreading service."""

    def proofread(
        self,
        text: str,
        *,
        chunk_index: int,
        total_chunks: int,
        context: str | None = None,
    ) -> ProofreadResult:
        """Proofread one chunk, preserving its words."""
        raise NotImplementedError


def is_transient_status(status_code: int) -> bool:
    """Rate limits and server-side failures are worth retrying."""

    return status_code == 429 or status_code >= 500  # noqa: PLR2004


def ensure_success(response: httpx.Response, *, provider: str) -> None:
    """Raise ProviderError for non-2xx responses."""

    if response.is_success:
        return
    raise ProviderError(
        f"{provider} API error (HTTP {response.status_code}): "
        f"{response.text[:_ERROR_PREVIEW_CHARS]}",
        transient=is_transient_status(response.status_code),
        status_code=response.status_code,
    )


def post(client: httpx.Client, url: str, *, provider: str, **kwargs: Any) -> httpx.Response:
    """POST and translate transport failures into ProviderError."""

    try:
        response = client.post(url, **kwargs)
    except httpx.TimeoutException as error:
        raise ProviderError(f"{provider} request timed out", transient=True) from error
    except httpx.HTTPError as error:
        raise ProviderError(f"{provider} request failed: {error}", transient=True) from error
    ensure_success(response, provider=provider)
    return response
