"""Gemini proofreading client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcript_pipeline.errors import ProviderError
from transcript_pipeline.providers.base import ProofreadResult, TokenUsage, post

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Gemini"

PROOFREAD_INSTRUCTION = """\
You are a professional proofreader. Your task is to organize and clean up transcribed text \
while maintaining EXACT words and meaning.

STRICT Guidelines:
1. DO NOT change, replace, or remove any words - preserve them exactly as they appear
2. DO NOT add any new words or content
3. ONLY fix clear spelling mistakes (when 100% certain)
4. Organize text into logical paragraphs based on content
5. Add proper punctuation (periods, commas, question marks)
6. Remove XML tags (like <part1>, <part2>)
7. Remove duplicated content from overlapping segments
8. If the text is in Hebrew, maintain right-to-left formatting and proper Hebrew punctuation
9. Return ONLY the processed text without any explanations or comments

Your ONLY allowed changes are:
- Fixing obvious spelling errors
- Adding/fixing punctuation
- Organizing into paragraphs
- Removing XML tags and duplicates
"""

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def build_instruction(context: str | None) -> str:
    if not context:
        return PROOFREAD_INSTRUCTION
    return (
        f"{PROOFREAD_INSTRUCTION}\n"
        "Context for technical terms and domain knowledge "
        f"(but DO NOT change any words): {context}\n"
    )


def build_prompt(text: str, *, chunk_index: int, total_chunks: int) -> str:
    return (
        f"This is chunk {chunk_index + 1} of {total_chunks}. "
        f"Clean up the following text while preserving ALL words exactly:\n\n{text}"
    )


class GeminiProofreader:
    """ProofreadingProvider calling ``models/{model}:generateContent``."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        api_key: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1",
        model: str = "gemini-2.0-flash",
        temperature: float = 0.1,
        max_output_tokens: int = 8_192,
        timeout_seconds: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def proofread(
        self,
        text: str,
        *,
        chunk_index: int,
        total_chunks: int,
        context: str | None = None,
    ) -> ProofreadResult:
        if not self.api_key:
            raise ProviderError("GEMINI_API_KEY is not set", transient=False)

        response = post(
            self._client,
            f"/models/{self.model}:generateContent",
            provider=PROVIDER_NAME,
            headers={"x-goog-api-key": self.api_key},
            json=self._request_body(
                text,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                context=context,
            ),
        )
        payload = response.json()
        proofread = _candidate_text(payload)
        if proofread is None:
            raise ProviderError(f"Invalid response format from {PROVIDER_NAME} API", transient=True)
        usage = _usage(payload)
        logger.debug(
            "Proofread chunk %d/%d: tokens=%d",
            chunk_index + 1,
            total_chunks,
            usage.total_tokens,
        )
        return ProofreadResult(text=proofread.strip(), usage=usage)

    def _request_body(
        self,
        text: str,
        *,
        chunk_index: int,
        total_chunks: int,
        context: str | None,
    ) -> dict[str, Any]:
        return {
            "contents": [
                {"role": "user", "parts": [{"text": build_instruction(context)}]},
                {
                    "role": "user",
                    "parts": [
                        {
                            "text": build_prompt(
                                text,
                                chunk_index=chunk_index,
                                total_chunks=total_chunks,
                            ),
                        },
                    ],
                },
            ],
            "generationConfig": {
                "temperature": self.temperature,
                "topP": 0.95,
                "topK": 40,
                "maxOutputTokens": self.max_output_tokens,
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"}
                for category in SAFETY_CATEGORIES
            ],
        }

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GeminiProofreader:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _candidate_text(payload: Any) -> str | None:
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text.strip() else None


def _usage(payload: dict[str, Any]) -> TokenUsage:
    metadata = payload.get("usageMetadata") or {}
    prompt_tokens = int(metadata.get("promptTokenCount", 0))
    completion_tokens = int(metadata.get("candidatesTokenCount", 0))
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(metadata.get("totalTokenCount", prompt_tokens + completion_tokens)),
    )
