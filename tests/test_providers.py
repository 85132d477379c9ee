from __future__ import annotations

import json

import allure
import httpx
import pytest

from transcript_pipeline.errors import ProviderError
from transcript_pipeline.providers import GeminiProofreader, GroqWhisperProvider
from transcript_pipeline.providers.base import TokenUsage, is_transient_status
from transcript_pipeline.providers.gemini import PROOFREAD_INSTRUCTION, SAFETY_CATEGORIES

pytestmark = [
    allure.epic("Providers"),
    allure.feature("Speech-to-Text & Proofreading Clients"),
]


def _groq(handler, *, api_key: str = "groq-key") -> GroqWhisperProvider:
    return GroqWhisperProvider(api_key=api_key, transport=httpx.MockTransport(handler))


def _gemini(handler, *, api_key: str = "gemini-key") -> GeminiProofreader:
    return GeminiProofreader(api_key=api_key, transport=httpx.MockTransport(handler))


def _gemini_reply(text: str) -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {
            "promptTokenCount": 120,
            "candidatesTokenCount": 80,
            "totalTokenCount": 200,
        },
    }


@pytest.mark.parametrize(
    ("status_code", "transient"),
    [(429, True), (500, True), (503, True), (400, False), (401, False), (404, False)],
)
def test_transient_status_classification(status_code: int, transient: bool) -> None:
    assert is_transient_status(status_code) is transient


def test_token_usage_adds_up() -> None:
    total = TokenUsage(1, 2, 3) + TokenUsage(10, 20, 30)

    assert total == TokenUsage(prompt_tokens=11, completion_tokens=22, total_tokens=33)


def test_groq_posts_multipart_segment() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "text": " Shalom olam ",
                "language": "hebrew",
                "segments": [{"start": 0.0, "end": 1.5, "text": "Shalom olam"}],
            },
        )

    with _groq(handler) as provider:
        result = provider.transcribe(b"FLACDATA", language="he")

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/openai/v1/audio/transcriptions"
    assert request.headers["Authorization"] == "Bearer groq-key"
    body = request.content
    assert b'name="model"' in body and b"whisper-large-v3-turbo" in body
    assert b'name="response_format"' in body and b"verbose_json" in body
    assert b'name="language"' in body
    assert b'filename="segment.flac"' in body and b"FLACDATA" in body
    assert result.text == " Shalom olam "
    assert result.language == "hebrew"
    assert [(segment.start, segment.end) for segment in result.segments] == [(0.0, 1.5)]


def test_groq_omits_language_when_not_requested() -> None:
    seen: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.read())
        return httpx.Response(200, json={"text": "hello"})

    with _groq(handler) as provider:
        assert provider.transcribe(b"x").to_dict() == {
            "text": "hello",
            "language": None,
            "segments": [],
        }
    assert b'name="language"' not in seen[0]


def test_groq_rate_limit_is_transient() -> None:
    with _groq(lambda request: httpx.Response(429, text="slow down")) as provider:
        with pytest.raises(ProviderError, match=r"HTTP 429\): slow down") as raised:
            provider.transcribe(b"x")

    assert raised.value.transient is True
    assert raised.value.status_code == 429


def test_groq_bad_request_is_not_transient() -> None:
    with _groq(lambda request: httpx.Response(400, text="bad file")) as provider:
        with pytest.raises(ProviderError) as raised:
            provider.transcribe(b"x")

    assert raised.value.transient is False


def test_groq_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with _groq(handler) as provider:
        with pytest.raises(ProviderError, match="timed out") as raised:
            provider.transcribe(b"x")

    assert raised.value.transient is True


def test_groq_missing_key_fails_without_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"text": "x"})

    with _groq(handler, api_key="") as provider:
        with pytest.raises(ProviderError, match="GROQ_API_KEY is not set") as raised:
            provider.transcribe(b"x")

    assert raised.value.transient is False
    assert calls == []


def test_gemini_request_body_and_usage() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen.append(request)
        return httpx.Response(200, json=_gemini_reply("  Clean text.\n"))

    with _gemini(handler) as proofreader:
        result = proofreader.proofread(
            "clean text",
            chunk_index=1,
            total_chunks=3,
            context="cardiology",
        )

    request = seen[0]
    assert request.url.path == "/v1/models/gemini-2.0-flash:generateContent"
    assert request.headers["x-goog-api-key"] == "gemini-key"
    body = json.loads(request.content)
    instruction = body["contents"][0]["parts"][0]["text"]
    prompt = body["contents"][1]["parts"][0]["text"]
    assert instruction.startswith(PROOFREAD_INSTRUCTION)
    assert "cardiology" in instruction
    assert prompt.startswith("This is chunk 2 of 3.")
    assert prompt.endswith("\n\nclean text")
    assert body["generationConfig"] == {
        "temperature": 0.1,
        "topP": 0.95,
        "topK": 40,
        "maxOutputTokens": 8192,
    }
    assert [item["category"] for item in body["safetySettings"]] == list(SAFETY_CATEGORIES)
    assert {item["threshold"] for item in body["safetySettings"]} == {"BLOCK_NONE"}

    assert result.text == "Clean text."
    assert result.usage == TokenUsage(prompt_tokens=120, completion_tokens=80, total_tokens=200)


def test_gemini_without_context_sends_bare_instruction() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.read()))
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "A."}]}}]})

    with _gemini(handler) as proofreader:
        result = proofreader.proofread("a.", chunk_index=0, total_chunks=1)

    assert seen[0]["contents"][0]["parts"][0]["text"] == PROOFREAD_INSTRUCTION
    assert result.usage == TokenUsage()


def test_gemini_malformed_reply_is_transient() -> None:
    with _gemini(lambda request: httpx.Response(200, json={"candidates": []})) as proofreader:
        with pytest.raises(ProviderError, match="Invalid response format") as raised:
            proofreader.proofread("a.", chunk_index=0, total_chunks=1)

    assert raised.value.transient is True


def test_gemini_server_error_is_transient() -> None:
    with _gemini(lambda request: httpx.Response(503, text="overloaded")) as proofreader:
        with pytest.raises(ProviderError, match="HTTP 503") as raised:
            proofreader.proofread("a.", chunk_index=0, total_chunks=1)

    assert raised.value.transient is True


def test_gemini_missing_key() -> None:
    with _gemini(lambda request: httpx.Response(200), api_key="") as proofreader:
        with pytest.raises(ProviderError, match="GEMINI_API_KEY is not set"):
            proofreader.proofread("a.", chunk_index=0, total_chunks=1)
