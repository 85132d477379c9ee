from __future__ import annotations

from pathlib import Path

import allure
import pytest

from transcript_pipeline.config import ProviderSettings, Settings, StorageSettings
from transcript_pipeline.pipeline.runtime import open_runtime
from transcript_pipeline.providers import GeminiProofreader, GroqWhisperProvider
from transcript_pipeline.queue.models import TaskType

from conftest import FakeAudioProcessor, FakeProofreader, FakeSpeechToText

pytestmark = [
    allure.epic("Pipeline"),
    allure.feature("Runtime Wiring"),
]


def _settings(tmp_path: Path, **keys: str) -> Settings:
    return Settings(
        db_path=tmp_path / "runtime.db",
        storage=StorageSettings(root_dir=tmp_path / "blobs"),
        providers=ProviderSettings(**keys),
    )


def test_default_providers_require_api_keys(tmp_path: Path) -> None:
    settings = _settings(tmp_path)

    with pytest.raises(ValueError, match="GROQ_API_KEY, GEMINI_API_KEY"):
        with open_runtime(settings, audio_processor=FakeAudioProcessor()):
            pass

    assert not settings.db_path.exists()


def test_default_providers_are_built_from_keys(tmp_path: Path) -> None:
    settings = _settings(tmp_path, groq_api_key="groq", gemini_api_key="gemini")

    with open_runtime(settings, audio_processor=FakeAudioProcessor()) as runtime:
        handlers = runtime.dispatcher.handlers

    assert isinstance(handlers.get(TaskType.TRANSCRIBE).provider, GroqWhisperProvider)
    assert isinstance(handlers.get(TaskType.PROOFREAD).provider, GeminiProofreader)


def test_injected_providers_skip_key_check(tmp_path: Path) -> None:
    settings = _settings(tmp_path)

    with open_runtime(
        settings,
        stt=FakeSpeechToText(),
        proofreader=FakeProofreader(),
        audio_processor=FakeAudioProcessor(),
    ) as runtime:
        assert runtime.dispatcher.run_once().processed is False
