"""External speech-to-text and proofreading providers."""

from transcript_pipeline.providers.base import (
    ProofreadingProvider,
    ProofreadResult,
    SpeechToTextProvider,
    TokenUsage,
    TranscriptionResult,
    TranscriptSegment,
)
from transcript_pipeline.providers.gemini import GeminiProofreader
from transcript_pipeline.providers.groq import GroqWhisperProvider

__all__ = [
    "GeminiProofreader",
    "GroqWhisperProvider",
    "ProofreadResult",
    "ProofreadingProvider",
    "SpeechToTextProvider",
    "TokenUsage",
    "TranscriptSegment",
    "TranscriptionResult",
]
