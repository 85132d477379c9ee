"""Sentence-preserving text chunking for proofreading."""

from __future__ import annotations

import re

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?…])\s+")


def split_sentences(text: str) -> list[str]:
    """Split after terminal punctuation followed by whitespace; drops empty pieces."""

    return [sentence.strip() for sentence in _SENTENCE_BOUNDARY.split(text) if sentence.strip()]


def pack_sentences(sentences: list[str], max_chars: int) -> list[str]:
    """Greedily pack whole sentences into chunks of at most ``max_chars``.

    A sentence longer than ``max_chars`` becomes a chunk of its own rather
    than being split.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be > 0.")
    chunks: list[str] = []
    current = ""
    for sentence in sentences:
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, max_chars: int) -> list[str]:
    return pack_sentences(split_sentences(text), max_chars)
