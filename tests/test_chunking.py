import allure
import pytest

from transcript_pipeline.pipeline.chunking import chunk_text, pack_sentences, split_sentences

pytestmark = [
    allure.epic("Proofreading"),
    allure.feature("Text Chunking"),
]


def test_split_sentences_keeps_terminal_punctuation() -> None:
    text = "First one. Second one?  Third!\nFourth… fifth"

    assert split_sentences(text) == ["First one.", "Second one?", "Third!", "Fourth…", "fifth"]


def test_split_sentences_ignores_blank_input() -> None:
    assert split_sentences("   \n ") == []


def test_pack_sentences_fills_chunks_greedily() -> None:
    sentences = ["Aaaa.", "Bbbb.", "Cccc.", "Dddd."]

    assert pack_sentences(sentences, max_chars=11) == ["Aaaa. Bbbb.", "Cccc. Dddd."]


def test_oversized_sentence_is_its_own_chunk() -> None:
    sentences = ["Short.", "This sentence is far longer than the limit.", "Tail."]

    assert pack_sentences(sentences, max_chars=12) == [
        "Short.",
        "This sentence is far longer than the limit.",
        "Tail.",
    ]


def test_pack_sentences_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError, match="max_chars"):
        pack_sentences(["One."], max_chars=0)


def test_chunk_text_never_splits_inside_a_sentence() -> None:
    text = "Sentence 0. Sentence 9. Sentence 18."

    chunks = chunk_text(text, max_chars=20)

    assert chunks == ["Sentence 0.", "Sentence 9.", "Sentence 18."]
    assert " ".join(chunks) == text
