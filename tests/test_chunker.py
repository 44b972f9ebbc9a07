"""Tests for the sentence-aware text chunker."""

import pytest

from policyrag.rag.chunker import chunk_text, normalize_text


POLICY_TEXT = " ".join(
    f"Klausel {i} regelt den Versicherungsfall Nummer {i} ausführlich." for i in range(120)
)


def _positions(normalized: str, chunks) -> list[int]:
    positions = []
    search_from = 0
    for chunk in chunks:
        position = normalized.find(chunk.text, search_from)
        assert position >= 0, f"chunk {chunk.index} is not a slice of the input"
        positions.append(position)
        search_from = position + 1
    return positions


def test_short_text_is_single_chunk():
    chunks = chunk_text("  Diebstahl   ist\n\nversichert.  ")

    assert len(chunks) == 1
    assert chunks[0].index == 0
    assert chunks[0].text == "Diebstahl ist versichert."


def test_empty_text_yields_single_empty_chunk():
    chunks = chunk_text(" \n\t ")

    assert [(c.index, c.text) for c in chunks] == [(0, "")]


def test_repeated_word_scenario():
    chunks = chunk_text("word " * 1000, max_chunk_size=2000, overlap=200)

    assert len(chunks) > 1
    assert all(len(c.text) <= 2000 for c in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        shared = current.text[:100]
        assert shared and shared in previous.text[-250:]


def test_indices_are_contiguous():
    chunks = chunk_text(POLICY_TEXT, max_chunk_size=300, overlap=40)

    assert [c.index for c in chunks] == list(range(len(chunks)))


def test_chunks_cover_normalized_text_without_gaps():
    normalized = normalize_text(POLICY_TEXT)
    chunks = chunk_text(POLICY_TEXT, max_chunk_size=300, overlap=40)
    positions = _positions(normalized, chunks)

    assert positions[0] == 0
    for (start, chunk), next_start in zip(zip(positions, chunks), positions[1:]):
        assert next_start <= start + len(chunk.text)
    assert positions[-1] + len(chunks[-1].text) == len(normalized)


def test_cuts_prefer_sentence_boundaries():
    chunks = chunk_text(POLICY_TEXT, max_chunk_size=300, overlap=40)

    assert all(c.text.endswith(".") for c in chunks)


def test_hard_cut_without_sentence_end():
    text = "x" * 450
    chunks = chunk_text(text, max_chunk_size=200, overlap=50)

    assert [len(c.text) for c in chunks] == [200, 200, 150]


@pytest.mark.parametrize(
    "size, overlap",
    [(0, 0), (-10, 0), (100, -1), (100, 100), (100, 150)],
)
def test_invalid_options_raise(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("Etwas Text.", max_chunk_size=size, overlap=overlap)
