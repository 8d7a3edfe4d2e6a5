"""
Tests for content chunking.
"""

import pytest

from core.sync.chunking import merge_chunks, split_content


class TestSplitContent:

    def test_empty_text(self):
        assert split_content("") == []

    def test_short_text_is_single_chunk(self):
        assert split_content("a quiet harbour", chunk_size=500, overlap=100) == ["a quiet harbour"]

    def test_exact_size_is_single_chunk(self):
        text = "x" * 500
        assert split_content(text, 500, 100) == [text]

    def test_long_text_overlaps(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(1200))

        chunks = split_content(text, chunk_size=500, overlap=100)

        assert len(chunks) == 3
        assert all(len(chunk) <= 500 for chunk in chunks)
        assert chunks[0][-100:] == chunks[1][:100]
        assert chunks[1][-100:] == chunks[2][:100]
        assert merge_chunks(chunks, 100) == text

    def test_reconstruction_without_overlap(self):
        text = "word " * 300
        chunks = split_content(text, chunk_size=128, overlap=0)
        assert "".join(chunks) == text

    def test_invalid_overlap(self):
        with pytest.raises(ValueError):
            split_content("text", chunk_size=10, overlap=10)
        with pytest.raises(ValueError):
            split_content("text", chunk_size=0, overlap=0)
