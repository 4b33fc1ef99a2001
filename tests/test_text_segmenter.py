"""Tests for splitting text into provider-safe chunks."""

import pytest

from readaloud.services.tts.text_segmenter import TextSegmenter, segment, split_paragraphs


LOREM = ("Lorem ipsum dolor sit amet. " * 179)[:5000]


class TestSegment:
    """Chunk boundaries, sizes and ordering."""

    def test_short_text_is_single_chunk(self):
        chunks = segment("Hello world.", 2000)
        assert len(chunks) == 1
        assert chunks[0].text == "Hello world."
        assert (chunks[0].char_start, chunks[0].char_end) == (0, 12)

    def test_text_exactly_max_length_is_single_chunk(self):
        text = "a" * 2000
        assert len(segment(text, 2000)) == 1

    @pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
    def test_empty_or_whitespace_yields_no_chunks(self, text):
        assert segment(text, 100) == []

    def test_non_positive_max_length_rejected(self):
        with pytest.raises(ValueError):
            segment("text", 0)
        with pytest.raises(ValueError):
            TextSegmenter(max_length=-1)

    def test_long_text_splits_at_sentence_terminals(self):
        chunks = segment(LOREM, 2000)

        assert len(chunks) == 3
        assert chunks[0].text.endswith(".")
        assert chunks[1].text.endswith(".")
        assert all(chunk.char_end - chunk.char_start <= 2000 for chunk in chunks)

    def test_chunks_rebuild_original_text(self):
        chunks = segment(LOREM, 2000)
        rebuilt = "".join(LOREM[c.char_start:c.char_end] for c in chunks)
        assert rebuilt == LOREM
        assert [c.sequence_number for c in chunks] == [0, 1, 2]

    def test_falls_back_to_whitespace_without_terminals(self):
        text = "word " * 30
        chunks = segment(text, 23)
        for chunk in chunks:
            assert chunk.char_end - chunk.char_start <= 23
            assert not chunk.text.startswith(" ")
            assert "wor d" not in chunk.text
        assert " ".join(c.text for c in chunks).split() == text.split()

    def test_hard_cut_when_no_boundary(self):
        text = "x" * 25
        chunks = segment(text, 10)
        assert [c.text for c in chunks] == ["x" * 10, "x" * 10, "x" * 5]

    def test_question_and_exclamation_are_terminals(self):
        text = "Is it? Yes it is! And so it goes on and on"
        chunks = segment(text, 20)
        assert chunks[0].text == "Is it? Yes it is!"

    @pytest.mark.parametrize(
        "text,max_length",
        [
            (LOREM, 2000),
            (LOREM, 137),
            ("One. Two! Three? " * 40, 50),
            ("no punctuation at all " * 50, 33),
            ("x" * 999, 100),
        ],
    )
    def test_chunks_are_bounded_ordered_and_lossless(self, text, max_length):
        chunks = segment(text, max_length)

        assert all(c.char_end - c.char_start <= max_length for c in chunks)
        assert [c.char_start for c in chunks] == sorted(c.char_start for c in chunks)
        spoken = "".join(c.text for c in chunks)
        assert spoken.replace(" ", "") == text.replace(" ", "")

    def test_segmentation_is_deterministic(self):
        assert segment(LOREM, 300) == segment(LOREM, 300)


class TestTextSegmenter:
    def test_needs_split(self):
        segmenter = TextSegmenter(max_length=10)
        assert not segmenter.needs_split("short")
        assert segmenter.needs_split("much longer text")

    def test_segment_uses_configured_length(self):
        segmenter = TextSegmenter(max_length=2000)
        assert len(segmenter.segment(LOREM)) == 3


class TestSplitParagraphs:
    def test_splits_on_blank_lines_and_drops_short_fragments(self):
        page = (
            "The first paragraph is long enough to keep.\n\n"
            "Menu\n\n"
            "The second paragraph\nspans two lines in the source."
        )
        assert split_paragraphs(page) == [
            "The first paragraph is long enough to keep.",
            "The second paragraph spans two lines in the source.",
        ]
