"""
Text Segmenter for Provider-Safe TTS Requests.

This module splits long text into ordered chunks that each fit within the
provider's maximum request length, preferring natural speech boundaries.

Architecture:
    Utterance text → TextSegmenter.segment() → [Chunk, Chunk, ...]

Boundary preference, searched backwards from the largest window that fits:
    1. Sentence-terminal punctuation (., !, ?), kept in the chunk
    2. Whitespace
    3. A hard cut at max_length

Usage:
    segmenter = TextSegmenter(max_length=2000)

    for chunk in segmenter.segment(long_text):
        await play(chunk.text)
"""

import logging
import re
from typing import List

from ...errors import SegmentationError
from .models import Chunk

logger = logging.getLogger(__name__)

SENTENCE_TERMINALS = ".!?"

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def _find_cut(text: str, start: int, end: int) -> int:
    """Return the exclusive end offset of the chunk starting at ``start``.

    ``end`` is the exclusive end of the largest window that fits.
    """
    window = text[start:end]

    sentence_break = max(window.rfind(mark) for mark in SENTENCE_TERMINALS)
    if sentence_break > 0:
        return start + sentence_break + 1

    for offset in range(len(window) - 1, 0, -1):
        if window[offset].isspace():
            return start + offset + 1

    return end


def segment(text: str, max_length: int) -> List[Chunk]:
    """
    Split text into chunks no longer than ``max_length`` characters.

    Args:
        text: Text to split
        max_length: Maximum raw length of each chunk

    Returns:
        Ordered chunks. Empty or whitespace-only input yields no chunks.

    Raises:
        SegmentationError: If max_length is not positive
    """
    if max_length <= 0:
        raise SegmentationError("max_length must be positive")

    if not text or not text.strip():
        return []

    if len(text) <= max_length:
        return [Chunk(0, text.strip(), 0, len(text))]

    chunks: List[Chunk] = []
    start = 0
    while start < len(text):
        end = min(start + max_length, len(text))
        if end < len(text):
            end = _find_cut(text, start, end)

        piece = text[start:end].strip()
        if piece:
            chunks.append(Chunk(len(chunks), piece, start, end))
        start = end

    logger.debug(
        f"Segmented {len(text)} chars into {len(chunks)} chunks (max {max_length})"
    )
    return chunks


def split_paragraphs(text: str, min_length: int = 25) -> List[str]:
    """Split page text on blank lines, dropping fragments under ``min_length``."""
    paragraphs = []
    for block in _PARAGRAPH_BREAK.split(text):
        paragraph = " ".join(block.split())
        if len(paragraph) >= min_length:
            paragraphs.append(paragraph)
    return paragraphs


class TextSegmenter:
    """
    Splits utterance text into provider-safe chunks.

    Attributes:
        max_length: Maximum characters per chunk (default: 2000)
    """

    def __init__(self, max_length: int = 2000):
        if max_length <= 0:
            raise SegmentationError("max_length must be positive")
        self.max_length = max_length

    def segment(self, text: str) -> List[Chunk]:
        """Split ``text`` using this segmenter's max length."""
        return segment(text, self.max_length)

    def needs_split(self, text: str) -> bool:
        return len(text) > self.max_length
