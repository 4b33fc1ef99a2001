"""
Playlist Runner: plays an ordered list of text segments back to back.

Each segment is split with the controller's chunk size; sub-chunks of one
segment are played in order before the playlist index advances. Ending the
last segment wraps the index to 0 and leaves the controller idle. A playback
failure halts the run and leaves the index on the failed segment.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .controller import PlaybackController
from .events import PlaybackEnded, PlaybackEvent, PlaybackFailed, TimeUpdate
from .models import Chunk, PlaylistState, StyleOptions
from .text_segmenter import TextSegmenter

logger = logging.getLogger(__name__)


class PlaylistRunner:
    """
    Drives a PlaybackController through a list of segments.

    Attributes:
        state: Items and the index of the segment being played
        advance_count: Number of times the playlist index moved forward
    """

    def __init__(
        self,
        controller: PlaybackController,
        segments: Sequence[str] = (),
        *,
        max_chunk_length: Optional[int] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        style: Optional[StyleOptions] = None,
    ):
        self._controller = controller
        self._segmenter = TextSegmenter(
            max_chunk_length or controller.settings.max_chunk_length
        )
        self.state = PlaylistState(items=list(segments))
        self.voice_id = voice_id
        self.model_id = model_id
        self.style = style
        self.advance_count = 0

        self._active = False
        self._chunks: list[Chunk] = []
        self._chunk_index = 0
        self._played_chars = 0
        self._chunk_fraction = 0.0
        self._unsubscribe = controller.subscribe(
            self._on_event, PlaybackEnded, PlaybackFailed, TimeUpdate
        )

    @property
    def current_index(self) -> int:
        return self.state.current_index

    @property
    def active(self) -> bool:
        return self._active

    @property
    def progress(self) -> float:
        """Fraction of the playlist text already spoken, in [0, 1]."""
        total = sum(len(item) for item in self.state.items)
        if total == 0:
            return 0.0
        spoken = float(self._played_chars)
        if self._active and self._chunk_index < len(self._chunks):
            chunk = self._chunks[self._chunk_index]
            spoken += (chunk.char_end - chunk.char_start) * self._chunk_fraction
        return min(spoken / total, 1.0)

    def load(self, segments: Sequence[str]) -> None:
        """Replace the playlist items, stopping any run in progress."""
        self.stop()
        self.state.items = list(segments)
        self.advance_count = 0

    def start(self, index: int = 0) -> None:
        """Start playing from the segment at ``index``."""
        if not self.state.items:
            logger.info("Playlist is empty, nothing to start")
            return
        if not 0 <= index < len(self.state.items):
            raise IndexError(f"Playlist index {index} out of range")

        self._active = True
        self.state.current_index = index
        self._played_chars = sum(len(item) for item in self.state.items[:index])
        logger.info(f"Starting playlist at segment {index + 1}/{len(self.state.items)}")
        self._play_segment()

    def stop(self) -> None:
        """Halt the run and reset the index to the first segment."""
        self._active = False
        self._reset_position()
        self._controller.stop()

    def close(self) -> None:
        self._active = False
        self._unsubscribe()

    def _reset_position(self) -> None:
        self.state.current_index = 0
        self._chunks = []
        self._chunk_index = 0
        self._played_chars = 0
        self._chunk_fraction = 0.0

    def _play_segment(self) -> None:
        while self._active:
            if self.state.current_index >= len(self.state.items):
                logger.info("Playlist finished, wrapping to the first segment")
                self._active = False
                self._reset_position()
                self._controller.stop()
                return

            text = self.state.items[self.state.current_index]
            self._chunks = self._segmenter.segment(text)
            self._chunk_index = 0
            if self._chunks:
                self._play_chunk()
                return

            logger.debug(f"Skipping empty segment {self.state.current_index}")
            self._played_chars += len(text)
            self._advance()

    def _play_chunk(self) -> None:
        chunk = self._chunks[self._chunk_index]
        self._chunk_fraction = 0.0
        self._controller.play(chunk.text, self.voice_id, self.model_id, self.style)

    def _advance(self) -> None:
        self.state.current_index += 1
        self.advance_count += 1

    def _on_event(self, event: PlaybackEvent) -> None:
        if not self._active:
            return

        if isinstance(event, TimeUpdate):
            if event.total:
                self._chunk_fraction = min(event.current / event.total, 1.0)
            return

        if isinstance(event, PlaybackFailed):
            logger.error(
                f"Playlist halted at segment {self.state.current_index}: {event.message}"
            )
            self._active = False
            self._controller.stop()
            return

        if self._chunk_index >= len(self._chunks):
            return
        chunk = self._chunks[self._chunk_index]
        self._played_chars += chunk.char_end - chunk.char_start
        self._chunk_index += 1
        if self._chunk_index < len(self._chunks):
            self._play_chunk()
            return

        text = self.state.items[self.state.current_index]
        # whitespace trimmed from the segment ends counts as spoken
        self._played_chars += len(text) - sum(c.char_end - c.char_start for c in self._chunks)
        self._advance()
        self._play_segment()
