"""Data model shared by the playback engine components."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"


class UtteranceStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class TransportMode(str, Enum):
    INCREMENTAL = "incremental"
    BUFFERED = "buffered"


_CADENCE_SPEED = {"slow": 0.7, "medium": 1.0, "fast": 1.2}


class StyleOptions(BaseModel):
    """Voice styling forwarded to the provider as voice settings."""

    stability: float = Field(default=0.5, ge=0.0, le=1.0)
    similarity_boost: float = Field(default=0.5, ge=0.0, le=1.0)
    style: float = Field(default=0.0, ge=0.0, le=1.0)
    use_speaker_boost: bool = True
    cadence: Literal["slow", "medium", "fast"] = "medium"

    @property
    def speed(self) -> float:
        """Provider speaking speed for the selected cadence (0.7-1.2)."""
        return _CADENCE_SPEED[self.cadence]

    def voice_settings(self) -> dict[str, float | bool]:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


@dataclass(frozen=True)
class Chunk:
    """A slice of an utterance's text, sized for one provider request.

    ``text`` has its boundary whitespace trimmed; ``char_start``/``char_end``
    are the raw offsets of the slice in the original text.
    """

    sequence_number: int
    text: str
    char_start: int
    char_end: int


@dataclass(frozen=True)
class AudioFragment:
    data: bytes
    arrival_order: int


@dataclass(frozen=True)
class SynthesisRequest:
    text: str
    voice_id: str
    model_id: str
    style: Optional[StyleOptions] = None


@dataclass
class Utterance:
    text: str
    voice_id: str
    model_id: str
    style: Optional[StyleOptions] = None
    chunks: list[Chunk] = field(default_factory=list)
    status: UtteranceStatus = UtteranceStatus.PENDING
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def request_for(self, chunk: Chunk) -> SynthesisRequest:
        return SynthesisRequest(
            text=chunk.text,
            voice_id=self.voice_id,
            model_id=self.model_id,
            style=self.style,
        )


@dataclass
class BufferWindow:
    """Span of audio (in seconds) currently held by the sink.

    Eviction keeps ``behind_cursor`` within ``max_window_seconds``. Audio ahead
    of the cursor is limited by the sink capacity, so ``span`` stays within the
    window only while the capacity is no larger than it (the default).
    """

    max_window_seconds: float
    buffered_start: float = 0.0
    buffered_end: float = 0.0
    current_position: float = 0.0

    @property
    def span(self) -> float:
        return self.buffered_end - self.buffered_start

    @property
    def behind_cursor(self) -> float:
        return max(0.0, self.current_position - self.buffered_start)

    def reset(self) -> None:
        self.buffered_start = 0.0
        self.buffered_end = 0.0
        self.current_position = 0.0


@dataclass
class PlaybackSession:
    state: PlaybackState = PlaybackState.IDLE
    active_utterance_id: Optional[str] = None
    transport_mode: Optional[TransportMode] = None
    retry_count: int = 0
    fallback_count: int = 0
    generation: int = 0

    def reset(self) -> None:
        """Forget the active utterance; the generation keeps counting."""
        self.active_utterance_id = None
        self.transport_mode = None
        self.retry_count = 0
        self.fallback_count = 0


@dataclass
class PlaylistState:
    items: list[str] = field(default_factory=list)
    current_index: int = 0


__all__ = [
    "AudioFragment",
    "BufferWindow",
    "Chunk",
    "PlaybackSession",
    "PlaybackState",
    "PlaylistState",
    "StyleOptions",
    "SynthesisRequest",
    "TransportMode",
    "Utterance",
    "UtteranceStatus",
]
