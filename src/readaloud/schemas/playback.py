"""Request and response schemas for the playback API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.tts.models import PlaybackState, StyleOptions, TransportMode


class PlayRequest(BaseModel):
    """Speak a single piece of text."""

    model_config = ConfigDict(protected_namespaces=())

    text: str = Field(..., description="Text to speak; long text is chunked")
    voice_id: Optional[str] = Field(default=None, description="Provider voice id")
    model_id: Optional[str] = Field(default=None, description="Provider model id")
    style: Optional[StyleOptions] = None


class PlaylistRequest(BaseModel):
    """Speak a list of segments back to back.

    Either ``segments`` or ``text`` must be given; ``text`` is split into
    paragraphs on blank lines.
    """

    model_config = ConfigDict(protected_namespaces=())

    segments: list[str] = Field(default_factory=list)
    text: Optional[str] = None
    start_index: int = Field(default=0, ge=0)
    voice_id: Optional[str] = None
    model_id: Optional[str] = None
    style: Optional[StyleOptions] = None


class SeekRequest(BaseModel):
    position: float = Field(..., ge=0, description="Target position in seconds")


class SpeedRequest(BaseModel):
    rate: float = Field(..., ge=0.25, le=4.0)


class BufferWindowResponse(BaseModel):
    buffered_start: float
    buffered_end: float
    current_position: float
    max_window_seconds: float


class PlaylistStatus(BaseModel):
    items: int
    current_index: int
    progress: float
    active: bool


class PlaybackStatus(BaseModel):
    """Snapshot of the controller returned by every control endpoint."""

    state: PlaybackState
    utterance_id: Optional[str] = None
    transport_mode: Optional[TransportMode] = None
    position: float = 0.0
    speed: float = 1.0
    retry_count: int = 0
    fallback_count: int = 0
    window: BufferWindowResponse
    playlist: Optional[PlaylistStatus] = None


class VoiceResponse(BaseModel):
    id: str
    name: str
    gender: str
    accent: str


__all__ = [
    "BufferWindowResponse",
    "PlayRequest",
    "PlaybackStatus",
    "PlaylistRequest",
    "PlaylistStatus",
    "SeekRequest",
    "SpeedRequest",
    "VoiceResponse",
]
