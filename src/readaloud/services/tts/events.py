"""Typed lifecycle events emitted by the playback controller."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

from .models import PlaybackState, TransportMode


@dataclass(frozen=True)
class PlaybackEvent:
    type = "event"

    def asdict(self) -> dict[str, Any]:
        payload = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in asdict(self).items()
        }
        payload["type"] = self.type
        return payload


@dataclass(frozen=True)
class StateChanged(PlaybackEvent):
    previous: PlaybackState
    current: PlaybackState
    utterance_id: Optional[str] = None

    type = "state_changed"


@dataclass(frozen=True)
class PlaybackStarted(PlaybackEvent):
    utterance_id: str
    mode: Optional[TransportMode] = None

    type = "playback_started"


@dataclass(frozen=True)
class TimeUpdate(PlaybackEvent):
    current: float
    total: Optional[float] = None

    type = "time_update"


@dataclass(frozen=True)
class PlaybackEnded(PlaybackEvent):
    utterance_id: str

    type = "playback_ended"


@dataclass(frozen=True)
class PlaybackFailed(PlaybackEvent):
    kind: str
    message: str
    utterance_id: Optional[str] = None
    position: Optional[float] = None

    type = "error"


__all__ = [
    "PlaybackEnded",
    "PlaybackEvent",
    "PlaybackFailed",
    "PlaybackStarted",
    "StateChanged",
    "TimeUpdate",
]
