"""Error taxonomy for the playback engine."""

from __future__ import annotations

from enum import Enum


class TransportErrorKind(str, Enum):
    AUTH = "auth"
    QUOTA = "quota"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed_response"


class PlaybackError(Exception):
    """Base class for every failure surfaced by the engine."""

    kind = "playback"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(PlaybackError):
    """Wrap provider failures (auth, quota, network, malformed payloads)."""

    def __init__(
        self,
        error_kind: TransportErrorKind,
        message: str,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error_kind = error_kind
        self.status_code = status_code

    @property
    def kind(self) -> str:  # type: ignore[override]
        return f"transport.{self.error_kind.value}"


class BufferOverflowError(PlaybackError):
    """The sink kept rejecting appends after the retry limit was reached."""

    kind = "buffer_overflow"


class DecodeError(PlaybackError):
    """The sink rejected audio data as malformed."""

    kind = "decode"


class StreamTimeoutError(PlaybackError):
    """No audio arrived within the stream-start window."""

    kind = "timeout"


class SegmentationError(PlaybackError, ValueError):
    """Text cannot be split with the requested chunk length."""

    kind = "segmentation"


class InvalidTransitionError(Exception):
    """A control command is not valid in the current playback state."""

    def __init__(self, state: str, trigger: str):
        super().__init__(f"Cannot {trigger} while {state}")
        self.state = state
        self.trigger = trigger


__all__ = [
    "BufferOverflowError",
    "DecodeError",
    "InvalidTransitionError",
    "PlaybackError",
    "SegmentationError",
    "StreamTimeoutError",
    "TransportError",
    "TransportErrorKind",
]
