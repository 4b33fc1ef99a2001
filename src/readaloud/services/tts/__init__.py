"""
TTS (Text-to-Speech) Playback Package.

This package contains the streaming playback engine:

- text_segmenter: Splits long text into provider-safe chunks
- provider: ElevenLabs HTTP client (streaming and whole-payload modes)
- transport: Incremental streaming with buffered fallback
- buffer: Serialized appends into a bounded, self-evicting sink
- controller: Playback state machine and control API
- playlist: Back-to-back playback of text segments

Architecture Overview:

    ┌─────────────┐     ┌───────────────┐     ┌──────────────────┐
    │ play(text)  │────▶│ TextSegmenter │────▶│TransportNegotiator│
    └─────────────┘     └───────────────┘     └──────────────────┘
                                                       │ fragments
                                                       ▼
                                              ┌──────────────────┐
                                              │StreamBufferManager│
                                              └──────────────────┘
                                                       │ append / evict
                                                       ▼
                                              ┌──────────────────┐
                                              │   PlaybackSink   │
                                              └──────────────────┘
                                                       │ time / ended / error
                                                       ▼
                                              ┌──────────────────┐
                                              │PlaybackController│──▶ events
                                              └──────────────────┘

The pipeline is designed for minimal time-to-first-audio:
1. The first streamed read is forwarded before any coalescing
2. Playback starts on the first appended fragment, not on transport completion
3. A stream that does not start within the timeout is retried as one payload
"""

from .buffer import StreamBufferManager
from .controller import PlaybackController, PlaybackTrigger
from .credentials import CredentialService
from .events import (
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
    StateChanged,
    TimeUpdate,
)
from .models import PlaybackState, StyleOptions, TransportMode
from .playlist import PlaylistRunner
from .provider import ElevenLabsProvider, TTSProvider, Voice
from .sink import AppendResult, MemorySink, PlaybackSink
from .text_segmenter import TextSegmenter, split_paragraphs
from .transport import TransportNegotiator

__all__ = [
    "AppendResult",
    "CredentialService",
    "ElevenLabsProvider",
    "MemorySink",
    "PlaybackController",
    "PlaybackEnded",
    "PlaybackEvent",
    "PlaybackFailed",
    "PlaybackSink",
    "PlaybackStarted",
    "PlaybackState",
    "PlaybackTrigger",
    "PlaylistRunner",
    "StateChanged",
    "StreamBufferManager",
    "StyleOptions",
    "TTSProvider",
    "TextSegmenter",
    "TimeUpdate",
    "TransportMode",
    "TransportNegotiator",
    "Voice",
    "split_paragraphs",
]
