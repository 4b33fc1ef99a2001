import asyncio
import pathlib
import sys
from collections import deque
from typing import Iterable, Optional

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from readaloud.config import Settings  # noqa: E402
from readaloud.services.tts.models import SynthesisRequest  # noqa: E402
from readaloud.services.tts.provider import Voice  # noqa: E402
from readaloud.services.tts.sink import AppendResult, MemorySink  # noqa: E402


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's environment and `.env`."""
    values = {
        "elevenlabs_api_key": "test-key",
        "overflow_retry_base_delay": 0.0,
        "overflow_retry_max_delay": 0.0,
        "stream_start_timeout": 0.2,
        "sink_bytes_per_second": 1000,
        "sink_capacity_seconds": 600.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # pyright: ignore[reportCallIssue]


class FakeProvider:
    """Scripted TTS provider recording every request it receives."""

    def __init__(
        self,
        stream_chunks: Iterable[bytes] = (b"a" * 1000, b"b" * 1000, b"c" * 1000),
        buffer_payload: bytes = b"z" * 3000,
        *,
        stream_error: Optional[Exception] = None,
        error_after: int = 0,
        buffer_error: Optional[Exception] = None,
        hang: bool = False,
        chunk_delay: float = 0.0,
    ):
        self.stream_chunks = list(stream_chunks)
        self.buffer_payload = buffer_payload
        self.stream_error = stream_error
        self.error_after = error_after
        self.buffer_error = buffer_error
        self.hang = hang
        self.chunk_delay = chunk_delay
        self.stream_calls: list[SynthesisRequest] = []
        self.buffer_calls: list[SynthesisRequest] = []
        self.streams_closed = 0

    async def _stream(self):
        try:
            if self.hang:
                await asyncio.Event().wait()
            for index, chunk in enumerate(self.stream_chunks):
                if self.stream_error is not None and index == self.error_after:
                    raise self.stream_error
                if self.chunk_delay:
                    await asyncio.sleep(self.chunk_delay)
                yield chunk
            if self.stream_error is not None and self.error_after >= len(self.stream_chunks):
                raise self.stream_error
        finally:
            self.streams_closed += 1

    def request_stream(self, request: SynthesisRequest):
        self.stream_calls.append(request)
        return self._stream()

    async def request_buffer(self, request: SynthesisRequest) -> bytes:
        self.buffer_calls.append(request)
        if self.buffer_error is not None:
            raise self.buffer_error
        return self.buffer_payload

    async def list_voices(self) -> list[Voice]:
        return [Voice(id="21m00Tcm4TlvDq8ikWAM", name="Rachel", gender="Female")]


class ScriptedSink(MemorySink):
    """MemorySink that can be told to reject appends and tracks concurrency."""

    def __init__(self, script: Iterable[AppendResult] = (), **kwargs):
        kwargs.setdefault("bytes_per_second", 1000)
        kwargs.setdefault("capacity_seconds", 600.0)
        super().__init__(**kwargs)
        self.script = deque(script)
        self.accepted: list[bytes] = []
        self.evictions: list[tuple[float, float]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def append(self, data: bytes) -> AppendResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.script:
                return self.script.popleft()
            result = await super().append(data)
            if result is AppendResult.OK:
                self.accepted.append(data)
            return result
        finally:
            self.in_flight -= 1

    def evict(self, start: float, end: float) -> None:
        self.evictions.append((start, end))
        super().evict(start, end)


class RecordingListener:
    def __init__(self):
        self.updates: list[tuple[float, float]] = []
        self.ended = 0
        self.errors: list[str] = []

    def on_time_update(self, current_time: float, duration: float) -> None:
        self.updates.append((current_time, duration))

    def on_ended(self) -> None:
        self.ended += 1

    def on_error(self, message: str) -> None:
        self.errors.append(message)


async def settle(cycles: int = 20) -> None:
    """Let scheduled tasks and zero-delay timers run."""
    for _ in range(cycles):
        await asyncio.sleep(0)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sink() -> ScriptedSink:
    return ScriptedSink()
