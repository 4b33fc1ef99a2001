"""Playback sink interface and an in-process implementation.

A sink is the playback buffer plus the audio output clock. It is owned by a
single listener (the playback controller) and mutated only by the stream
buffer manager.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class AppendResult(str, Enum):
    OK = "ok"
    OVERFLOW = "overflow"
    FATAL = "fatal"


class SinkListener(Protocol):
    def on_time_update(self, current_time: float, duration: float) -> None: ...

    def on_ended(self) -> None: ...

    def on_error(self, message: str) -> None: ...


class PlaybackSink(Protocol):
    """Consumed interface of a playback buffer with an output clock."""

    @property
    def current_time(self) -> float: ...

    @property
    def duration(self) -> float: ...

    @property
    def buffered_start(self) -> float: ...

    @property
    def buffered_end(self) -> float: ...

    @property
    def has_data(self) -> bool: ...

    @property
    def paused(self) -> bool: ...

    def attach(self, listener: SinkListener) -> None: ...

    async def append(self, data: bytes) -> AppendResult: ...

    def evict(self, start: float, end: float) -> None: ...

    def end_of_stream(self) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, time: float) -> None: ...

    def set_rate(self, rate: float) -> None: ...

    def reset(self) -> None: ...


class MemorySink:
    """
    In-process sink that models a media buffer with a byte-rate clock.

    Appended bytes are converted to seconds at ``bytes_per_second``. The
    buffer holds at most ``capacity_seconds`` of audio; appends beyond that
    settle as OVERFLOW until older audio is evicted. Empty appends settle as
    FATAL, mirroring a decoder rejecting malformed data.

    The clock only moves through ``advance()``; ``run_clock()`` drives it in
    real time for a live deployment.
    """

    def __init__(
        self,
        *,
        bytes_per_second: int = 16_000,
        capacity_seconds: float = 90.0,
    ):
        self.bytes_per_second = bytes_per_second
        self.capacity_seconds = capacity_seconds
        self._listener: Optional[SinkListener] = None
        self._rate = 1.0
        self._clear()

    def _clear(self) -> None:
        self._buffered_start = 0.0
        self._buffered_end = 0.0
        self._current_time = 0.0
        self._paused = True
        self._stream_ended = False
        self._ended_emitted = False

    # -- ownership ---------------------------------------------------------

    def attach(self, listener: SinkListener) -> None:
        if self._listener is not None and self._listener is not listener:
            raise RuntimeError("Sink is already owned by another listener")
        self._listener = listener

    def detach(self) -> None:
        self._listener = None

    # -- read-only state ---------------------------------------------------

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def duration(self) -> float:
        return self._buffered_end if self._stream_ended else math.inf

    @property
    def buffered_start(self) -> float:
        return self._buffered_start

    @property
    def buffered_end(self) -> float:
        return self._buffered_end

    @property
    def has_data(self) -> bool:
        return self._buffered_end > self._buffered_start

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def rate(self) -> float:
        return self._rate

    # -- buffer mutation ---------------------------------------------------

    async def append(self, data: bytes) -> AppendResult:
        if not data:
            return AppendResult.FATAL
        seconds = len(data) / self.bytes_per_second
        held = self._buffered_end - self._buffered_start
        if held + seconds > self.capacity_seconds:
            return AppendResult.OVERFLOW
        self._buffered_end += seconds
        return AppendResult.OK

    def evict(self, start: float, end: float) -> None:
        # Only leading ranges can be removed; the cursor is never passed.
        if start > self._buffered_start or end <= self._buffered_start:
            return
        self._buffered_start = min(end, self._current_time, self._buffered_end)
        logger.debug(
            f"Evicted audio before {self._buffered_start:.2f}s "
            f"(buffered end {self._buffered_end:.2f}s)"
        )

    def end_of_stream(self) -> None:
        self._stream_ended = True

    # -- transport controls ------------------------------------------------

    def play(self) -> None:
        self._paused = False

    def pause(self) -> None:
        self._paused = True

    def seek(self, time: float) -> None:
        self._current_time = min(max(time, self._buffered_start), self._buffered_end)
        self._ended_emitted = False

    def set_rate(self, rate: float) -> None:
        self._rate = rate

    def reset(self) -> None:
        self._clear()

    # -- clock -------------------------------------------------------------

    def advance(self, seconds: float) -> None:
        """Move the playback cursor by ``seconds`` of wall time."""
        if self._paused or self._listener is None:
            return
        self._current_time = min(
            self._current_time + seconds * self._rate, self._buffered_end
        )
        self._listener.on_time_update(self._current_time, self.duration)
        if (
            self._stream_ended
            and not self._ended_emitted
            and self._current_time >= self._buffered_end
        ):
            self._ended_emitted = True
            self._paused = True
            self._listener.on_ended()

    async def run_clock(self, interval: float = 0.25) -> None:
        """Advance the clock in real time until cancelled."""
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(interval)
            now = loop.time()
            self.advance(now - last)
            last = now
