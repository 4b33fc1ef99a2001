"""
Stream Buffer Manager for Bounded Sink Playback.

This module mediates between the inbound fragment queue and the playback
sink. Sinks reject concurrent appends, so exactly one append is in flight at
any time; further fragments only grow the queue.

Architecture:
    on_fragment → enqueue() → queue → pump() → sink.append() → on_append_settled()
                                                                   │
                                        OK: maintain window, pump ◀┤
                         OVERFLOW: requeue at head, evict, backoff ◀┤
                                            FATAL: report upward ◀─┘

The manager is the only component allowed to append to or evict from the
sink. Window maintenance keeps the audio held behind the playback cursor
under ``max_window_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Callable, Optional

from ...errors import BufferOverflowError, DecodeError, PlaybackError
from .models import AudioFragment, BufferWindow
from .sink import AppendResult, PlaybackSink

if TYPE_CHECKING:
    from ...config import Settings

logger = logging.getLogger(__name__)


class StreamBufferManager:
    """
    Serializes appends into a playback sink and keeps its window bounded.

    Attributes:
        window: Last observed buffer window of the sink
        retry_count: Consecutive overflow retries for the head fragment
        total_retries: Overflow retries since the last reset
    """

    def __init__(
        self,
        sink: PlaybackSink,
        *,
        max_window_seconds: float = 90.0,
        keep_ratio: float = 1 / 3,
        overflow_keep_seconds: float = 2.0,
        max_retries: int = 10,
        retry_base_delay: float = 0.1,
        retry_max_delay: float = 2.0,
        on_fatal: Optional[Callable[[PlaybackError], None]] = None,
    ):
        self._sink = sink
        self.max_window_seconds = max_window_seconds
        self.keep_ratio = keep_ratio
        self.overflow_keep_seconds = overflow_keep_seconds
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._on_fatal = on_fatal

        self.window = BufferWindow(max_window_seconds=max_window_seconds)
        self.retry_count = 0
        self.total_retries = 0
        self.appended_count = 0

        self._queue: deque[AudioFragment] = deque()
        self._in_flight: Optional[AudioFragment] = None
        self._append_task: Optional[asyncio.Task[None]] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0
        self._error: Optional[PlaybackError] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @classmethod
    def from_settings(
        cls,
        sink: PlaybackSink,
        settings: "Settings",
        on_fatal: Optional[Callable[[PlaybackError], None]] = None,
    ) -> "StreamBufferManager":
        return cls(
            sink,
            max_window_seconds=settings.max_buffer_seconds,
            keep_ratio=settings.buffer_keep_ratio,
            overflow_keep_seconds=settings.overflow_keep_seconds,
            max_retries=settings.max_overflow_retries,
            retry_base_delay=settings.overflow_retry_base_delay,
            retry_max_delay=settings.overflow_retry_max_delay,
            on_fatal=on_fatal,
        )

    @property
    def queued(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def enqueue(self, fragment: AudioFragment) -> None:
        """Queue a fragment for appending; never blocks the producer."""
        if self._error is not None:
            logger.debug(f"Dropping fragment {fragment.arrival_order} after fatal error")
            return
        self._queue.append(fragment)
        self._idle.clear()
        self.pump()

    def pump(self) -> None:
        """Start the next append if none is in flight or waiting to retry."""
        if (
            self._in_flight is not None
            or self._retry_handle is not None
            or self._error is not None
            or not self._queue
        ):
            return

        fragment = self._queue.popleft()
        self._in_flight = fragment
        self._append_task = asyncio.create_task(
            self._append(fragment, self._generation)
        )

    async def _append(self, fragment: AudioFragment, generation: int) -> None:
        try:
            result = await self._sink.append(fragment.data)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Sink append raised for fragment {fragment.arrival_order}: {exc}")
            result = AppendResult.FATAL

        if generation != self._generation:
            logger.debug(f"Ignoring settle of fragment {fragment.arrival_order} from a reset session")
            return
        self.on_append_settled(result)

    def on_append_settled(self, result: AppendResult) -> None:
        """Handle the outcome of the in-flight append."""
        fragment = self._in_flight
        self._in_flight = None
        self._append_task = None
        if fragment is None:
            return

        if result is AppendResult.OK:
            self.retry_count = 0
            self.appended_count += 1
            self.maintain_window()
            self.pump()
            self._update_idle()
            return

        if result is AppendResult.OVERFLOW:
            if self.retry_count >= self.max_retries:
                self._fail(
                    BufferOverflowError(
                        f"Sink still full after {self.max_retries} retries"
                    )
                )
                return
            self.retry_count += 1
            self.total_retries += 1

            self._queue.appendleft(fragment)
            self._evict_before(self._sink.current_time - self.overflow_keep_seconds)
            delay = min(
                self.retry_base_delay * (2 ** (self.retry_count - 1)),
                self.retry_max_delay,
            )
            logger.warning(
                f"Sink overflow on fragment {fragment.arrival_order}, "
                f"retry {self.retry_count}/{self.max_retries} in {delay:.2f}s"
            )
            loop = asyncio.get_running_loop()
            self._retry_handle = loop.call_later(delay, self._retry)
            return

        self._fail(
            DecodeError(f"Sink rejected fragment {fragment.arrival_order} as malformed")
        )

    def _retry(self) -> None:
        self._retry_handle = None
        self.pump()

    def maintain_window(self) -> None:
        """Evict audio that sits too far behind the playback cursor."""
        self._refresh_window()
        if self._in_flight is not None:
            # Sinks cannot evict mid-append; the settle handler runs this again.
            return
        if self.window.behind_cursor <= self.max_window_seconds:
            return
        keep = self.max_window_seconds * self.keep_ratio
        self._evict_before(self.window.current_position - keep)

    def _evict_before(self, end: float) -> None:
        start = self._sink.buffered_start
        end = min(end, self._sink.current_time)
        if end <= start:
            return
        self._sink.evict(start, end)
        self._refresh_window()

    def _refresh_window(self) -> None:
        self.window.buffered_start = self._sink.buffered_start
        self.window.buffered_end = self._sink.buffered_end
        self.window.current_position = self._sink.current_time

    def finish(self) -> None:
        """Tell the sink no more audio follows."""
        self._sink.end_of_stream()

    async def drain(self) -> None:
        """Wait until every queued fragment has been appended."""
        await self._idle.wait()
        if self._error is not None:
            raise self._error

    def reset(self) -> None:
        """Drop queued audio and invalidate any in-flight append."""
        self._generation += 1
        self._queue.clear()
        if self._append_task is not None:
            self._append_task.cancel()
            self._append_task = None
        self._in_flight = None
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._error = None
        self.retry_count = 0
        self.total_retries = 0
        self.appended_count = 0
        self.window.reset()
        self._idle.set()

    def _update_idle(self) -> None:
        if not self._queue and self._in_flight is None and self._retry_handle is None:
            self._idle.set()

    def _fail(self, error: PlaybackError) -> None:
        logger.error(f"Stream buffer failure: {error}")
        self._error = error
        self._queue.clear()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._idle.set()
        if self._on_fatal is not None:
            self._on_fatal(error)
