"""
Playback Controller: the state machine behind the control API.

The controller owns one sink, one StreamBufferManager and one
TransportNegotiator, and is the only component that emits lifecycle events.
Every state change goes through ``_dispatch`` and the transition table below;
side effects are looked up from the same table.

Architecture:
    play() → TextSegmenter → TransportNegotiator.deliver() → _accept_fragment()
                                                                 │
                                     StreamBufferManager.enqueue() ◀┘
                                                 │
                                             PlaybackSink → on_time_update / on_ended / on_error

Public commands are synchronous and return immediately; the audio session
runs as an asyncio task. Every session carries a generation token, bumped on
stop() and on each new play(), so late fragments and settle callbacks from an
earlier session are discarded.

Long text is played one chunk at a time. The provider request for chunk N+1
is made only when chunk N's media has ended; the controller goes back to
LOADING for it without emitting PlaybackEnded. PlaybackStarted and
PlaybackEnded are emitted once per utterance.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from functools import partial
from typing import Callable, Optional

from ...config import Settings, get_settings
from ...errors import DecodeError, InvalidTransitionError, PlaybackError
from .buffer import StreamBufferManager
from .events import (
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
    StateChanged,
    TimeUpdate,
)
from .models import (
    AudioFragment,
    BufferWindow,
    PlaybackSession,
    PlaybackState,
    StyleOptions,
    TransportMode,
    Utterance,
    UtteranceStatus,
)
from .provider import TTSProvider
from .sink import PlaybackSink
from .text_segmenter import TextSegmenter
from .transport import TransportNegotiator

logger = logging.getLogger(__name__)

EventListener = Callable[[PlaybackEvent], None]

MIN_SPEED = 0.25
MAX_SPEED = 4.0


class PlaybackTrigger(str, Enum):
    PLAY = "play"
    AUDIO_READY = "audio_ready"
    PAUSE = "pause"
    RESUME = "resume"
    MEDIA_ENDED = "media_ended"
    NEXT_CHUNK = "next_chunk"
    STOP = "stop"
    FAIL = "fail"
    RESET = "reset"


_S = PlaybackState
_T = PlaybackTrigger

# (state, trigger) -> (next state, side effect method name)
_TRANSITIONS: dict[tuple[PlaybackState, PlaybackTrigger], tuple[PlaybackState, Optional[str]]] = {
    (_S.IDLE, _T.PLAY): (_S.LOADING, "_begin_session"),
    (_S.ENDED, _T.RESET): (_S.IDLE, None),
    (_S.ERROR, _T.RESET): (_S.IDLE, None),
    (_S.LOADING, _T.AUDIO_READY): (_S.PLAYING, "_start_sink"),
    (_S.PLAYING, _T.PAUSE): (_S.PAUSED, "_pause_sink"),
    (_S.PAUSED, _T.RESUME): (_S.PLAYING, "_resume_sink"),
    (_S.PLAYING, _T.MEDIA_ENDED): (_S.ENDED, "_finish_session"),
    (_S.PLAYING, _T.NEXT_CHUNK): (_S.LOADING, "_begin_next_chunk"),
    **{
        (state, _T.STOP): (_S.IDLE, "_teardown")
        for state in (_S.LOADING, _S.PLAYING, _S.PAUSED, _S.ENDED, _S.ERROR)
    },
    **{
        (state, _T.FAIL): (_S.ERROR, "_teardown")
        for state in (_S.IDLE, _S.LOADING, _S.PLAYING, _S.PAUSED, _S.ENDED)
    },
}


class PlaybackController:
    """
    Plays one utterance at a time through a playback sink.

    Attributes:
        settings: Engine configuration (chunk length, timeouts, buffer window)
    """

    def __init__(
        self,
        provider: TTSProvider,
        sink: PlaybackSink,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._sink = sink
        self._buffer = StreamBufferManager.from_settings(
            sink, self.settings, on_fatal=self._on_buffer_fatal
        )
        self._transport = TransportNegotiator.from_settings(provider, self.settings)
        self._segmenter = TextSegmenter(self.settings.max_chunk_length)

        self._session = PlaybackSession()
        self._utterance: Optional[Utterance] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._transport_completed = False
        self._chunk_index = 0
        self._speed = self.settings.playback_speed
        self._paused_at: Optional[float] = None
        self._last_duration: Optional[float] = None

        self._listeners: list[tuple[EventListener, tuple[type, ...]]] = []
        self._state_waiters: list[tuple[PlaybackState, asyncio.Future[None]]] = []

        sink.attach(self)

    # -- read-only state ---------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._session.state

    @property
    def session(self) -> PlaybackSession:
        return self._session

    @property
    def utterance(self) -> Optional[Utterance]:
        return self._utterance

    @property
    def window(self) -> BufferWindow:
        return self._buffer.window

    @property
    def speed(self) -> float:
        return self._speed

    @property
    def position(self) -> float:
        return self._sink.current_time

    @property
    def session_task(self) -> Optional[asyncio.Task[None]]:
        return self._task

    # -- subscriptions -----------------------------------------------------

    def subscribe(
        self, listener: EventListener, *event_types: type
    ) -> Callable[[], None]:
        """Register ``listener`` for events, optionally filtered by type.

        Returns a callable that removes the subscription.
        """
        entry = (listener, tuple(event_types))
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def _emit(self, event: PlaybackEvent) -> None:
        for listener, event_types in list(self._listeners):
            if event_types and not isinstance(event, event_types):
                continue
            try:
                listener(event)
            except Exception:
                logger.exception(f"Playback listener failed on {event.type}")

    async def wait_for_state(
        self, state: PlaybackState, timeout: Optional[float] = None
    ) -> None:
        """Wait until the controller enters ``state``."""
        if self.state is state:
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (state, future)
        self._state_waiters.append(entry)
        try:
            await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._state_waiters:
                self._state_waiters.remove(entry)

    def _notify_waiters(self) -> None:
        for entry in list(self._state_waiters):
            state, future = entry
            if state is self.state and not future.done():
                future.set_result(None)
                self._state_waiters.remove(entry)

    # -- state machine -----------------------------------------------------

    def _dispatch(self, trigger: PlaybackTrigger) -> None:
        key = (self.state, trigger)
        if key not in _TRANSITIONS:
            raise InvalidTransitionError(self.state.value, trigger.value)

        previous = self.state
        next_state, effect = _TRANSITIONS[key]
        self._session.state = next_state
        logger.info(f"Playback {previous.value} -> {next_state.value} ({trigger.value})")

        event = getattr(self, effect)() if effect else None
        self._notify_waiters()
        utterance_id = self._utterance.id if self._utterance else None
        self._emit(StateChanged(previous, next_state, utterance_id))
        if event is not None:
            self._emit(event)

    def _begin_session(self) -> None:
        assert self._utterance is not None
        self._buffer.reset()
        self._sink.reset()
        self._session.reset()
        self._session.generation += 1
        self._session.active_utterance_id = self._utterance.id
        self._chunk_index = 0
        self._transport_completed = False
        self._paused_at = None
        self._last_duration = None
        self._start_chunk()

    def _begin_next_chunk(self) -> None:
        self._buffer.reset()
        self._sink.reset()
        self._chunk_index += 1
        self._transport_completed = False
        self._paused_at = None
        self._last_duration = None
        self._start_chunk()

    def _start_chunk(self) -> None:
        assert self._utterance is not None
        self._task = asyncio.create_task(
            self._run_chunk(self._session.generation, self._utterance, self._chunk_index)
        )

    def _start_sink(self) -> Optional[PlaybackEvent]:
        assert self._utterance is not None
        self._sink.set_rate(self._speed)
        self._sink.play()
        if self._chunk_index > 0:
            return None
        return PlaybackStarted(self._utterance.id, self._transport.active_mode)

    def _pause_sink(self) -> None:
        self._sink.pause()
        self._paused_at = self._sink.current_time

    def _resume_sink(self) -> None:
        self._paused_at = None
        self._sink.play()

    def _finish_session(self) -> PlaybackEvent:
        assert self._utterance is not None
        return PlaybackEnded(self._utterance.id)

    def _teardown(self) -> None:
        self._session.generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._buffer.reset()
        self._sink.reset()
        self._chunk_index = 0
        self._transport_completed = False
        self._paused_at = None
        self._session.reset()

    # -- control API -------------------------------------------------------

    def play(
        self,
        text: str,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        style: Optional[StyleOptions] = None,
    ) -> Optional[Utterance]:
        """
        Start speaking ``text``, replacing any active utterance.

        Returns:
            The new utterance, or None when the text has nothing to speak
        """
        if self.state in (_S.LOADING, _S.PLAYING, _S.PAUSED):
            self.stop()

        chunks = self._segmenter.segment(text)
        if not chunks:
            logger.info("Nothing to speak, ignoring play request")
            return None

        if self.state in (_S.ENDED, _S.ERROR):
            self._dispatch(_T.RESET)

        self._utterance = Utterance(
            text=text,
            voice_id=voice_id or self.settings.voice_id,
            model_id=model_id or self.settings.model_id,
            style=style,
            chunks=chunks,
        )
        logger.info(
            f"Playing utterance {self._utterance.id} "
            f"({len(text)} chars, {len(chunks)} chunks)"
        )
        self._dispatch(_T.PLAY)
        return self._utterance

    def pause(self) -> None:
        self._dispatch(_T.PAUSE)

    def resume(self) -> None:
        """Resume a paused utterance from the paused position."""
        if self.state is not _S.PAUSED:
            raise InvalidTransitionError(self.state.value, _T.RESUME.value)

        if not self._sink.has_data and self._transport_completed:
            utterance = self._utterance
            assert utterance is not None
            remaining = self._unplayed_text()
            logger.warning(
                f"Sink lost its data while paused, restarting {len(remaining)} unplayed chars"
            )
            self.stop()
            self.play(remaining, utterance.voice_id, utterance.model_id, utterance.style)
            return

        self._dispatch(_T.RESUME)

    def stop(self) -> None:
        """Cancel transport, drop buffered audio and return to idle."""
        if self.state is _S.IDLE:
            return
        self._dispatch(_T.STOP)

    def seek(self, time: float) -> None:
        if self.state not in (_S.PLAYING, _S.PAUSED):
            raise InvalidTransitionError(self.state.value, "seek")
        if time < 0:
            raise ValueError("Seek position must not be negative")
        self._sink.seek(time)
        if self.state is _S.PAUSED:
            self._paused_at = self._sink.current_time
        self._buffer.maintain_window()

    def set_speed(self, rate: float) -> None:
        if not MIN_SPEED <= rate <= MAX_SPEED:
            raise ValueError(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")
        self._speed = rate
        self._sink.set_rate(rate)

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _unplayed_text(self) -> str:
        """Text from the paused spot in the current chunk to the end of the utterance."""
        assert self._utterance is not None
        text = self._utterance.text
        chunk = self._utterance.chunks[self._chunk_index]
        remainder = text[chunk.char_start:]
        position = self._paused_at or 0.0
        duration = self._last_duration
        if not duration or not math.isfinite(duration):
            return remainder

        offset = int((chunk.char_end - chunk.char_start) * min(position / duration, 1.0))
        boundary = remainder.rfind(" ", 0, offset)
        return remainder[boundary + 1:] if boundary > 0 else remainder

    # -- session task ------------------------------------------------------

    async def _run_chunk(self, generation: int, utterance: Utterance, index: int) -> None:
        utterance.status = UtteranceStatus.STREAMING
        chunk = utterance.chunks[index]
        mode = self._session.transport_mode or TransportMode.INCREMENTAL
        on_fragment = partial(self._accept_fragment, generation)

        try:
            outcome = await self._transport.deliver(
                utterance.request_for(chunk), on_fragment, mode
            )
            if outcome.fell_back:
                self._session.fallback_count += 1
                self._session.retry_count = 0
                self._buffer.total_retries = 0
            self._session.transport_mode = outcome.mode
            logger.debug(
                f"Chunk {index + 1}/{len(utterance.chunks)} "
                f"delivered via {outcome.mode.value} ({outcome.fragments} fragments)"
            )
            await self._buffer.drain()
        except asyncio.CancelledError:
            raise
        except PlaybackError as exc:
            if generation == self._session.generation:
                self._fail(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected failure in playback session")
            if generation == self._session.generation:
                self._fail(PlaybackError(f"Unexpected playback failure: {exc}"))
            return

        if generation != self._session.generation or index != self._chunk_index:
            return
        self._buffer.finish()
        self._transport_completed = True
        if index == len(utterance.chunks) - 1:
            utterance.status = UtteranceStatus.COMPLETED
            logger.info(f"Transport complete for utterance {utterance.id}")

    def _accept_fragment(self, generation: int, fragment: AudioFragment) -> None:
        if generation != self._session.generation:
            logger.debug(
                f"Discarding fragment {fragment.arrival_order} from stale session {generation}"
            )
            return
        self._buffer.enqueue(fragment)
        self._session.retry_count = self._buffer.retry_count
        if self.state is _S.LOADING:
            self._dispatch(_T.AUDIO_READY)

    # -- failures ----------------------------------------------------------

    def _on_buffer_fatal(self, error: PlaybackError) -> None:
        self._fail(error)

    def _fail(self, error: PlaybackError) -> None:
        if self.state is _S.ERROR:
            return
        position = self._sink.current_time
        utterance_id = None
        if self._utterance is not None:
            self._utterance.status = UtteranceStatus.FAILED
            utterance_id = self._utterance.id
        logger.error(f"Playback failed ({error.kind}): {error.message}")
        self._dispatch(_T.FAIL)
        self._emit(PlaybackFailed(error.kind, error.message, utterance_id, position))

    # -- sink listener -----------------------------------------------------

    def on_time_update(self, current_time: float, duration: float) -> None:
        if self.state not in (_S.PLAYING, _S.PAUSED):
            return
        total: Optional[float] = None
        if math.isfinite(duration) and duration > 0:
            total = duration
            self._last_duration = duration
        self._buffer.maintain_window()
        self._emit(TimeUpdate(current_time, total))

    def on_ended(self) -> None:
        if self.state is not _S.PLAYING:
            return
        if not self._transport_completed:
            logger.debug("Sink ran dry before transport completed, waiting for more audio")
            return
        assert self._utterance is not None
        if self._chunk_index + 1 < len(self._utterance.chunks):
            self._dispatch(_T.NEXT_CHUNK)
            return
        self._dispatch(_T.MEDIA_ENDED)

    def on_error(self, message: str) -> None:
        if self.state in (_S.IDLE, _S.ERROR):
            return
        self._fail(DecodeError(message))
