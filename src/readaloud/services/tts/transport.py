"""
Transport Negotiator for Incremental and Buffered Audio Fetching.

Obtains the audio for one chunk of an utterance and normalizes it into an
ordered fragment stream, switching strategy when the live stream fails to
start.

Architecture:
    SynthesisRequest → deliver() ─┬─ INCREMENTAL: provider.request_stream() ─┐
                                  │    (no data within timeout / error)      │
                                  │              ▼                           ▼
                                  └─ BUFFERED: provider.request_buffer() → on_fragment()

Fallback rules:
1. The first fragment must arrive within ``stream_start_timeout`` seconds
2. A timeout, a TransportError, or an empty stream before any data closes the
   stream and retries once in buffered mode
3. A failure after data has arrived is raised to the caller, never a fallback
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Callable

from ...errors import PlaybackError, StreamTimeoutError, TransportError, TransportErrorKind
from .models import AudioFragment, SynthesisRequest, TransportMode
from .provider import TTSProvider

if TYPE_CHECKING:
    from ...config import Settings

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[AudioFragment], None]


@dataclass(frozen=True)
class TransportOutcome:
    mode: TransportMode
    fell_back: bool
    fragments: int


class _FallbackRequired(Exception):
    def __init__(self, cause: PlaybackError):
        super().__init__(str(cause))
        self.cause = cause


class TransportNegotiator:
    """
    Chooses between streaming and whole-payload transport for each request.

    Attributes:
        provider: The TTS provider audio is fetched from
        stream_start_timeout: Seconds to wait for the first streamed fragment
        buffered_fragment_size: Bytes per fragment when slicing a full payload
    """

    def __init__(
        self,
        provider: TTSProvider,
        *,
        stream_start_timeout: float = 15.0,
        buffered_fragment_size: int = 32 * 1024,
    ):
        self.provider = provider
        self.stream_start_timeout = stream_start_timeout
        self.buffered_fragment_size = buffered_fragment_size
        self.active_mode = TransportMode.INCREMENTAL

    @classmethod
    def from_settings(cls, provider: TTSProvider, settings: "Settings") -> "TransportNegotiator":
        return cls(
            provider,
            stream_start_timeout=settings.stream_start_timeout,
            buffered_fragment_size=settings.buffered_fragment_bytes,
        )

    async def deliver(
        self,
        request: SynthesisRequest,
        on_fragment: FragmentCallback,
        mode: TransportMode = TransportMode.INCREMENTAL,
    ) -> TransportOutcome:
        """
        Fetch audio for ``request`` and hand every fragment to ``on_fragment``.

        Args:
            request: Text and voice parameters for one chunk
            on_fragment: Receives fragments strictly in arrival order
            mode: Starting transport; BUFFERED skips the streaming attempt

        Returns:
            The transport that delivered the audio and whether it fell back

        Raises:
            PlaybackError: If buffered mode fails, or a started stream breaks
        """
        if mode is TransportMode.INCREMENTAL:
            self.active_mode = TransportMode.INCREMENTAL
            try:
                count = await self._stream(request, on_fragment)
                return TransportOutcome(TransportMode.INCREMENTAL, False, count)
            except _FallbackRequired as exc:
                logger.warning(f"Incremental transport failed to start ({exc.cause}), falling back to buffered")
            self.active_mode = TransportMode.BUFFERED
            count = await self._buffered(request, on_fragment)
            return TransportOutcome(TransportMode.BUFFERED, True, count)

        self.active_mode = TransportMode.BUFFERED
        count = await self._buffered(request, on_fragment)
        return TransportOutcome(TransportMode.BUFFERED, False, count)

    async def _stream(self, request: SynthesisRequest, on_fragment: FragmentCallback) -> int:
        stream = self.provider.request_stream(request)
        iterator = stream.__aiter__()
        try:
            try:
                first = await asyncio.wait_for(
                    iterator.__anext__(), timeout=self.stream_start_timeout
                )
            except asyncio.TimeoutError as exc:
                raise _FallbackRequired(
                    StreamTimeoutError(
                        f"No audio within {self.stream_start_timeout:.1f}s of stream start"
                    )
                ) from exc
            except StopAsyncIteration as exc:
                raise _FallbackRequired(
                    TransportError(TransportErrorKind.MALFORMED_RESPONSE, "Stream ended without audio")
                ) from exc
            except TransportError as exc:
                raise _FallbackRequired(exc) from exc

            on_fragment(AudioFragment(first, 0))
            order = 1
            async for data in iterator:
                on_fragment(AudioFragment(data, order))
                order += 1
            logger.debug(f"Stream complete after {order} fragments")
            return order
        finally:
            await self._close(iterator)

    @staticmethod
    async def _close(iterator: AsyncIterator[bytes]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _buffered(self, request: SynthesisRequest, on_fragment: FragmentCallback) -> int:
        payload = await self.provider.request_buffer(request)
        if not payload:
            raise TransportError(TransportErrorKind.MALFORMED_RESPONSE, "Provider returned an empty payload")

        size = self.buffered_fragment_size
        order = 0
        for offset in range(0, len(payload), size):
            on_fragment(AudioFragment(payload[offset:offset + size], order))
            order += 1
        logger.debug(f"Buffered payload of {len(payload)} bytes delivered as {order} fragments")
        return order
