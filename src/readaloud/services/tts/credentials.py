"""Provider credential service with explicit lifecycle."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from ...errors import TransportError, TransportErrorKind

if TYPE_CHECKING:
    from ...config import Settings

logger = logging.getLogger(__name__)

CredentialLoader = Callable[[], Awaitable[Optional[str]]]


class CredentialService:
    """Caches a provider credential and optionally refreshes it on a schedule.

    Each instance owns its cache, so tests can build isolated services with a
    fake loader.
    """

    def __init__(
        self,
        loader: CredentialLoader,
        *,
        refresh_interval: Optional[float] = None,
    ):
        self._loader = loader
        self._refresh_interval = refresh_interval
        self._cached: Optional[str] = None
        self._lock = asyncio.Lock()
        self._refresh_task: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CredentialService":
        async def _load() -> Optional[str]:
            key = settings.elevenlabs_api_key
            return key.get_secret_value() if key else None

        return cls(_load, refresh_interval=settings.credential_refresh_seconds)

    async def acquire(self) -> str:
        """Return the cached credential, loading it on first use."""
        if self._cached is not None:
            return self._cached

        async with self._lock:
            if self._cached is None:
                self._cached = await self._loader() or None
            if self._cached is None:
                raise TransportError(TransportErrorKind.AUTH, "No API key configured")
            return self._cached

    def invalidate(self) -> None:
        """Forget the cached credential so the next acquire reloads it."""
        if self._cached is not None:
            logger.info("Invalidating cached provider credential")
        self._cached = None

    def start(self) -> None:
        """Start the scheduled refresh task, if an interval is configured."""
        if self._refresh_interval is None or self._refresh_task is not None:
            return
        self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        assert self._refresh_interval is not None
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                value = await self._loader()
            except Exception as exc:
                logger.warning(f"Credential refresh failed, keeping cached value: {exc}")
                continue
            if value:
                self._cached = value
                logger.debug("Provider credential refreshed")

    async def aclose(self) -> None:
        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._refresh_task
        self._refresh_task = None
