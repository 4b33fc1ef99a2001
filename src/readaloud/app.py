"""Application factory for the playback service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .routers.playback import router as playback_router
from .services.tts import (
    CredentialService,
    ElevenLabsProvider,
    MemorySink,
    PlaybackController,
    PlaybackSink,
    PlaylistRunner,
    TTSProvider,
)


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # Always add console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    logging.getLogger("readaloud").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    logging.getLogger("httpx").setLevel(log_level)
    logging.getLogger("httpcore").setLevel(log_level)
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[TTSProvider] = None,
    sink: Optional[PlaybackSink] = None,
) -> FastAPI:
    """Build the FastAPI app around one playback controller.

    ``provider`` and ``sink`` default to ElevenLabs and an in-process
    MemorySink driven by a real-time clock; tests pass fakes and move
    the clock themselves.
    """
    _configure_logging()

    settings = settings or get_settings()

    credentials: Optional[CredentialService] = None
    if provider is None:
        credentials = CredentialService.from_settings(settings)
        provider = ElevenLabsProvider.from_settings(settings, credentials)

    clocked_sink: Optional[MemorySink] = None
    if sink is None:
        sink = clocked_sink = MemorySink(
            bytes_per_second=settings.sink_bytes_per_second,
            capacity_seconds=settings.sink_capacity_seconds,
        )

    controller = PlaybackController(provider, sink, settings)
    runner = PlaylistRunner(controller)
    clock_task: asyncio.Task | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal clock_task
        if clocked_sink is not None:
            clock_task = asyncio.create_task(clocked_sink.run_clock())
        if credentials is not None:
            credentials.start()
        try:
            yield
        finally:
            runner.close()
            await controller.aclose()
            if clock_task is not None:
                clock_task.cancel()
                with suppress(asyncio.CancelledError):
                    await clock_task
            if credentials is not None:
                await credentials.aclose()
            aclose = getattr(provider, "aclose", None)
            if aclose is not None:
                try:
                    await asyncio.wait_for(aclose(), timeout=10.0)
                except asyncio.TimeoutError:
                    logging.warning("Provider shutdown timed out after 10s")

    app = FastAPI(
        title="Read Aloud Playback Service",
        version="0.1.0",
        description="Streaming text-to-speech playback powered by ElevenLabs.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.tts_provider = provider
    app.state.playback_sink = sink
    app.state.playback_controller = controller
    app.state.playlist_runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(playback_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {
            "status": "ok",
            "playback_state": controller.state.value,
            "voice_id": settings.voice_id,
            "model_id": settings.model_id,
        }

    return app


__all__ = ["create_app"]
