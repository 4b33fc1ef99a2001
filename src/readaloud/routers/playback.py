"""REST and WebSocket endpoints for controlling playback."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from ..errors import InvalidTransitionError, PlaybackError
from ..schemas.playback import (
    BufferWindowResponse,
    PlaybackStatus,
    PlaylistRequest,
    PlaylistStatus,
    PlayRequest,
    SeekRequest,
    SpeedRequest,
    VoiceResponse,
)
from ..services.tts import PlaybackController, PlaylistRunner, TTSProvider, split_paragraphs
from ..services.tts.events import PlaybackEvent

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/playback", tags=["playback"])


def get_controller(request: Request) -> PlaybackController:
    controller = getattr(request.app.state, "playback_controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Playback service not available")
    return controller


def get_playlist(request: Request) -> PlaylistRunner:
    runner = getattr(request.app.state, "playlist_runner", None)
    if runner is None:
        raise HTTPException(status_code=503, detail="Playlist service not available")
    return runner


def _status(controller: PlaybackController, runner: PlaylistRunner | None = None) -> PlaybackStatus:
    session = controller.session
    window = controller.window
    playlist = None
    if runner is not None:
        playlist = PlaylistStatus(
            items=len(runner.state.items),
            current_index=runner.current_index,
            progress=runner.progress,
            active=runner.active,
        )
    return PlaybackStatus(
        state=controller.state,
        utterance_id=session.active_utterance_id,
        transport_mode=session.transport_mode,
        position=controller.position,
        speed=controller.speed,
        retry_count=session.retry_count,
        fallback_count=session.fallback_count,
        window=BufferWindowResponse(
            buffered_start=window.buffered_start,
            buffered_end=window.buffered_end,
            current_position=window.current_position,
            max_window_seconds=window.max_window_seconds,
        ),
        playlist=playlist,
    )


def _conflict(exc: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


@router.get("/status", response_model=PlaybackStatus)
async def get_status(request: Request) -> PlaybackStatus:
    return _status(get_controller(request), get_playlist(request))


@router.post("/play", response_model=PlaybackStatus)
async def play(request: Request, body: PlayRequest) -> PlaybackStatus:
    """Speak text, replacing whatever is playing."""
    controller = get_controller(request)
    runner = get_playlist(request)
    if runner.active:
        runner.stop()
    controller.play(body.text, body.voice_id, body.model_id, body.style)
    return _status(controller, runner)


@router.post("/playlist", response_model=PlaybackStatus)
async def play_playlist(request: Request, body: PlaylistRequest) -> PlaybackStatus:
    """Speak a list of segments, or the paragraphs of a page of text."""
    controller = get_controller(request)
    runner = get_playlist(request)

    segments = list(body.segments)
    if body.text:
        segments.extend(split_paragraphs(body.text))
    if not segments:
        raise HTTPException(status_code=422, detail="Playlist has no segments")

    runner.load(segments)
    runner.voice_id = body.voice_id
    runner.model_id = body.model_id
    runner.style = body.style
    try:
        runner.start(body.start_index)
    except IndexError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _status(controller, runner)


@router.post("/pause", response_model=PlaybackStatus)
async def pause(request: Request) -> PlaybackStatus:
    controller = get_controller(request)
    try:
        controller.pause()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    return _status(controller, get_playlist(request))


@router.post("/resume", response_model=PlaybackStatus)
async def resume(request: Request) -> PlaybackStatus:
    controller = get_controller(request)
    try:
        controller.resume()
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    return _status(controller, get_playlist(request))


@router.post("/stop", response_model=PlaybackStatus)
async def stop(request: Request) -> PlaybackStatus:
    controller = get_controller(request)
    runner = get_playlist(request)
    if runner.active:
        runner.stop()
    else:
        controller.stop()
    return _status(controller, runner)


@router.post("/seek", response_model=PlaybackStatus)
async def seek(request: Request, body: SeekRequest) -> PlaybackStatus:
    controller = get_controller(request)
    try:
        controller.seek(body.position)
    except InvalidTransitionError as exc:
        raise _conflict(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _status(controller, get_playlist(request))


@router.post("/speed", response_model=PlaybackStatus)
async def set_speed(request: Request, body: SpeedRequest) -> PlaybackStatus:
    controller = get_controller(request)
    try:
        controller.set_speed(body.rate)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _status(controller, get_playlist(request))


@router.get("/voices", response_model=list[VoiceResponse])
async def list_voices(request: Request) -> list[VoiceResponse]:
    """List the voices available from the TTS provider."""
    provider: TTSProvider | None = getattr(request.app.state, "tts_provider", None)
    if provider is None:
        raise HTTPException(status_code=503, detail="TTS provider not available")
    try:
        voices = await provider.list_voices()
    except PlaybackError as exc:
        logger.error(f"Voice listing failed: {exc}")
        raise HTTPException(status_code=502, detail=exc.message) from exc
    return [
        VoiceResponse(id=v.id, name=v.name, gender=v.gender, accent=v.accent)
        for v in voices
    ]


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/events")
async def playback_events(websocket: WebSocket):
    """Forward controller events to the client as JSON messages."""
    controller: PlaybackController | None = getattr(
        websocket.app.state, "playback_controller", None
    )
    await websocket.accept()
    if controller is None:
        await websocket.close(code=1011, reason="Playback service not available")
        return

    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def _forward(event: PlaybackEvent) -> None:
        queue.put_nowait(event.asdict())

    unsubscribe = controller.subscribe(_forward)
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    logger.info("Playback event client connected")
    try:
        await websocket.send_json(
            {"type": "status", **_status(controller).model_dump(mode="json")}
        )
        while True:
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {getter, disconnect}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnect in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        disconnect.cancel()
        logger.info("Playback event client disconnected")
