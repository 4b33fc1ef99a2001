import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional, Protocol

import httpx

from ...errors import TransportError, TransportErrorKind
from .credentials import CredentialService
from .models import SynthesisRequest

if TYPE_CHECKING:
    from ...config import Settings

logger = logging.getLogger(__name__)

_MALE_NAMES = (
    "Adam", "Antoni", "Arnold", "Clyde", "Daniel", "Dave", "David", "Drew",
    "Ethan", "Fin", "Harry", "James", "Jeremy", "Josh", "Matthew", "Michael",
    "Patrick", "Paul", "Sam", "Thomas",
)
_FEMALE_NAMES = (
    "Amala", "Anna", "Ashley", "Charlotte", "Domi", "Dorothy", "Ella", "Emma",
    "Elli", "Emily", "Gigi", "Grace", "Isabella", "Jessie", "Joanne", "Lily",
    "Madison", "Nicole", "Rachel", "Sarah", "Serena", "Sofia",
)
_ACCENTS = (
    "American", "British", "Australian", "Indian", "German", "French",
    "Italian", "Japanese", "Spanish",
)

_DEFAULT_VOICE_SETTINGS = {"stability": 0.5, "similarity_boost": 0.5}


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    gender: str = "Unknown"
    accent: str = "Unknown"

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Voice":
        """Build a voice, guessing gender and accent from the display name."""
        name = payload.get("name", "")
        gender = "Unknown"
        if any(candidate in name for candidate in _MALE_NAMES):
            gender = "Male"
        elif any(candidate in name for candidate in _FEMALE_NAMES):
            gender = "Female"
        accent = next((a for a in _ACCENTS if a in name), "Unknown")
        return cls(id=payload["voice_id"], name=name, gender=gender, accent=accent)


class TTSProvider(Protocol):
    """Remote speech synthesis with a streaming and a whole-payload mode."""

    def request_stream(self, request: SynthesisRequest) -> AsyncIterator[bytes]: ...

    async def request_buffer(self, request: SynthesisRequest) -> bytes: ...

    async def list_voices(self) -> List[Voice]: ...


class ElevenLabsProvider:
    """
    ElevenLabs text-to-speech over HTTP.

    Uses one pooled httpx.AsyncClient per provider instance. Streaming reads
    are coalesced into fragments of ``fragment_size`` bytes; the first read is
    forwarded immediately for minimal time-to-first-audio.

    Every failure is raised as a classified TransportError.
    """

    def __init__(
        self,
        credentials: CredentialService,
        *,
        base_url: str = "https://api.elevenlabs.io/v1",
        timeout: float = 30.0,
        fragment_size: int = 16 * 1024,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._fragment_size = fragment_size
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        credentials: Optional[CredentialService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ElevenLabsProvider":
        return cls(
            credentials or CredentialService.from_settings(settings),
            base_url=str(settings.elevenlabs_base_url),
            timeout=settings.request_timeout,
            fragment_size=settings.stream_fragment_bytes,
            http_client=http_client,
        )

    def get_http_client(self) -> httpx.AsyncClient:
        """Get the pooled HTTP client, creating it on first use."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            logger.info("Created httpx.AsyncClient for ElevenLabs")
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client. Call on app shutdown."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            logger.info("Closed ElevenLabs HTTP client")

    async def _headers(self) -> dict[str, str]:
        api_key = await self._credentials.acquire()
        return {
            "Accept": "audio/mpeg",
            "xi-api-key": api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _payload(request: SynthesisRequest) -> dict[str, Any]:
        if request.style is not None:
            voice_settings: dict[str, Any] = request.style.voice_settings()
            voice_settings["speed"] = request.style.speed
        else:
            voice_settings = dict(_DEFAULT_VOICE_SETTINGS)
        return {
            "text": request.text,
            "model_id": request.model_id,
            "voice_settings": voice_settings,
        }

    def _classify(self, status_code: int, body: str) -> TransportError:
        detail = body[:200]
        if "quota_exceeded" in body or status_code == 429:
            return TransportError(
                TransportErrorKind.QUOTA, f"Provider quota exceeded: {detail}", status_code
            )
        if status_code in (401, 403):
            self._credentials.invalidate()
            return TransportError(
                TransportErrorKind.AUTH, f"Provider rejected credentials: {detail}", status_code
            )
        if status_code >= 500:
            return TransportError(
                TransportErrorKind.NETWORK, f"Provider unavailable ({status_code})", status_code
            )
        return TransportError(
            TransportErrorKind.MALFORMED_RESPONSE,
            f"Provider rejected request ({status_code}): {detail}",
            status_code,
        )

    def request_stream(self, request: SynthesisRequest) -> AsyncIterator[bytes]:
        """Stream synthesized audio. Closing the iterator cancels the request."""
        return self._coalesce(self._stream(request))

    async def _stream(self, request: SynthesisRequest) -> AsyncIterator[bytes]:
        headers = await self._headers()
        url = f"{self._base_url}/text-to-speech/{request.voice_id}/stream"
        client = self.get_http_client()

        try:
            async with client.stream(
                "POST",
                url,
                headers=headers,
                json=self._payload(request),
                timeout=self._timeout,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise self._classify(response.status_code, body)
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(
                TransportErrorKind.NETWORK, f"Streaming request failed: {exc}"
            ) from exc

    async def _coalesce(self, stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """
        Buffer small reads into fragments of ``fragment_size`` bytes.
        The first read is yielded as soon as it arrives to start playback ASAP.
        """
        buffer = bytearray()
        first_sent = False
        try:
            async for chunk in stream:
                if not first_sent:
                    first_sent = True
                    yield bytes(chunk)
                    continue

                buffer.extend(chunk)
                while len(buffer) >= self._fragment_size:
                    yield bytes(buffer[: self._fragment_size])
                    del buffer[: self._fragment_size]

            if buffer:
                yield bytes(buffer)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def request_buffer(self, request: SynthesisRequest) -> bytes:
        """Fetch the complete audio payload in one request."""
        headers = await self._headers()
        url = f"{self._base_url}/text-to-speech/{request.voice_id}"
        client = self.get_http_client()

        try:
            response = await client.post(
                url,
                headers=headers,
                json=self._payload(request),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                TransportErrorKind.NETWORK, f"Buffered request failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise self._classify(response.status_code, response.text)

        audio_data = response.content
        if not audio_data:
            raise TransportError(
                TransportErrorKind.MALFORMED_RESPONSE, "Provider returned an empty payload"
            )
        logger.info(
            f"ElevenLabs synthesized {len(audio_data)} bytes for text: {request.text[:50]}..."
        )
        return audio_data

    async def list_voices(self) -> List[Voice]:
        """Fetch the voices available to this account."""
        api_key = await self._credentials.acquire()
        client = self.get_http_client()
        try:
            response = await client.get(
                f"{self._base_url}/voices",
                headers={"xi-api-key": api_key, "Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                TransportErrorKind.NETWORK, f"Voice listing failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise self._classify(response.status_code, response.text)

        try:
            voices = response.json()["voices"]
        except (ValueError, KeyError) as exc:
            raise TransportError(
                TransportErrorKind.MALFORMED_RESPONSE, f"Unexpected voices payload: {exc}"
            ) from exc
        return [Voice.from_api(voice) for voice in voices]
