"""Tests for the ElevenLabs provider using an in-memory HTTP transport."""

import json

import httpx
import pytest

from readaloud.errors import TransportError, TransportErrorKind
from readaloud.services.tts.credentials import CredentialService
from readaloud.services.tts.models import StyleOptions, SynthesisRequest
from readaloud.services.tts.provider import ElevenLabsProvider, Voice

REQUEST = SynthesisRequest(text="Hello there.", voice_id="voice123", model_id="eleven_turbo_v2")


class CountingLoader:
    def __init__(self, value="secret-key"):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


def make_provider(handler, loader=None, fragment_size=16 * 1024):
    loader = loader or CountingLoader()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = ElevenLabsProvider(
        CredentialService(loader),
        base_url="https://api.elevenlabs.io/v1",
        fragment_size=fragment_size,
        http_client=client,
    )
    return provider, loader


async def read_stream(provider, request=REQUEST):
    return [chunk async for chunk in provider.request_stream(request)]


class TestRequests:
    @pytest.mark.asyncio
    async def test_stream_request_shape(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"audio-bytes")

        provider, _ = make_provider(handler)
        chunks = await read_stream(provider)

        assert b"".join(chunks) == b"audio-bytes"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/text-to-speech/voice123/stream"
        assert request.headers["xi-api-key"] == "secret-key"
        assert request.headers["accept"] == "audio/mpeg"
        body = json.loads(request.content)
        assert body["text"] == "Hello there."
        assert body["model_id"] == "eleven_turbo_v2"
        assert body["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.5}

    @pytest.mark.asyncio
    async def test_buffer_request_uses_style(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"x" * 500)

        provider, _ = make_provider(handler)
        styled = SynthesisRequest(
            text="Slowly now.",
            voice_id="voice123",
            model_id="eleven_turbo_v2",
            style=StyleOptions(stability=0.8, cadence="slow"),
        )
        payload = await provider.request_buffer(styled)

        assert payload == b"x" * 500
        assert seen[0].url.path == "/v1/text-to-speech/voice123"
        settings = json.loads(seen[0].content)["voice_settings"]
        assert settings["stability"] == 0.8
        assert settings["speed"] == 0.7

    @pytest.mark.asyncio
    async def test_list_voices_guesses_gender_and_accent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "voices": [
                        {"voice_id": "a", "name": "Rachel"},
                        {"voice_id": "b", "name": "Daniel British"},
                        {"voice_id": "c", "name": "Narrator"},
                    ]
                },
            )

        provider, _ = make_provider(handler)
        voices = await provider.list_voices()

        assert voices == [
            Voice(id="a", name="Rachel", gender="Female", accent="Unknown"),
            Voice(id="b", name="Daniel British", gender="Male", accent="British"),
            Voice(id="c", name="Narrator", gender="Unknown", accent="Unknown"),
        ]


class TestCoalescing:
    @pytest.mark.asyncio
    async def test_first_read_forwarded_then_fixed_size_fragments(self):
        provider, _ = make_provider(lambda request: httpx.Response(200), fragment_size=4)

        async def reads():
            for piece in (b"ab", b"cd", b"ef", b"gh", b"i"):
                yield piece

        fragments = [f async for f in provider._coalesce(reads())]

        assert fragments == [b"ab", b"cdef", b"ghi"]


class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,body,kind",
        [
            (429, b"slow down", TransportErrorKind.QUOTA),
            (400, b'{"detail": {"status": "quota_exceeded"}}', TransportErrorKind.QUOTA),
            (403, b"forbidden", TransportErrorKind.AUTH),
            (503, b"unavailable", TransportErrorKind.NETWORK),
            (422, b"bad voice", TransportErrorKind.MALFORMED_RESPONSE),
        ],
    )
    async def test_stream_status_codes(self, status, body, kind):
        provider, _ = make_provider(lambda request: httpx.Response(status, content=body))

        with pytest.raises(TransportError) as exc_info:
            await read_stream(provider)

        assert exc_info.value.error_kind is kind
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_auth_failure_invalidates_credential(self):
        provider, loader = make_provider(lambda request: httpx.Response(401, content=b"bad key"))

        with pytest.raises(TransportError):
            await provider.request_buffer(REQUEST)
        with pytest.raises(TransportError) as exc_info:
            await provider.request_buffer(REQUEST)

        assert exc_info.value.kind == "transport.auth"
        assert loader.calls == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider, _ = make_provider(handler)

        with pytest.raises(TransportError) as exc_info:
            await provider.request_buffer(REQUEST)
        assert exc_info.value.error_kind is TransportErrorKind.NETWORK

        with pytest.raises(TransportError) as exc_info:
            await read_stream(provider)
        assert exc_info.value.error_kind is TransportErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_empty_buffer_is_malformed(self):
        provider, _ = make_provider(lambda request: httpx.Response(200, content=b""))

        with pytest.raises(TransportError) as exc_info:
            await provider.request_buffer(REQUEST)
        assert exc_info.value.error_kind is TransportErrorKind.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_missing_api_key_is_auth(self):
        provider, _ = make_provider(
            lambda request: httpx.Response(200, content=b"x"), loader=CountingLoader(None)
        )

        with pytest.raises(TransportError) as exc_info:
            await provider.request_buffer(REQUEST)
        assert exc_info.value.error_kind is TransportErrorKind.AUTH


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_releases_client(self):
        provider, _ = make_provider(lambda request: httpx.Response(200, content=b"x"))
        await provider.aclose()
        # A fresh pooled client is created on demand.
        assert isinstance(provider.get_http_client(), httpx.AsyncClient)
        await provider.aclose()
