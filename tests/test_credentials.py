"""Tests for the provider credential service."""

import asyncio

import pytest

from conftest import make_settings
from readaloud.errors import TransportError
from readaloud.services.tts.credentials import CredentialService


class SequenceLoader:
    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        value = self.values.pop(0) if self.values else None
        if isinstance(value, Exception):
            raise value
        return value


class TestCredentialService:
    @pytest.mark.asyncio
    async def test_acquire_caches_value(self):
        loader = SequenceLoader("key-1", "key-2")
        service = CredentialService(loader)

        assert await service.acquire() == "key-1"
        assert await service.acquire() == "key-1"
        assert loader.calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self):
        loader = SequenceLoader("key-1", "key-2")
        service = CredentialService(loader)

        await service.acquire()
        service.invalidate()

        assert await service.acquire() == "key-2"

    @pytest.mark.asyncio
    async def test_missing_credential_raises_auth(self):
        service = CredentialService(SequenceLoader(""))

        with pytest.raises(TransportError) as exc_info:
            await service.acquire()
        assert exc_info.value.kind == "transport.auth"

    @pytest.mark.asyncio
    async def test_refresh_replaces_cached_value(self):
        loader = SequenceLoader("key-1", "key-2")
        service = CredentialService(loader, refresh_interval=0.01)

        await service.acquire()
        service.start()
        await asyncio.sleep(0.05)
        await service.aclose()

        assert await service.acquire() == "key-2"

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_cached_value(self):
        loader = SequenceLoader("key-1", RuntimeError("vault unavailable"))
        service = CredentialService(loader, refresh_interval=0.01)

        await service.acquire()
        service.start()
        await asyncio.sleep(0.03)
        await service.aclose()

        assert await service.acquire() == "key-1"

    @pytest.mark.asyncio
    async def test_from_settings_reads_api_key(self):
        service = CredentialService.from_settings(make_settings(elevenlabs_api_key="abc"))
        assert await service.acquire() == "abc"
