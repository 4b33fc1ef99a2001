"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    elevenlabs_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("ELEVENLABS_API_KEY", "elevenlabs_api_key"),
    )
    elevenlabs_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.elevenlabs.io/v1"),
        validation_alias=AliasChoices("ELEVENLABS_BASE_URL", "elevenlabs_base_url"),
    )
    request_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("REQUEST_TIMEOUT", "request_timeout"),
    )
    credential_refresh_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices(
            "CREDENTIAL_REFRESH_SECONDS", "credential_refresh_seconds"
        ),
    )

    # Voice selection
    voice_id: str = Field(
        default="21m00Tcm4TlvDq8ikWAM",
        validation_alias=AliasChoices("TTS_VOICE_ID", "voice_id"),
    )
    model_id: str = Field(
        default="eleven_turbo_v2",
        validation_alias=AliasChoices("TTS_MODEL_ID", "model_id"),
    )
    playback_speed: float = Field(
        default=1.0,
        ge=0.25,
        le=4.0,
        validation_alias=AliasChoices("PLAYBACK_SPEED", "playback_speed"),
    )

    # Text segmentation
    max_chunk_length: int = Field(
        default=2000,
        ge=1,
        validation_alias=AliasChoices("MAX_CHUNK_LENGTH", "max_chunk_length"),
    )

    # Buffer window
    max_buffer_seconds: float = Field(
        default=90.0,
        gt=0,
        validation_alias=AliasChoices("MAX_BUFFER_SECONDS", "max_buffer_seconds"),
    )
    buffer_keep_ratio: float = Field(
        default=1 / 3,
        gt=0,
        le=1,
        validation_alias=AliasChoices("BUFFER_KEEP_RATIO", "buffer_keep_ratio"),
    )
    overflow_keep_seconds: float = Field(
        default=2.0,
        ge=0,
        validation_alias=AliasChoices(
            "OVERFLOW_KEEP_SECONDS", "overflow_keep_seconds"
        ),
    )
    max_overflow_retries: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("MAX_OVERFLOW_RETRIES", "max_overflow_retries"),
    )
    overflow_retry_base_delay: float = Field(
        default=0.1,
        ge=0,
        validation_alias=AliasChoices(
            "OVERFLOW_RETRY_BASE_DELAY", "overflow_retry_base_delay"
        ),
    )
    overflow_retry_max_delay: float = Field(
        default=2.0,
        ge=0,
        validation_alias=AliasChoices(
            "OVERFLOW_RETRY_MAX_DELAY", "overflow_retry_max_delay"
        ),
    )

    # Transport
    stream_start_timeout: float = Field(
        default=15.0,
        gt=0,
        validation_alias=AliasChoices("STREAM_START_TIMEOUT", "stream_start_timeout"),
    )
    stream_fragment_bytes: int = Field(
        default=16 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "STREAM_FRAGMENT_BYTES", "stream_fragment_bytes"
        ),
    )
    buffered_fragment_bytes: int = Field(
        default=32 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "BUFFERED_FRAGMENT_BYTES", "buffered_fragment_bytes"
        ),
    )

    # In-process sink
    sink_bytes_per_second: int = Field(
        default=16_000,  # 128 kbps MP3
        ge=1,
        validation_alias=AliasChoices(
            "SINK_BYTES_PER_SECOND", "sink_bytes_per_second"
        ),
    )
    # matches MAX_BUFFER_SECONDS so the buffered span stays within the window
    sink_capacity_seconds: float = Field(
        default=90.0,
        gt=0,
        validation_alias=AliasChoices(
            "SINK_CAPACITY_SECONDS", "sink_capacity_seconds"
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
