"""Environment-based configuration for fuchsia-api."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from fuchsia.imaging.editor import DEFAULT_DECODE_LIMIT, DEFAULT_FRAME_LIMIT
from fuchsia.imaging.formats import DEFAULT_ACCEPTED_FORMATS, ImageFormat


class Settings(BaseSettings):
    """Application settings loaded from FUCHSIA_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FUCHSIA_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080

    # Peers whose IP does not start with this prefix are rejected ("" = allow all)
    allowed_origin: str = "127.0.0.1"

    # Editor
    accepted_formats: list[ImageFormat] = Field(default_factory=lambda: list(DEFAULT_ACCEPTED_FORMATS))
    default_frame_limit: int = Field(default=DEFAULT_FRAME_LIMIT, ge=1)
    decode_limit: int = Field(default=DEFAULT_DECODE_LIMIT, ge=1)

    # Input limits
    max_file_size: int = Field(default=2_000_000, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
