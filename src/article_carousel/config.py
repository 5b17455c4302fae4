"""Application settings loaded from the environment."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CarouselSettings(BaseSettings):
    """Runtime settings for the carousel pipeline.

    Every field can be set through a ``CAROUSEL_`` prefixed environment
    variable or the ``.env`` file, e.g. ``CAROUSEL_STORAGE_BACKEND=base64``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CAROUSEL_",
        env_file=".env",
        extra="ignore",
    )

    # Persistence
    data_dir: Path = Path("data")

    # Storage
    storage_backend: Literal["local", "base64", "http"] = "local"
    storage_dir: Path = Path("data/generated")
    storage_base_url: str | None = None
    storage_bucket: str = "carousels"
    storage_token: str | None = None

    # Rendering
    slide_size: int = 1080
    pdf_page_size: int = 400
    font_path: Path | None = None
    default_style_preset: Literal[
        "typographic_minimal", "gradient_text", "dark_mode", "accent_bar", "abstract_shapes"
    ] = "typographic_minimal"

    # Documents
    upload_documents: bool = False

    # Logging
    log_dir: Path = Path("logs")


@lru_cache(maxsize=1)
def get_settings() -> CarouselSettings:
    """Get the process-wide settings instance."""
    return CarouselSettings()
