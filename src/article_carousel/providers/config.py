"""Provider configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file
load_dotenv()


class ProviderSettings(BaseModel):
    """Global provider settings."""

    timeout_seconds: int = 120
    fallback_on_error: bool = True
    max_concurrency: int | None = None  # None = one task per slide


class TextProviderConfig(BaseModel):
    """Configuration for a text provider."""

    priority: int
    enabled: bool = True
    model: str
    base_url: str | None = None
    base_url_env: str | None = None
    api_key: str | None = None
    api_key_env: str | None = None
    timeout: int = 60

    def get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.getenv(self.api_key_env)
        return None

    def get_base_url(self) -> str | None:
        """Get base URL from config or environment."""
        if self.base_url:
            return self.base_url
        if self.base_url_env:
            return os.getenv(self.base_url_env)
        return None


class ImageProviderConfig(BaseModel):
    """Configuration for an image provider."""

    priority: int
    enabled: bool = True
    type: str  # fal, replicate, openai
    model: str
    api_key_env: str | None = None
    timeout: int = 90
    settings: dict[str, Any] = Field(default_factory=dict)

    def get_api_key(self) -> str | None:
        """Get API key from environment."""
        if self.api_key_env:
            return os.getenv(self.api_key_env)
        return None


class TaskOverride(BaseModel):
    """Task-specific provider override."""

    text_provider: str | None = None
    image_provider: str | None = None
    temperature: float | None = None


def _default_image_providers() -> dict[str, ImageProviderConfig]:
    return {
        "openai": ImageProviderConfig(
            priority=1, type="openai", model="gpt-image-1",
            api_key_env="OPENAI_API_KEY", settings={"quality": "high"},
        ),
        "fal": ImageProviderConfig(
            priority=2, type="fal", model="fal-ai/flux-pro/v1.1",
            api_key_env="FAL_KEY",
        ),
        "replicate": ImageProviderConfig(
            priority=3, type="replicate", model="black-forest-labs/flux-dev",
            api_key_env="REPLICATE_API_TOKEN",
        ),
    }


class ProviderConfig(BaseModel):
    """Full provider configuration."""

    provider_settings: ProviderSettings = Field(default_factory=ProviderSettings)
    text_providers: dict[str, TextProviderConfig] = Field(default_factory=dict)
    image_providers: dict[str, ImageProviderConfig] = Field(default_factory=_default_image_providers)
    task_overrides: dict[str, TaskOverride] = Field(default_factory=dict)

    def get_enabled_text_providers(self) -> list[tuple[str, TextProviderConfig]]:
        """Get enabled text providers sorted by priority."""
        enabled = [
            (name, config)
            for name, config in self.text_providers.items()
            if config.enabled
        ]
        return sorted(enabled, key=lambda x: x[1].priority)

    def get_enabled_image_providers(self) -> list[tuple[str, ImageProviderConfig]]:
        """Get enabled image providers sorted by priority."""
        enabled = [
            (name, config)
            for name, config in self.image_providers.items()
            if config.enabled
        ]
        return sorted(enabled, key=lambda x: x[1].priority)

    def get_image_provider(self, name: str | None = None) -> tuple[str, ImageProviderConfig] | None:
        """Resolve an image provider by name, env default or priority."""
        if name:
            if name in self.image_providers:
                return (name, self.image_providers[name])
            return None

        env_name = os.getenv("T2I_PROVIDER")
        if env_name and env_name in self.image_providers:
            return (env_name, self.image_providers[env_name])

        # Prefer providers that have credentials available
        enabled = self.get_enabled_image_providers()
        for provider_name, config in enabled:
            if config.get_api_key():
                return (provider_name, config)
        return enabled[0] if enabled else None

    def get_temperature_for_task(self, task: str, default: float) -> float:
        """Get the sampling temperature override for a task."""
        override = self.task_overrides.get(task)
        if override and override.temperature is not None:
            return override.temperature
        return default


def load_provider_config(config_path: Path | None = None) -> ProviderConfig:
    """Load provider configuration from YAML file."""
    if config_path is None:
        env_path = os.getenv("CAROUSEL_PROVIDERS_FILE")
        config_path = Path(env_path) if env_path else Path.cwd() / "config" / "providers.yaml"

    if not config_path.exists():
        # Return default config if file doesn't exist
        return ProviderConfig()

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return ProviderConfig(**data)
