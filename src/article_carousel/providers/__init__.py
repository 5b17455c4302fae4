"""AI Providers - Text (Agno) and text-to-image generation."""

from .text import TextProvider, StructuredResult, extract_json, get_text_provider
from .image import (
    ImageProvider,
    ImageGenerationRequest,
    ImageGenerationResult,
    get_image_provider,
)
from .config import ProviderConfig, load_provider_config

__all__ = [
    "TextProvider",
    "StructuredResult",
    "extract_json",
    "ImageProvider",
    "ImageGenerationRequest",
    "ImageGenerationResult",
    "get_text_provider",
    "get_image_provider",
    "ProviderConfig",
    "load_provider_config",
]
