"""Content generation for article carousels.

Architecture:
- analyzer: slide count and structure per article
- captions: LLM headlines, captions and background prompts
- prompts: style presets and the initial page list
- slide_job: per-slide overlay, upload and fallback
- versions: append-only slide history with one active version per slide
- orchestrator: the end-to-end workflow

The orchestrator is imported from its module, not from here, so that the
design and services packages can depend on ``content.models``.
"""

from .analyzer import analyze_format, extract_headline, get_recommended_format
from .models import (
    Article,
    CaptionGenerationResult,
    CarouselFormat,
    CarouselGenerationOptions,
    CarouselGenerationResult,
    CarouselIntent,
    CarouselPage,
    CarouselSlideVersion,
    CarouselStatus,
    SlideCaption,
    SlideRegenerationOptions,
    SlideRegenerationResult,
    SlideType,
    StylePreset,
    VersionActivationResult,
)

__all__ = [
    "analyze_format",
    "extract_headline",
    "get_recommended_format",
    "Article",
    "CaptionGenerationResult",
    "CarouselFormat",
    "CarouselGenerationOptions",
    "CarouselGenerationResult",
    "CarouselIntent",
    "CarouselPage",
    "CarouselSlideVersion",
    "CarouselStatus",
    "SlideCaption",
    "SlideRegenerationOptions",
    "SlideRegenerationResult",
    "SlideType",
    "StylePreset",
    "VersionActivationResult",
]
