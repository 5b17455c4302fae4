"""Data models for carousel generation."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _new_id() -> str:
    return str(uuid.uuid4())


# Interior slides that carry a caption and use the split layout
SPLIT_LAYOUT_SLIDES = (2, 4)


class SlideType(str, Enum):
    """Role of a slide in a carousel."""

    TITLE = "title"
    CONTENT = "content"
    CTA = "cta"


class StylePreset(str, Enum):
    """Visual style preset for slide backgrounds."""

    TYPOGRAPHIC_MINIMAL = "typographic_minimal"
    GRADIENT_TEXT = "gradient_text"
    DARK_MODE = "dark_mode"
    ACCENT_BAR = "accent_bar"
    ABSTRACT_SHAPES = "abstract_shapes"


class Article(BaseModel):
    """Long-form article a carousel is generated from."""

    id: str
    title: str
    subtitle: str | None = None
    introduction: str = ""
    sections: list[str] = Field(default_factory=list)
    conclusion: str = ""
    article_type: str = "standard"

    @field_validator("sections", mode="before")
    @classmethod
    def _parse_sections(cls, value: Any) -> Any:
        # Sections may arrive JSON-encoded from the article store
        if value is None:
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return [value] if value.strip() else []
            return parsed if isinstance(parsed, list) else [str(parsed)]
        return value


class CarouselFormat(BaseModel):
    """Slide count and per-slide type sequence."""

    page_count: int = Field(ge=3)
    structure: list[SlideType]
    suggested_headlines: list[str] = Field(default_factory=list)


class SlideCaption(BaseModel):
    """LLM output for a single slide."""

    slide_number: int
    slide_type: SlideType
    headline: str = Field(max_length=50)
    caption: str | None = Field(default=None, max_length=80)
    image_prompt: str = Field(max_length=400)


class CaptionGenerationResult(BaseModel):
    """Result of caption generation. Always successful."""

    success: bool = True
    captions: list[SlideCaption] = Field(default_factory=list)
    used_fallback: bool = False
    error: str | None = None


class CarouselPage(BaseModel):
    """Snapshot of one slide's current state."""

    page_number: int
    slide_type: SlideType
    prompt: str
    headline_text: str
    caption: str | None = None
    image_url: str | None = None
    generated_at: datetime | None = None
    generation_error: str | None = None
    active_version_id: str | None = None
    version_count: int = 0


class CarouselIntent(BaseModel):
    """The persistent carousel record for an article."""

    id: str = Field(default_factory=_new_id)
    article_id: str
    page_count: int
    pages: list[CarouselPage] = Field(default_factory=list)
    style_preset: StylePreset = StylePreset.TYPOGRAPHIC_MINIMAL
    generated_pdf_url: str | None = None
    generation_provider: str | None = None
    generation_error: str | None = None
    generated_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    def successful_pages(self) -> list[CarouselPage]:
        """Pages that currently have a usable image."""
        return [page for page in self.pages if page.image_url]

    def get_page(self, slide_number: int) -> CarouselPage:
        """Get the page for a 1-based slide number."""
        for page in self.pages:
            if page.page_number == slide_number:
                return page
        raise KeyError(slide_number)


class CarouselSlideVersion(BaseModel):
    """One historical generation of a slide."""

    id: str = Field(default_factory=_new_id)
    carousel_intent_id: str
    slide_number: int
    version_number: int = Field(ge=1)
    prompt: str
    headline_text: str
    caption: str | None = None
    image_url: str | None = None
    is_active: bool = False
    generated_at: datetime | None = None
    generation_provider: str | None = None
    generation_error: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class CarouselGenerationOptions(BaseModel):
    """Options for a full carousel generation."""

    provider: str | None = None
    model: str | None = None
    style_preset: StylePreset | None = None
    skip_pdf: bool = False
    force_regenerate: bool = False


class SlideRegenerationOptions(BaseModel):
    """Options for regenerating a single slide."""

    provider: str | None = None
    model: str | None = None
    custom_prompt: str | None = None
    regenerate_prompt: bool = False


class CarouselGenerationResult(BaseModel):
    """Outcome of generate_carousel."""

    success: bool
    carousel_id: str | None = None
    pdf_url: str | None = None
    pages: list[CarouselPage] = Field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    provider: str | None = None
    cached: bool = False


class CarouselStatus(BaseModel):
    """Current state of an article's carousel."""

    exists: bool
    id: str | None = None
    page_count: int | None = None
    pages: list[CarouselPage] = Field(default_factory=list)
    pdf_url: str | None = None
    generated_at: datetime | None = None
    provider: str | None = None
    error: str | None = None
    version_counts: dict[int, int] = Field(default_factory=dict)


class SlideRegenerationResult(BaseModel):
    """Outcome of regenerating one slide."""

    success: bool
    page: CarouselPage | None = None
    version: CarouselSlideVersion | None = None
    pages: list[CarouselPage] = Field(default_factory=list)
    pdf_url: str | None = None
    error: str | None = None


class VersionActivationResult(BaseModel):
    """Outcome of activating a stored slide version."""

    success: bool
    pages: list[CarouselPage] = Field(default_factory=list)
    pdf_url: str | None = None
    activated_version: CarouselSlideVersion | None = None
