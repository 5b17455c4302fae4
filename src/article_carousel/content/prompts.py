"""Background prompts and initial page construction.

Backgrounds are generated without any text; headlines are composited on
top afterwards, so none of these prompts ever mention words or lettering.
"""

from __future__ import annotations

import re

from .analyzer import CTA_HEADLINE, clean_text, extract_heading
from .models import Article, CarouselFormat, CarouselPage, SlideCaption, SlideType, StylePreset

NEGATIVE_PROMPT = (
    "text, words, letters, numbers, typography, watermark, logo, signature, "
    "people, faces, hands, cluttered, busy, cartoon, stock photo, generic, "
    "lightbulb, gears, brain"
)

STYLE_PROMPTS: dict[StylePreset, str] = {
    StylePreset.TYPOGRAPHIC_MINIMAL: (
        "Clean minimalist editorial background. Smooth color transitions, subtle light rays, "
        "modern professional aesthetic. High quality digital art."
    ),
    StylePreset.GRADIENT_TEXT: (
        "Vibrant gradient background. Glowing orbs of light, lens flares, futuristic aesthetic. "
        "Smooth flowing colors. Cinematic lighting."
    ),
    StylePreset.DARK_MODE: (
        "Dark background with nebula clouds. Scattered stars, subtle glows. "
        "Moody atmospheric lighting."
    ),
    StylePreset.ACCENT_BAR: (
        "Bold abstract background with geometric light shapes, creative energy. "
        "Warm and inviting atmosphere."
    ),
    StylePreset.ABSTRACT_SHAPES: (
        "Dreamy abstract background with organic flowing shapes like silk or smoke. "
        "Gentle ethereal glow. Calming yet visually rich."
    ),
}

SLIDE_TYPE_PROMPTS: dict[SlideType, str] = {
    SlideType.TITLE: "Dramatic and bold composition with strong visual impact. Centered focal point with radiating energy.",
    SlideType.CONTENT: "Balanced artistic composition. Rich colors but not overwhelming.",
    SlideType.CTA: "Dynamic and energetic with forward momentum. Bright, uplifting feel.",
}

QUALITY_SUFFIX: dict[SlideType, str] = {
    SlideType.TITLE: "Square 1:1 aspect ratio. Ultra high quality, 4K resolution.",
    SlideType.CONTENT: "Square 1:1 aspect ratio. High quality digital art.",
    SlideType.CTA: "Square 1:1 aspect ratio. Vibrant and eye-catching.",
}


def build_background_prompt(slide_type: SlideType, style_preset: StylePreset) -> str:
    """Compose the default background prompt for a slide."""
    return " ".join([
        STYLE_PROMPTS[style_preset],
        SLIDE_TYPE_PROMPTS[slide_type],
        QUALITY_SUFFIX[slide_type],
    ])


def _content_headline(section: str) -> str:
    heading = extract_heading(section)
    if heading:
        return clean_text(heading)
    sentences = [s for s in re.split(r"[.!?]+", section) if s.strip()]
    return clean_text(sentences[0]) if sentences else "Key Insight"


def build_carousel_pages(
    article: Article,
    fmt: CarouselFormat,
    style_preset: StylePreset,
) -> list[CarouselPage]:
    """Build the initial page list from the article and its format."""
    pages: list[CarouselPage] = []

    for i, slide_type in enumerate(fmt.structure):
        if slide_type == SlideType.TITLE:
            headline = clean_text(article.title)
        elif slide_type == SlideType.CTA:
            headline = CTA_HEADLINE
        else:
            suggested = fmt.suggested_headlines[i] if i < len(fmt.suggested_headlines) else ""
            section = article.sections[i - 1] if i - 1 < len(article.sections) else ""
            headline = suggested or _content_headline(section)

        pages.append(CarouselPage(
            page_number=i + 1,
            slide_type=slide_type,
            prompt=build_background_prompt(slide_type, style_preset),
            headline_text=headline,
        ))

    return pages


def apply_captions(pages: list[CarouselPage], captions: list[SlideCaption]) -> list[CarouselPage]:
    """Override headlines, captions and prompts with LLM output where present."""
    for page, caption in zip(pages, captions):
        if caption.headline:
            page.headline_text = caption.headline
        page.caption = caption.caption
        if caption.image_prompt:
            page.prompt = caption.image_prompt
    return pages
