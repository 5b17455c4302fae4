"""LLM-based slide content generation.

One structured LLM call produces a headline, an optional caption and a
background prompt for every slide. Models are inconsistent about the JSON
they return, so everything they send goes through
``normalize_caption_payload`` before the rest of the pipeline sees it.
Any failure degrades to deterministic captions; this module never raises.
"""

from __future__ import annotations

import logging
import random
import re
from typing import Any

from pydantic import BaseModel, Field

from ..providers.text import TextProvider, get_text_provider
from .analyzer import CTA_HEADLINE, analyze_format, clean_text, limit_headline, suggest_headlines
from .models import (
    SPLIT_LAYOUT_SLIDES,
    Article,
    CaptionGenerationResult,
    CarouselFormat,
    SlideCaption,
    SlideType,
)

_logger = logging.getLogger("carousel")

MAX_HEADLINE = 50
MAX_CAPTION = 80
MAX_IMAGE_PROMPT = 400

BANNED_LEADING_WORDS = ("Unlock", "Discover", "Master", "Why", "How")

CAPTION_SYSTEM_PROMPT = f"""You are a carousel copywriter. Create slide content for a carousel that tells one coherent story.

RULES FOR HEADLINES:
1. Max {MAX_HEADLINE} characters each
2. Declarative or imperative statements, never questions
3. Never start with: {", ".join(BANNED_LEADING_WORDS)}
4. Read as a narrative arc when viewed in sequence
5. Slide 1 (title): bold statement of the core idea
6. Content slides: concrete insights that build on each other
7. Last slide (cta): an action the reader can take today
8. No generic phrases like "Key Insight" or "Important Point"

RULES FOR CAPTIONS:
1. Only slides {" and ".join(str(n) for n in SPLIT_LAYOUT_SLIDES)} get a caption, max {MAX_CAPTION} characters
2. The caption supports its headline with one specific detail
3. Every other slide uses "caption": null

RULES FOR IMAGE PROMPTS:
1. 30-80 words describing a purely abstract background
2. NO text, letters, numbers, logos, people, faces or hands
3. Name explicit colors, lighting, texture and mood
4. Vary the composition across slides
5. Avoid lightbulbs, gears, brains and generic tech imagery

Respond with JSON: {{"slides": [{{"slide_number": 1, "slide_type": "title", "headline": "...", "caption": null, "image_prompt": "..."}}]}}"""

# Hand-authored backgrounds for the deterministic path
FALLBACK_IMAGE_PROMPTS: dict[SlideType, list[str]] = {
    SlideType.TITLE: [
        "Abstract editorial backdrop of layered translucent glass planes in deep indigo and violet, "
        "soft rim lighting from the upper left, fine grain texture, calm and confident mood, "
        "generous empty space in the lower third",
        "Sweeping ribbons of silk-like light in midnight blue and warm amber, gentle volumetric haze, "
        "smooth satin texture, cinematic and ambitious mood, strong diagonal composition",
        "Minimal field of soft geometric gradients in teal and charcoal, diffuse studio lighting, "
        "matte paper texture, focused and serious mood, centered radiating glow",
    ],
    SlideType.CONTENT: [
        "Flowing abstract contours in muted sage and slate grey, soft overcast lighting, "
        "brushed metal texture, thoughtful and steady mood, balanced horizontal composition",
        "Overlapping translucent circles in coral and dusty rose on a deep plum ground, "
        "warm backlight bloom, frosted glass texture, curious and open mood",
        "Quiet gradient landscape of layered dunes in ochre and sand, low golden side light, "
        "fine powder texture, patient and grounded mood, wide calm negative space",
        "Abstract network of faint luminous threads over dark navy, cool rim light, "
        "velvet texture, precise and analytical mood, asymmetric composition",
    ],
    SlideType.CTA: [
        "Bright abstract burst of sunrise orange and clear sky blue, crisp morning light, "
        "smooth gradient texture, optimistic forward-moving mood, rising diagonal energy",
        "Vivid upward sweep of emerald and aqua light trails, high-key lighting, "
        "glossy texture, energetic and inviting mood, motion toward the upper right",
    ],
}

_SLIDE_KEY_RE = re.compile(r"^slide[\s_-]?(\d+)$", re.IGNORECASE)


class CaptionSlide(BaseModel):
    """Expected shape of one slide in the LLM response."""

    slide_number: int
    slide_type: SlideType
    headline: str = Field(description=f"Max {MAX_HEADLINE} characters")
    caption: str | None = Field(default=None, description=f"Max {MAX_CAPTION} characters, or null")
    image_prompt: str = Field(description="30-80 word abstract background description")


class CaptionPayload(BaseModel):
    """Expected shape of the LLM response."""

    slides: list[CaptionSlide]


def build_article_summary(article: Article) -> str:
    """Build a bounded article summary for the LLM."""
    parts: list[str] = []

    if article.introduction:
        parts.append(f"INTRO: {article.introduction[:300]}")

    for i, section in enumerate(article.sections[:3]):
        match = re.search(r"^#+\s*(.+)$", section, re.MULTILINE)
        heading = match.group(1).strip() if match else ""
        body = re.sub(r"^#+\s*.+$", "", section, count=1, flags=re.MULTILINE).strip()[:200]
        parts.append(f"SECTION {i + 1}: {heading}\n{body}")

    if article.conclusion:
        parts.append(f"CONCLUSION: {article.conclusion[:200]}")

    return "\n\n".join(parts)


def build_user_prompt(article: Article, fmt: CarouselFormat) -> str:
    """Build the user prompt for one whole-carousel caption call."""
    slide_plan = "\n".join(
        f"- Slide {i + 1}: {slide_type.value}" for i, slide_type in enumerate(fmt.structure)
    )
    subtitle = f"SUBTITLE: {article.subtitle}\n" if article.subtitle else ""
    return (
        f"Create {fmt.page_count} slides for this article:\n\n"
        f"TITLE: {article.title}\n"
        f"{subtitle}\n"
        f"SLIDES:\n{slide_plan}\n\n"
        f"CONTENT SUMMARY:\n{build_article_summary(article)}\n\n"
        f"Generate headlines that tell a coherent story and image prompts that match each slide's theme."
    )


def _truncate(text: str, limit: int) -> str:
    return text[:limit].rstrip() if len(text) > limit else text


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = clean_text(str(value)).strip("\"'")
    return text or None


def slide_entries(payload: Any) -> list[dict[str, Any]]:
    """Pull the per-slide objects out of any accepted container shape.

    Accepted: a list of slides, ``{"slides": [...]}``, or
    ``{"slide1": {...}, "slide2": {...}}`` ordered by number.
    """
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        if isinstance(payload.get("slides"), list):
            entries = payload["slides"]
        else:
            keyed = []
            for key, value in payload.items():
                match = _SLIDE_KEY_RE.match(str(key).strip())
                if match:
                    keyed.append((int(match.group(1)), value))
            entries = [value for _, value in sorted(keyed, key=lambda item: item[0])]
    else:
        entries = []
    return [entry for entry in entries if isinstance(entry, dict)]


def _normalize_entry(
    raw: dict[str, Any],
    slide_number: int,
    slide_type: SlideType,
    fallback: SlideCaption,
) -> SlideCaption:
    # Numbers and types the model sends ("slideNumber", "slide", "type", ...)
    # are ignored: position and the format decide them.
    headline = _as_text(_first(raw, "headline", "title")) or fallback.headline
    caption = _as_text(_first(raw, "caption"))
    image_prompt = _as_text(_first(raw, "image_prompt", "imagePrompt", "prompt")) or fallback.image_prompt

    if slide_number not in SPLIT_LAYOUT_SLIDES:
        caption = None

    return SlideCaption(
        slide_number=slide_number,
        slide_type=slide_type,
        headline=_truncate(headline, MAX_HEADLINE),
        caption=_truncate(caption, MAX_CAPTION) if caption else None,
        image_prompt=_truncate(image_prompt, MAX_IMAGE_PROMPT),
    )


def normalize_caption_payload(
    payload: Any,
    structure: list[SlideType],
    fallback: list[SlideCaption],
) -> list[SlideCaption]:
    """Map any accepted LLM response shape to one caption per slide.

    Missing slides and missing fields come from ``fallback``; surplus
    slides are dropped.
    """
    entries = slide_entries(payload)
    captions: list[SlideCaption] = []

    for i, slide_type in enumerate(structure):
        if i < len(entries):
            captions.append(_normalize_entry(entries[i], i + 1, slide_type, fallback[i]))
        else:
            captions.append(fallback[i].model_copy(update={"slide_number": i + 1, "slide_type": slide_type}))

    return captions


def generate_fallback_captions(
    article: Article,
    fmt: CarouselFormat,
    rng: random.Random | None = None,
) -> list[SlideCaption]:
    """Deterministic captions from the article's own headings."""
    rng = rng or random.Random()
    headlines = fmt.suggested_headlines or suggest_headlines(article, fmt.page_count)

    captions = []
    for i, slide_type in enumerate(fmt.structure):
        if slide_type == SlideType.CTA:
            headline = CTA_HEADLINE
        else:
            headline = headlines[i] if i < len(headlines) else f"Key Insight {i}"
        captions.append(SlideCaption(
            slide_number=i + 1,
            slide_type=slide_type,
            headline=limit_headline(headline, MAX_HEADLINE) or "Slide",
            caption=None,
            image_prompt=rng.choice(FALLBACK_IMAGE_PROMPTS[slide_type]),
        ))
    return captions


class CaptionGenerator:
    """Generate slide captions with an LLM, falling back deterministically.

    Usage:
        generator = CaptionGenerator()
        result = await generator.generate(article)
        for caption in result.captions:
            print(caption.slide_number, caption.headline)
    """

    def __init__(
        self,
        text_provider: TextProvider | None = None,
        rng: random.Random | None = None,
        temperature: float = 0.7,
    ):
        self._text_provider = text_provider
        self._rng = rng or random.Random()
        self.temperature = temperature

    @property
    def text_provider(self) -> TextProvider:
        return self._text_provider or get_text_provider()

    async def generate(
        self,
        article: Article,
        fmt: CarouselFormat | None = None,
    ) -> CaptionGenerationResult:
        """Generate one caption per slide. Never raises."""
        fmt = fmt or analyze_format(article)
        fallback = generate_fallback_captions(article, fmt, self._rng)

        try:
            result = await self.text_provider.generate_structured(
                system=CAPTION_SYSTEM_PROMPT,
                prompt=build_user_prompt(article, fmt),
                schema=CaptionPayload,
                temperature=self.temperature,
                task="carousel_captions",
            )
        except Exception as e:
            _logger.warning(f"ARTICLE:{article.id} | CAPTIONS | FALLBACK | error:{e}")
            return CaptionGenerationResult(captions=fallback, used_fallback=True, error=str(e))

        if not slide_entries(result.data):
            _logger.warning(f"ARTICLE:{article.id} | CAPTIONS | FALLBACK | error:no slides in response")
            return CaptionGenerationResult(
                captions=fallback, used_fallback=True, error="LLM response contained no slides"
            )

        captions = normalize_caption_payload(result.data, fmt.structure, fallback)
        _logger.info(
            f"ARTICLE:{article.id} | CAPTIONS | provider:{result.provider} | "
            f"headlines:{[c.headline for c in captions]}"
        )
        return CaptionGenerationResult(captions=captions)
