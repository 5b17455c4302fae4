"""Slide layout templates for carousel overlays."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..content.models import SPLIT_LAYOUT_SLIDES, SlideType

# Two-stop palettes for locally drawn fallback backgrounds
FALLBACK_GRADIENTS: list[tuple[str, str]] = [
    ("#667eea", "#764ba2"),  # Purple
    ("#f093fb", "#f5576c"),  # Pink
    ("#4facfe", "#00f2fe"),  # Cyan
    ("#43e97b", "#38f9d7"),  # Green
    ("#fa709a", "#fee140"),  # Sunset
]


@dataclass
class Typography:
    """Typography settings, in pixels at the 1080px reference size."""

    title_size: int = 72
    content_size: int = 60
    cta_size: int = 64
    caption_scale: float = 0.55
    line_height: float = 1.3
    max_lines: int = 4
    max_caption_lines: int = 2

    def size_for(self, slide_type: SlideType) -> int:
        """Get the headline font size for a slide type."""
        if slide_type == SlideType.TITLE:
            return self.title_size
        if slide_type == SlideType.CTA:
            return self.cta_size
        return self.content_size


@dataclass
class ScrimSpec:
    """Vertical black gradient behind a text block.

    ``stops`` are (offset, alpha) pairs from the edge of the scrim nearest
    the slide centre towards the slide edge.
    """

    top: int
    height: int
    stops: tuple[tuple[float, float], ...] = ((0.0, 0.0), (0.4, 0.3), (1.0, 0.7))
    flipped: bool = False


@dataclass
class TextBlock:
    """Wrapped lines drawn at a fixed origin."""

    lines: list[str]
    font_size: int
    x: int
    y: int
    line_height: int
    color: tuple[int, int, int] = (255, 255, 255)
    shadow_offset: int = 2
    shadow_blur: int = 6
    shadow_opacity: float = 0.8


@dataclass
class SlideLayout:
    """Everything the raster pass needs to draw one slide's text."""

    size: int
    scrims: list[ScrimSpec] = field(default_factory=list)
    blocks: list[TextBlock] = field(default_factory=list)


@dataclass
class OverlayOptions:
    """What to draw on a slide."""

    headline: str
    slide_type: SlideType = SlideType.CONTENT
    caption: str | None = None
    slide_number: int | None = None
    size: int = 1080

    @property
    def uses_split_layout(self) -> bool:
        return bool(self.caption) and self.slide_number in SPLIT_LAYOUT_SLIDES


@dataclass
class SlideTemplate:
    """Base template for carousel slides."""

    name: str = "default"
    padding: int = 80
    typography: Typography = field(default_factory=Typography)

    # Bottom scrim extends this many paddings past the text block
    scrim_padding_factor: float = 2.5

    def scale(self, size: int) -> float:
        return size / 1080
