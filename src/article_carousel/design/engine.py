"""Process-wide text render engine.

The engine owns the font data and the raster pass. Font data is loaded
lazily, exactly once, no matter how many slides ask for it at the same
time. Rasterising is serialised across the whole process; layout work is
not and runs in the caller.
"""

from __future__ import annotations

import asyncio
import logging
from io import BytesIO
from pathlib import Path
from typing import Callable

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from ..config import get_settings
from .templates import OverlayOptions, ScrimSpec, SlideLayout, SlideTemplate, TextBlock

_logger = logging.getLogger("render")

ELLIPSIS = "..."

FontGetter = Callable[[int], ImageFont.FreeTypeFont]


def _text_width(font: ImageFont.FreeTypeFont, text: str) -> int:
    bbox = font.getbbox(text)
    return bbox[2] - bbox[0]


def _ellipsize(text: str, font: ImageFont.FreeTypeFont, max_width: int) -> str:
    """Trim ``text`` until it fits with a trailing ellipsis."""
    text = text.rstrip()
    while text and _text_width(font, text + ELLIPSIS) > max_width:
        text = text[:-1].rstrip()
    return text + ELLIPSIS


def wrap_text(
    text: str,
    font: ImageFont.FreeTypeFont,
    max_width: int,
    max_lines: int,
) -> list[str]:
    """Wrap text to fit within max_width, at most max_lines lines.

    Overflowing text ends the last line with an ellipsis. A single word
    wider than the line is cut with an ellipsis too.
    """
    words = text.split()
    lines: list[str] = []
    current: list[str] = []

    for word in words:
        if _text_width(font, word) > max_width:
            word = _ellipsize(word, font, max_width)
        test_line = " ".join(current + [word])
        if _text_width(font, test_line) <= max_width:
            current.append(word)
        else:
            if current:
                lines.append(" ".join(current))
            current = [word]

    if current:
        lines.append(" ".join(current))

    if len(lines) > max_lines:
        lines = lines[:max_lines]
        lines[-1] = _ellipsize(lines[-1], font, max_width)

    return lines


def build_layout(
    options: OverlayOptions,
    get_font: FontGetter,
    template: SlideTemplate | None = None,
) -> SlideLayout:
    """Compute text placement and scrims for a slide.

    Pure: depends only on its arguments, so it can run concurrently for
    any number of slides.
    """
    template = template or SlideTemplate()
    typography = template.typography
    size = options.size
    scale = template.scale(size)
    padding = round(template.padding * scale)
    max_width = size - padding * 2

    font_size = max(1, round(typography.size_for(options.slide_type) * scale))
    line_height = round(font_size * typography.line_height)
    headline_lines = wrap_text(options.headline, get_font(font_size), max_width, typography.max_lines)
    headline_height = len(headline_lines) * line_height

    layout = SlideLayout(size=size)

    if options.uses_split_layout:
        # Headline at the top, caption at the bottom
        if headline_lines:
            layout.scrims.append(ScrimSpec(
                top=0,
                height=min(size, round(headline_height + padding * template.scrim_padding_factor)),
                flipped=True,
            ))
            layout.blocks.append(TextBlock(
                lines=headline_lines, font_size=font_size,
                x=padding, y=padding, line_height=line_height,
            ))

        caption_size = max(1, round(font_size * typography.caption_scale))
        caption_line_height = round(caption_size * typography.line_height)
        caption_lines = wrap_text(
            options.caption or "", get_font(caption_size), max_width, typography.max_caption_lines
        )
        caption_height = len(caption_lines) * caption_line_height
        if caption_lines:
            scrim_height = min(size, round(caption_height + padding * template.scrim_padding_factor))
            layout.scrims.append(ScrimSpec(top=size - scrim_height, height=scrim_height))
            layout.blocks.append(TextBlock(
                lines=caption_lines, font_size=caption_size,
                x=padding, y=size - padding - caption_height, line_height=caption_line_height,
            ))
        return layout

    if headline_lines:
        scrim_height = min(size, round(headline_height + padding * template.scrim_padding_factor))
        layout.scrims.append(ScrimSpec(top=size - scrim_height, height=scrim_height))
        layout.blocks.append(TextBlock(
            lines=headline_lines, font_size=font_size,
            x=padding, y=size - padding - headline_height, line_height=line_height,
        ))
    return layout


def _alpha_at(t: float, stops: tuple[tuple[float, float], ...]) -> float:
    for (o1, a1), (o2, a2) in zip(stops, stops[1:]):
        if t <= o2:
            if o2 == o1:
                return a2
            return a1 + (a2 - a1) * (t - o1) / (o2 - o1)
    return stops[-1][1]


def _scrim_image(scrim: ScrimSpec, width: int) -> Image.Image:
    """Render a scrim as a black RGBA strip."""
    height = scrim.height
    values = [
        round(255 * _alpha_at(y / max(1, height - 1), scrim.stops))
        for y in range(height)
    ]
    if scrim.flipped:
        values.reverse()

    mask = Image.new("L", (1, height))
    mask.putdata(values)
    strip = Image.new("RGBA", (width, height), (0, 0, 0, 255))
    strip.putalpha(mask.resize((width, height)))
    return strip


class RenderEngine:
    """Font data plus a serialised raster pass.

    Usage:
        engine = get_render_engine()
        await engine.ensure_ready()
        layout = engine.build_layout(options)
        png = await engine.rasterize(layout, background)
    """

    # Default font paths - will try these in order
    FONT_PATHS = [
        # Linux
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        # macOS
        "/System/Library/Fonts/Helvetica.ttc",
        "/Library/Fonts/Arial Bold.ttf",
        # Windows
        "C:/Windows/Fonts/arialbd.ttf",
        "C:/Windows/Fonts/arial.ttf",
    ]

    def __init__(
        self,
        font_path: Path | None = None,
        template: SlideTemplate | None = None,
    ):
        self.font_path = font_path
        self.template = template or SlideTemplate()
        self._font_data: bytes | None = None
        self._ready = False
        self._init_task: asyncio.Task | None = None
        self._raster_lock = asyncio.Lock()
        self._layout_fonts: dict[int, ImageFont.FreeTypeFont] = {}
        self._raster_fonts: dict[int, ImageFont.FreeTypeFont] = {}

    @property
    def ready(self) -> bool:
        return self._ready

    async def ensure_ready(self) -> None:
        """Initialise the engine once; concurrent callers share one attempt.

        A failed attempt is forgotten so the next call starts a new one.
        """
        if self._ready:
            return

        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        task = self._init_task

        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        self._font_data = await asyncio.to_thread(self._load_font_data)
        self._ready = True
        _logger.info(
            f"RENDER_READY | font:{'bundled-default' if self._font_data is None else 'truetype'}"
        )

    def _load_font_data(self) -> bytes | None:
        """Read font bytes: configured path, then system fonts.

        Returns None when only Pillow's bundled font is available.
        """
        if self.font_path is not None:
            try:
                data = Path(self.font_path).read_bytes()
                ImageFont.truetype(BytesIO(data), 12)
                return data
            except OSError as e:
                _logger.warning(f"RENDER_FONT | configured font unusable | path:{self.font_path} | error:{e}")

        for path in self.FONT_PATHS:
            font_file = Path(path)
            if not font_file.exists():
                continue
            try:
                data = font_file.read_bytes()
                ImageFont.truetype(BytesIO(data), 12)
                return data
            except OSError:
                continue

        return None

    def _make_font(self, size: int) -> ImageFont.FreeTypeFont:
        if self._font_data is None:
            return ImageFont.load_default(size=size)
        return ImageFont.truetype(BytesIO(self._font_data), size)

    def _layout_font(self, size: int) -> ImageFont.FreeTypeFont:
        if size not in self._layout_fonts:
            self._layout_fonts[size] = self._make_font(size)
        return self._layout_fonts[size]

    def _raster_font(self, size: int) -> ImageFont.FreeTypeFont:
        if size not in self._raster_fonts:
            self._raster_fonts[size] = self._make_font(size)
        return self._raster_fonts[size]

    def build_layout(self, options: OverlayOptions) -> SlideLayout:
        """Build a slide layout with this engine's fonts."""
        if not self._ready:
            raise RuntimeError("Render engine is not initialised; await ensure_ready() first")
        return build_layout(options, self._layout_font, self.template)

    async def rasterize(self, layout: SlideLayout, background: Image.Image) -> bytes:
        """Draw a layout onto a background and encode it as PNG.

        Only one raster pass runs at a time in the process.
        """
        await self.ensure_ready()
        async with self._raster_lock:
            return await asyncio.to_thread(self._draw, layout, background)

    def _draw(self, layout: SlideLayout, background: Image.Image) -> bytes:
        size = layout.size
        img = background.convert("RGBA")
        if img.size != (size, size):
            img = img.resize((size, size), Image.Resampling.LANCZOS)

        for scrim in layout.scrims:
            if scrim.height <= 0:
                continue
            overlay = Image.new("RGBA", img.size, (0, 0, 0, 0))
            overlay.paste(_scrim_image(scrim, size), (0, scrim.top))
            img = Image.alpha_composite(img, overlay)

        for block in layout.blocks:
            font = self._raster_font(block.font_size)

            # Soft drop shadow under the text
            shadow = Image.new("RGBA", img.size, (0, 0, 0, 0))
            shadow_draw = ImageDraw.Draw(shadow)
            shadow_fill = (0, 0, 0, round(255 * block.shadow_opacity))
            for i, line in enumerate(block.lines):
                position = (block.x, block.y + i * block.line_height + block.shadow_offset)
                shadow_draw.text(position, line, font=font, fill=shadow_fill)
            if block.shadow_blur:
                shadow = shadow.filter(ImageFilter.GaussianBlur(block.shadow_blur / 2))
            img = Image.alpha_composite(img, shadow)

            draw = ImageDraw.Draw(img)
            for i, line in enumerate(block.lines):
                draw.text((block.x, block.y + i * block.line_height), line, font=font, fill=block.color + (255,))

        buffer = BytesIO()
        img.convert("RGB").save(buffer, format="PNG")
        return buffer.getvalue()


# Module-level singleton
_engine: RenderEngine | None = None


def get_render_engine() -> RenderEngine:
    """Get the process-wide render engine."""
    global _engine
    if _engine is None:
        _engine = RenderEngine(font_path=get_settings().font_path)
    return _engine


def reset_render_engine() -> None:
    """Drop the process-wide engine so the next call builds a fresh one."""
    global _engine
    _engine = None
