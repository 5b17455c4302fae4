"""Slide composer: text overlays on backgrounds, and gradient fallbacks."""

from __future__ import annotations

import asyncio
import random

from PIL import Image, ImageChops, ImageDraw

from ..content.models import SlideType
from ..exceptions import CarouselError, ImageLoadError, OverlayError
from ..services.loader import ImageLoader, decode_image
from .engine import RenderEngine, get_render_engine
from .templates import FALLBACK_GRADIENTS, OverlayOptions


def _hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert hex color to RGB tuple."""
    hex_color = hex_color.lstrip("#")
    return tuple(int(hex_color[i:i + 2], 16) for i in (0, 2, 4))


class SlideComposer:
    """Compose carousel slides using Pillow.

    Turns a text-free background into a finished slide by drawing the
    headline (and, on some slides, a caption) over a readability scrim.
    When there is no usable background, ``create_fallback_slide`` draws a
    gradient locally and applies the same text layout.

    Usage:
        composer = SlideComposer()

        png = await composer.overlay_text_from_url(
            "https://cdn.example.com/bg.png",
            OverlayOptions(headline="Ship smaller changes", slide_type=SlideType.CONTENT),
        )

        fallback = await composer.create_fallback_slide(
            OverlayOptions(headline="Ready to learn more?", slide_type=SlideType.CTA),
        )
    """

    # (centre x, centre y, radius, opacity) as fractions of the slide size
    TITLE_CIRCLES = [(0.15, 0.2, 0.18, 0.1), (0.85, 0.75, 0.22, 0.08)]
    DEFAULT_CIRCLES = [(0.9, 0.1, 0.12, 0.1)]

    def __init__(
        self,
        engine: RenderEngine | None = None,
        loader: ImageLoader | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize the composer.

        Args:
            engine: Render engine. Defaults to the process-wide engine.
            loader: Loader for background references.
            rng: Random source for fallback palettes.
        """
        self._engine = engine
        self.loader = loader or ImageLoader()
        self._rng = rng or random.Random()

    @property
    def engine(self) -> RenderEngine:
        return self._engine or get_render_engine()

    async def overlay_text(self, background: bytes, options: OverlayOptions) -> bytes:
        """Draw the headline onto background image bytes.

        Returns:
            PNG bytes of a ``size`` x ``size`` slide.

        Raises:
            OverlayError: If the background can't be decoded or rendering fails.
        """
        engine = self.engine
        try:
            await engine.ensure_ready()
            base = await asyncio.to_thread(self._cover, background, options.size)
            layout = engine.build_layout(options)
            return await engine.rasterize(layout, base)
        except OverlayError:
            raise
        except CarouselError as e:
            raise OverlayError(str(e)) from e
        except Exception as e:
            raise OverlayError(f"Text overlay failed: {e}") from e

    async def overlay_text_from_url(self, url: str, options: OverlayOptions) -> bytes:
        """Fetch a background by reference, then overlay the text."""
        try:
            background = await self.loader.load(url)
        except ImageLoadError as e:
            raise OverlayError(str(e)) from e
        return await self.overlay_text(background, options)

    async def create_fallback_slide(self, options: OverlayOptions) -> bytes:
        """Render a slide over a locally drawn gradient.

        Raises:
            OverlayError: If rendering fails.
        """
        engine = self.engine
        colors = self._rng.choice(FALLBACK_GRADIENTS)
        try:
            await engine.ensure_ready()
            base = await asyncio.to_thread(
                self._gradient_background, options.size, colors, options.slide_type
            )
            layout = engine.build_layout(options)
            return await engine.rasterize(layout, base)
        except OverlayError:
            raise
        except Exception as e:
            raise OverlayError(f"Fallback slide failed: {e}") from e

    def _cover(self, data: bytes, size: int) -> Image.Image:
        """Decode and cover-crop a background to a square."""
        img = decode_image(data).convert("RGB")

        # Resize to cover
        img_ratio = img.width / img.height
        if img_ratio > 1:
            # Image is wider - fit height
            new_height = size
            new_width = max(size, round(size * img_ratio))
        else:
            new_width = size
            new_height = max(size, round(size / img_ratio))

        img = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

        # Center crop
        left = (new_width - size) // 2
        top = (new_height - size) // 2
        return img.crop((left, top, left + size, top + size))

    def _gradient_background(
        self,
        size: int,
        colors: tuple[str, str],
        slide_type: SlideType,
    ) -> Image.Image:
        """Diagonal two-stop gradient with soft white circles."""
        start = Image.new("RGB", (size, size), _hex_to_rgb(colors[0]))
        end = Image.new("RGB", (size, size), _hex_to_rgb(colors[1]))

        # Top-left to bottom-right: average of a vertical and a horizontal ramp
        vertical = Image.linear_gradient("L")
        horizontal = vertical.transpose(Image.Transpose.ROTATE_90)
        mask = ImageChops.add(vertical, horizontal, scale=2.0).resize((size, size), Image.Resampling.BILINEAR)
        img = Image.composite(end, start, mask).convert("RGBA")

        circles = self.TITLE_CIRCLES if slide_type == SlideType.TITLE else self.DEFAULT_CIRCLES
        for cx, cy, r, opacity in circles:
            layer = Image.new("RGBA", img.size, (0, 0, 0, 0))
            draw = ImageDraw.Draw(layer)
            x, y, radius = cx * size, cy * size, r * size
            draw.ellipse(
                (x - radius, y - radius, x + radius, y + radius),
                fill=(255, 255, 255, round(255 * opacity)),
            )
            img = Image.alpha_composite(img, layer)

        return img.convert("RGB")

