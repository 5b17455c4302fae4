"""Per-slide finishing: overlay, upload, and fallback.

Every slide goes through the same job once its background request has
settled. A slide whose background failed, or whose overlay failed, gets
a locally drawn fallback instead, so a slide only ends without an image
when the fallback fails too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..design.composer import SlideComposer
from ..design.templates import OverlayOptions
from ..exceptions import OverlayError, StorageError
from ..providers.image import ImageGenerationResult
from ..services.storage import StorageUploader, slide_filename
from .models import CarouselPage

_logger = logging.getLogger("carousel")

# Type for progress callback
ProgressCallback = Callable[[dict[str, Any]], Awaitable[None]] | None


@dataclass
class SlideJobContext:
    """Everything needed to finish one slide."""

    carousel_id: str
    page: CarouselPage
    background: ImageGenerationResult
    size: int = 1080
    version: int | None = None

    def overlay_options(self) -> OverlayOptions:
        return OverlayOptions(
            headline=self.page.headline_text,
            slide_type=self.page.slide_type,
            caption=self.page.caption,
            slide_number=self.page.page_number,
            size=self.size,
        )


@dataclass
class SlideJobResult:
    """Outcome of one slide.

    ``error`` is set whenever the background or overlay failed, even if
    the fallback produced an image.
    """

    page_number: int
    image_url: str | None = None
    used_fallback: bool = False
    error: str | None = None
    provider: str | None = None

    @property
    def success(self) -> bool:
        """Check if the slide ended with an image."""
        return self.image_url is not None


class SlideJob:
    """Finish a slide from its background result.

    Usage:
        job = SlideJob(composer, uploader)
        result = await job.execute(SlideJobContext(
            carousel_id=intent.id,
            page=page,
            background=background_result,
        ))
    """

    def __init__(
        self,
        composer: SlideComposer,
        uploader: StorageUploader,
        progress_callback: ProgressCallback = None,
    ):
        """Initialize the slide job.

        Args:
            composer: Composer for overlays and fallbacks.
            uploader: Storage for the finished PNGs.
            progress_callback: Optional callback for progress updates.
        """
        self.composer = composer
        self.uploader = uploader
        self.progress_callback = progress_callback

    async def _emit_progress(self, update: dict[str, Any]) -> None:
        if self.progress_callback:
            await self.progress_callback(update)

    async def execute(self, context: SlideJobContext) -> SlideJobResult:
        page_number = context.page.page_number
        options = context.overlay_options()
        background = context.background
        provider = background.provider

        if background.success and background.image_url:
            try:
                png = await self.composer.overlay_text_from_url(background.image_url, options)
                image_url = await self.uploader.upload_image(
                    png, slide_filename(context.carousel_id, page_number, version=context.version)
                )
                await self._emit_progress({"action": "slide_done", "slide_number": page_number})
                return SlideJobResult(page_number=page_number, image_url=image_url, provider=provider)
            except Exception as e:
                # Anything from fetch, overlay or upload degrades to the fallback
                error = f"Overlay failed: {e}"
        else:
            error = background.error or "Image generation failed"

        _logger.warning(
            f"CAROUSEL:{context.carousel_id} | SLIDE:{page_number} | FALLBACK | error:{error}"
        )
        await self._emit_progress({"action": "slide_fallback", "slide_number": page_number, "error": error})

        try:
            png = await self.composer.create_fallback_slide(options)
            image_url = await self.uploader.upload_image(
                png,
                slide_filename(context.carousel_id, page_number, fallback=True, version=context.version),
            )
        except (OverlayError, StorageError) as e:
            _logger.error(
                f"CAROUSEL:{context.carousel_id} | SLIDE:{page_number} | FAILED | error:{e}"
            )
            return SlideJobResult(
                page_number=page_number,
                used_fallback=True,
                error=f"{error}; fallback failed: {e}",
                provider=provider,
            )

        return SlideJobResult(
            page_number=page_number,
            image_url=image_url,
            used_fallback=True,
            error=error,
            provider=provider,
        )
