"""Carousel orchestrator: the end-to-end generation workflow.

Wires the analyzer, caption generator, image provider, slide jobs,
storage, document assembler and version history together, and is the
interface the outer application calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from datetime import datetime

from ..config import CarouselSettings, get_settings
from ..design.composer import SlideComposer
from ..exceptions import AllSlidesFailedError, CarouselNotFoundError
from ..persistence.store import CarouselStore, JsonCarouselStore
from ..providers.image import ImageGenerationRequest, ImageProvider, get_image_provider
from ..providers.text import TextProvider
from ..services.document import DocumentAssembler
from ..services.storage import StorageUploader
from .analyzer import analyze_format
from .captions import CaptionGenerator
from .models import (
    CarouselGenerationOptions,
    CarouselGenerationResult,
    CarouselIntent,
    CarouselSlideVersion,
    CarouselStatus,
    SlideRegenerationOptions,
    SlideRegenerationResult,
    StylePreset,
    VersionActivationResult,
)
from .prompts import NEGATIVE_PROMPT, apply_captions, build_carousel_pages
from .slide_job import ProgressCallback, SlideJob, SlideJobContext, SlideJobResult
from .versions import SlideVersionManager

_logger = logging.getLogger("carousel")

ALL_FAILED_ERROR = "All image generations failed"


def _log_step(carousel_id: str, step: str, details: str = "") -> None:
    _logger.info(f"CAROUSEL:{carousel_id} | {step} | {details}".rstrip(" |"))


class CarouselOrchestrator:
    """Orchestrates carousel generation, regeneration and version activation.

    Operations on one article are serialised within this process: a
    generation, a slide regeneration and a version activation for the
    same article never interleave. Separate processes sharing a store
    are not coordinated.

    Usage:
        orchestrator = CarouselOrchestrator()

        result = await orchestrator.generate_carousel(
            "article-123",
            CarouselGenerationOptions(style_preset=StylePreset.DARK_MODE),
        )

        status = await orchestrator.get_carousel_status("article-123")

        await orchestrator.regenerate_carousel_slide(
            "article-123", 3, SlideRegenerationOptions(custom_prompt="Soft teal haze"),
        )
    """

    def __init__(
        self,
        store: CarouselStore | None = None,
        settings: CarouselSettings | None = None,
        text_provider: TextProvider | None = None,
        image_provider: ImageProvider | None = None,
        composer: SlideComposer | None = None,
        uploader: StorageUploader | None = None,
        assembler: DocumentAssembler | None = None,
        caption_generator: CaptionGenerator | None = None,
        progress_callback: ProgressCallback = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Record store (JSON files under ``data_dir`` if not provided).
            settings: Runtime settings.
            text_provider: LLM provider for captions.
            image_provider: Text-to-image provider.
            composer: Slide composer.
            uploader: Storage for slide images and documents.
            assembler: PDF assembler.
            caption_generator: Caption generator (built on ``text_provider``
                if not provided).
            progress_callback: Optional async callback for per-slide updates.
        """
        self.settings = settings or get_settings()
        self.store = store or JsonCarouselStore(self.settings.data_dir)
        self.image_provider = image_provider or get_image_provider()
        self.caption_generator = caption_generator or CaptionGenerator(text_provider)
        self.composer = composer or SlideComposer()
        self.uploader = uploader or StorageUploader(self.settings)
        self.assembler = assembler or DocumentAssembler(self.settings, uploader=self.uploader)
        self.slide_job = SlideJob(self.composer, self.uploader, progress_callback)
        self.versions = SlideVersionManager(
            store=self.store,
            image_provider=self.image_provider,
            caption_generator=self.caption_generator,
            slide_job=self.slide_job,
            assembler=self.assembler,
            settings=self.settings,
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _article_lock(self, article_id: str) -> asyncio.Lock:
        lock = self._locks.get(article_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[article_id] = lock
        return lock

    # ==================== Generation ====================

    async def generate_carousel(
        self,
        article_id: str,
        options: CarouselGenerationOptions | None = None,
    ) -> CarouselGenerationResult:
        """Generate (or return the cached) carousel for an article.

        Never raises for expected failures: a missing article and a
        carousel where every slide failed come back as ``success=False``
        with an ``error_code``.
        """
        options = options or CarouselGenerationOptions()
        lock = self._article_lock(article_id)
        async with lock:
            try:
                return await self._generate(article_id, options)
            except CarouselNotFoundError as e:
                _logger.warning(f"ARTICLE:{article_id} | NOT_FOUND | error:{e}")
                return CarouselGenerationResult(success=False, error=str(e), error_code="not_found")
            except AllSlidesFailedError as e:
                _logger.error(f"CAROUSEL:{e.carousel_id} | FAILED | error:{e}")
                return CarouselGenerationResult(
                    success=False,
                    carousel_id=e.carousel_id,
                    pages=e.pages,
                    error=str(e),
                    error_code="all_slides_failed",
                    provider=e.provider,
                )

    async def _generate(
        self,
        article_id: str,
        options: CarouselGenerationOptions,
    ) -> CarouselGenerationResult:
        start_time = time.time()

        article = await self.store.get_article(article_id)
        if article is None:
            raise CarouselNotFoundError(f"Article {article_id} not found")

        intent = await self.store.get_intent_by_article(article_id)

        if intent is not None and intent.generated_pdf_url and not options.force_regenerate:
            _log_step(intent.id, "CACHED")
            return CarouselGenerationResult(
                success=True,
                carousel_id=intent.id,
                pdf_url=intent.generated_pdf_url,
                pages=intent.pages,
                provider=intent.generation_provider,
                cached=True,
            )

        style = options.style_preset or StylePreset(self.settings.default_style_preset)
        fmt = analyze_format(article)
        captions = await self.caption_generator.generate(article, fmt)
        pages = apply_captions(
            build_carousel_pages(article, fmt, style),
            captions.captions,
        )

        # A new intent is persisted before the expensive work so a crash leaves
        # a partial record. An existing one keeps its stored pages, which still
        # mirror the active versions, until this run's versions are recorded.
        is_new = intent is None
        if intent is None:
            intent = CarouselIntent(
                article_id=article_id,
                page_count=fmt.page_count,
                pages=pages,
                style_preset=style,
            )
            await self.store.insert_intent(intent)
        else:
            intent.page_count = fmt.page_count
            intent.pages = pages
            intent.style_preset = style
            intent.generation_error = None

        _log_step(
            intent.id, "START",
            f"article:{article_id} | pages:{fmt.page_count} | style:{style.value} | "
            f"captions:{'fallback' if captions.used_fallback else 'llm'} | force:{options.force_regenerate}",
        )

        backgrounds = await self.image_provider.generate_images(
            [
                ImageGenerationRequest(
                    prompt=page.prompt,
                    negative_prompt=NEGATIVE_PROMPT,
                    style_preset=style.value,
                )
                for page in intent.pages
            ],
            provider=options.provider,
            model=options.model,
        )

        version_stamp = None if is_new else int(time.time() * 1000)
        results = await asyncio.gather(*(
            self.slide_job.execute(SlideJobContext(
                carousel_id=intent.id,
                page=page,
                background=background,
                size=self.settings.slide_size,
                version=version_stamp,
            ))
            for page, background in zip(intent.pages, backgrounds)
        ))

        now = datetime.now()
        provider = next((b.provider for b in backgrounds if b.success), None) or (
            backgrounds[0].provider if backgrounds else options.provider
        )
        failed_count = sum(1 for r in results if r.error)

        for page, result in zip(intent.pages, results):
            page.image_url = result.image_url
            page.generated_at = now
            page.generation_error = result.error

        if not any(r.success for r in results):
            # Slides keep whatever earlier version is still active
            intent.pages = await self.versions.rebuild_pages(intent)
            self._mark_errors(intent, results)
            intent.generated_pdf_url = None
            intent.generation_provider = provider
            intent.generation_error = ALL_FAILED_ERROR
            await self.store.update_intent(intent)
            raise AllSlidesFailedError(ALL_FAILED_ERROR, intent.id, intent.pages, provider)

        for page, result in zip(intent.pages, results):
            if result.success:
                await self.versions.add_version(intent, page, result, now)

        intent.pages = await self.versions.rebuild_pages(intent)
        self._mark_errors(intent, results)

        if options.skip_pdf:
            intent.generated_pdf_url = None
        else:
            intent.generated_pdf_url = await self.assembler.try_assemble(intent.pages, intent.id)

        intent.generation_provider = provider
        intent.generation_error = f"{failed_count} images failed" if failed_count else None
        intent.generated_at = now
        await self.store.update_intent(intent)

        _log_step(
            intent.id, "DONE",
            f"duration:{time.time() - start_time:.2f}s | failed:{failed_count} | "
            f"pdf:{'yes' if intent.generated_pdf_url else 'no'}",
        )

        return CarouselGenerationResult(
            success=True,
            carousel_id=intent.id,
            pdf_url=intent.generated_pdf_url,
            pages=intent.pages,
            error=intent.generation_error,
            provider=provider,
        )

    @staticmethod
    def _mark_errors(intent: CarouselIntent, results: list[SlideJobResult]) -> None:
        # A failed slide keeps its earlier image but reports this run's error
        for page, result in zip(intent.pages, results):
            if not result.success:
                page.generation_error = result.error

    # ==================== Status & deletion ====================

    async def get_carousel_status(self, article_id: str) -> CarouselStatus:
        """Current carousel state for an article, with per-slide version counts."""
        intent = await self.store.get_intent_by_article(article_id)
        if intent is None:
            return CarouselStatus(exists=False)

        counts = await self.versions.version_counts(intent.id)
        pages = [
            page.model_copy(update={"version_count": counts.get(page.page_number, 0)})
            for page in intent.pages
        ]
        return CarouselStatus(
            exists=True,
            id=intent.id,
            page_count=intent.page_count,
            pages=pages,
            pdf_url=intent.generated_pdf_url,
            generated_at=intent.generated_at,
            provider=intent.generation_provider,
            error=intent.generation_error,
            version_counts=counts,
        )

    async def delete_carousel(self, article_id: str) -> bool:
        """Delete an article's carousel and all its versions.

        Stored files are removed on a best-effort basis afterwards.

        Returns:
            False if the article had no carousel.
        """
        lock = self._article_lock(article_id)
        async with lock:
            intent = await self.store.get_intent_by_article(article_id)
            if intent is None:
                return False

            versions = await self.store.list_versions(intent.id)
            refs = {page.image_url for page in intent.pages if page.image_url}
            refs.update(v.image_url for v in versions if v.image_url)
            if intent.generated_pdf_url:
                refs.add(intent.generated_pdf_url)

            await self.store.delete_intent(intent.id)
            _log_step(intent.id, "DELETED", f"article:{article_id} | versions:{len(versions)}")

        for ref in refs:
            await self.uploader.delete(ref)
        return True

    # ==================== Slides & versions ====================

    async def regenerate_carousel_slide(
        self,
        article_id: str,
        slide_number: int,
        options: SlideRegenerationOptions | None = None,
    ) -> SlideRegenerationResult:
        """Regenerate one slide as a new active version.

        Raises:
            CarouselNotFoundError: If the article or its carousel is missing.
            InvalidSlideNumberError: If slide_number is outside 1..page_count.
        """
        options = options or SlideRegenerationOptions()
        lock = self._article_lock(article_id)
        async with lock:
            intent = await self.store.get_intent_by_article(article_id)
            if intent is None:
                raise CarouselNotFoundError(f"Carousel not found for article {article_id}")
            article = await self.store.get_article(article_id)
            if article is None:
                raise CarouselNotFoundError(f"Article {article_id} not found")
            return await self.versions.regenerate_slide(intent, article, slide_number, options)

    async def get_slide_versions(
        self,
        carousel_intent_id: str,
        slide_number: int,
    ) -> list[CarouselSlideVersion]:
        """All versions of a slide, newest first. Empty if there are none."""
        return await self.versions.get_slide_versions(carousel_intent_id, slide_number)

    async def activate_slide_version(
        self,
        carousel_intent_id: str,
        slide_number: int,
        version_id: str,
    ) -> VersionActivationResult:
        """Make a stored version the active one for its slide.

        Raises:
            CarouselNotFoundError: If the carousel doesn't exist.
            InvalidSlideNumberError: If slide_number is outside 1..page_count.
            VersionNotFoundError: If the version isn't one of this slide's.
        """
        intent = await self.store.get_intent(carousel_intent_id)
        if intent is None:
            raise CarouselNotFoundError(f"Carousel {carousel_intent_id} not found")

        lock = self._article_lock(intent.article_id)
        async with lock:
            # Re-read: a generation may have finished while we waited
            intent = await self.store.get_intent(carousel_intent_id)
            if intent is None:
                raise CarouselNotFoundError(f"Carousel {carousel_intent_id} not found")
            return await self.versions.activate_version(intent, slide_number, version_id)
