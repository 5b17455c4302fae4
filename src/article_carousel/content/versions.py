"""Slide version history.

Every image a slide has ever had is a version row, and exactly one of them
is active. The page snapshot on the intent is a view of the active
versions: ``materialize_page`` is the only place that copies version data
onto a page.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

from ..config import CarouselSettings, get_settings
from ..exceptions import InvalidSlideNumberError
from ..persistence.store import CarouselStore
from ..providers.image import ImageGenerationRequest, ImageProvider
from ..services.document import DocumentAssembler
from .analyzer import suggest_headlines
from .captions import CaptionGenerator
from .models import (
    Article,
    CarouselFormat,
    CarouselIntent,
    CarouselPage,
    CarouselSlideVersion,
    SlideRegenerationOptions,
    SlideRegenerationResult,
    VersionActivationResult,
)
from .prompts import NEGATIVE_PROMPT
from .slide_job import SlideJob, SlideJobContext, SlideJobResult

_logger = logging.getLogger("carousel")


def materialize_page(page: CarouselPage, version: CarouselSlideVersion) -> CarouselPage:
    """Rebuild a page from the version that is active for it."""
    return page.model_copy(update={
        "prompt": version.prompt,
        "headline_text": version.headline_text,
        "caption": version.caption,
        "image_url": version.image_url,
        "generated_at": version.generated_at,
        "generation_error": version.generation_error,
        "active_version_id": version.id,
    })


def _count_by_slide(versions: list[CarouselSlideVersion]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for version in versions:
        counts[version.slide_number] = counts.get(version.slide_number, 0) + 1
    return counts


def check_slide_number(intent: CarouselIntent, slide_number: int) -> None:
    """Raise InvalidSlideNumberError unless 1 <= slide_number <= page_count."""
    if not 1 <= slide_number <= intent.page_count:
        raise InvalidSlideNumberError(slide_number, intent.page_count)


class SlideVersionManager:
    """Record, regenerate and activate slide versions.

    Callers are expected to serialise calls per article; see
    ``CarouselOrchestrator``.
    """

    def __init__(
        self,
        store: CarouselStore,
        image_provider: ImageProvider,
        caption_generator: CaptionGenerator,
        slide_job: SlideJob,
        assembler: DocumentAssembler,
        settings: CarouselSettings | None = None,
    ):
        self.store = store
        self.image_provider = image_provider
        self.caption_generator = caption_generator
        self.slide_job = slide_job
        self.assembler = assembler
        self.settings = settings or get_settings()

    async def add_version(
        self,
        intent: CarouselIntent,
        page: CarouselPage,
        result: SlideJobResult,
        generated_at: datetime,
    ) -> CarouselSlideVersion:
        """Append an active version for a finished slide.

        Earlier versions of the slide are deactivated, never removed.
        """
        number = await self.store.latest_version_number(intent.id, page.page_number) + 1
        version = CarouselSlideVersion(
            carousel_intent_id=intent.id,
            slide_number=page.page_number,
            version_number=number,
            prompt=page.prompt,
            headline_text=page.headline_text,
            caption=page.caption,
            image_url=result.image_url,
            is_active=False,
            generated_at=generated_at,
            generation_provider=result.provider,
            generation_error=result.error,
        )
        await self.store.insert_version(version)
        return await self.store.set_active_version(intent.id, page.page_number, version.id)

    async def rebuild_pages(self, intent: CarouselIntent) -> list[CarouselPage]:
        """Refresh every page that has an active version, plus version counts."""
        versions = await self.store.list_versions(intent.id)
        active = {v.slide_number: v for v in versions if v.is_active}
        counts = _count_by_slide(versions)

        pages = []
        for page in intent.pages:
            if page.page_number in active:
                page = materialize_page(page, active[page.page_number])
            page.version_count = counts.get(page.page_number, 0)
            pages.append(page)
        return pages

    async def get_slide_versions(self, carousel_intent_id: str, slide_number: int) -> list[CarouselSlideVersion]:
        """All versions of a slide, newest first."""
        return await self.store.list_versions(carousel_intent_id, slide_number)

    async def version_counts(self, carousel_intent_id: str) -> dict[int, int]:
        return _count_by_slide(await self.store.list_versions(carousel_intent_id))

    async def regenerate_slide(
        self,
        intent: CarouselIntent,
        article: Article,
        slide_number: int,
        options: SlideRegenerationOptions,
    ) -> SlideRegenerationResult:
        """Generate one new image for a slide and make it the active version.

        Raises:
            InvalidSlideNumberError: If the slide is outside the carousel.
        """
        check_slide_number(intent, slide_number)
        page = intent.get_page(slide_number)

        prompt, headline, caption = page.prompt, page.headline_text, page.caption
        if options.custom_prompt:
            prompt = options.custom_prompt
        elif options.regenerate_prompt:
            fmt = CarouselFormat(
                page_count=intent.page_count,
                structure=[p.slide_type for p in intent.pages],
                suggested_headlines=suggest_headlines(article, intent.page_count),
            )
            captions = await self.caption_generator.generate(article, fmt)
            if not captions.used_fallback:
                fresh = captions.captions[slide_number - 1]
                prompt, headline, caption = fresh.image_prompt, fresh.headline, fresh.caption

        target = page.model_copy(update={"prompt": prompt, "headline_text": headline, "caption": caption})

        _logger.info(
            f"CAROUSEL:{intent.id} | REGENERATE | slide:{slide_number} | "
            f"provider:{options.provider} | prompt:{prompt[:80]}"
        )

        [background] = await self.image_provider.generate_images(
            [ImageGenerationRequest(
                prompt=prompt,
                negative_prompt=NEGATIVE_PROMPT,
                style_preset=intent.style_preset.value,
            )],
            provider=options.provider,
            model=options.model,
        )
        result = await self.slide_job.execute(SlideJobContext(
            carousel_id=intent.id,
            page=target,
            background=background,
            size=self.settings.slide_size,
            version=int(time.time() * 1000),
        ))

        if not result.success:
            return SlideRegenerationResult(
                success=False,
                pages=intent.pages,
                pdf_url=intent.generated_pdf_url,
                error=result.error,
            )

        version = await self.add_version(intent, target, result, datetime.now())
        intent.pages = await self.rebuild_pages(intent)

        pdf_url = await self.assembler.try_assemble(intent.pages, intent.id)
        if pdf_url:
            intent.generated_pdf_url = pdf_url
        await self.store.update_intent(intent)

        return SlideRegenerationResult(
            success=True,
            page=intent.get_page(slide_number),
            version=version,
            pages=intent.pages,
            pdf_url=intent.generated_pdf_url,
            error=result.error,
        )

    async def activate_version(
        self,
        intent: CarouselIntent,
        slide_number: int,
        version_id: str,
    ) -> VersionActivationResult:
        """Make a stored version the active one and mirror it into the page.

        Raises:
            InvalidSlideNumberError: If the slide is outside the carousel.
            VersionNotFoundError: If the version isn't one of this slide's.
        """
        check_slide_number(intent, slide_number)
        version = await self.store.set_active_version(intent.id, slide_number, version_id)

        intent.pages = await self.rebuild_pages(intent)
        pdf_url = await self.assembler.try_assemble(intent.pages, intent.id)
        if pdf_url:
            intent.generated_pdf_url = pdf_url
        await self.store.update_intent(intent)

        _logger.info(
            f"CAROUSEL:{intent.id} | ACTIVATE | slide:{slide_number} | version:{version.version_number}"
        )
        return VersionActivationResult(
            success=True,
            pages=intent.pages,
            pdf_url=intent.generated_pdf_url,
            activated_version=version,
        )
