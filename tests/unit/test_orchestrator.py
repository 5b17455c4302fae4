"""Unit tests for CarouselOrchestrator.

Providers are mocked; composition, storage (base64), the PDF and the
store run for real so the tests exercise the whole workflow.
"""

from __future__ import annotations

import asyncio
import base64
import re
from unittest.mock import AsyncMock, patch

import pytest

from article_carousel.content.captions import CaptionGenerator
from article_carousel.content.models import (
    Article,
    CarouselGenerationOptions,
    SlideRegenerationOptions,
    StylePreset,
)
from article_carousel.content.orchestrator import ALL_FAILED_ERROR, CarouselOrchestrator
from article_carousel.exceptions import (
    AllSlidesFailedError,
    CarouselNotFoundError,
    InvalidSlideNumberError,
    OverlayError,
    VersionNotFoundError,
)
from article_carousel.providers.image import ImageGenerationResult
from article_carousel.providers.text import StructuredResult

from conftest import failed_result, llm_slides, ok_result


@pytest.fixture
def orchestrator(
    store,
    settings,
    mock_image_provider,
    composer,
    uploader,
    assembler,
    caption_generator,
) -> CarouselOrchestrator:
    return CarouselOrchestrator(
        store=store,
        settings=settings,
        image_provider=mock_image_provider,
        composer=composer,
        uploader=uploader,
        assembler=assembler,
        caption_generator=caption_generator,
    )


def results_by_index(failing: set[int]):
    """generate_images side effect that fails the given 0-based indexes."""
    async def generate_images(requests, provider=None, model=None):
        return [
            failed_result(error=f"slide {i + 1} failed") if i in failing else ok_result()
            for i in range(len(requests))
        ]
    return generate_images


async def seed(store, article: Article) -> None:
    await store.save_article(article)


def pdf_page_count(pdf_url: str) -> int:
    """Page count of an inline PDF reference."""
    pdf = base64.b64decode(pdf_url.split(",", 1)[1])
    return int(re.search(rb"/Count (\d+)", pdf).group(1))


class TestGenerateCarousel:
    """Tests for generate_carousel."""

    @pytest.mark.asyncio
    async def test_generates_all_slides(self, orchestrator, store, sample_article, mock_image_provider):
        """Test a clean generation end to end."""
        await seed(store, sample_article)

        result = await orchestrator.generate_carousel(sample_article.id)

        assert result.success
        assert not result.cached
        assert result.error is None
        assert result.provider == "mock"
        assert len(result.pages) == 5
        assert all(p.image_url for p in result.pages)
        assert all(p.version_count == 1 for p in result.pages)
        assert result.pdf_url.startswith("data:application/pdf;base64,")
        assert result.pages[0].headline_text == "LLM headline 1"

        requests = mock_image_provider.generate_images.call_args.args[0]
        assert [r.prompt for r in requests] == [p.prompt for p in result.pages]

        intent = await store.get_intent_by_article(sample_article.id)
        assert intent.id == result.carousel_id
        assert intent.generated_pdf_url == result.pdf_url
        versions = await store.list_versions(intent.id)
        assert len(versions) == 5
        assert all(v.is_active and v.version_number == 1 for v in versions)
        assert {p.active_version_id for p in intent.pages} == {v.id for v in versions}

    @pytest.mark.asyncio
    async def test_missing_article(self, orchestrator):
        """Test that a missing article is a result, not an exception."""
        result = await orchestrator.generate_carousel("nope")

        assert not result.success
        assert result.error_code == "not_found"

    @pytest.mark.asyncio
    async def test_cached_result(self, orchestrator, store, sample_article, mock_image_provider, mock_text_provider):
        """Test that a finished carousel is returned without new provider calls."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)

        second = await orchestrator.generate_carousel(sample_article.id)

        assert second.success
        assert second.cached
        assert second.carousel_id == first.carousel_id
        assert second.pdf_url == first.pdf_url
        assert mock_image_provider.generate_images.await_count == 1
        assert mock_text_provider.generate_structured.await_count == 1

    @pytest.mark.asyncio
    async def test_force_regenerate_appends_versions(self, orchestrator, store, sample_article):
        """Test that forcing adds a version per slide and keeps the intent."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)

        second = await orchestrator.generate_carousel(
            sample_article.id, CarouselGenerationOptions(force_regenerate=True),
        )

        assert second.success
        assert not second.cached
        assert second.carousel_id == first.carousel_id
        assert all(p.version_count == 2 for p in second.pages)

        versions = await store.list_versions(first.carousel_id, 1)
        assert [v.version_number for v in versions] == [2, 1]
        assert [v.is_active for v in versions] == [True, False]

    @pytest.mark.asyncio
    async def test_one_failed_slide(self, orchestrator, store, sample_article, mock_image_provider):
        """Test that a failed background gets a fallback and is counted."""
        await seed(store, sample_article)
        mock_image_provider.generate_images.side_effect = results_by_index({2})

        result = await orchestrator.generate_carousel(sample_article.id)

        assert result.success
        assert result.error == "1 images failed"
        assert result.pdf_url is not None
        page = result.pages[2]
        assert page.image_url is not None
        assert page.generation_error == "slide 3 failed"
        assert all(p.generation_error is None for i, p in enumerate(result.pages) if i != 2)

    @pytest.mark.asyncio
    async def test_all_slides_failed(self, orchestrator, store, sample_article, mock_image_provider, composer):
        """Test that a run with no images at all fails without versions."""
        await seed(store, sample_article)
        mock_image_provider.generate_images.side_effect = results_by_index({0, 1, 2, 3, 4})

        with patch.object(composer, "create_fallback_slide", side_effect=OverlayError("no fonts")):
            result = await orchestrator.generate_carousel(sample_article.id)

        assert not result.success
        assert result.error == ALL_FAILED_ERROR
        assert result.error_code == "all_slides_failed"
        assert result.pdf_url is None
        assert all(p.image_url is None for p in result.pages)

        intent = await store.get_intent_by_article(sample_article.id)
        assert intent.generation_error == ALL_FAILED_ERROR
        assert await store.list_versions(intent.id) == []
        assert result.carousel_id == intent.id

    @pytest.mark.asyncio
    async def test_all_failed_raises_inside_workflow(
        self, orchestrator, store, sample_article, mock_image_provider, composer,
    ):
        """Test that the workflow signals a total failure with AllSlidesFailedError."""
        await seed(store, sample_article)
        mock_image_provider.generate_images.side_effect = results_by_index({0, 1, 2, 3, 4})

        with patch.object(composer, "create_fallback_slide", side_effect=OverlayError("no fonts")):
            with pytest.raises(AllSlidesFailedError) as exc_info:
                await orchestrator._generate(sample_article.id, CarouselGenerationOptions())

        intent = await store.get_intent_by_article(sample_article.id)
        assert exc_info.value.carousel_id == intent.id
        assert len(exc_info.value.pages) == 5
        assert exc_info.value.provider == "mock"

    @pytest.mark.asyncio
    async def test_all_failed_keeps_earlier_images(
        self, orchestrator, store, sample_article, mock_image_provider, composer,
    ):
        """Test that a failed forced run leaves the previous images active."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)
        mock_image_provider.generate_images.side_effect = results_by_index({0, 1, 2, 3, 4})

        with patch.object(composer, "create_fallback_slide", side_effect=OverlayError("no fonts")):
            result = await orchestrator.generate_carousel(
                sample_article.id, CarouselGenerationOptions(force_regenerate=True),
            )

        assert not result.success
        assert [p.image_url for p in result.pages] == [p.image_url for p in first.pages]
        assert all(p.generation_error for p in result.pages)
        assert all(p.version_count == 1 for p in result.pages)

    @pytest.mark.asyncio
    async def test_skip_pdf(self, orchestrator, store, sample_article):
        """Test that skip_pdf leaves the document unset."""
        await seed(store, sample_article)

        result = await orchestrator.generate_carousel(
            sample_article.id, CarouselGenerationOptions(skip_pdf=True),
        )

        assert result.success
        assert result.pdf_url is None
        assert all(p.image_url for p in result.pages)

    @pytest.mark.asyncio
    async def test_caption_failure_uses_fallback(self, orchestrator, store, sample_article, mock_text_provider):
        """Test that an LLM failure still produces a carousel."""
        await seed(store, sample_article)
        mock_text_provider.generate_structured.side_effect = RuntimeError("LLM down")

        result = await orchestrator.generate_carousel(sample_article.id)

        assert result.success
        assert result.pages[0].headline_text == sample_article.title
        assert result.pages[1].headline_text == "Start with the smallest slice"

    @pytest.mark.asyncio
    async def test_style_and_provider_options(self, orchestrator, store, sample_article, mock_image_provider):
        """Test that options reach the image provider."""
        await seed(store, sample_article)

        result = await orchestrator.generate_carousel(
            sample_article.id,
            CarouselGenerationOptions(provider="fal", model="flux-pro", style_preset=StylePreset.DARK_MODE),
        )

        call = mock_image_provider.generate_images.call_args
        assert call.kwargs == {"provider": "fal", "model": "flux-pro"}
        assert all(r.style_preset == "dark_mode" for r in call.args[0])
        assert result.provider == "fal"

    @pytest.mark.asyncio
    async def test_default_style_from_settings(
        self, orchestrator, store, settings, sample_article, mock_image_provider,
    ):
        """Test that the configured preset applies when no style is given."""
        await seed(store, sample_article)
        settings.default_style_preset = "accent_bar"

        await orchestrator.generate_carousel(sample_article.id)

        call = mock_image_provider.generate_images.call_args
        assert all(r.style_preset == "accent_bar" for r in call.args[0])
        intent = await store.get_intent_by_article(sample_article.id)
        assert intent.style_preset == StylePreset.ACCENT_BAR

    @pytest.mark.asyncio
    async def test_how_to_gets_six_slides(self, orchestrator, store, sample_article, mock_text_provider):
        """Test a six-slide how-to carousel with one version per slide and a full PDF."""
        article = sample_article.model_copy(update={"article_type": "how_to"})
        await seed(store, article)
        mock_text_provider.generate_structured.return_value = StructuredResult(data=llm_slides(6))

        result = await orchestrator.generate_carousel(article.id)

        assert result.success
        assert len(result.pages) == 6
        assert all(p.image_url for p in result.pages)
        assert all(p.version_count == 1 for p in result.pages)
        versions = await store.list_versions(result.carousel_id)
        assert sorted(v.slide_number for v in versions) == [1, 2, 3, 4, 5, 6]
        assert all(v.version_number == 1 and v.is_active for v in versions)
        assert pdf_page_count(result.pdf_url) == 6

    @pytest.mark.asyncio
    async def test_six_slides_one_failed_keeps_full_document(
        self, orchestrator, store, sample_article, mock_text_provider, mock_image_provider,
    ):
        """Test that the fallback for a failed slide still lands in the PDF."""
        article = sample_article.model_copy(update={"article_type": "how_to"})
        await seed(store, article)
        mock_text_provider.generate_structured.return_value = StructuredResult(data=llm_slides(6))
        mock_image_provider.generate_images.side_effect = results_by_index({2})

        result = await orchestrator.generate_carousel(article.id)

        assert result.success
        assert result.error == "1 images failed"
        assert all(p.image_url for p in result.pages)
        assert result.pages[2].generation_error == "slide 3 failed"
        assert pdf_page_count(result.pdf_url) == 6

    @pytest.mark.asyncio
    async def test_malformed_background_url_falls_back(
        self, orchestrator, store, sample_article, mock_image_provider,
    ):
        """Test that an unparseable image reference only affects its own slide."""
        await seed(store, sample_article)

        async def generate_images(requests, provider=None, model=None):
            results = [ok_result() for _ in requests]
            results[2] = ImageGenerationResult(success=True, image_url="http://exa mple.com/\x00bad", provider="mock")
            results[3] = ImageGenerationResult(success=True, image_url="/tmp/bg\x00.png", provider="mock")
            return results

        mock_image_provider.generate_images.side_effect = generate_images

        result = await orchestrator.generate_carousel(sample_article.id)

        assert result.success
        assert result.error == "2 images failed"
        assert all(p.image_url for p in result.pages)
        assert result.pages[2].generation_error.startswith("Overlay failed:")
        assert pdf_page_count(result.pdf_url) == 5

    @pytest.mark.asyncio
    async def test_status_during_forced_run_mirrors_versions(
        self, orchestrator, store, sample_article, mock_image_provider,
    ):
        """Test that a forced run doesn't blank the stored pages while it works."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking_generate(requests, provider=None, model=None):
            started.set()
            await release.wait()
            return [ok_result() for _ in requests]

        mock_image_provider.generate_images.side_effect = blocking_generate
        task = asyncio.create_task(orchestrator.generate_carousel(
            sample_article.id, CarouselGenerationOptions(force_regenerate=True),
        ))
        await started.wait()

        status = await orchestrator.get_carousel_status(sample_article.id)

        assert [p.image_url for p in status.pages] == [p.image_url for p in first.pages]
        assert [p.active_version_id for p in status.pages] == [p.active_version_id for p in first.pages]
        assert status.pdf_url == first.pdf_url

        release.set()
        second = await task
        assert second.success
        assert all(p.version_count == 2 for p in second.pages)

    @pytest.mark.asyncio
    async def test_concurrent_calls_generate_once(self, orchestrator, store, sample_article, mock_image_provider):
        """Test that concurrent calls for one article don't both generate."""
        await seed(store, sample_article)

        first, second = await asyncio.gather(
            orchestrator.generate_carousel(sample_article.id),
            orchestrator.generate_carousel(sample_article.id),
        )

        assert first.carousel_id == second.carousel_id
        assert first.cached != second.cached
        assert mock_image_provider.generate_images.await_count == 1


class TestStatusAndDelete:
    """Tests for get_carousel_status and delete_carousel."""

    @pytest.mark.asyncio
    async def test_status_without_carousel(self, orchestrator):
        """Test the status of an article that has no carousel."""
        status = await orchestrator.get_carousel_status("article-1")

        assert not status.exists
        assert status.pages == []

    @pytest.mark.asyncio
    async def test_status_reports_version_counts(self, orchestrator, store, sample_article):
        """Test that status carries per-slide version counts."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)
        await orchestrator.regenerate_carousel_slide(sample_article.id, 2)

        status = await orchestrator.get_carousel_status(sample_article.id)

        assert status.exists
        assert status.id == result.carousel_id
        assert status.page_count == 5
        assert status.version_counts == {1: 1, 2: 2, 3: 1, 4: 1, 5: 1}
        assert status.pages[1].version_count == 2
        assert status.pdf_url is not None

    @pytest.mark.asyncio
    async def test_delete(self, orchestrator, store, sample_article):
        """Test that delete removes the carousel and its versions."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)

        assert await orchestrator.delete_carousel(sample_article.id) is True

        assert not (await orchestrator.get_carousel_status(sample_article.id)).exists
        assert await orchestrator.get_slide_versions(result.carousel_id, 1) == []
        assert await orchestrator.delete_carousel(sample_article.id) is False
        assert await store.get_article(sample_article.id) is not None

    @pytest.mark.asyncio
    async def test_delete_removes_local_files(self, store, settings, mock_image_provider, composer, sample_article):
        """Test that stored slide files are removed after delete."""
        settings.storage_backend = "local"
        orchestrator = CarouselOrchestrator(
            store=store,
            settings=settings,
            image_provider=mock_image_provider,
            composer=composer,
            caption_generator=CaptionGenerator(AsyncMock(**{"generate_structured.side_effect": RuntimeError("off")})),
        )
        await seed(store, sample_article)
        await orchestrator.generate_carousel(sample_article.id)
        assert len(list(settings.storage_dir.glob("*.png"))) == 5

        await orchestrator.delete_carousel(sample_article.id)

        assert list(settings.storage_dir.glob("*.png")) == []

    @pytest.mark.asyncio
    async def test_regenerate_after_delete_starts_over(self, orchestrator, store, sample_article):
        """Test that a new generation after delete starts at version 1."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)
        await orchestrator.delete_carousel(sample_article.id)

        second = await orchestrator.generate_carousel(sample_article.id)

        assert second.carousel_id != first.carousel_id
        assert all(p.version_count == 1 for p in second.pages)


class TestRegenerateSlide:
    """Tests for regenerate_carousel_slide."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slide_number", [0, 6, -1])
    async def test_invalid_slide_number(self, orchestrator, store, sample_article, slide_number):
        """Test that out-of-range slides are rejected."""
        await seed(store, sample_article)
        await orchestrator.generate_carousel(sample_article.id)

        with pytest.raises(InvalidSlideNumberError):
            await orchestrator.regenerate_carousel_slide(sample_article.id, slide_number)

    @pytest.mark.asyncio
    async def test_missing_carousel(self, orchestrator, store, sample_article):
        """Test that regenerating without a carousel raises."""
        await seed(store, sample_article)

        with pytest.raises(CarouselNotFoundError):
            await orchestrator.regenerate_carousel_slide(sample_article.id, 1)

    @pytest.mark.asyncio
    async def test_custom_prompt_creates_active_version(
        self, orchestrator, store, sample_article, mock_image_provider,
    ):
        """Test that a custom prompt becomes version 2 and the page mirrors it."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)

        result = await orchestrator.regenerate_carousel_slide(
            sample_article.id, 3, SlideRegenerationOptions(custom_prompt="Deep teal fog over still water"),
        )

        assert result.success
        assert result.version.version_number == 2
        assert result.version.is_active
        assert result.version.prompt == "Deep teal fog over still water"
        assert result.page.prompt == "Deep teal fog over still water"
        assert result.page.active_version_id == result.version.id
        assert result.page.version_count == 2
        assert result.pdf_url is not None
        assert mock_image_provider.generate_images.call_args.args[0][0].prompt == "Deep teal fog over still water"

        # Other slides are untouched
        assert result.pages[0].active_version_id == first.pages[0].active_version_id

        intent = await store.get_intent_by_article(sample_article.id)
        assert intent.get_page(3).prompt == "Deep teal fog over still water"

    @pytest.mark.asyncio
    async def test_regenerate_prompt_asks_llm(self, orchestrator, store, sample_article, mock_text_provider):
        """Test that regenerate_prompt takes fresh copy from the LLM."""
        await seed(store, sample_article)
        await orchestrator.generate_carousel(sample_article.id)
        fresh = llm_slides(5)
        fresh["slides"][1].update(headline="Fresh headline", caption="Fresh caption", image_prompt="Fresh prompt")
        mock_text_provider.generate_structured.return_value = StructuredResult(data=fresh)

        result = await orchestrator.regenerate_carousel_slide(
            sample_article.id, 2, SlideRegenerationOptions(regenerate_prompt=True),
        )

        assert result.success
        assert result.page.headline_text == "Fresh headline"
        assert result.page.caption == "Fresh caption"
        assert result.page.prompt == "Fresh prompt"

    @pytest.mark.asyncio
    async def test_regenerate_keeps_prompt_when_llm_fails(
        self, orchestrator, store, sample_article, mock_text_provider,
    ):
        """Test that fallback captions don't replace the slide's copy."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)
        mock_text_provider.generate_structured.side_effect = RuntimeError("LLM down")

        result = await orchestrator.regenerate_carousel_slide(
            sample_article.id, 2, SlideRegenerationOptions(regenerate_prompt=True),
        )

        assert result.success
        assert result.page.prompt == first.pages[1].prompt
        assert result.page.headline_text == first.pages[1].headline_text

    @pytest.mark.asyncio
    async def test_failed_regeneration_adds_no_version(
        self, orchestrator, store, sample_article, mock_image_provider, composer,
    ):
        """Test that a slide that ends without an image isn't recorded."""
        await seed(store, sample_article)
        first = await orchestrator.generate_carousel(sample_article.id)
        mock_image_provider.generate_images.side_effect = results_by_index({0})

        with patch.object(composer, "create_fallback_slide", side_effect=OverlayError("no fonts")):
            result = await orchestrator.regenerate_carousel_slide(sample_article.id, 4)

        assert not result.success
        assert "fallback failed" in result.error
        assert len(await store.list_versions(first.carousel_id, 4)) == 1
        assert result.pages[3].image_url == first.pages[3].image_url


class TestVersions:
    """Tests for listing and activating slide versions."""

    @pytest.mark.asyncio
    async def test_versions_newest_first(self, orchestrator, store, sample_article):
        """Test version listing order."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)
        await orchestrator.regenerate_carousel_slide(sample_article.id, 1)
        await orchestrator.regenerate_carousel_slide(sample_article.id, 1)

        versions = await orchestrator.get_slide_versions(result.carousel_id, 1)

        assert [v.version_number for v in versions] == [3, 2, 1]
        assert [v.is_active for v in versions] == [True, False, False]
        assert await orchestrator.get_slide_versions(result.carousel_id, 5) != []
        assert await orchestrator.get_slide_versions("unknown", 1) == []

    @pytest.mark.asyncio
    async def test_activate_mirrors_version(self, orchestrator, store, sample_article):
        """Test that activating an old version restores it on the page."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)
        await orchestrator.regenerate_carousel_slide(
            sample_article.id, 2, SlideRegenerationOptions(custom_prompt="Something else"),
        )
        original = (await orchestrator.get_slide_versions(result.carousel_id, 2))[-1]

        activated = await orchestrator.activate_slide_version(result.carousel_id, 2, original.id)

        assert activated.success
        assert activated.activated_version.id == original.id
        page = activated.pages[1]
        assert page.active_version_id == original.id
        assert page.prompt == original.prompt
        assert page.image_url == original.image_url
        assert page.headline_text == original.headline_text
        assert activated.pdf_url is not None

        versions = await orchestrator.get_slide_versions(result.carousel_id, 2)
        assert [v.is_active for v in versions] == [False, True]

    @pytest.mark.asyncio
    async def test_activate_unknown_version(self, orchestrator, store, sample_article):
        """Test that an unknown or foreign version is rejected."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)
        slide_one = (await orchestrator.get_slide_versions(result.carousel_id, 1))[0]

        with pytest.raises(VersionNotFoundError):
            await orchestrator.activate_slide_version(result.carousel_id, 2, "missing")
        with pytest.raises(VersionNotFoundError):
            await orchestrator.activate_slide_version(result.carousel_id, 2, slide_one.id)

    @pytest.mark.asyncio
    async def test_activate_invalid_slide(self, orchestrator, store, sample_article):
        """Test slide number validation on activation."""
        await seed(store, sample_article)
        result = await orchestrator.generate_carousel(sample_article.id)

        with pytest.raises(InvalidSlideNumberError):
            await orchestrator.activate_slide_version(result.carousel_id, 9, "any")

    @pytest.mark.asyncio
    async def test_activate_missing_carousel(self, orchestrator):
        """Test activation on an unknown carousel."""
        with pytest.raises(CarouselNotFoundError):
            await orchestrator.activate_slide_version("missing", 1, "any")
