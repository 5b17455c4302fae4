"""Shared test fixtures and configuration.

Provides mocks and fixtures for testing the carousel pipeline. Providers
are AsyncMocks; rendering, storage and the PDF use the real code at a
small slide size so tests stay fast.
"""

from __future__ import annotations

import base64
import random
from io import BytesIO
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from article_carousel.config import CarouselSettings
from article_carousel.content.captions import CaptionGenerator
from article_carousel.content.models import Article
from article_carousel.design.composer import SlideComposer
from article_carousel.design.engine import RenderEngine, reset_render_engine
from article_carousel.persistence.store import MemoryCarouselStore
from article_carousel.providers.image import ImageGenerationRequest, ImageGenerationResult
from article_carousel.providers.text import StructuredResult
from article_carousel.services.document import DocumentAssembler
from article_carousel.services.storage import StorageUploader

# Slide size used throughout the tests
TEST_SLIDE_SIZE = 240


def make_png(width: int = 64, height: int = 64, color: tuple[int, int, int] = (40, 90, 160)) -> bytes:
    """Encode a solid-colour PNG."""
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_uri(width: int = 64, height: int = 64, color: tuple[int, int, int] = (40, 90, 160)) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png(width, height, color)).decode("ascii")


def ok_result(provider: str = "mock") -> ImageGenerationResult:
    return ImageGenerationResult(success=True, image_url=png_data_uri(), provider=provider, model="mock-model")


def failed_result(provider: str = "mock", error: str = "Provider exploded") -> ImageGenerationResult:
    return ImageGenerationResult(success=False, provider=provider, model="mock-model", error=error)


def llm_slides(count: int) -> dict[str, Any]:
    """A well-formed caption response for ``count`` slides."""
    slides = []
    for i in range(count):
        slides.append({
            "slide_number": i + 1,
            "slide_type": "title" if i == 0 else "cta" if i == count - 1 else "content",
            "headline": f"LLM headline {i + 1}",
            "caption": f"LLM caption {i + 1}",
            "image_prompt": f"Soft abstract gradient number {i + 1} in teal and amber",
        })
    return {"slides": slides}


@pytest.fixture(autouse=True)
def fresh_render_engine():
    """Every test starts without a process-wide render engine."""
    reset_render_engine()
    yield
    reset_render_engine()


@pytest.fixture
def settings(tmp_path: Path) -> CarouselSettings:
    """Settings with inline storage and a small slide size.

    Returns:
        CarouselSettings rooted in a temporary directory.
    """
    return CarouselSettings(
        data_dir=tmp_path / "data",
        storage_backend="base64",
        storage_dir=tmp_path / "generated",
        slide_size=TEST_SLIDE_SIZE,
        pdf_page_size=100,
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def sample_article() -> Article:
    """Create a standard five-slide article."""
    return Article(
        id="article-1",
        title="Shipping Small Changes Every Day",
        subtitle="A practical guide for busy teams",
        introduction="Big releases hide risk. Small ones surface it early.",
        sections=[
            "## Start with the smallest slice\nPick one behaviour and ship it behind a flag.",
            "## Review in minutes, not days\nShort diffs get read properly.",
            "## Measure what changed\nEvery deploy should move one number you watch.",
        ],
        conclusion="Small, frequent releases compound into calm teams.",
    )


@pytest.fixture
def engine() -> RenderEngine:
    return RenderEngine()


@pytest.fixture
def composer(engine: RenderEngine) -> SlideComposer:
    return SlideComposer(engine=engine, rng=random.Random(7))


@pytest.fixture
def uploader(settings: CarouselSettings) -> StorageUploader:
    return StorageUploader(settings)


@pytest.fixture
def assembler(settings: CarouselSettings, uploader: StorageUploader) -> DocumentAssembler:
    return DocumentAssembler(settings, uploader=uploader)


@pytest.fixture
def store() -> MemoryCarouselStore:
    return MemoryCarouselStore()


@pytest.fixture
def mock_image_provider() -> AsyncMock:
    """Create a mock ImageProvider that succeeds for every request.

    Returns:
        AsyncMock configured as ImageProvider.
    """
    provider = AsyncMock()

    async def generate_images(
        requests: list[ImageGenerationRequest],
        provider: str | None = None,
        model: str | None = None,
    ) -> list[ImageGenerationResult]:
        return [ok_result(provider or "mock") for _ in requests]

    provider.generate_images.side_effect = generate_images
    return provider


@pytest.fixture
def mock_text_provider() -> AsyncMock:
    """Create a mock TextProvider returning five well-formed slides.

    Returns:
        AsyncMock configured as TextProvider.
    """
    provider = AsyncMock()
    provider.generate_structured.return_value = StructuredResult(
        data=llm_slides(5), provider="mock", model="mock-llm",
    )
    return provider


@pytest.fixture
def caption_generator(mock_text_provider: AsyncMock) -> CaptionGenerator:
    return CaptionGenerator(mock_text_provider, rng=random.Random(3))


@pytest.fixture
def mock_progress_callback() -> AsyncMock:
    """Create a mock progress callback.

    Returns:
        AsyncMock that records all progress updates.
    """
    callback = AsyncMock()
    callback.updates = []

    async def record_update(progress):
        callback.updates.append(progress)

    callback.side_effect = record_update
    return callback
