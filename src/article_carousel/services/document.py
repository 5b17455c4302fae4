"""Multi-page PDF assembly from slide images."""

from __future__ import annotations

import asyncio
import base64
import logging
from io import BytesIO

from PIL import Image, ImageDraw

from ..config import CarouselSettings, get_settings
from ..content.models import CarouselPage
from ..exceptions import CarouselError, DocumentAssemblyError, ImageLoadError
from .loader import ImageLoader
from .storage import StorageUploader, document_filename

_logger = logging.getLogger("carousel")

PLACEHOLDER_INSET_PT = 10
PLACEHOLDER_GREY = round(0.9 * 255)


class DocumentAssembler:
    """Build one PDF with a square page per slide.

    Every page is ``pdf_page_size`` points square with the slide drawn to
    fill it. A slide whose image can't be loaded becomes a blank page with
    a light grey placeholder instead of failing the whole document.
    """

    def __init__(
        self,
        settings: CarouselSettings | None = None,
        loader: ImageLoader | None = None,
        uploader: StorageUploader | None = None,
    ):
        self.settings = settings or get_settings()
        self.loader = loader or ImageLoader()
        self._uploader = uploader

    @property
    def uploader(self) -> StorageUploader:
        if self._uploader is None:
            self._uploader = StorageUploader(self.settings)
        return self._uploader

    async def build_pdf(self, pages: list[CarouselPage]) -> bytes:
        """Render the PDF bytes for pages that have an image.

        Raises:
            DocumentAssemblyError: If no page has an image or writing fails.
        """
        refs = [page.image_url for page in pages if page.image_url]
        if not refs:
            raise DocumentAssemblyError("No slide images to assemble")

        pixel_size = self.settings.slide_size
        images: list[Image.Image] = []
        for ref in refs:
            try:
                img = await self.loader.load_image(ref)
                images.append(img.convert("RGB").resize((pixel_size, pixel_size), Image.Resampling.LANCZOS))
            except ImageLoadError as e:
                _logger.warning(f"DOCUMENT | PLACEHOLDER | ref:{ref[:80]} | error:{e}")
                images.append(self._placeholder(pixel_size))

        try:
            return await asyncio.to_thread(self._write_pdf, images)
        except (OSError, ValueError) as e:
            raise DocumentAssemblyError(f"Failed to write PDF: {e}") from e

    async def assemble(self, pages: list[CarouselPage]) -> str:
        """Assemble pages into a PDF ``data:`` URI."""
        pdf = await self.build_pdf(pages)
        return f"data:application/pdf;base64,{base64.b64encode(pdf).decode('ascii')}"

    async def assemble_and_upload(self, pages: list[CarouselPage], carousel_id: str) -> str:
        """Assemble pages and return the document reference.

        Uploads through storage when ``upload_documents`` is enabled,
        otherwise returns the inline data URI.
        """
        if not self.settings.upload_documents:
            return await self.assemble(pages)
        pdf = await self.build_pdf(pages)
        return await self.uploader.upload_document(pdf, document_filename(carousel_id))

    async def try_assemble(self, pages: list[CarouselPage], carousel_id: str) -> str | None:
        """Assemble and upload, logging failures instead of raising."""
        try:
            return await self.assemble_and_upload(pages, carousel_id)
        except CarouselError as e:
            _logger.warning(f"CAROUSEL:{carousel_id} | DOCUMENT | FAILED | error:{e}")
            return None

    def _placeholder(self, pixel_size: int) -> Image.Image:
        img = Image.new("RGB", (pixel_size, pixel_size), (255, 255, 255))
        inset = round(PLACEHOLDER_INSET_PT * pixel_size / self.settings.pdf_page_size)
        draw = ImageDraw.Draw(img)
        draw.rectangle(
            (inset, inset, pixel_size - inset - 1, pixel_size - inset - 1),
            fill=(PLACEHOLDER_GREY,) * 3,
        )
        return img

    def _write_pdf(self, images: list[Image.Image]) -> bytes:
        # Pillow sizes PDF pages as pixels * 72 / resolution points
        resolution = images[0].width * 72 / self.settings.pdf_page_size
        buffer = BytesIO()
        images[0].save(
            buffer,
            format="PDF",
            save_all=True,
            append_images=images[1:],
            resolution=resolution,
        )
        return buffer.getvalue()
