"""Storage for rendered slides and documents.

Backends:
- local: files under ``storage_dir``, referenced by absolute path
- base64: no storage at all, the reference is a ``data:`` URI
- http: PUT to an object store bucket, referenced by public URL
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import CarouselSettings, get_settings
from ..exceptions import StorageError

_logger = logging.getLogger("storage")


def sanitize_filename(filename: str) -> str:
    """Make a filename safe for any backend."""
    name = re.sub(r"[^a-zA-Z0-9.-]", "-", filename)
    name = re.sub(r"-+", "-", name).strip("-").lower()
    return name[:100]


def slide_filename(
    carousel_id: str,
    page_number: int,
    fallback: bool = False,
    version: int | None = None,
) -> str:
    """Build the stored filename for a slide image.

    Args:
        carousel_id: Carousel intent id.
        page_number: 1-based slide number.
        fallback: Whether the slide was drawn locally.
        version: Millisecond timestamp for regenerated slides.
    """
    name = f"carousel-{carousel_id}-page-{page_number}"
    if fallback:
        name += "-fallback"
    if version is not None:
        name += f"-v{version}"
    return f"{name}.png"


def document_filename(carousel_id: str) -> str:
    return f"carousel-{carousel_id}-{int(time.time() * 1000)}.pdf"


class StorageBackend(ABC):
    """Where uploaded bytes end up."""

    name: str = "base"

    @abstractmethod
    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        """Store bytes and return a reference to them."""

    @abstractmethod
    async def delete(self, ref: str) -> None:
        """Remove a stored file. May raise; callers treat it as best-effort."""

    def is_available(self) -> bool:
        return True


class LocalStorage(StorageBackend):
    """Files on the local filesystem."""

    name = "local"

    def __init__(self, root: Path):
        self.root = Path(root)

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        final_name = f"{int(time.time() * 1000)}-{sanitize_filename(filename)}"
        path = (self.root / final_name).resolve()

        def write() -> None:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

        _logger.info(f"STORAGE:local | SAVED | file:{final_name} | bytes:{len(data)}")
        return str(path)

    async def delete(self, ref: str) -> None:
        path = Path(ref).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Refusing to delete outside storage dir: {ref}")
        await asyncio.to_thread(path.unlink, True)
        _logger.info(f"STORAGE:local | DELETED | file:{path.name}")


class Base64Storage(StorageBackend):
    """Inline data URIs. Always available; references can get large."""

    name = "base64"

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

    async def delete(self, ref: str) -> None:
        return None


class HttpStorage(StorageBackend):
    """Object store reachable over HTTP (PUT to upload, DELETE to remove)."""

    name = "http"

    def __init__(
        self,
        base_url: str | None,
        bucket: str,
        token: str | None = None,
        timeout: float = 60.0,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.bucket = bucket
        self.token = token
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    def is_available(self) -> bool:
        return bool(self.base_url)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._http_client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def object_url(self, filename: str) -> str:
        return f"{self.base_url}/{self.bucket}/{filename}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _put(self, url: str, data: bytes, mime_type: str) -> None:
        client = await self._get_http_client()
        response = await client.put(url, content=data, headers={"Content-Type": mime_type})
        response.raise_for_status()

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        final_name = f"{int(time.time() * 1000)}-{sanitize_filename(filename)}"
        url = self.object_url(final_name)
        try:
            await self._put(url, data, mime_type)
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed for {final_name}: {e}") from e

        _logger.info(f"STORAGE:http | UPLOADED | url:{url} | bytes:{len(data)}")
        return url

    async def delete(self, ref: str) -> None:
        if not ref.startswith(f"{self.base_url}/{self.bucket}/"):
            raise StorageError(f"Not an object in bucket {self.bucket}: {ref[:80]}")
        client = await self._get_http_client()
        response = await client.delete(ref)
        response.raise_for_status()
        _logger.info(f"STORAGE:http | DELETED | url:{ref}")


class StorageUploader:
    """Upload rendered files through the configured backend.

    Falls back to inline data URIs when the configured backend isn't
    usable, so uploads always produce a reference.

    Usage:
        uploader = StorageUploader()
        url = await uploader.upload_image(png_bytes, slide_filename(intent.id, 1))
    """

    def __init__(
        self,
        settings: CarouselSettings | None = None,
        backend: StorageBackend | None = None,
    ):
        self.settings = settings or get_settings()
        self.backend = backend or self._create_backend()

    def _create_backend(self) -> StorageBackend:
        settings = self.settings
        if settings.storage_backend == "http":
            backend = HttpStorage(
                base_url=settings.storage_base_url,
                bucket=settings.storage_bucket,
                token=settings.storage_token,
            )
            if backend.is_available():
                return backend
            _logger.warning("STORAGE | http backend has no base url, using base64")
            return Base64Storage()
        if settings.storage_backend == "local":
            return LocalStorage(settings.storage_dir)
        return Base64Storage()

    async def upload_image(self, data: bytes, filename: str, mime_type: str = "image/png") -> str:
        """Upload image bytes and return the stored reference."""
        return await self.backend.upload(data, filename, mime_type)

    async def upload_document(self, data: bytes, filename: str) -> str:
        """Upload a PDF and return the stored reference."""
        return await self.backend.upload(data, filename, "application/pdf")

    async def delete(self, ref: str | None) -> bool:
        """Best-effort delete. Returns whether the file was removed."""
        if not ref or ref.startswith("data:"):
            return False
        try:
            await self.backend.delete(ref)
        except (StorageError, OSError, httpx.HTTPError) as e:
            _logger.warning(f"STORAGE:{self.backend.name} | DELETE_FAILED | ref:{ref[:80]} | error:{e}")
            return False
        return True
