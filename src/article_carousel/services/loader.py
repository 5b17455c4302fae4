"""Load image references into bytes or Pillow images.

A reference is an http(s) URL, a ``data:`` URI, or a local file path,
which covers every form a provider or the storage uploader hands back.
"""

from __future__ import annotations

import base64
import binascii
import logging
from io import BytesIO
from pathlib import Path

import httpx
from PIL import Image, UnidentifiedImageError

from ..exceptions import ImageLoadError

_logger = logging.getLogger("storage")


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a base64 ``data:`` URI into (bytes, mime type)."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:"):
        raise ImageLoadError(f"Malformed data URI: {uri[:60]}")

    mime_type = header[5:].split(";")[0] or "application/octet-stream"
    if ";base64" not in header:
        return payload.encode("utf-8"), mime_type

    try:
        return base64.b64decode(payload, validate=False), mime_type
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"Invalid base64 payload in data URI: {e}") from e


def decode_image(data: bytes) -> Image.Image:
    """Decode image bytes, fully loading the pixels."""
    try:
        img = Image.open(BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageLoadError(f"Could not decode image ({len(data)} bytes): {e}") from e
    return img


class ImageLoader:
    """Fetch image references.

    Usage:
        loader = ImageLoader()
        data = await loader.load("https://cdn.example.com/bg.png")
        img = await loader.load_image("data:image/png;base64,...")
        await loader.close()
    """

    def __init__(self, timeout: float = 60.0):
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def load(self, ref: str) -> bytes:
        """Load the raw bytes behind a reference.

        Raises:
            ImageLoadError: On a non-2xx response, a network error, a bad
                data URI or an unreadable file.
        """
        if ref.startswith("data:"):
            data, _ = decode_data_uri(ref)
            return data

        if ref.startswith(("http://", "https://")):
            client = await self._get_http_client()
            try:
                response = await client.get(ref)
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                raise ImageLoadError(f"Failed to fetch image: {e}") from e
            if response.status_code < 200 or response.status_code >= 300:
                raise ImageLoadError(
                    f"Failed to fetch image: {response.status_code} {response.reason_phrase}"
                )
            _logger.debug(
                f"FETCH | url:{ref[:80]} | type:{response.headers.get('content-type')} | "
                f"bytes:{len(response.content)}"
            )
            return response.content

        path = Path(ref[len("file://"):] if ref.startswith("file://") else ref)
        try:
            return path.read_bytes()
        except (OSError, ValueError) as e:
            raise ImageLoadError(f"Failed to read image file {path}: {e}") from e

    async def load_image(self, ref: str) -> Image.Image:
        """Load and decode a reference into a Pillow image."""
        return decode_image(await self.load(ref))
