"""Services for loading, storing and assembling carousel files."""

from .document import DocumentAssembler
from .loader import ImageLoader, decode_data_uri, decode_image
from .storage import (
    Base64Storage,
    HttpStorage,
    LocalStorage,
    StorageBackend,
    StorageUploader,
    sanitize_filename,
    slide_filename,
)

__all__ = [
    "DocumentAssembler",
    "ImageLoader",
    "decode_data_uri",
    "decode_image",
    "Base64Storage",
    "HttpStorage",
    "LocalStorage",
    "StorageBackend",
    "StorageUploader",
    "sanitize_filename",
    "slide_filename",
]
