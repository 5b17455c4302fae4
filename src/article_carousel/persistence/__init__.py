"""Persistence for articles, carousels and slide versions."""

from .store import CarouselStore, JsonCarouselStore, MemoryCarouselStore

__all__ = [
    "CarouselStore",
    "JsonCarouselStore",
    "MemoryCarouselStore",
]
