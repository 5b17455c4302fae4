"""Exceptions raised by the carousel pipeline."""


class CarouselError(Exception):
    """Base exception for carousel errors."""

    pass


class CarouselNotFoundError(CarouselError):
    """Article or carousel intent does not exist."""

    pass


class InvalidSlideNumberError(CarouselError):
    """Slide number outside 1..page_count."""

    def __init__(self, slide_number: int, page_count: int):
        super().__init__(f"Invalid slide number {slide_number}. Must be 1-{page_count}.")
        self.slide_number = slide_number
        self.page_count = page_count


class VersionNotFoundError(CarouselError):
    """Version does not exist for the given intent and slide."""

    pass


class ProviderError(CarouselError):
    """Text-to-image or LLM provider call failed."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class OverlayError(CarouselError):
    """Fetching a background or compositing text onto it failed."""

    pass


class AllSlidesFailedError(CarouselError):
    """Every slide of a carousel ended without an image.

    Carries the restored pages so the caller can still report them.
    """

    def __init__(self, message: str, carousel_id: str, pages: list | None = None, provider: str | None = None):
        super().__init__(message)
        self.carousel_id = carousel_id
        self.pages = pages or []
        self.provider = provider


class DocumentAssemblyError(CarouselError):
    """The multi-page document could not be built."""

    pass


class StorageError(CarouselError):
    """Uploading or deleting a stored file failed."""

    pass


class DuplicateIntentError(CarouselError):
    """A carousel intent already exists for the article."""

    pass


class ImageLoadError(CarouselError):
    """An image reference could not be fetched, read or decoded."""

    pass
