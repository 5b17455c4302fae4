"""Article Carousel - turn long-form articles into image carousels."""

__version__ = "0.1.0"
