"""Design module for slide rendering."""

from .composer import SlideComposer
from .engine import RenderEngine, build_layout, get_render_engine, reset_render_engine
from .templates import OverlayOptions, SlideLayout, SlideTemplate, TextBlock, Typography

__all__ = [
    "SlideComposer",
    "RenderEngine",
    "build_layout",
    "get_render_engine",
    "reset_render_engine",
    "OverlayOptions",
    "SlideLayout",
    "SlideTemplate",
    "TextBlock",
    "Typography",
]
