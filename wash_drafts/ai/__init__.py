"""AI utilities for translation and title generation."""

from .title_generator import clean_title, derive_fallback_title, render_items_markdown
from .translator import GeminiTranslator

__all__ = [
    "GeminiTranslator",
    "clean_title",
    "derive_fallback_title",
    "render_items_markdown",
]
