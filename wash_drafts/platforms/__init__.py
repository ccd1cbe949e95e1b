"""Platform integration package."""

from __future__ import annotations

from .base import (
    DraftContent,
    Extractor,
    Formatter,
    ImageFetcher,
    PageContext,
    PersistentStore,
    Publisher,
    TitleResult,
    TranslationResult,
    Translator,
)

__all__ = [
    "DraftContent",
    "Extractor",
    "Formatter",
    "ImageFetcher",
    "PageContext",
    "PersistentStore",
    "Publisher",
    "TitleResult",
    "TranslationResult",
    "Translator",
]
