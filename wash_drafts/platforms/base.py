"""Contracts for the collaborators the pipeline drives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from ..state.models import CachedImage, ContentItem, FormattedContent, WeChatDraft, WeChatUpload


@dataclass(slots=True)
class PageContext:
    """Raw page as captured from the browser or fetched over HTTP."""

    url: str
    html: str
    title: str = ""


@dataclass(slots=True)
class TranslationResult:
    text: str
    conversation: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None


@dataclass(slots=True)
class TitleResult:
    text: str
    finish_reason: str | None = None


@dataclass(slots=True)
class DraftContent:
    """Everything a draft needs besides the uploaded images."""

    title: str
    html: str
    source_url: str = ""
    author: str = ""
    digest: str = ""
    thumb_media_id: str = ""
    fallback_text: str = ""


class Extractor(Protocol):
    async def extract(self, page: PageContext) -> list[ContentItem]:
        """Return the ordered content items; raise ``ExtractionError`` when none are found."""


class Translator(Protocol):
    def has_credentials(self) -> bool:
        ...

    async def translate_article(
        self,
        markdown: str,
        *,
        source_url: str = "",
        fallback_title: str = "",
    ) -> TranslationResult:
        ...

    async def generate_title(
        self,
        context: Sequence[dict[str, Any]] | Sequence[ContentItem],
        *,
        source_url: str = "",
        fallback_title: str = "",
    ) -> TitleResult:
        ...


class Formatter(Protocol):
    async def format(
        self,
        article_text: str,
        items: Sequence[ContentItem],
        images: Sequence[CachedImage],
    ) -> FormattedContent:
        ...


class Publisher(Protocol):
    async def upload_images(
        self,
        images: Sequence[CachedImage],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> list[WeChatUpload]:
        ...

    async def create_draft(
        self,
        content: DraftContent,
        uploads: Sequence[WeChatUpload],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> WeChatDraft:
        ...


class ImageFetcher(Protocol):
    async def fetch(self, images: Sequence[CachedImage]) -> list[CachedImage]:
        """Return the images with ``data_url`` (or ``error``) filled in."""


class PersistentStore(Protocol):
    async def save_images(self, source_url: str, images: Sequence[CachedImage]) -> None:
        ...

    async def load_images(self, source_url: str) -> list[CachedImage]:
        ...

    async def clear_images(self, source_url: str) -> None:
        ...

    async def append_history(self, entry: dict[str, Any]) -> list[dict[str, Any]]:
        ...

    async def load_history(self) -> list[dict[str, Any]]:
        ...

    async def clear_history(self) -> None:
        ...


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
