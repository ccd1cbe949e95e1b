"""Pure helpers for assembling WeChat draft payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..ai.title_generator import DEFAULT_TITLE, TITLE_MAX_CHARS, clean_title
from ..state.models import CachedImage, WeChatUpload

DIGEST_MAX_BYTES = 256
EMPTY_ARTICLE = "<article></article>"


@dataclass(slots=True)
class DraftMetadata:
    """Metadata for the single article of a draft."""

    title: str
    thumb_media_id: str
    author: str = ""
    digest: str = ""
    source_url: str = ""
    need_open_comment: bool = False
    only_fans_can_comment: bool = False


def image_filename(image: CachedImage, position: int) -> str:
    """Upload name for an image; ``position`` is 1-based and used when there is no sequence."""
    sequence = image.sequence if image.sequence is not None else position
    return f"image_{sequence:03d}.jpg"


def truncate_utf8(text: str, *, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    truncated = encoded[:max_bytes]
    while truncated and (truncated[-1] & 0xC0) == 0x80:
        truncated = truncated[:-1]
    return truncated.decode("utf-8", errors="ignore")


def resolve_title(title: str | None, text: str | None) -> str:
    """Explicit title, else the first non-empty line of ``text``, else the default."""
    if title and title.strip():
        return title.strip()
    for line in (text or "").splitlines():
        candidate = clean_title(line, max_chars=TITLE_MAX_CHARS)
        if candidate:
            return candidate
    return DEFAULT_TITLE


def replace_image_sources(html: str, uploads: Sequence[WeChatUpload]) -> str:
    """Point every uploaded image at its remote URL."""
    updated = html
    for upload in uploads:
        if not upload.remote_url:
            continue
        for source in {upload.local_src, upload.url}:
            if source and source != upload.remote_url:
                updated = updated.replace(source, upload.remote_url)
    return updated


def resolve_content(html: str | None, fallback_text: str | None, uploads: Sequence[WeChatUpload]) -> str:
    content = (html or "").strip() or (fallback_text or "").strip() or EMPTY_ARTICLE
    return replace_image_sources(content, uploads)


class PayloadBuilder:
    """Builds the JSON payload for the WeChat Draft API."""

    def build(self, metadata: DraftMetadata, content_html: str) -> dict[str, object]:
        article: dict[str, object] = {
            "article_type": "news",
            "title": metadata.title,
            "author": metadata.author,
            "content": content_html,
            "digest": self._prepare_digest(metadata.digest),
            "content_source_url": metadata.source_url,
            "thumb_media_id": metadata.thumb_media_id,
            "need_open_comment": 1 if metadata.need_open_comment else 0,
            "only_fans_can_comment": 1 if metadata.only_fans_can_comment else 0,
        }
        return {"articles": [article]}

    def _prepare_digest(self, digest: str | None) -> str:
        if not digest:
            return ""
        return truncate_utf8(digest.strip(), max_bytes=DIGEST_MAX_BYTES)


__all__ = [
    "DEFAULT_TITLE",
    "DIGEST_MAX_BYTES",
    "DraftMetadata",
    "EMPTY_ARTICLE",
    "PayloadBuilder",
    "image_filename",
    "replace_image_sources",
    "resolve_content",
    "resolve_title",
    "truncate_utf8",
]
