"""Title cleanup, fallback derivation and article markdown rendering."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from ..state.models import ContentItem

DEFAULT_TITLE = "待确认标题"
TITLE_MAX_CHARS = 60

_DECORATIONS = ("`", '"', "'", "《", "》", "“", "”", "‘", "’", "*")
_PREFIXES = ("标题：", "标题:", "Title:")
_WHITESPACE = re.compile(r"\s+")


def clean_title(raw: str, *, max_chars: int | None = None) -> str:
    """Normalize title output by stripping adornments; keeps the first non-empty line."""
    lines = [line.strip() for line in (raw or "").splitlines() if line.strip()]
    if not lines:
        return ""
    title = lines[0].lstrip("#").strip()
    previous = None
    while previous != title:
        previous = title
        for prefix in _PREFIXES:
            if title.startswith(prefix):
                title = title[len(prefix):].strip()
        for ch in _DECORATIONS:
            title = title.strip(ch).strip()
    title = _WHITESPACE.sub(" ", title)
    if max_chars is not None:
        title = title[:max_chars].rstrip()
    return title


def derive_fallback_title(
    snapshot_title: str | None,
    items: Sequence[ContentItem] = (),
    translated_text: str | None = None,
) -> str:
    candidates: list[str] = [snapshot_title or ""]
    candidates.extend(
        item.text or "" for item in items if item.kind == ContentItem.KIND_HEADING and item.text
    )
    candidates.append(translated_text or "")
    for candidate in candidates:
        title = clean_title(candidate, max_chars=TITLE_MAX_CHARS)
        if title:
            return title
    return DEFAULT_TITLE


def render_items_markdown(items: Iterable[ContentItem]) -> str:
    """Render items as headings, paragraphs and ``{{[Image N]}}`` placeholders."""
    blocks: list[str] = []
    image_index = 0
    for item in items:
        if item.kind == ContentItem.KIND_HEADING:
            text = (item.text or "").strip()
            if text:
                blocks.append(f"## {text}")
        elif item.kind == ContentItem.KIND_PARAGRAPH:
            text = (item.text or "").strip()
            if text:
                blocks.append(text)
        elif item.kind == ContentItem.KIND_IMAGE and item.url:
            image_index += 1
            number = item.sequence if item.sequence is not None else image_index
            blocks.append(f"{{{{[Image {number}]}}}}")
    return "\n\n".join(blocks)


__all__ = [
    "DEFAULT_TITLE",
    "TITLE_MAX_CHARS",
    "clean_title",
    "derive_fallback_title",
    "render_items_markdown",
]
