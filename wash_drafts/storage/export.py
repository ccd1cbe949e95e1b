"""Export of history entries as downloadable documents."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping

FORMAT_JSON = "json"
FORMAT_MARKDOWN = "markdown"

_UNSAFE_FILENAME = re.compile(r"[^\w\-]+", re.UNICODE)


@dataclass(slots=True, frozen=True)
class ExportedDocument:
    filename: str
    mime_type: str
    content: str


def _slug(entry: Mapping[str, Any]) -> str:
    base = str(entry.get("title") or entry.get("source_url") or "article")
    slug = _UNSAFE_FILENAME.sub("-", base).strip("-").lower()
    return slug[:60] or "article"


def _markdown(entry: Mapping[str, Any]) -> str:
    title = str(entry.get("title") or "").strip() or "Untitled"
    formatted = entry.get("formatted") or {}
    translation = entry.get("translation") or {}
    body = (formatted.get("markdown") or translation.get("text") or "").strip()
    lines = [f"# {title}", "", f"> Source: {entry.get('source_url', '')}", ""]
    if body:
        lines.extend([body, ""])
    return "\n".join(lines)


def export_history_entry(entry: Mapping[str, Any], fmt: str) -> ExportedDocument:
    """Render ``entry`` as JSON or markdown; any other format raises ``ValueError``."""
    fmt = (fmt or "").strip().lower()
    if fmt == FORMAT_JSON:
        return ExportedDocument(
            filename=f"{_slug(entry)}.json",
            mime_type="application/json",
            content=json.dumps(entry, ensure_ascii=False, indent=2, default=str),
        )
    if fmt in {FORMAT_MARKDOWN, "md"}:
        return ExportedDocument(
            filename=f"{_slug(entry)}.md",
            mime_type="text/markdown",
            content=_markdown(entry),
        )
    raise ValueError(f"Unsupported export format: {fmt!r}")


__all__ = ["ExportedDocument", "FORMAT_JSON", "FORMAT_MARKDOWN", "export_history_entry"]
