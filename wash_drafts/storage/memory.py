"""Process-lifetime storage for cached images and publishing history."""

from __future__ import annotations

import copy
from dataclasses import asdict, replace
from typing import Any, Sequence

from ..settings.loader import HISTORY_LIMIT
from ..state.images import merge_images
from ..state.models import CachedImage, Session, now_iso


def build_history_entry(session: Session) -> dict[str, Any]:
    """Snapshot the parts of a session worth keeping after it is closed."""
    return {
        "source_url": session.source_url,
        "title": session.title_task.text if session.title_task and session.title_task.text else session.title,
        "captured_at": session.captured_at,
        "counts": session.counts(),
        "translation": asdict(session.translation) if session.translation else None,
        "title_task": asdict(session.title_task) if session.title_task else None,
        "formatted": asdict(session.formatted) if session.formatted else None,
        "images": [asdict(image) for image in session.cached_images],
        "wechat_draft": asdict(session.wechat_draft) if session.wechat_draft else None,
    }


class InMemoryStore:
    """Images keyed by source URL plus a newest-first, size-capped history."""

    def __init__(self, *, history_limit: int = HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError(f"history_limit must be positive, got {history_limit}")
        self._history_limit = history_limit
        self._images: dict[str, list[CachedImage]] = {}
        self._history: list[dict[str, Any]] = []

    @property
    def history_limit(self) -> int:
        return self._history_limit

    async def save_images(self, source_url: str, images: Sequence[CachedImage]) -> None:
        if not source_url:
            return
        self._images[source_url] = [replace(image) for image in merge_images((), images)]

    async def load_images(self, source_url: str) -> list[CachedImage]:
        return [replace(image) for image in self._images.get(source_url, [])]

    async def clear_images(self, source_url: str) -> None:
        self._images.pop(source_url, None)

    async def append_history(self, entry: dict[str, Any]) -> list[dict[str, Any]]:
        source_url = entry.get("source_url")
        if not source_url:
            return await self.load_history()
        stamped = {**copy.deepcopy(entry), "saved_at": now_iso()}
        remaining = [item for item in self._history if item.get("source_url") != source_url]
        self._history = [stamped, *remaining][: self._history_limit]
        return await self.load_history()

    async def load_history(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._history)

    async def clear_history(self) -> None:
        self._history = []


__all__ = ["InMemoryStore", "build_history_entry"]
