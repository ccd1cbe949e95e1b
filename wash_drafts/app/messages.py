"""Closed set of boundary messages accepted by :class:`RelayService`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Mapping

from ..state.models import CachedImage, ContentItem


@dataclass(slots=True, frozen=True)
class CapturePayload:
    """Content captured from a page, ready to become a session."""

    source_url: str
    items: tuple[ContentItem, ...]
    title: str = ""
    captured_at: str | None = None
    images: tuple[CachedImage, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CapturePayload":
        return cls(
            source_url=str(data.get("source_url") or data.get("url") or ""),
            items=tuple(ContentItem.from_dict(item) for item in data.get("items") or ()),
            title=str(data.get("title") or ""),
            captured_at=data.get("captured_at"),
            images=tuple(CachedImage.from_dict(image) for image in data.get("images") or ()),
        )


@dataclass(slots=True, frozen=True)
class DraftOverrides:
    title: str | None = None
    author: str | None = None
    digest: str | None = None
    thumb_media_id: str | None = None
    source_url: str | None = None
    dry_run: bool | None = None


@dataclass(slots=True, frozen=True)
class ContentCaptured:
    key: Hashable
    payload: CapturePayload


@dataclass(slots=True, frozen=True)
class GetContent:
    key: Hashable | None = None


@dataclass(slots=True, frozen=True)
class GetSettings:
    pass


@dataclass(slots=True, frozen=True)
class CreateDraftOnDemand:
    key: Hashable
    overrides: DraftOverrides = field(default_factory=DraftOverrides)


@dataclass(slots=True, frozen=True)
class SettingsChanged:
    patch: Mapping[str, Any]


@dataclass(slots=True, frozen=True)
class ExportHistoryEntry:
    source_url: str
    format: str = "json"


@dataclass(slots=True, frozen=True)
class RequestState:
    key: Hashable | None = None


@dataclass(slots=True, frozen=True)
class GetHistory:
    pass


@dataclass(slots=True, frozen=True)
class ClearHistory:
    pass


@dataclass(slots=True, frozen=True)
class GetImages:
    source_url: str


@dataclass(slots=True, frozen=True)
class SessionClosed:
    key: Hashable


Message = (
    ContentCaptured
    | GetContent
    | GetSettings
    | CreateDraftOnDemand
    | SettingsChanged
    | ExportHistoryEntry
    | RequestState
    | GetHistory
    | ClearHistory
    | GetImages
    | SessionClosed
)


__all__ = [
    "CapturePayload",
    "ClearHistory",
    "ContentCaptured",
    "CreateDraftOnDemand",
    "DraftOverrides",
    "ExportHistoryEntry",
    "GetContent",
    "GetHistory",
    "GetImages",
    "GetSettings",
    "Message",
    "RequestState",
    "SessionClosed",
    "SettingsChanged",
]
