"""Session snapshot and workflow state models."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

STEP_EXTRACTING = "extracting"
STEP_PREPARING = "preparing"
STEP_UPLOADING = "uploading"
STEP_FORMATTING = "formatting"
STEP_PUBLISHING = "publishing"
STEP_COMPLETE = "complete"

STEP_NAMES: tuple[str, ...] = (
    STEP_EXTRACTING,
    STEP_PREPARING,
    STEP_UPLOADING,
    STEP_FORMATTING,
    STEP_PUBLISHING,
)

TASK_WORKING = "working"
TASK_DONE = "done"
TASK_ERROR = "error"


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _known(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in data.items() if key in names}


@dataclass(slots=True)
class ContentItem:
    """One extracted block of the source article."""

    kind: str
    text: str | None = None
    level: int | None = None
    sequence: int | None = None
    url: str | None = None
    alt: str | None = None
    caption: str | None = None
    credit: str | None = None

    KIND_HEADING = "heading"
    KIND_PARAGRAPH = "paragraph"
    KIND_IMAGE = "image"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContentItem":
        return cls(**_known(cls, data))

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(slots=True)
class CachedImage:
    """An article image as known to the session, enriched by fetch and upload."""

    url: str
    sequence: int | None = None
    alt: str | None = None
    caption: str | None = None
    data_url: str | None = None
    remote_url: str | None = None
    media_id: str | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CachedImage":
        return cls(**_known(cls, data))

    @classmethod
    def from_item(cls, item: ContentItem) -> "CachedImage":
        return cls(url=item.url or "", sequence=item.sequence, alt=item.alt, caption=item.caption)

    @property
    def local_src(self) -> str:
        return self.data_url or self.url


@dataclass(slots=True)
class TranslationState:
    status: str
    text: str = ""
    error: str | None = None
    updated_at: str = field(default_factory=now_iso)


@dataclass(slots=True)
class TitleTask:
    status: str
    text: str = ""
    warning: str | None = None
    error: str | None = None
    updated_at: str = field(default_factory=now_iso)


@dataclass(slots=True)
class FormattedContent:
    html: str
    markdown: str | None = None
    blocks: list[dict[str, Any]] = field(default_factory=list)
    updated_at: str = field(default_factory=now_iso)


@dataclass(slots=True)
class WeChatUpload:
    """Outcome of uploading one image to the publisher."""

    url: str
    local_src: str
    remote_url: str
    media_id: str


@dataclass(slots=True)
class WeChatDraft:
    media_id: str
    payload: dict[str, Any]
    dry_run: bool = False


@dataclass(slots=True)
class StepState:
    status: str = "pending"
    updated_at: str = field(default_factory=now_iso)
    error: str | None = None
    warning: str | None = None


@dataclass(slots=True)
class WorkflowState:
    """Step progress for one pipeline run of a session."""

    status: str = "idle"
    current_step: str = STEP_EXTRACTING
    steps: dict[str, StepState] = field(default_factory=dict)
    error: str | None = None
    message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None

    STATUS_IDLE = "idle"
    STATUS_RUNNING = "running"
    STATUS_ERROR = "error"
    STATUS_SUCCESS = "success"

    STEP_PENDING = "pending"
    STEP_RUNNING = "running"
    STEP_DONE = "done"
    STEP_ERROR = "error"

    _RANK = {STEP_PENDING: 0, STEP_RUNNING: 1, STEP_DONE: 2, STEP_ERROR: 2}

    @classmethod
    def initialize(cls, step_names: Iterable[str] = STEP_NAMES) -> "WorkflowState":
        return cls(
            status=cls.STATUS_RUNNING,
            current_step=STEP_EXTRACTING,
            steps={name: StepState() for name in step_names},
            started_at=now_iso(),
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowState":
        raw_steps = data.get("steps") or {}
        steps = {str(name): StepState(**_known(StepState, value)) for name, value in raw_steps.items()}
        values = _known(cls, data)
        values["steps"] = steps
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def copy(self) -> "WorkflowState":
        return WorkflowState.from_dict(self.to_dict())

    @property
    def finished(self) -> bool:
        return self.status in {self.STATUS_ERROR, self.STATUS_SUCCESS}

    def mark_running(self, step: str, *, message: str | None = None) -> None:
        self._advance(step, self.STEP_RUNNING)
        self.current_step = step
        self.message = message

    def mark_done(self, step: str, *, warning: str | None = None) -> None:
        state = self._advance(step, self.STEP_DONE)
        state.warning = warning

    def mark_failed(self, step: str, error: str) -> None:
        state = self._advance(step, self.STEP_ERROR)
        state.error = error
        self.status = self.STATUS_ERROR
        self.current_step = step
        self.error = error
        self.message = error
        self.completed_at = now_iso()

    def mark_complete(self) -> None:
        pending = [name for name, state in self.steps.items() if state.status != self.STEP_DONE]
        if pending:
            raise ValueError(f"Cannot complete workflow with unfinished steps: {', '.join(pending)}")
        self.status = self.STATUS_SUCCESS
        self.current_step = STEP_COMPLETE
        self.message = None
        self.completed_at = now_iso()

    def warnings(self) -> list[str]:
        return [state.warning for state in self.steps.values() if state.warning]

    def _advance(self, step: str, status: str) -> StepState:
        if self.finished:
            raise ValueError(f"Workflow already finished with status {self.status}")
        state = self.steps.setdefault(step, StepState())
        if self._RANK[status] < self._RANK[state.status] or state.status in {
            self.STEP_DONE,
            self.STEP_ERROR,
        }:
            raise ValueError(f"Step '{step}' cannot move from {state.status} to {status}")
        state.status = status
        state.updated_at = now_iso()
        return state


@dataclass(slots=True)
class Session:
    """Latest known snapshot of one captured article.

    ``capture_id`` is fresh for every capture and survives stage updates, so a
    run can tell its own session apart from a later capture under the same key.
    """

    source_url: str
    captured_at: str
    title: str = ""
    capture_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    items: tuple[ContentItem, ...] = ()
    cached_images: list[CachedImage] = field(default_factory=list)
    translation: TranslationState | None = None
    title_task: TitleTask | None = None
    formatted: FormattedContent | None = None
    wechat_uploads: list[WeChatUpload] = field(default_factory=list)
    wechat_draft: WeChatDraft | None = None
    workflow: WorkflowState = field(default_factory=WorkflowState)

    @classmethod
    def create(
        cls,
        *,
        source_url: str,
        items: Iterable[ContentItem],
        title: str = "",
        captured_at: str | None = None,
        cached_images: Iterable[CachedImage] = (),
    ) -> "Session":
        return cls(
            source_url=source_url,
            captured_at=captured_at or now_iso(),
            title=title,
            items=tuple(items),
            cached_images=list(cached_images),
        )

    def image_items(self) -> list[ContentItem]:
        return [item for item in self.items if item.kind == ContentItem.KIND_IMAGE and item.url]

    def counts(self) -> dict[str, int]:
        counters = {"paragraphs": 0, "headings": 0, "images": 0}
        for item in self.items:
            if item.kind == ContentItem.KIND_PARAGRAPH:
                counters["paragraphs"] += 1
            elif item.kind == ContentItem.KIND_HEADING:
                counters["headings"] += 1
            elif item.kind == ContentItem.KIND_IMAGE:
                counters["images"] += 1
        return counters

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["items"] = [item.to_dict() for item in self.items]
        data["counts"] = self.counts()
        return data


__all__ = [
    "CachedImage",
    "ContentItem",
    "FormattedContent",
    "STEP_COMPLETE",
    "STEP_EXTRACTING",
    "STEP_FORMATTING",
    "STEP_NAMES",
    "STEP_PREPARING",
    "STEP_PUBLISHING",
    "STEP_UPLOADING",
    "Session",
    "StepState",
    "TASK_DONE",
    "TASK_ERROR",
    "TASK_WORKING",
    "TitleTask",
    "TranslationState",
    "WeChatDraft",
    "WeChatUpload",
    "WorkflowState",
    "now_iso",
]
