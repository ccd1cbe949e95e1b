"""Session state: data model, content store and image ordering."""

from .content_store import ContentStore
from .images import enrich_images, merge_images, sort_images
from .models import (
    STEP_NAMES,
    CachedImage,
    ContentItem,
    FormattedContent,
    Session,
    StepState,
    TitleTask,
    TranslationState,
    WeChatDraft,
    WeChatUpload,
    WorkflowState,
)

__all__ = [
    "CachedImage",
    "ContentItem",
    "ContentStore",
    "FormattedContent",
    "STEP_NAMES",
    "Session",
    "StepState",
    "TitleTask",
    "TranslationState",
    "WeChatDraft",
    "WeChatUpload",
    "WorkflowState",
    "enrich_images",
    "merge_images",
    "sort_images",
]
