"""Error taxonomy shared by the pipeline and its collaborators."""

from __future__ import annotations

import json
from typing import Any, Mapping


class RelayError(RuntimeError):
    """Base class for every error raised by wash_drafts."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = super().__str__()
        if not self.details:
            return base
        try:
            detail_repr = json.dumps(self.details, ensure_ascii=False, default=str)
        except TypeError:
            detail_repr = str(self.details)
        return f"{base} | 详情: {detail_repr}"


class ExtractionError(RelayError):
    """No usable content could be extracted from a page."""


class ConfigError(RelayError):
    """A required setting (API key, publisher credentials, cover image) is missing."""

    def __init__(
        self,
        message: str,
        *,
        setting: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.setting = setting


class ProviderError(RelayError):
    """An upstream service (translator or publisher) rejected a request."""

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        finish_reason: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.code = code
        self.finish_reason = finish_reason


class TransportError(RelayError):
    """The network transport failed before an upstream answer was received."""


class WorkflowError(RelayError):
    """A pipeline stage failed; ``cause`` keeps the collaborator error."""

    def __init__(self, step: str, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.cause = cause

    @classmethod
    def wrap(cls, step: str, exc: BaseException) -> "WorkflowError":
        if isinstance(exc, WorkflowError):
            return exc
        message = exc.message if isinstance(exc, RelayError) else str(exc)
        return cls(step, message or type(exc).__name__, cause=exc)


__all__ = [
    "ConfigError",
    "ExtractionError",
    "ProviderError",
    "RelayError",
    "TransportError",
    "WorkflowError",
]
