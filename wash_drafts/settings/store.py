"""Process-wide mutable settings with synchronous change notification."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping

from ..utils.logging import get_logger
from .loader import DEFAULT_MODEL, AppConfig

LOGGER = get_logger(__name__)

CREDENTIAL_KEYS = frozenset({"wechat_app_id", "wechat_app_secret"})
TOKEN_KEYS = frozenset({"access_token", "token_expires_at"})


class SettingsOrigin(str, Enum):
    """Who issued a settings update."""

    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(slots=True, frozen=True)
class Settings:
    gemini_api_key: str = ""
    gemini_model: str = DEFAULT_MODEL
    wechat_app_id: str = ""
    wechat_app_secret: str = ""
    access_token: str = ""
    token_expires_at: datetime | None = None
    thumb_media_id: str = ""
    author: str = ""
    dry_run: bool = False

    @property
    def has_api_key(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def has_wechat_credentials(self) -> bool:
        return bool(self.wechat_app_id and self.wechat_app_secret)


@dataclass(slots=True, frozen=True)
class SanitizedSettings:
    """Settings view that is safe to hand to any caller."""

    has_api_key: bool
    has_wechat_credentials: bool
    wechat_app_id_masked: str
    has_access_token: bool
    token_expires_at: str | None
    gemini_model: str
    thumb_media_id: str
    author: str
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Listener = Callable[[Settings, Settings, SettingsOrigin], None]

_FIELD_NAMES = frozenset(f.name for f in fields(Settings))


def mask_secret(value: str, *, visible: int = 4) -> str:
    if not value:
        return ""
    return value[:visible] + "***"


def changed_keys(previous: Settings, current: Settings) -> set[str]:
    return {name for name in _FIELD_NAMES if getattr(previous, name) != getattr(current, name)}


def _coerce(name: str, value: Any) -> Any:
    if name == "token_expires_at":
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))
    if name == "dry_run":
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if value is None:
        return ""
    return str(value).strip()


class SettingsStore:
    """Single mutable settings value shared by every stage.

    ``update`` swaps the immutable :class:`Settings` and runs listeners in the
    same call, so dependents are reconfigured before any other coroutine can
    observe the new value.
    """

    def __init__(self, initial: Settings | None = None) -> None:
        self._settings = initial or Settings()
        self._listeners: list[Listener] = []

    @classmethod
    def from_config(cls, config: AppConfig, secrets: Mapping[str, str] | None = None) -> "SettingsStore":
        secrets = secrets or {}
        return cls(
            Settings(
                gemini_api_key=secrets.get("gemini_api_key", ""),
                gemini_model=config.gemini.model,
                wechat_app_id=secrets.get("wechat_app_id", ""),
                wechat_app_secret=secrets.get("wechat_app_secret", ""),
                thumb_media_id=config.wechat.thumb_media_id,
                author=config.wechat.author,
                dry_run=config.wechat.dry_run,
            )
        )

    def get(self) -> Settings:
        return self._settings

    def update(
        self,
        patch: Mapping[str, Any],
        *,
        origin: SettingsOrigin = SettingsOrigin.EXTERNAL,
    ) -> Settings:
        """Apply the known keys of ``patch`` and notify listeners; unknown keys are ignored."""
        values = {name: _coerce(name, value) for name, value in patch.items() if name in _FIELD_NAMES}
        previous = self._settings
        if not values:
            return previous
        current = replace(previous, **values)
        if current == previous:
            return previous
        self._settings = current
        LOGGER.debug(
            "Settings updated",
            extra={
                "event": "settings.update",
                "origin": origin.value,
                "keys": sorted(changed_keys(previous, current)),
            },
        )
        for listener in list(self._listeners):
            listener(current, previous, origin)
        return current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sanitized(self) -> SanitizedSettings:
        current = self._settings
        return SanitizedSettings(
            has_api_key=current.has_api_key,
            has_wechat_credentials=current.has_wechat_credentials,
            wechat_app_id_masked=mask_secret(current.wechat_app_id),
            has_access_token=bool(current.access_token),
            token_expires_at=current.token_expires_at.isoformat() if current.token_expires_at else None,
            gemini_model=current.gemini_model,
            thumb_media_id=current.thumb_media_id,
            author=current.author,
            dry_run=current.dry_run,
        )


__all__ = [
    "CREDENTIAL_KEYS",
    "SanitizedSettings",
    "Settings",
    "SettingsOrigin",
    "SettingsStore",
    "TOKEN_KEYS",
    "changed_keys",
    "mask_secret",
]
