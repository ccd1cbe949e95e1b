"""Helpers for loading static configuration from TOML."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_NAME = "config.toml"
CONFIG_ENV_VAR = "WASH_DRAFTS_CONFIG"

HISTORY_LIMIT = 20
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/126.0 Safari/537.36"
)

_PROMPTS_DIR = PROJECT_ROOT / "prompts"


@dataclass(slots=True)
class GeminiSettings:
    model: str = DEFAULT_MODEL
    target_language: str = "zh-CN"
    translate_prompt: Path = _PROMPTS_DIR / "translate.txt"
    title_prompt: Path = _PROMPTS_DIR / "title.txt"
    timeout: float = 60.0


@dataclass(slots=True)
class WeChatSettings:
    timeout: float = 30.0
    token_safety_margin: timedelta = timedelta(minutes=5)
    thumb_media_id: str = ""
    author: str = ""
    dry_run: bool = False
    need_open_comment: bool = False
    only_fans_can_comment: bool = False


@dataclass(slots=True)
class HttpSettings:
    timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(slots=True)
class LoggingSettings:
    structured: bool = True
    level: str = "INFO"


@dataclass(slots=True)
class AppConfig:
    history_limit: int = HISTORY_LIMIT
    default_session: str = "cli"
    secrets_file: Path | None = None
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    wechat: WeChatSettings = field(default_factory=WeChatSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def _to_path(value: str | None, *, fallback: Path | None) -> Path | None:
    if not value:
        return fallback
    candidate = Path(value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _config_path(explicit: str | os.PathLike[str] | None = None) -> tuple[Path, bool]:
    if explicit:
        candidate, required = Path(explicit), True
    else:
        env_value = os.environ.get(CONFIG_ENV_VAR)
        candidate = Path(env_value) if env_value else PROJECT_ROOT / DEFAULT_CONFIG_NAME
        required = bool(env_value)
    resolved = candidate if candidate.is_absolute() else PROJECT_ROOT / candidate
    return resolved, required


def _load_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}
    with path.open("rb") as fp:
        return tomllib.load(fp)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _build_gemini(data: dict[str, Any]) -> GeminiSettings:
    defaults = GeminiSettings()
    return GeminiSettings(
        model=str(data.get("model") or defaults.model),
        target_language=str(data.get("target_language") or defaults.target_language),
        translate_prompt=_to_path(data.get("translate_prompt"), fallback=defaults.translate_prompt),
        title_prompt=_to_path(data.get("title_prompt"), fallback=defaults.title_prompt),
        timeout=float(data.get("timeout", defaults.timeout)),
    )


def _build_wechat(data: dict[str, Any]) -> WeChatSettings:
    defaults = WeChatSettings()
    margin_raw = data.get("token_safety_margin")
    margin = (
        timedelta(seconds=float(margin_raw))
        if margin_raw is not None
        else defaults.token_safety_margin
    )
    return WeChatSettings(
        timeout=float(data.get("timeout", defaults.timeout)),
        token_safety_margin=margin,
        thumb_media_id=str(data.get("thumb_media_id") or ""),
        author=str(data.get("author") or ""),
        dry_run=_as_bool(data.get("dry_run"), defaults.dry_run),
        need_open_comment=_as_bool(data.get("need_open_comment"), defaults.need_open_comment),
        only_fans_can_comment=_as_bool(
            data.get("only_fans_can_comment"), defaults.only_fans_can_comment
        ),
    )


def load_config(config_path: str | os.PathLike[str] | None = None) -> AppConfig:
    path, required = _config_path(config_path)
    data = _load_toml(path, required=required)

    app_section = data.get("app", {})
    http_section = data.get("http", {})
    logging_section = data.get("logging", {})

    history_limit = int(app_section.get("history_limit", HISTORY_LIMIT))
    if history_limit < 1:
        raise ValueError(f"history_limit must be positive, got {history_limit}")

    http_defaults = HttpSettings()
    logging_defaults = LoggingSettings()

    return AppConfig(
        history_limit=history_limit,
        default_session=str(app_section.get("default_session") or "cli"),
        secrets_file=_to_path(app_section.get("secrets_file"), fallback=None),
        gemini=_build_gemini(data.get("gemini", {})),
        wechat=_build_wechat(data.get("wechat", {})),
        http=HttpSettings(
            timeout=float(http_section.get("timeout", http_defaults.timeout)),
            user_agent=str(http_section.get("user_agent") or http_defaults.user_agent),
        ),
        logging=LoggingSettings(
            structured=_as_bool(logging_section.get("structured"), logging_defaults.structured),
            level=str(logging_section.get("level") or logging_defaults.level).upper(),
        ),
    )


def project_path(*parts: Any) -> Path:
    return PROJECT_ROOT.joinpath(*parts)


__all__ = [
    "AppConfig",
    "GeminiSettings",
    "HISTORY_LIMIT",
    "HttpSettings",
    "LoggingSettings",
    "WeChatSettings",
    "load_config",
    "project_path",
]
