"""WeChat API helpers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Mapping

import requests

from ...core.errors import ProviderError, TransportError

API_BASE = "https://api.weixin.qq.com/cgi-bin"

_TOKEN_PARAM = re.compile(r"(access_token=)[^&\s'\"]+")


class WeChatApiError(ProviderError):
    """Raised when WeChat rejects a call; ``code`` carries the upstream ``errcode``."""

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)


@dataclass(slots=True)
class AccessTokenResponse:
    """Parsed access token response."""

    token: str
    expires_at: datetime


def _redact(text: str) -> str:
    """Mask access tokens that requests echoes back inside error messages."""
    return _TOKEN_PARAM.sub(r"\1***", text)


def send(
    method: str,
    url: str,
    *,
    timeout: float,
    action: str,
    context: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """Perform one WeChat call and return the decoded body.

    Transport failures raise :class:`TransportError`; HTTP errors, undecodable
    bodies and a non-zero ``errcode`` raise :class:`WeChatApiError`.
    """
    context = dict(context or {})
    try:
        response = requests.request(method, url, timeout=timeout, **kwargs)
        response.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise WeChatApiError(
            f"{action}失败",
            details={**context, "status": status, "reason": _redact(str(exc))},
        ) from exc
    except requests.RequestException as exc:
        raise TransportError(
            "无法连接至微信服务器",
            details={**context, "reason": _redact(str(exc))},
        ) from exc

    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise WeChatApiError(
            "解析微信响应失败",
            details={**context, "response": response.text[:200]},
        ) from exc
    if not isinstance(data, dict):
        raise WeChatApiError("解析微信响应失败", details={**context, "response": str(data)[:200]})

    errcode = data.get("errcode")
    if errcode not in (0, None):
        raise WeChatApiError(
            f"{action}被微信拒绝",
            code=errcode,
            details={**context, "errcode": errcode, "errmsg": data.get("errmsg")},
        )
    return data


class WeChatApiClient:
    """Minimal client for the WeChat token endpoint."""

    _TOKEN_URL = f"{API_BASE}/stable_token"

    def __init__(self, *, timeout: float = 10.0) -> None:
        self._timeout = timeout

    def fetch_access_token(
        self,
        app_id: str,
        app_secret: str,
        *,
        force_refresh: bool = False,
    ) -> AccessTokenResponse:
        """Retrieve an access token from the stable token endpoint."""
        payload = {
            "grant_type": "client_credential",
            "appid": app_id,
            "secret": app_secret,
            "force_refresh": force_refresh,
        }
        data = send(
            "POST",
            self._TOKEN_URL,
            timeout=self._timeout,
            action="获取 access_token ",
            json=payload,
        )

        token = data.get("access_token")
        expires_in = data.get("expires_in")
        if not token or not expires_in:
            raise WeChatApiError(
                "响应缺少 access_token 或 expires_in 字段",
                details={key: value for key, value in data.items() if key != "access_token"},
            )

        try:
            expires_seconds = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise WeChatApiError("expires_in 字段格式不正确", details={"expires_in": expires_in}) from exc

        expires_at = datetime.now(tz=UTC) + timedelta(seconds=expires_seconds)
        return AccessTokenResponse(token=token, expires_at=expires_at)


__all__ = ["API_BASE", "AccessTokenResponse", "WeChatApiClient", "WeChatApiError", "send"]
