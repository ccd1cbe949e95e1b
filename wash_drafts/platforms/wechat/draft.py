"""WeChat draft management."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .api import API_BASE, WeChatApiError, send


class WeChatDraftClient:
    """Client for creating drafts via the WeChat API."""

    _DRAFT_URL = f"{API_BASE}/draft/add"

    def __init__(self, *, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def create_draft(self, payload: Mapping[str, Any], access_token: str) -> dict[str, Any]:
        """Submit a draft payload and return the WeChat response."""
        data = send(
            "POST",
            f"{self._DRAFT_URL}?access_token={access_token}",
            timeout=self._timeout,
            action="草稿提交",
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        if not data.get("media_id"):
            raise WeChatApiError("草稿提交成功但缺少 media_id", details={"response": data})
        return data


__all__ = ["WeChatDraftClient"]
