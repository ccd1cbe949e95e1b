"""WeChat platform adapters."""

from __future__ import annotations

from .api import WeChatApiClient, WeChatApiError
from .draft import WeChatDraftClient
from .media import WeChatMediaUploader
from .publisher import WeChatPublisher
from .retry import AUTH_INVALID_CODES, RetryPolicy, is_auth_error
from .tokens import TokenManager, TokenResult

__all__ = [
    "AUTH_INVALID_CODES",
    "RetryPolicy",
    "TokenManager",
    "TokenResult",
    "WeChatApiClient",
    "WeChatApiError",
    "WeChatDraftClient",
    "WeChatMediaUploader",
    "WeChatPublisher",
    "is_auth_error",
]
