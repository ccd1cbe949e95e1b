"""One-shot retry for calls rejected because the access token went stale."""

from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from ...settings.store import Settings
from ...utils.logging import get_logger
from .tokens import TokenManager

LOGGER = get_logger(__name__)

T = TypeVar("T")

AUTH_INVALID_CODES = frozenset({40001, 40014, 42001})


def is_auth_error(exc: BaseException, codes: frozenset[int] = AUTH_INVALID_CODES) -> bool:
    """True when ``exc`` says the access token is invalid or expired."""
    code = getattr(exc, "code", None)
    if code is not None:
        try:
            return int(code) in codes
        except (TypeError, ValueError):
            return False
    message = str(exc).lower()
    mentions_token = "access_token" in message or "access token" in message
    return mentions_token and ("invalid" in message or "expired" in message)


class RetryPolicy:
    """Runs an authenticated action, refreshing the token and retrying once on auth errors.

    Anything else, including a second auth error, propagates unchanged.
    """

    def __init__(self, tokens: TokenManager, *, auth_codes: frozenset[int] = AUTH_INVALID_CODES) -> None:
        self._tokens = tokens
        self._auth_codes = auth_codes

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    def is_auth_error(self, exc: BaseException) -> bool:
        return is_auth_error(exc, self._auth_codes)

    async def with_auth_retry(
        self,
        action: Callable[[str], Awaitable[T]],
        settings: Settings | None = None,
    ) -> T:
        settings = settings or self._tokens.settings
        force = not settings.access_token or self._tokens.is_expired(settings)
        token = await self._tokens.refresh(force_refresh=force)
        try:
            return await action(token.access_token)
        except Exception as exc:
            if not self.is_auth_error(exc):
                raise
            LOGGER.warning(
                "Access token rejected, refreshing once and retrying",
                extra={"event": "retry.auth", "code": getattr(exc, "code", None)},
            )
        fresh = await self._tokens.refresh(force_refresh=True)
        return await action(fresh.access_token)


__all__ = ["AUTH_INVALID_CODES", "RetryPolicy", "is_auth_error"]
