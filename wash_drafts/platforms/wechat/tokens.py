"""Access token lifecycle for the WeChat publisher."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

from ...core.errors import ConfigError
from ...core.single_flight import SingleFlight
from ...settings.store import Settings, SettingsOrigin, SettingsStore
from ...utils.logging import get_logger
from .api import AccessTokenResponse, WeChatApiClient

LOGGER = get_logger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(minutes=5)

_REFRESH_KEY = "access_token"


@dataclass(slots=True, frozen=True)
class TokenResult:
    access_token: str
    expires_at: datetime | None
    from_cache: bool


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class TokenManager:
    """Hands out the shared bearer token, refreshing it at most once at a time.

    The token is process-wide: every session asks the same manager, and
    overlapping refresh requests attach to the one network call in flight.
    """

    def __init__(
        self,
        settings: SettingsStore,
        api_client: WeChatApiClient,
        *,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._api_client = api_client
        self._safety_margin = safety_margin
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._flight: SingleFlight[str, TokenResult] = SingleFlight()

    @property
    def settings(self) -> Settings:
        return self._settings.get()

    @property
    def refreshing(self) -> bool:
        return self._flight.in_flight(_REFRESH_KEY)

    def has_credentials(self, settings: Settings | None = None) -> bool:
        settings = settings or self._settings.get()
        return settings.has_wechat_credentials

    def is_expired(self, settings: Settings | None = None) -> bool:
        settings = settings or self._settings.get()
        if not settings.access_token or settings.token_expires_at is None:
            return True
        return _aware(settings.token_expires_at) <= self._clock() + self._safety_margin

    async def refresh(self, *, force_refresh: bool = False) -> TokenResult:
        """Return a usable token, from cache when still valid.

        Raises :class:`ConfigError` without any network call when the app id or
        secret is missing.
        """
        pending = self._flight.pending(_REFRESH_KEY)
        if pending is not None:
            return await asyncio.shield(pending)

        settings = self._settings.get()
        if not self.has_credentials(settings):
            missing = "wechat_app_id" if not settings.wechat_app_id else "wechat_app_secret"
            raise ConfigError(f"缺少微信公众号凭证 {missing}，无法获取 access_token", setting=missing)

        if not force_refresh and not self.is_expired(settings):
            return TokenResult(
                access_token=settings.access_token,
                expires_at=settings.token_expires_at,
                from_cache=True,
            )

        return await self._flight.run(
            _REFRESH_KEY, lambda: self._request_token(settings, force_refresh=force_refresh)
        )

    def invalidate(self) -> None:
        """Forget the cached token so the next call fetches a new one."""
        self._settings.update(
            {"access_token": "", "token_expires_at": None},
            origin=SettingsOrigin.INTERNAL,
        )

    async def _request_token(self, settings: Settings, *, force_refresh: bool) -> TokenResult:
        LOGGER.info(
            "Requesting WeChat access token",
            extra={"event": "token.refresh", "force_refresh": force_refresh},
        )
        response: AccessTokenResponse = await asyncio.to_thread(
            self._api_client.fetch_access_token,
            settings.wechat_app_id,
            settings.wechat_app_secret,
            force_refresh=force_refresh,
        )

        current = self._settings.get()
        if (current.wechat_app_id, current.wechat_app_secret) == (settings.wechat_app_id, settings.wechat_app_secret):
            self._settings.update(
                {"access_token": response.token, "token_expires_at": response.expires_at},
                origin=SettingsOrigin.INTERNAL,
            )
        else:
            LOGGER.warning(
                "Credentials changed during token refresh; token not cached",
                extra={"event": "token.discarded"},
            )
        LOGGER.info(
            "WeChat access token refreshed",
            extra={"event": "token.refresh", "expires_at": response.expires_at.isoformat()},
        )
        return TokenResult(access_token=response.token, expires_at=response.expires_at, from_cache=False)


__all__ = ["DEFAULT_SAFETY_MARGIN", "TokenManager", "TokenResult"]
