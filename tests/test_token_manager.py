from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, StubApiClient
from wash_drafts.core.errors import ConfigError
from wash_drafts.platforms.wechat.api import WeChatApiError
from wash_drafts.platforms.wechat.tokens import TokenManager
from wash_drafts.settings.store import Settings, SettingsOrigin, SettingsStore


async def test_refresh_requires_credentials_before_any_call(api_client: StubApiClient) -> None:
    manager = TokenManager(SettingsStore(Settings(wechat_app_id="wx123")), api_client, clock=lambda: NOW)

    with pytest.raises(ConfigError) as excinfo:
        await manager.refresh()

    assert excinfo.value.setting == "wechat_app_secret"
    assert api_client.calls == []


async def test_refresh_persists_token(tokens: TokenManager, settings_store: SettingsStore, api_client: StubApiClient) -> None:
    result = await tokens.refresh()

    assert result.access_token == "TOKEN_1"
    assert result.from_cache is False
    assert settings_store.get().access_token == "TOKEN_1"
    assert settings_store.get().token_expires_at == NOW + timedelta(seconds=7200)
    assert len(api_client.calls) == 1


async def test_valid_token_is_served_from_cache(tokens: TokenManager, api_client: StubApiClient) -> None:
    await tokens.refresh()
    cached = await tokens.refresh()

    assert cached.from_cache is True
    assert cached.access_token == "TOKEN_1"
    assert len(api_client.calls) == 1


async def test_force_refresh_bypasses_cache(tokens: TokenManager, api_client: StubApiClient) -> None:
    await tokens.refresh()
    fresh = await tokens.refresh(force_refresh=True)

    assert fresh.access_token == "TOKEN_2"
    assert api_client.calls[-1]["force_refresh"] is True


async def test_token_inside_safety_margin_counts_as_expired(settings_store: SettingsStore, api_client: StubApiClient) -> None:
    settings_store.update(
        {"access_token": "OLD", "token_expires_at": NOW + timedelta(minutes=4)},
        origin=SettingsOrigin.INTERNAL,
    )
    manager = TokenManager(settings_store, api_client, clock=lambda: NOW)

    assert manager.is_expired()
    result = await manager.refresh()
    assert result.access_token == "TOKEN_1"


async def test_concurrent_refreshes_share_one_request(tokens: TokenManager, api_client: StubApiClient) -> None:
    results = await asyncio.gather(*(tokens.refresh(force_refresh=True) for _ in range(5)))

    assert {result.access_token for result in results} == {"TOKEN_1"}
    assert len(api_client.calls) == 1
    assert not tokens.refreshing


@pytest.mark.parametrize("field", ["wechat_app_id", "wechat_app_secret"])
async def test_token_dropped_when_credentials_change_mid_refresh(settings_store: SettingsStore, field: str) -> None:
    class SwitchingClient(StubApiClient):
        def fetch_access_token(self, app_id, app_secret, *, force_refresh=False):
            settings_store.update({field: "rotated"})
            return super().fetch_access_token(app_id, app_secret, force_refresh=force_refresh)

    manager = TokenManager(settings_store, SwitchingClient(), clock=lambda: NOW)

    result = await manager.refresh()

    assert result.access_token == "TOKEN_1"
    assert settings_store.get().access_token == ""


async def test_invalidate_clears_cached_token(tokens: TokenManager, settings_store: SettingsStore) -> None:
    await tokens.refresh()

    tokens.invalidate()

    assert settings_store.get().access_token == ""
    assert settings_store.get().token_expires_at is None
    assert tokens.is_expired()


async def test_failed_refresh_keeps_cached_state_and_releases_guard(settings_store: SettingsStore) -> None:
    class RejectingClient(StubApiClient):
        def fetch_access_token(self, app_id, app_secret, *, force_refresh=False):
            if not self.calls:
                self.calls.append({"app_id": app_id, "force_refresh": force_refresh})
                raise WeChatApiError("invalid appsecret", code=40013)
            return super().fetch_access_token(app_id, app_secret, force_refresh=force_refresh)

    expires_at = NOW - timedelta(minutes=1)
    settings_store.update({"access_token": "STALE", "token_expires_at": expires_at}, origin=SettingsOrigin.INTERNAL)
    client = RejectingClient()
    manager = TokenManager(settings_store, client, clock=lambda: NOW)

    with pytest.raises(WeChatApiError) as excinfo:
        await manager.refresh()

    assert excinfo.value.code == 40013
    assert settings_store.get().access_token == "STALE"
    assert settings_store.get().token_expires_at == expires_at
    assert not manager.refreshing

    result = await manager.refresh()

    assert len(client.calls) == 2
    assert result.from_cache is False
    assert settings_store.get().access_token == result.access_token
