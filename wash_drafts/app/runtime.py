"""Wiring of the default service graph."""

from __future__ import annotations

from typing import Mapping

from ..ai.translator import GeminiTranslator
from ..events.bus import BroadcastBus
from ..extraction.images import HttpImageFetcher
from ..platforms.wechat.api import WeChatApiClient
from ..platforms.wechat.draft import WeChatDraftClient
from ..platforms.wechat.media import WeChatMediaUploader
from ..platforms.wechat.publisher import WeChatPublisher
from ..platforms.wechat.retry import RetryPolicy
from ..platforms.wechat.tokens import TokenManager
from ..security.credential_provider import default_provider, resolve_credentials
from ..services.formatter import WeChatFormatter
from ..settings.loader import AppConfig, load_config
from ..settings.store import SettingsOrigin, SettingsStore
from ..state.content_store import ContentStore
from ..storage.memory import InMemoryStore
from .orchestrator import WorkflowOrchestrator
from .service import RelayService


def build_service(
    config: AppConfig | None = None,
    *,
    secrets: Mapping[str, str] | None = None,
    dry_run: bool | None = None,
) -> RelayService:
    """Assemble a :class:`RelayService` backed by the real Gemini and WeChat clients.

    ``secrets`` defaults to whatever the environment and the configured
    secrets file provide.
    """

    app_config = config or load_config()
    if secrets is None:
        secrets = resolve_credentials(default_provider(app_config.secrets_file))

    settings = SettingsStore.from_config(app_config, secrets)
    if dry_run is not None:
        settings.update({"dry_run": dry_run}, origin=SettingsOrigin.INTERNAL)

    tokens = TokenManager(
        settings,
        WeChatApiClient(timeout=app_config.wechat.timeout),
        safety_margin=app_config.wechat.token_safety_margin,
    )
    publisher = WeChatPublisher(
        WeChatMediaUploader(
            timeout=app_config.wechat.timeout,
            download_timeout=app_config.http.timeout,
            user_agent=app_config.http.user_agent,
        ),
        WeChatDraftClient(timeout=app_config.wechat.timeout),
        need_open_comment=app_config.wechat.need_open_comment,
        only_fans_can_comment=app_config.wechat.only_fans_can_comment,
    )
    translator = GeminiTranslator(app_config.gemini)
    image_fetcher = HttpImageFetcher(timeout=app_config.http.timeout, user_agent=app_config.http.user_agent)
    persistence = InMemoryStore(history_limit=app_config.history_limit)
    store = ContentStore()
    bus = BroadcastBus()

    orchestrator = WorkflowOrchestrator(
        store=store,
        bus=bus,
        settings=settings,
        translator=translator,
        formatter=WeChatFormatter(),
        publisher=publisher,
        persistence=persistence,
        retry=RetryPolicy(tokens),
        image_fetcher=image_fetcher,
    )
    return RelayService(
        store=store,
        bus=bus,
        settings=settings,
        tokens=tokens,
        orchestrator=orchestrator,
        persistence=persistence,
        translator=translator,
        image_fetcher=image_fetcher,
    )


__all__ = ["build_service"]
