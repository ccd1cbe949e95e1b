"""Boundary service: dispatches typed messages onto the orchestrator and stores."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, replace
from functools import singledispatchmethod
from typing import Any, Hashable

from ..events.bus import (
    EVENT_CONTENT_UPDATED,
    EVENT_HISTORY_UPDATED,
    EVENT_IMAGES_CACHED,
    EVENT_SETTINGS_UPDATED,
    BroadcastBus,
    BusEvent,
)
from ..platforms.base import ImageFetcher, PersistentStore
from ..platforms.wechat.tokens import TokenManager
from ..settings.store import CREDENTIAL_KEYS, SanitizedSettings, Settings, SettingsOrigin, SettingsStore, changed_keys
from ..state.content_store import ContentStore
from ..state.images import enrich_images, merge_images, with_fetched_data
from ..state.models import CachedImage, Session, WeChatDraft
from ..storage.export import ExportedDocument, export_history_entry
from ..utils.logging import get_logger
from .messages import (
    ClearHistory,
    ContentCaptured,
    CreateDraftOnDemand,
    ExportHistoryEntry,
    GetContent,
    GetHistory,
    GetImages,
    GetSettings,
    RequestState,
    SessionClosed,
    SettingsChanged,
)
from .orchestrator import WorkflowOrchestrator

LOGGER = get_logger(__name__)


class RelayService:
    """Entry point for every boundary message.

    ``handle`` dispatches on the message type; each variant has exactly one
    handler and an unknown type raises :class:`TypeError`.
    """

    def __init__(
        self,
        *,
        store: ContentStore,
        bus: BroadcastBus,
        settings: SettingsStore,
        tokens: TokenManager,
        orchestrator: WorkflowOrchestrator,
        persistence: PersistentStore,
        translator: Any | None = None,
        image_fetcher: ImageFetcher | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._settings = settings
        self._tokens = tokens
        self._orchestrator = orchestrator
        self._persistence = persistence
        self._translator = translator
        self._image_fetcher = image_fetcher
        self._prefetches: dict[Hashable, asyncio.Task[None]] = {}
        self._unsubscribe = settings.subscribe(self._on_settings_changed)
        if translator is not None:
            translator.update_settings(settings.get())

    @property
    def orchestrator(self) -> WorkflowOrchestrator:
        return self._orchestrator

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    def close(self) -> None:
        self._unsubscribe()
        for task in self._prefetches.values():
            task.cancel()
        self._prefetches.clear()

    @singledispatchmethod
    async def handle(self, message: object) -> Any:
        raise TypeError(f"Unsupported message type: {type(message).__name__}")

    @handle.register
    async def _(self, message: ContentCaptured) -> asyncio.Task[Session]:
        payload = message.payload
        cached = merge_images(await self._persistence.load_images(payload.source_url), payload.images)
        session = Session.create(
            source_url=payload.source_url,
            items=payload.items,
            title=payload.title,
            captured_at=payload.captured_at,
            cached_images=cached,
        )
        self._store.set(message.key, session)
        self._bus.publish(BusEvent(type=EVENT_CONTENT_UPDATED, key=message.key, payload=session.to_dict()))
        LOGGER.info(
            "Content captured",
            extra={"event": "content.captured", "session": str(message.key), "items": len(payload.items)},
        )
        self._schedule_prefetch(message.key, session)
        return self._orchestrator.restart(message.key)

    @handle.register
    async def _(self, message: GetContent) -> Session | None:
        if message.key is None:
            return self._store.latest()
        return self._store.get(message.key)

    @handle.register
    async def _(self, message: GetSettings) -> SanitizedSettings:
        return self._settings.sanitized()

    @handle.register
    async def _(self, message: CreateDraftOnDemand) -> WeChatDraft:
        return await self._orchestrator.publish_on_demand(message.key, message.overrides)

    @handle.register
    async def _(self, message: SettingsChanged) -> SanitizedSettings:
        self._settings.update(message.patch, origin=SettingsOrigin.EXTERNAL)
        return self._settings.sanitized()

    @handle.register
    async def _(self, message: ExportHistoryEntry) -> ExportedDocument:
        history = await self._persistence.load_history()
        entry = next((item for item in history if item.get("source_url") == message.source_url), None)
        if entry is None:
            raise LookupError(f"No history entry for {message.source_url}")
        return export_history_entry(entry, message.format)

    @handle.register
    async def _(self, message: RequestState) -> Session | None:
        return self._orchestrator.refresh_state(message.key)

    @handle.register
    async def _(self, message: GetHistory) -> list[dict[str, Any]]:
        return await self._persistence.load_history()

    @handle.register
    async def _(self, message: ClearHistory) -> list[dict[str, Any]]:
        await self._persistence.clear_history()
        self._bus.publish(BusEvent(type=EVENT_HISTORY_UPDATED, payload=[]))
        return []

    @handle.register
    async def _(self, message: GetImages) -> list[CachedImage]:
        return await self._persistence.load_images(message.source_url)

    @handle.register
    async def _(self, message: SessionClosed) -> Session | None:
        task = self._prefetches.pop(message.key, None)
        if task is not None:
            task.cancel()
        removed = self._store.clear(message.key)
        if removed is not None:
            await self._persistence.clear_images(removed.source_url)
            LOGGER.info("Session closed", extra={"event": "session.closed", "session": str(message.key)})
        return removed

    def _on_settings_changed(self, current: Settings, previous: Settings, origin: SettingsOrigin) -> None:
        if self._translator is not None:
            self._translator.update_settings(current)
        keys = changed_keys(previous, current)
        if origin is SettingsOrigin.EXTERNAL and keys & CREDENTIAL_KEYS and not current.has_wechat_credentials:
            LOGGER.warning("Publisher credentials incomplete", extra={"event": "settings.credentials_incomplete"})
        if origin is SettingsOrigin.EXTERNAL and keys & CREDENTIAL_KEYS and (current.access_token or current.token_expires_at):
            LOGGER.info("Publisher credentials changed, dropping cached token", extra={"event": "token.invalidate"})
            self._tokens.invalidate()
        self._bus.publish(BusEvent(type=EVENT_SETTINGS_UPDATED, payload=self._settings.sanitized().to_dict()))

    def _schedule_prefetch(self, key: Hashable, session: Session) -> None:
        if self._image_fetcher is None:
            return
        pending = [
            CachedImage.from_item(item)
            for item in session.image_items()
            if not any(image.url == item.url and image.data_url for image in session.cached_images)
        ]
        if not pending:
            return
        previous = self._prefetches.pop(key, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.ensure_future(self._prefetch(key, session.source_url, pending))
        self._prefetches[key] = task
        task.add_done_callback(lambda done, key=key: self._forget_prefetch(key, done))

    def _forget_prefetch(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._prefetches.get(key) is task:
            del self._prefetches[key]
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning(
                "Image prefetch failed",
                extra={"event": "images.prefetch_failed", "session": str(key), "error": str(task.exception())},
            )

    async def _prefetch(self, key: Hashable, source_url: str, images: list[CachedImage]) -> None:
        fetched = await self._image_fetcher.fetch(images)

        def updater(current: Session | None) -> Session | None:
            if current is None or current.source_url != source_url:
                return None
            return replace(
                current,
                cached_images=enrich_images(current.cached_images, fetched, with_fetched_data),
            )

        updated = self._store.update(key, updater)
        if updated is None or updated.source_url != source_url:
            return
        await self._persistence.save_images(source_url, updated.cached_images)
        self._bus.publish(
            BusEvent(
                type=EVENT_IMAGES_CACHED,
                key=key,
                payload=[asdict(image) for image in updated.cached_images],
            )
        )
        LOGGER.debug(
            "Images cached",
            extra={"event": "images.cached", "session": str(key), "count": len(fetched)},
        )


__all__ = ["RelayService"]
