"""Per-session pipeline driver: extract, prepare, upload, format, publish."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Hashable, Mapping, Sequence

from ..ai.title_generator import derive_fallback_title, render_items_markdown
from ..core.errors import ConfigError, ExtractionError, ProviderError, WorkflowError
from ..core.single_flight import SingleFlight
from ..events.bus import EVENT_CONTENT_UPDATED, EVENT_HISTORY_UPDATED, BroadcastBus, BusEvent
from ..platforms.base import DraftContent, Formatter, ImageFetcher, PersistentStore, Publisher, Translator
from ..platforms.wechat.retry import RetryPolicy
from ..settings.store import Settings, SettingsStore
from ..state.content_store import ContentStore
from ..state.images import enrich_images, sort_images, with_fetched_data
from ..state.models import (
    STEP_EXTRACTING,
    STEP_FORMATTING,
    STEP_PREPARING,
    STEP_PUBLISHING,
    STEP_UPLOADING,
    TASK_DONE,
    TASK_ERROR,
    TASK_WORKING,
    CachedImage,
    Session,
    TitleTask,
    TranslationState,
    WeChatDraft,
    WeChatUpload,
    WorkflowState,
)
from ..storage.memory import build_history_entry
from ..utils.logging import get_logger, session_logger
from .messages import DraftOverrides

LOGGER = get_logger(__name__)

DIGEST_MAX_CHARS = 120

Change = Callable[[Session], Session]


@dataclass(slots=True)
class _RunContext:
    key: Hashable
    session: Session
    log: logging.LoggerAdapter
    warning: str | None = None

    def owns(self, session: Session) -> bool:
        return session.capture_id == self.session.capture_id


def _with_upload(current: CachedImage, update: CachedImage) -> CachedImage:
    return replace(current, remote_url=update.remote_url, media_id=update.media_id, error=None)


def _upload_records(uploads: Sequence[WeChatUpload]) -> list[CachedImage]:
    return [CachedImage(url=upload.url, remote_url=upload.remote_url, media_id=upload.media_id) for upload in uploads]


def derive_digest(text: str | None) -> str:
    """First body line of the translated text, without markdown decorations."""
    for line in (text or "").splitlines():
        candidate = line.strip()
        if not candidate or candidate.startswith(("#", "{{", "[[", "![")):
            continue
        return candidate[:DIGEST_MAX_CHARS]
    return ""


def first_media_id(uploads: Sequence[WeChatUpload]) -> str:
    return next((upload.media_id for upload in uploads if upload.media_id), "")


class WorkflowOrchestrator:
    """Runs the fixed stage sequence for one session key at a time.

    ``start`` is the only way in: concurrent calls for a key share one run.
    Every mutation is written to the content store with the fields the stage
    owns and broadcast as a full snapshot.
    """

    def __init__(
        self,
        *,
        store: ContentStore,
        bus: BroadcastBus,
        settings: SettingsStore,
        translator: Translator,
        formatter: Formatter,
        publisher: Publisher,
        persistence: PersistentStore,
        retry: RetryPolicy,
        image_fetcher: ImageFetcher | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._settings = settings
        self._translator = translator
        self._formatter = formatter
        self._publisher = publisher
        self._persistence = persistence
        self._retry = retry
        self._image_fetcher = image_fetcher
        self._runs: SingleFlight[Hashable, Session] = SingleFlight()
        self._drafts: SingleFlight[Hashable, WeChatDraft] = SingleFlight()
        self._stages: tuple[tuple[str, Callable[[_RunContext], Awaitable[None]]], ...] = (
            (STEP_EXTRACTING, self._extract),
            (STEP_PREPARING, self._prepare),
            (STEP_UPLOADING, self._upload),
            (STEP_FORMATTING, self._format),
            (STEP_PUBLISHING, self._publish),
        )

    def start(self, key: Hashable) -> asyncio.Task[Session]:
        """Start a run for ``key`` or return the one already in flight."""
        pending = self._runs.pending(key)
        if pending is not None:
            return pending
        if self._store.get(key) is None:
            raise LookupError(f"No captured content for session {key!r}")
        return self._runs.submit(key, lambda: self._run(key))

    def restart(self, key: Hashable) -> asyncio.Task[Session]:
        """Start a fresh run for ``key`` once the run in flight, if any, has settled."""
        pending = self._runs.pending(key)
        if pending is None:
            return self.start(key)

        async def after_pending() -> Session:
            await asyncio.wait([pending])
            return await self.start(key)

        return asyncio.ensure_future(after_pending())

    def is_running(self, key: Hashable) -> bool:
        return self._runs.in_flight(key)

    def refresh_state(self, key: Hashable | None = None) -> Session | None:
        """Re-publish the latest snapshot for ``key`` (or the most recent session)."""
        if key is None:
            key = self._store.latest_key()
        session = self._store.get(key) if key is not None else None
        if session is not None:
            self._broadcast(key, session)
        return session

    async def publish_on_demand(self, key: Hashable, overrides: DraftOverrides | None = None) -> WeChatDraft:
        """Create a draft outside the pipeline; ``workflow`` is left untouched."""
        if self._store.get(key) is None:
            raise LookupError(f"No captured content for session {key!r}")
        return await self._drafts.run(key, lambda: self._publish_on_demand(key, overrides or DraftOverrides()))

    async def _run(self, key: Hashable) -> Session:
        log = session_logger(LOGGER, key)
        initial = self._store.get(key)
        if initial is None:
            raise LookupError(f"No captured content for session {key!r}")
        ctx = _RunContext(key=key, session=initial, log=log)
        self._commit(ctx, {"workflow": WorkflowState.initialize()})
        log.info("Workflow started", extra={"event": "workflow.start", "source_url": initial.source_url})

        for step, stage in self._stages:
            ctx.warning = None
            self._update_workflow(ctx, lambda workflow, step=step: workflow.mark_running(step))
            log.info("Step running", extra={"event": "workflow.step", "step": step, "status": "running"})
            try:
                await stage(ctx)
            except Exception as exc:  # noqa: BLE001
                error = WorkflowError.wrap(step, exc)
                self._update_workflow(ctx, lambda workflow, step=step: workflow.mark_failed(step, error.message))
                log.warning(
                    "Step failed",
                    extra={
                        "event": "workflow.failed",
                        "step": step,
                        "error": error.message,
                        "cause": type(exc).__name__,
                    },
                )
                return ctx.session
            warning = ctx.warning
            self._update_workflow(ctx, lambda workflow, step=step: workflow.mark_done(step, warning=warning))
            log.info(
                "Step done",
                extra={"event": "workflow.step", "step": step, "status": "done", "warning": warning},
            )

        self._update_workflow(ctx, lambda workflow: workflow.mark_complete())
        log.info("Workflow completed", extra={"event": "workflow.complete"})
        return ctx.session

    # Stages

    async def _extract(self, ctx: _RunContext) -> None:
        if not ctx.session.items:
            raise ExtractionError("未捕获到任何文章内容")

    async def _prepare(self, ctx: _RunContext) -> None:
        session = ctx.session
        self._commit(
            ctx,
            {
                "translation": TranslationState(status=TASK_WORKING),
                "title_task": TitleTask(status=TASK_WORKING),
            },
        )
        try:
            if not self._translator.has_credentials():
                raise ConfigError("缺少 Gemini API Key，无法翻译", setting="gemini_api_key")
            result = await self._translator.translate_article(
                render_items_markdown(session.items),
                source_url=session.source_url,
                fallback_title=session.title,
            )
            if not result.text:
                raise ProviderError("翻译结果为空", finish_reason=result.finish_reason)
        except Exception as exc:
            message = WorkflowError.wrap(STEP_PREPARING, exc).message
            fallback = derive_fallback_title(session.title, session.items)
            self._commit(
                ctx,
                {
                    "translation": TranslationState(status=TASK_ERROR, error=message),
                    "title_task": TitleTask(status=TASK_ERROR, text=fallback, error=message),
                },
            )
            raise

        self._commit(ctx, {"translation": TranslationState(status=TASK_DONE, text=result.text)})

        try:
            title = await self._translator.generate_title(
                result.conversation or list(session.items),
                source_url=session.source_url,
                fallback_title=session.title,
            )
            title_task = TitleTask(status=TASK_DONE, text=title.text)
        except Exception as exc:  # noqa: BLE001
            message = WorkflowError.wrap(STEP_PREPARING, exc).message
            fallback = derive_fallback_title(session.title, session.items, result.text)
            ctx.warning = f"标题生成失败，已使用备用标题: {message}"
            title_task = TitleTask(status=TASK_DONE, text=fallback, warning=message)
            ctx.log.warning(
                "Title generation failed, using fallback",
                extra={"event": "workflow.title_fallback", "error": message},
            )
        self._commit(ctx, {"title_task": title_task})
        await self._save_history(ctx)

    async def _upload(self, ctx: _RunContext) -> None:
        settings = self._settings.get()
        images = self._current(ctx).cached_images
        if not images:
            images = await self._seed_images(ctx)
        if not images:
            raise ConfigError("没有可上传的图片", setting="cached_images")
        if not settings.dry_run:
            self._require_credentials(settings)

        ordered = sort_images(images)
        uploads = await self._upload_images(ordered, dry_run=settings.dry_run)

        records = _upload_records(uploads)
        self._commit(
            ctx,
            lambda current: replace(
                current,
                cached_images=enrich_images(current.cached_images, records, _with_upload),
                wechat_uploads=list(uploads),
            ),
        )
        await self._persistence.save_images(ctx.session.source_url, ctx.session.cached_images)

    async def _format(self, ctx: _RunContext) -> None:
        session = self._current(ctx)
        translation = session.translation
        formatted = await self._formatter.format(
            translation.text if translation else "",
            session.items,
            session.cached_images,
        )
        self._commit(ctx, {"formatted": formatted})
        await self._save_history(ctx)

    async def _publish(self, ctx: _RunContext) -> None:
        settings = self._settings.get()
        session = self._current(ctx)
        if session.translation is None or session.translation.status != TASK_DONE:
            raise WorkflowError(STEP_PUBLISHING, "翻译尚未完成，无法发布")
        if session.formatted is None or not session.formatted.html:
            raise WorkflowError(STEP_PUBLISHING, "排版内容为空，无法发布")

        thumb_media_id = settings.thumb_media_id or first_media_id(session.wechat_uploads)
        if not thumb_media_id:
            raise ConfigError("缺少封面图片 thumb_media_id，无法创建草稿", setting="thumb_media_id")

        content = DraftContent(
            title=session.title_task.text if session.title_task else session.title,
            html=session.formatted.html,
            source_url=session.source_url,
            author=settings.author,
            digest=derive_digest(session.translation.text),
            thumb_media_id=thumb_media_id,
            fallback_text=session.translation.text,
        )
        draft = await self._create_draft(content, session.wechat_uploads, settings, dry_run=settings.dry_run)
        self._commit(ctx, {"wechat_draft": draft})
        await self._save_history(ctx)

    # Helpers shared by the pipeline and on-demand publishing

    async def _seed_images(self, ctx: _RunContext) -> list[CachedImage]:
        seeded = [CachedImage.from_item(item) for item in self._current(ctx).image_items()]
        if not seeded:
            return []
        if self._image_fetcher is not None:
            fetched = await self._image_fetcher.fetch(seeded)
            self._commit(
                ctx,
                lambda current: replace(
                    current,
                    cached_images=enrich_images(current.cached_images or seeded, fetched, with_fetched_data),
                ),
            )
        else:
            self._commit(ctx, lambda current: replace(current, cached_images=sort_images(seeded)))
        return ctx.session.cached_images

    def _require_credentials(self, settings: Settings) -> None:
        if not self._retry.tokens.has_credentials(settings):
            missing = "wechat_app_id" if not settings.wechat_app_id else "wechat_app_secret"
            raise ConfigError(f"缺少微信公众号凭证 {missing}", setting=missing)

    async def _upload_images(
        self,
        images: Sequence[CachedImage],
        *,
        dry_run: bool,
    ) -> list[WeChatUpload]:
        if dry_run:
            return await self._publisher.upload_images(images, access_token=None, dry_run=True)
        # One image per authenticated call, so a token retry re-sends only the rejected image.
        # Each call reads the live settings to pick up the token cached by the previous one.
        uploads: list[WeChatUpload] = []
        for image in images:
            uploaded = await self._retry.with_auth_retry(
                lambda token, image=image: self._publisher.upload_images([image], access_token=token, dry_run=False),
            )
            uploads.extend(uploaded)
        return uploads

    async def _create_draft(
        self,
        content: DraftContent,
        uploads: Sequence[WeChatUpload],
        settings: Settings,
        *,
        dry_run: bool,
    ) -> WeChatDraft:
        if dry_run:
            return await self._publisher.create_draft(content, uploads, access_token=None, dry_run=True)
        self._require_credentials(settings)
        return await self._retry.with_auth_retry(
            lambda token: self._publisher.create_draft(content, uploads, access_token=token, dry_run=False),
            settings,
        )

    async def _publish_on_demand(self, key: Hashable, overrides: DraftOverrides) -> WeChatDraft:
        log = session_logger(LOGGER, key)
        session = self._store.get(key)
        if session is None:
            raise LookupError(f"No captured content for session {key!r}")
        ctx = _RunContext(key=key, session=session, log=log)
        settings = self._settings.get()
        dry_run = settings.dry_run if overrides.dry_run is None else overrides.dry_run

        uploads = list(session.wechat_uploads)
        if not uploads and not dry_run:
            images = session.cached_images or [CachedImage.from_item(item) for item in session.image_items()]
            if images:
                self._require_credentials(settings)
                uploads = await self._upload_images(sort_images(images), dry_run=False)
                records = _upload_records(uploads)
                self._commit(
                    ctx,
                    lambda current: replace(
                        current,
                        cached_images=enrich_images(current.cached_images or images, records, _with_upload),
                        wechat_uploads=list(uploads),
                    ),
                )
                await self._persistence.save_images(session.source_url, ctx.session.cached_images)

        session = ctx.session
        translation_text = session.translation.text if session.translation else ""
        title = overrides.title or (session.title_task.text if session.title_task else "") or session.title
        content = DraftContent(
            title=title,
            html=session.formatted.html if session.formatted else "",
            source_url=overrides.source_url or session.source_url,
            author=overrides.author if overrides.author is not None else settings.author,
            digest=overrides.digest if overrides.digest is not None else derive_digest(translation_text),
            thumb_media_id=overrides.thumb_media_id or settings.thumb_media_id or first_media_id(uploads),
            fallback_text=translation_text,
        )
        draft = await self._create_draft(content, uploads, settings, dry_run=dry_run)
        self._commit(ctx, {"wechat_draft": draft})
        await self._save_history(ctx)
        log.info(
            "On-demand draft created",
            extra={"event": "workflow.draft_on_demand", "dry_run": draft.dry_run, "media_id": draft.media_id},
        )
        return draft

    # Store and broadcast plumbing

    def _current(self, ctx: _RunContext) -> Session:
        """Latest stored snapshot, or the run's own copy once the session is evicted or replaced."""
        stored = self._store.get(ctx.key)
        if stored is not None and ctx.owns(stored):
            ctx.session = stored
        return ctx.session

    def _commit(self, ctx: _RunContext, change: Mapping[str, Any] | Change) -> Session:
        apply: Change = change if callable(change) else (lambda session: replace(session, **change))
        applied = False
        replaced = False

        def updater(current: Session | None) -> Session | None:
            nonlocal applied, replaced
            if current is None:
                return None
            if not ctx.owns(current):
                replaced = True
                return None
            applied = True
            return apply(current)

        stored = self._store.update(ctx.key, updater)
        ctx.session = stored if applied and stored is not None else apply(ctx.session)
        # The key belongs to a newer capture now.
        if not replaced:
            self._broadcast(ctx.key, ctx.session)
        return ctx.session

    def _update_workflow(self, ctx: _RunContext, mutate: Callable[[WorkflowState], None]) -> Session:
        workflow = ctx.session.workflow.copy()
        mutate(workflow)
        return self._commit(ctx, {"workflow": workflow})

    def _broadcast(self, key: Hashable, session: Session) -> None:
        self._bus.publish(BusEvent(type=EVENT_CONTENT_UPDATED, key=key, payload=session.to_dict()))

    async def _save_history(self, ctx: _RunContext) -> None:
        history = await self._persistence.append_history(build_history_entry(ctx.session))
        self._bus.publish(BusEvent(type=EVENT_HISTORY_UPDATED, key=ctx.key, payload=history))


__all__ = ["WorkflowOrchestrator", "derive_digest", "first_media_id"]
