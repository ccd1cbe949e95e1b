from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from conftest import StubApiClient, StubPublisher, StubTranslator, auth_error, sample_session
from wash_drafts.app.messages import DraftOverrides
from wash_drafts.core.errors import ProviderError
from wash_drafts.events.bus import EVENT_CONTENT_UPDATED, EVENT_HISTORY_UPDATED
from wash_drafts.settings.store import Settings, SettingsStore
from wash_drafts.state.content_store import ContentStore
from wash_drafts.state.models import (
    STEP_COMPLETE,
    STEP_PREPARING,
    STEP_PUBLISHING,
    STEP_UPLOADING,
    TASK_DONE,
    TASK_ERROR,
    TASK_WORKING,
    CachedImage,
    WeChatUpload,
    WorkflowState,
)
from wash_drafts.storage.memory import InMemoryStore

KEY = "tab-1"


async def test_happy_path_runs_every_step(make_orchestrator, content_store: ContentStore, publisher: StubPublisher, api_client: StubApiClient) -> None:
    content_store.set(KEY, sample_session())
    orchestrator = make_orchestrator()

    session = await orchestrator.start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert session.workflow.current_step == STEP_COMPLETE
    assert all(step.status == WorkflowState.STEP_DONE for step in session.workflow.steps.values())
    assert session.translation.status == TASK_DONE
    assert session.title_task.text == "新的标题"
    assert publisher.upload_tokens == ["TOKEN_1"]
    assert publisher.draft_tokens == ["TOKEN_1"]
    assert len(api_client.calls) == 1
    assert session.wechat_draft.media_id == "DRAFT_1"
    assert "https://mmbiz.example/1.jpg" in session.formatted.html
    # 上传结果写回缓存图片，同时保留原有字段
    assert session.cached_images[0].media_id == "MEDIA_1"
    assert session.cached_images[0].alt == "house"
    assert content_store.get(KEY) == session


async def test_cover_defaults_to_first_upload(make_orchestrator, content_store: ContentStore, publisher: StubPublisher) -> None:
    content_store.set(KEY, sample_session())

    await make_orchestrator().start(KEY)

    assert publisher.drafts[0].thumb_media_id == "MEDIA_1"
    assert publisher.drafts[0].digest == "翻译后的第一段"


async def test_start_shares_the_pending_run(make_orchestrator, content_store: ContentStore, translator: StubTranslator) -> None:
    content_store.set(KEY, sample_session())
    orchestrator = make_orchestrator()

    first = orchestrator.start(KEY)
    second = orchestrator.start(KEY)

    assert first is second
    assert orchestrator.is_running(KEY)
    await first
    assert translator.translate_calls == 1
    assert not orchestrator.is_running(KEY)


async def test_start_without_session_raises(make_orchestrator) -> None:
    with pytest.raises(LookupError):
        make_orchestrator().start("missing")


async def test_missing_translation_key_fails_preparing(make_orchestrator, content_store: ContentStore, translator: StubTranslator, publisher: StubPublisher) -> None:
    translator.credentials = False
    content_store.set(KEY, sample_session())

    session = await make_orchestrator().start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_PREPARING
    assert session.workflow.steps[STEP_PREPARING].status == WorkflowState.STEP_ERROR
    assert "Gemini" in session.workflow.error
    assert session.translation.status == TASK_ERROR
    assert session.title_task.status == TASK_ERROR
    assert session.title_task.text == "Spring market"
    assert translator.translate_calls == 0
    assert publisher.upload_tokens == []


async def test_missing_publisher_credentials_fail_upload_without_network(
    make_orchestrator,
    content_store: ContentStore,
    settings_store: SettingsStore,
    api_client: StubApiClient,
) -> None:
    settings_store.update({"wechat_app_id": ""})
    content_store.set(KEY, sample_session())

    session = await make_orchestrator().start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_UPLOADING
    assert "wechat_app_id" in session.workflow.error
    assert api_client.calls == []
    # 翻译已完成的部分保留
    assert session.translation.status == TASK_DONE


async def test_upload_without_images_fails(make_orchestrator, content_store: ContentStore) -> None:
    items = [item for item in sample_session().items if item.kind != "image"]
    content_store.set(KEY, sample_session(items=items, cached_images=[]))

    session = await make_orchestrator().start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_UPLOADING


async def test_title_failure_is_a_warning(make_orchestrator, content_store: ContentStore, translator: StubTranslator) -> None:
    translator.title_error = ProviderError("title model unavailable")
    content_store.set(KEY, sample_session())

    session = await make_orchestrator().start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert session.workflow.steps[STEP_PREPARING].warning
    assert session.title_task.status == TASK_DONE
    assert session.title_task.text == "Spring market"
    assert session.title_task.warning == "title model unavailable"


async def test_auth_error_refreshes_once_and_succeeds(
    make_orchestrator,
    content_store: ContentStore,
    settings_store: SettingsStore,
    api_client: StubApiClient,
) -> None:
    publisher = StubPublisher(upload_failures=[auth_error(40001)])
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert publisher.upload_tokens == ["TOKEN_1", "TOKEN_2"]
    assert [call["force_refresh"] for call in api_client.calls] == [True, True]
    assert settings_store.get().access_token == "TOKEN_2"


async def test_second_auth_error_fails_the_step(make_orchestrator, content_store: ContentStore, api_client: StubApiClient) -> None:
    publisher = StubPublisher(upload_failures=[auth_error(42001), auth_error(42001)])
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_UPLOADING
    assert len(api_client.calls) == 2
    assert publisher.upload_tokens == ["TOKEN_1", "TOKEN_2"]


async def test_dry_run_skips_tokens(content_store: ContentStore, make_orchestrator, api_client: StubApiClient, publisher: StubPublisher) -> None:
    settings = SettingsStore(Settings(gemini_api_key="gemini-key", dry_run=True, thumb_media_id="THUMB"))
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(settings=settings).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert api_client.calls == []
    assert publisher.upload_tokens == [None]
    assert session.wechat_draft.dry_run is True
    assert publisher.drafts[0].thumb_media_id == "THUMB"


async def test_eviction_mid_run_keeps_going(make_orchestrator, content_store: ContentStore, persistence: InMemoryStore) -> None:
    class EvictingTranslator(StubTranslator):
        async def translate_article(self, markdown: str, **kwargs) -> object:
            content_store.clear(KEY)
            return await super().translate_article(markdown, **kwargs)

    content_store.set(KEY, sample_session())

    session = await make_orchestrator(translator=EvictingTranslator()).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert content_store.get(KEY) is None
    history = await persistence.load_history()
    assert history[0]["source_url"] == "https://example.com/post"
    assert history[0]["wechat_draft"]["media_id"] == "DRAFT_1"


async def test_every_change_is_broadcast(make_orchestrator, content_store: ContentStore, bus) -> None:
    received = []
    bus.subscribe(received.append)
    content_store.set(KEY, sample_session())

    await make_orchestrator().start(KEY)

    types = {event.type for event in received}
    assert EVENT_CONTENT_UPDATED in types
    assert EVENT_HISTORY_UPDATED in types
    last_content = [event for event in received if event.type == EVENT_CONTENT_UPDATED][-1]
    assert last_content.key == KEY
    assert last_content.payload["workflow"]["status"] == WorkflowState.STATUS_SUCCESS


async def test_refresh_state_rebroadcasts_latest(make_orchestrator, content_store: ContentStore, bus) -> None:
    received = []
    bus.subscribe(received.append)
    content_store.set(KEY, sample_session())

    session = make_orchestrator().refresh_state()

    assert session is content_store.get(KEY)
    assert [event.key for event in received] == [KEY]


async def test_publish_on_demand_uses_overrides(make_orchestrator, content_store: ContentStore, publisher: StubPublisher) -> None:
    content_store.set(KEY, sample_session())
    orchestrator = make_orchestrator()
    await orchestrator.start(KEY)
    before = content_store.get(KEY).workflow

    draft = await orchestrator.publish_on_demand(KEY, DraftOverrides(title="手动标题", author="编辑部"))

    assert draft.media_id == "DRAFT_1"
    assert publisher.drafts[-1].title == "手动标题"
    assert publisher.drafts[-1].author == "编辑部"
    assert content_store.get(KEY).workflow == before


async def test_publish_on_demand_is_single_flight(make_orchestrator, content_store: ContentStore, publisher: StubPublisher) -> None:
    content_store.set(KEY, sample_session())
    orchestrator = make_orchestrator()
    await orchestrator.start(KEY)
    publisher.drafts.clear()

    first, second = await asyncio.gather(
        orchestrator.publish_on_demand(KEY, DraftOverrides(dry_run=True)),
        orchestrator.publish_on_demand(KEY, DraftOverrides(dry_run=True)),
    )

    assert first is second
    assert len(publisher.drafts) == 1


async def test_recapture_mid_run_is_left_alone(make_orchestrator, content_store: ContentStore, bus) -> None:
    replacement = sample_session(source_url="https://example.com/other", title="Other article")

    class RecapturingTranslator(StubTranslator):
        async def translate_article(self, markdown: str, **kwargs) -> object:
            content_store.set(KEY, replacement)
            return await super().translate_article(markdown, **kwargs)

    received = []
    content_store.set(KEY, sample_session())
    orchestrator = make_orchestrator(translator=RecapturingTranslator())
    bus.subscribe(received.append)

    session = await orchestrator.start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert session.source_url == "https://example.com/post"
    assert content_store.get(KEY) is replacement
    assert replacement.translation is None
    assert replacement.workflow.status == WorkflowState.STATUS_IDLE
    # 新内容被写入后，旧流程不再推送该键的快照
    content_events = [event for event in received if event.type == EVENT_CONTENT_UPDATED]
    assert content_events[-1].payload["translation"]["status"] == TASK_WORKING


async def test_draft_auth_error_refreshes_once_and_succeeds(
    make_orchestrator,
    content_store: ContentStore,
    api_client: StubApiClient,
) -> None:
    publisher = StubPublisher(draft_failures=[auth_error(40014)])
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert publisher.draft_tokens == ["TOKEN_1", "TOKEN_2"]
    assert [call["force_refresh"] for call in api_client.calls] == [True, True]
    assert session.wechat_draft.media_id == "DRAFT_1"


async def test_rejected_draft_fails_publishing_and_keeps_progress(
    make_orchestrator,
    content_store: ContentStore,
    api_client: StubApiClient,
) -> None:
    publisher = StubPublisher(draft_failures=[ProviderError("invalid content", code=45166)])
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_PUBLISHING
    assert session.workflow.error == "invalid content"
    assert session.workflow.steps[STEP_PUBLISHING].status == WorkflowState.STEP_ERROR
    assert session.translation.status == TASK_DONE
    assert session.formatted is not None and session.formatted.html
    assert session.wechat_draft is None
    assert publisher.draft_tokens == ["TOKEN_1"]
    assert len(api_client.calls) == 1


async def test_publishing_without_cover_fails(make_orchestrator, content_store: ContentStore) -> None:
    class NoMediaPublisher(StubPublisher):
        async def upload_images(self, images, **kwargs) -> list[WeChatUpload]:
            uploads = await super().upload_images(images, **kwargs)
            return [replace(upload, media_id="") for upload in uploads]

    publisher = NoMediaPublisher()
    content_store.set(KEY, sample_session())

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_ERROR
    assert session.workflow.current_step == STEP_PUBLISHING
    assert "thumb_media_id" in session.workflow.error
    assert publisher.drafts == []


async def test_auth_retry_resends_only_the_rejected_image(
    make_orchestrator,
    content_store: ContentStore,
    api_client: StubApiClient,
) -> None:
    class RecordingPublisher(StubPublisher):
        def __init__(self) -> None:
            super().__init__()
            self.sent: list[str] = []

        async def upload_images(self, images, **kwargs) -> list[WeChatUpload]:
            self.sent.extend(image.url for image in images)
            if len(self.sent) == 2:
                raise auth_error(40001)
            return await super().upload_images(images, **kwargs)

    publisher = RecordingPublisher()
    images = [
        CachedImage(url="https://example.com/a.jpg", sequence=1),
        CachedImage(url="https://example.com/b.jpg", sequence=2),
    ]
    content_store.set(KEY, sample_session(cached_images=images))

    session = await make_orchestrator(publisher=publisher).start(KEY)

    assert session.workflow.status == WorkflowState.STATUS_SUCCESS
    assert publisher.sent == ["https://example.com/a.jpg", "https://example.com/b.jpg", "https://example.com/b.jpg"]
    assert [upload.url for upload in session.wechat_uploads] == ["https://example.com/a.jpg", "https://example.com/b.jpg"]
    assert publisher.upload_tokens == ["TOKEN_1", "TOKEN_2"]
    assert len(api_client.calls) == 2
