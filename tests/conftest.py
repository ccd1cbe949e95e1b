from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Sequence

import pytest

from wash_drafts.app.orchestrator import WorkflowOrchestrator
from wash_drafts.events.bus import BroadcastBus
from wash_drafts.platforms.base import DraftContent, TitleResult, TranslationResult
from wash_drafts.platforms.wechat.api import AccessTokenResponse, WeChatApiError
from wash_drafts.platforms.wechat.retry import RetryPolicy
from wash_drafts.platforms.wechat.tokens import TokenManager
from wash_drafts.services.formatter import WeChatFormatter
from wash_drafts.settings.store import Settings, SettingsStore
from wash_drafts.state.content_store import ContentStore
from wash_drafts.state.models import CachedImage, ContentItem, Session, WeChatDraft, WeChatUpload
from wash_drafts.storage.memory import InMemoryStore

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class StubTranslator:
    def __init__(
        self,
        *,
        credentials: bool = True,
        text: str = "翻译后的第一段\n\n{{[Image 1]}}\n\n第二段",
        title: str = "新的标题",
        translate_error: Exception | None = None,
        title_error: Exception | None = None,
    ) -> None:
        self.credentials = credentials
        self.text = text
        self.title = title
        self.translate_error = translate_error
        self.title_error = title_error
        self.translate_calls = 0
        self.title_calls = 0
        self.settings: list[Settings] = []

    def has_credentials(self) -> bool:
        return self.credentials

    def update_settings(self, settings: Settings) -> None:
        self.settings.append(settings)

    async def translate_article(self, markdown: str, *, source_url: str = "", fallback_title: str = "") -> TranslationResult:
        self.translate_calls += 1
        if self.translate_error is not None:
            raise self.translate_error
        return TranslationResult(text=self.text, conversation=[{"role": "user", "parts": [{"text": markdown}]}])

    async def generate_title(self, context: Sequence[Any], *, source_url: str = "", fallback_title: str = "") -> TitleResult:
        self.title_calls += 1
        if self.title_error is not None:
            raise self.title_error
        return TitleResult(text=self.title)


class StubPublisher:
    """Records tokens; ``upload_failures`` are raised by successive real uploads."""

    def __init__(self, *, upload_failures: Sequence[Exception] = (), draft_failures: Sequence[Exception] = ()) -> None:
        self.upload_failures = list(upload_failures)
        self.draft_failures = list(draft_failures)
        self.upload_tokens: list[str | None] = []
        self.draft_tokens: list[str | None] = []
        self.drafts: list[DraftContent] = []

    async def upload_images(
        self,
        images: Sequence[CachedImage],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> list[WeChatUpload]:
        self.upload_tokens.append(access_token)
        if not dry_run and self.upload_failures:
            raise self.upload_failures.pop(0)
        return [
            WeChatUpload(
                url=image.url,
                local_src=image.local_src,
                remote_url=f"https://mmbiz.example/{index}.jpg",
                media_id=f"MEDIA_{index}",
            )
            for index, image in enumerate(images, start=1)
        ]

    async def create_draft(
        self,
        content: DraftContent,
        uploads: Sequence[WeChatUpload],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> WeChatDraft:
        self.draft_tokens.append(access_token)
        self.drafts.append(content)
        if not dry_run and self.draft_failures:
            raise self.draft_failures.pop(0)
        media_id = "<dry-run>" if dry_run else "DRAFT_1"
        return WeChatDraft(media_id=media_id, payload={"title": content.title}, dry_run=dry_run)


class StubApiClient:
    def __init__(self, *, tokens: Sequence[str] = ("TOKEN_1", "TOKEN_2", "TOKEN_3"), expires_in: int = 7200) -> None:
        self._tokens = list(tokens)
        self.expires_in = expires_in
        self.calls: list[dict[str, Any]] = []

    def fetch_access_token(self, app_id: str, app_secret: str, *, force_refresh: bool = False) -> AccessTokenResponse:
        self.calls.append({"app_id": app_id, "force_refresh": force_refresh})
        token = self._tokens[min(len(self.calls), len(self._tokens)) - 1]
        return AccessTokenResponse(token=token, expires_at=NOW + timedelta(seconds=self.expires_in))


class StubFetcher:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def fetch(self, images: Sequence[CachedImage]) -> list[CachedImage]:
        self.calls.append([image.url for image in images])
        return [
            CachedImage(url=image.url, sequence=image.sequence, data_url="data:image/jpeg;base64,AAAA")
            for image in images
        ]


def auth_error(code: int = 40001) -> WeChatApiError:
    return WeChatApiError("上传图片被微信拒绝", code=code)


def sample_items() -> list[ContentItem]:
    return [
        ContentItem(kind=ContentItem.KIND_HEADING, level=2, text="Market update"),
        ContentItem(kind=ContentItem.KIND_PARAGRAPH, text="Prices rose in March."),
        ContentItem(kind=ContentItem.KIND_IMAGE, sequence=1, url="https://example.com/a.jpg", alt="house"),
        ContentItem(kind=ContentItem.KIND_PARAGRAPH, text="Inventory is still tight."),
    ]


def sample_session(**overrides: Any) -> Session:
    values: dict[str, Any] = {
        "source_url": "https://example.com/post",
        "items": sample_items(),
        "title": "Spring market",
        "cached_images": [CachedImage(url="https://example.com/a.jpg", sequence=1, alt="house")],
    }
    values.update(overrides)
    return Session.create(**values)


@pytest.fixture
def credentials() -> Settings:
    return Settings(
        gemini_api_key="gemini-key",
        wechat_app_id="wx123456",
        wechat_app_secret="secret",
    )


@pytest.fixture
def settings_store(credentials: Settings) -> SettingsStore:
    return SettingsStore(credentials)


@pytest.fixture
def api_client() -> StubApiClient:
    return StubApiClient()


@pytest.fixture
def tokens(settings_store: SettingsStore, api_client: StubApiClient) -> TokenManager:
    return TokenManager(settings_store, api_client, clock=lambda: NOW)


@pytest.fixture
def bus() -> BroadcastBus:
    return BroadcastBus()


@pytest.fixture
def content_store() -> ContentStore:
    return ContentStore()


@pytest.fixture
def persistence() -> InMemoryStore:
    return InMemoryStore(history_limit=5)


@pytest.fixture
def translator() -> StubTranslator:
    return StubTranslator()


@pytest.fixture
def publisher() -> StubPublisher:
    return StubPublisher()


@pytest.fixture
def make_orchestrator(
    content_store: ContentStore,
    bus: BroadcastBus,
    settings_store: SettingsStore,
    translator: StubTranslator,
    publisher: StubPublisher,
    persistence: InMemoryStore,
    tokens: TokenManager,
):
    def factory(**overrides: Any) -> WorkflowOrchestrator:
        values: dict[str, Any] = {
            "store": content_store,
            "bus": bus,
            "settings": settings_store,
            "translator": translator,
            "formatter": WeChatFormatter(),
            "publisher": publisher,
            "persistence": persistence,
            "retry": RetryPolicy(tokens),
        }
        values.update(overrides)
        return WorkflowOrchestrator(**values)

    return factory

