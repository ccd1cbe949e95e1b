"""WeChat publisher: image upload plus draft submission."""

from __future__ import annotations

import asyncio
from typing import Iterable, Sequence

from ...core.errors import ConfigError
from ...services.wechat_components import (
    DraftMetadata,
    PayloadBuilder,
    image_filename,
    resolve_content,
    resolve_title,
)
from ...state.models import CachedImage, WeChatDraft, WeChatUpload
from ...utils.logging import get_logger
from ..base import DraftContent
from .draft import WeChatDraftClient
from .media import WeChatMediaUploader

LOGGER = get_logger(__name__)

DRY_RUN_MEDIA_ID = "<dry-run>"


class WeChatPublisher:
    """Coordinates image upload, source replacement and draft submission.

    Without an access token, or with ``dry_run``, both calls are simulated
    locally so later stages still receive usable results.
    """

    def __init__(
        self,
        media_uploader: WeChatMediaUploader,
        draft_client: WeChatDraftClient,
        payload_builder: PayloadBuilder | None = None,
        *,
        need_open_comment: bool = False,
        only_fans_can_comment: bool = False,
    ) -> None:
        self._media_uploader = media_uploader
        self._draft_client = draft_client
        self._payload_builder = payload_builder or PayloadBuilder()
        self._need_open_comment = need_open_comment
        self._only_fans_can_comment = only_fans_can_comment

    async def upload_images(
        self,
        images: Sequence[CachedImage],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> list[WeChatUpload]:
        if not images:
            return []
        if dry_run or not access_token:
            return list(self._simulate_uploads(images))
        return await self._media_uploader.upload_images(images, access_token)

    async def create_draft(
        self,
        content: DraftContent,
        uploads: Sequence[WeChatUpload],
        *,
        access_token: str | None,
        dry_run: bool = False,
    ) -> WeChatDraft:
        simulate = dry_run or not access_token
        thumb_media_id = content.thumb_media_id or next(
            (upload.media_id for upload in uploads if upload.media_id), ""
        )
        if not thumb_media_id and not simulate:
            raise ConfigError("缺少封面图片 thumb_media_id，无法创建草稿", setting="thumb_media_id")

        metadata = DraftMetadata(
            title=resolve_title(content.title, content.fallback_text),
            thumb_media_id=thumb_media_id,
            author=content.author,
            digest=content.digest,
            source_url=content.source_url,
            need_open_comment=self._need_open_comment,
            only_fans_can_comment=self._only_fans_can_comment,
        )
        html = resolve_content(content.html, content.fallback_text, uploads)
        payload = self._payload_builder.build(metadata, html)

        if simulate:
            LOGGER.info("Simulated draft creation", extra={"event": "wechat.draft", "dry_run": True})
            return WeChatDraft(media_id=DRY_RUN_MEDIA_ID, payload=payload, dry_run=True)

        response = await asyncio.to_thread(self._draft_client.create_draft, payload, access_token)
        media_id = str(response["media_id"])
        LOGGER.info("Draft created", extra={"event": "wechat.draft", "media_id": media_id})
        return WeChatDraft(media_id=media_id, payload=payload, dry_run=False)

    def _simulate_uploads(self, images: Sequence[CachedImage]) -> Iterable[WeChatUpload]:
        for position, image in enumerate(images, start=1):
            filename = image_filename(image, position)
            yield WeChatUpload(
                url=image.url,
                local_src=image.local_src,
                remote_url=image.local_src,
                media_id=f"<dry-run:{filename}>",
            )


__all__ = ["DRY_RUN_MEDIA_ID", "WeChatPublisher"]
