"""WeChat image upload implementation."""

from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
from typing import Sequence

import requests

from ...core.errors import TransportError
from ...services.wechat_components import image_filename
from ...settings.loader import DEFAULT_USER_AGENT
from ...state.models import CachedImage, WeChatUpload
from ...utils.logging import get_logger
from .api import API_BASE, WeChatApiError, send

LOGGER = get_logger(__name__)


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Return ``(bytes, mime type)`` for a base64 ``data:`` URI."""
    header, sep, encoded = data_url.partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("not a base64 data URL")
    mime_type = header[5:].split(";", 1)[0] or "image/jpeg"
    try:
        return base64.b64decode(encoded, validate=False), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 payload") from exc


class WeChatMediaUploader:
    """Uploads article images to the WeChat permanent material library."""

    _UPLOAD_URL = f"{API_BASE}/material/add_material"

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        download_timeout: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._user_agent = user_agent

    async def upload_images(self, images: Sequence[CachedImage], access_token: str) -> list[WeChatUpload]:
        """Upload ``images`` in the given order, stopping at the first failure."""
        results: list[WeChatUpload] = []
        for position, image in enumerate(images, start=1):
            filename = image_filename(image, position)
            result = await asyncio.to_thread(self.upload_single, image, access_token, filename)
            results.append(result)
        return results

    def upload_single(self, image: CachedImage, access_token: str, filename: str) -> WeChatUpload:
        content, mime_type = self._resolve_bytes(image)
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "image/jpeg"
        data = send(
            "POST",
            f"{self._UPLOAD_URL}?access_token={access_token}&type=image",
            timeout=self._timeout,
            action="上传图片",
            context={"image": image.url, "filename": filename},
            files={"media": (filename, content, mime_type)},
        )

        remote_url = data.get("url")
        media_id = data.get("media_id")
        if not remote_url or not media_id:
            raise WeChatApiError(
                "上传成功但缺少 URL 或 media_id",
                details={"image": image.url, "response": data},
            )
        LOGGER.debug(
            "Uploaded image",
            extra={"event": "wechat.upload", "upload_name": filename, "media_id": media_id},
        )
        return WeChatUpload(url=image.url, local_src=image.local_src, remote_url=remote_url, media_id=media_id)

    def _resolve_bytes(self, image: CachedImage) -> tuple[bytes, str | None]:
        if image.data_url:
            try:
                return decode_data_url(image.data_url)
            except ValueError:
                LOGGER.debug(
                    "Cached image data unusable, downloading instead",
                    extra={"event": "wechat.upload", "image": image.url},
                )
        try:
            response = requests.get(
                image.url,
                timeout=self._download_timeout,
                headers={"User-Agent": self._user_agent},
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise TransportError("下载图片失败", details={"image": image.url, "reason": str(exc)}) from exc
        mime_type = response.headers.get("Content-Type", "").split(";", 1)[0] or None
        return response.content, mime_type


__all__ = ["WeChatMediaUploader", "decode_data_url"]
