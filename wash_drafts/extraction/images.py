"""Background download of article images into data URLs."""

from __future__ import annotations

import asyncio
import base64
from dataclasses import replace
from typing import Sequence

import requests

from ..settings.loader import DEFAULT_USER_AGENT
from ..state.models import CachedImage
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)


def to_data_url(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


class HttpImageFetcher:
    """Downloads each image independently; a failure only marks that image."""

    def __init__(self, *, timeout: float = 15.0, user_agent: str = DEFAULT_USER_AGENT) -> None:
        self._timeout = timeout
        self._user_agent = user_agent

    async def fetch(self, images: Sequence[CachedImage]) -> list[CachedImage]:
        results: list[CachedImage] = []
        for image in images:
            if image.data_url:
                results.append(image)
                continue
            results.append(await asyncio.to_thread(self.fetch_single, image))
        return results

    def fetch_single(self, image: CachedImage) -> CachedImage:
        try:
            response = requests.get(
                image.url,
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            LOGGER.warning(
                "Image download failed",
                extra={"event": "images.fetch_failed", "image": image.url, "error": str(exc)},
            )
            return replace(image, error=str(exc))
        mime_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip() or "image/jpeg"
        return replace(image, data_url=to_data_url(response.content, mime_type), error=None)


__all__ = ["HttpImageFetcher", "to_data_url"]
