"""Structured content extraction from article pages."""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any, Sequence

import requests
from bs4 import BeautifulSoup, Tag

from ..core.errors import ExtractionError, TransportError
from ..platforms.base import PageContext
from ..settings.loader import DEFAULT_USER_AGENT
from ..state.models import ContentItem
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

_DOM_SELECTOR = ".core-paragraph, h2, h3, h4, figure"
_HEADING_CLASSES = {"htWOzS", "wp-block-heading"}


def fetch_page(
    url: str,
    *,
    timeout: float = 15.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> PageContext:
    """Download ``url`` and wrap it as a :class:`PageContext`."""
    try:
        response = requests.get(url, timeout=timeout, headers={"User-Agent": user_agent})
        response.raise_for_status()
    except requests.RequestException as exc:
        raise TransportError("Failed to fetch page", details={"url": url, "reason": str(exc)}) from exc
    return PageContext(url=response.url or url, html=response.text)


def page_title(soup: BeautifulSoup) -> str:
    meta = soup.find("meta", attrs={"property": "og:title"})
    if meta and meta.get("content"):
        return str(meta["content"]).strip()
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    heading = soup.find("h1")
    return heading.get_text(" ", strip=True) if heading else ""


def extract_article_content(html: str, base_url: str) -> list[ContentItem]:
    soup = BeautifulSoup(html, "html.parser")
    hero_entry: ContentItem | None = None
    next_script = soup.find("script", id="__NEXT_DATA__")
    if next_script and next_script.string:
        try:
            data = json.loads(next_script.string)
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring malformed __NEXT_DATA__", extra={"event": "extract.next_data"})
        else:
            post = _post_data(data)
            hero_entry = _hero_entry(_hero_node(post), base_url)
            blocks = post.get("editorBlocks")
            if isinstance(blocks, list) and blocks:
                return _extract_from_editor_blocks(blocks, base_url, hero=hero_entry)

    return _extract_from_dom(soup, base_url, hero=hero_entry)


def _post_data(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    post = data.get("props", {}).get("pageProps", {}).get("post", {})
    return post if isinstance(post, dict) else {}


def _hero_node(post: dict[str, Any]) -> dict[str, Any] | None:
    hide_featured = post.get("hideFeaturedImageOnArticlePage")
    if isinstance(hide_featured, dict):
        hide_featured = hide_featured.get("hidefeaturedimage")
    if hide_featured:
        return None
    candidate = post.get("featuredImage") or {}
    if isinstance(candidate, dict) and "node" in candidate:
        candidate = candidate.get("node")
    return candidate if isinstance(candidate, dict) else None


def _hero_entry(hero_data: dict[str, Any] | None, base_url: str) -> ContentItem | None:
    if not hero_data:
        return None
    source = str(hero_data.get("sourceUrl") or "").strip()
    if not source:
        return None
    return ContentItem(
        kind=ContentItem.KIND_IMAGE,
        sequence=1,
        url=urllib.parse.urljoin(base_url, source),
        alt=str(hero_data.get("altText") or "").strip(),
        caption=_strip_html(str(hero_data.get("caption") or "")),
        credit=str(hero_data.get("imageCredit") or "").strip(),
    )


def _is_article_heading(node: Tag) -> bool:
    classes = node.get("class") or []
    if any(cls in _HEADING_CLASSES or cls.startswith("core-heading") for cls in classes):
        return True
    return node.find_parent("article") is not None


def _extract_from_dom(
    soup: BeautifulSoup,
    base_url: str,
    hero: ContentItem | None = None,
) -> list[ContentItem]:
    content: list[ContentItem] = []
    image_counter = 0
    if hero is not None:
        image_counter = 1
        content.append(hero)
    for node in soup.select(_DOM_SELECTOR):
        if node.name in {"h2", "h3", "h4"}:
            if not _is_article_heading(node):
                continue
            heading_text = node.get_text(" ", strip=True)
            if heading_text:
                content.append(
                    ContentItem(kind=ContentItem.KIND_HEADING, level=int(node.name[1]), text=heading_text)
                )
            continue

        if node.name == "figure":
            img = node.find("img")
            if not img:
                continue
            src = (img.get("src") or img.get("data-src") or "").strip()
            if not src:
                continue
            image_counter += 1
            caption_node = node.find("figcaption")
            caption = (caption_node or node).get_text(" ", strip=True)
            content.append(
                ContentItem(
                    kind=ContentItem.KIND_IMAGE,
                    sequence=image_counter,
                    url=urllib.parse.urljoin(base_url, src),
                    alt=(img.get("alt") or "").strip(),
                    caption=caption,
                )
            )
            continue

        text = node.get_text(" ", strip=True)
        if text:
            content.append(ContentItem(kind=ContentItem.KIND_PARAGRAPH, text=text))
    return content


def _extract_from_editor_blocks(
    blocks: Sequence[dict[str, Any]],
    base_url: str,
    hero: ContentItem | None = None,
) -> list[ContentItem]:
    content: list[ContentItem] = []
    image_counter = 0
    if hero is not None:
        content.append(hero)
        image_counter = hero.sequence or 1
    for block in blocks:
        if not isinstance(block, dict):
            continue
        typename = block.get("__typename")
        attributes = block.get("attributes") or {}
        if typename == "CoreHeading":
            text = _strip_html(str(attributes.get("content") or ""))
            if not text:
                continue
            try:
                level = int(attributes.get("level", 2))
            except (TypeError, ValueError):
                level = 2
            content.append(ContentItem(kind=ContentItem.KIND_HEADING, level=level, text=text))
        elif typename == "CoreParagraph":
            text = _strip_html(str(block.get("renderedHtml") or attributes.get("content") or ""))
            if text:
                content.append(ContentItem(kind=ContentItem.KIND_PARAGRAPH, text=text))
        elif typename == "CoreImage":
            src = str(attributes.get("src") or attributes.get("url") or "").strip()
            if not src:
                continue
            image_counter += 1
            credit = block.get("imageCredit")
            content.append(
                ContentItem(
                    kind=ContentItem.KIND_IMAGE,
                    sequence=image_counter,
                    url=urllib.parse.urljoin(base_url, src),
                    alt=str(attributes.get("alt") or "").strip(),
                    caption=_strip_html(str(attributes.get("caption") or "")),
                    credit=credit.strip() if isinstance(credit, str) else "",
                )
            )
    return content


def _strip_html(text: str) -> str:
    if not text:
        return ""
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True)


class HtmlExtractor:
    """Extractor backed by BeautifulSoup."""

    async def extract(self, page: PageContext) -> list[ContentItem]:
        items = await asyncio.to_thread(extract_article_content, page.html, page.url)
        if not any(item.kind != ContentItem.KIND_IMAGE for item in items):
            raise ExtractionError("No article content found", details={"url": page.url})
        LOGGER.info(
            "Extracted article content",
            extra={"event": "extract.done", "url": page.url, "items": len(items)},
        )
        return items


__all__ = ["HtmlExtractor", "extract_article_content", "fetch_page", "page_title"]
