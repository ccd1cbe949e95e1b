from __future__ import annotations

import json

import pytest
import requests

from wash_drafts.core.errors import ExtractionError, TransportError
from wash_drafts.extraction.extractor import HtmlExtractor, extract_article_content, fetch_page
from wash_drafts.extraction.images import HttpImageFetcher
from wash_drafts.platforms.base import PageContext
from wash_drafts.state.models import CachedImage, ContentItem


def _html_with_blocks(blocks, featured=None):
    post = {"editorBlocks": blocks}
    if featured is not None:
        post["featuredImage"] = {"node": featured}
    next_data = {"props": {"pageProps": {"post": post}}}
    return f"""
    <html>
      <head><title>Test</title></head>
      <body>
        <script id=\"__NEXT_DATA__\" type=\"application/json\">{json.dumps(next_data)}</script>
      </body>
    </html>
    """


def test_extract_uses_next_data_blocks() -> None:
    html = _html_with_blocks(
        [
            {"__typename": "CoreHeading", "attributes": {"content": "<strong>Overview</strong>", "level": 3}},
            {"__typename": "CoreParagraph", "renderedHtml": "<p>First paragraph</p>"},
            {"__typename": "CoreImage", "attributes": {"src": "/images/photo.jpg", "alt": "Photo", "caption": "<em>Nice</em>"}},
        ],
        featured={"sourceUrl": "https://cdn.example.com/hero.jpg", "altText": "Hero"},
    )

    items = extract_article_content(html, "https://www.example.com/news/post")

    assert [item.kind for item in items] == ["image", "heading", "paragraph", "image"]
    assert items[0].sequence == 1
    assert items[1].text == "Overview"
    assert items[1].level == 3
    assert items[3].url == "https://www.example.com/images/photo.jpg"
    assert items[3].sequence == 2
    assert items[3].caption == "Nice"


def test_extract_falls_back_to_dom() -> None:
    html = """
    <html><body>
      <h2>Site navigation</h2>
      <article>
        <h2>Market snapshot</h2>
        <p class="core-paragraph">Prices rose.</p>
        <figure><img src="/a.jpg" alt="A"><figcaption>Caption A</figcaption></figure>
      </article>
    </body></html>
    """

    items = extract_article_content(html, "https://www.example.com/post")

    assert [item.kind for item in items] == ["heading", "paragraph", "image"]
    assert items[0].text == "Market snapshot"
    assert items[2].url == "https://www.example.com/a.jpg"
    assert items[2].caption == "Caption A"


async def test_extractor_rejects_pages_without_text() -> None:
    page = PageContext(url="https://www.example.com/empty", html="<html><body><p>nav</p></body></html>")

    with pytest.raises(ExtractionError):
        await HtmlExtractor().extract(page)


def test_fetch_page_wraps_request_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(requests, "get", boom)

    with pytest.raises(TransportError):
        fetch_page("https://www.example.com/post")


class _Response:
    def __init__(self, content: bytes, content_type: str) -> None:
        self.content = content
        self.headers = {"Content-Type": content_type}

    def raise_for_status(self) -> None:
        return None


async def test_image_fetcher_marks_failures_per_image(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_get(url, **kwargs):
        if url.endswith("bad.jpg"):
            raise requests.ConnectionError("timeout")
        return _Response(b"\x89PNG", "image/png; charset=binary")

    monkeypatch.setattr(requests, "get", fake_get)
    images = [
        CachedImage(url="https://x/good.jpg", sequence=1),
        CachedImage(url="https://x/bad.jpg", sequence=2),
        CachedImage(url="https://x/cached.jpg", sequence=3, data_url="data:image/jpeg;base64,AA"),
    ]

    fetched = await HttpImageFetcher().fetch(images)

    assert fetched[0].data_url.startswith("data:image/png;base64,")
    assert fetched[1].data_url is None
    assert "timeout" in fetched[1].error
    assert fetched[2] is images[2]


def test_content_item_round_trip_drops_empty_fields() -> None:
    item = ContentItem.from_dict({"kind": "paragraph", "text": "hi", "unknown": 1})

    assert item.to_dict() == {"kind": "paragraph", "text": "hi"}
