"""Render translated articles into WeChat-ready HTML."""

from __future__ import annotations

import re
from typing import Any, Sequence

from bs4 import BeautifulSoup, Tag
from markdown import markdown

from ..ai.title_generator import render_items_markdown
from ..state.images import sort_images
from ..state.models import CachedImage, ContentItem, FormattedContent
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

ARTICLE_STYLE = (
    "margin:0 auto;padding:0 16px 48px;max-width:680px;"
    "font-family:'PingFang SC','Microsoft YaHei','Helvetica Neue',Arial,sans-serif;"
    "font-size:16px;line-height:1.75;color:#333333;background-color:#ffffff;word-break:break-word"
)
PARAGRAPH_STYLE = (
    "font-size:16px;color:#333333;line-height:1.75;letter-spacing:0.4px;"
    "margin:0 0 1em;text-align:justify;text-justify:inter-ideograph"
)
BLOCKQUOTE_STYLE = (
    "margin:1.6em 0;padding:0.4em 1.2em;border-left:4px solid #d1d5db;"
    "background-color:#f8fafc;color:#4b5563;line-height:1.75;font-style:italic"
)
LIST_STYLE = "font-size:16px;color:#333333;line-height:1.7;letter-spacing:0.4px;margin:0 0 1.2em 1.4em;padding:0"
LIST_ITEM_STYLE = "margin:0.25em 0"
IMAGE_WRAPPER_STYLE = "margin:1.5em 0;text-align:center"
IMAGE_STYLE = "max-width:100%;border-radius:12px;box-shadow:0 6px 18px rgba(31,41,55,0.18);display:inline-block"
IMAGE_CAPTION_STYLE = "margin:0.5em 0 0;font-size:14px;color:#6b7280;line-height:1.6;text-align:center"
HEADING_STYLES = {
    2: "font-size:22px;color:#1f2937;line-height:1.4;margin:1.8em 0 0.8em;letter-spacing:0.3px;font-weight:600",
    3: "font-size:19px;color:#1f2937;line-height:1.5;margin:1.6em 0 0.8em;letter-spacing:0.2px;font-weight:600",
    4: "font-size:17px;color:#1f2937;line-height:1.55;margin:1.4em 0 0.6em;letter-spacing:0.2px;font-weight:600",
}
DEFAULT_IMAGE_ALT = "文章插图"

_PLACEHOLDER_PATTERN = re.compile(r"{{\s*\[Image\s+(\d+)\]\s*}}", re.IGNORECASE)
_BRACKET_PLACEHOLDER_PATTERN = re.compile(r"\[\[IMAGE_(\d+)\]\]", re.IGNORECASE)
_BLOCK_LEADING_WHITESPACE = re.compile(r"(<(?:p|h[1-6]|blockquote|li|figure)[^>]*>)\s+", re.IGNORECASE)


def is_http_url(value: str | None) -> bool:
    return bool(value) and value.lower().startswith(("http://", "https://"))


def image_source(image: CachedImage) -> str:
    """Prefer the uploaded URL; fall back to the original one."""
    if is_http_url(image.remote_url):
        return image.remote_url or ""
    return image.url


class WeChatFormatter:
    """Turns translated markdown text into lightly styled HTML."""

    async def format(
        self,
        article_text: str,
        items: Sequence[ContentItem],
        images: Sequence[CachedImage],
    ) -> FormattedContent:
        ordered = sort_images(images)
        text = (article_text or "").strip() or render_items_markdown(items)
        markdown_text = self.inject_images(text, ordered)
        html = markdown(markdown_text, extensions=["extra"])
        article, blocks = self._style(html, ordered)
        rendered = self._strip_block_leading_whitespace(str(article))
        LOGGER.debug(
            "Formatted article",
            extra={"event": "formatter.render", "blocks": len(blocks), "images": len(ordered)},
        )
        return FormattedContent(html=rendered, markdown=markdown_text, blocks=blocks)

    def inject_images(self, text: str, images: Sequence[CachedImage]) -> str:
        """Replace image placeholders with markdown images and append unreferenced ones."""
        text = _BRACKET_PLACEHOLDER_PATTERN.sub(lambda match: f"{{{{[Image {match.group(1)}]}}}}", text)
        used: set[str] = set()

        def replacement(match: re.Match[str]) -> str:
            image = self._lookup(int(match.group(1)), images)
            if image is None:
                return ""
            used.add(image.url)
            return f"\n\n{self._markdown_image(image)}\n\n"

        updated = _PLACEHOLDER_PATTERN.sub(replacement, text)
        extras = [image for image in images if image.url not in used]
        if extras:
            updated = updated.rstrip() + "\n\n" + "\n\n".join(self._markdown_image(image) for image in extras)
        return re.sub(r"\n{3,}", "\n\n", updated).strip() + "\n"

    @staticmethod
    def _lookup(number: int, images: Sequence[CachedImage]) -> CachedImage | None:
        for image in images:
            if image.sequence == number:
                return image
        if 1 <= number <= len(images):
            return images[number - 1]
        return None

    @staticmethod
    def _markdown_image(image: CachedImage) -> str:
        alt = (image.alt or DEFAULT_IMAGE_ALT).replace("[", "").replace("]", "")
        return f"![{alt}]({image_source(image)})"

    def _style(self, html: str, images: Sequence[CachedImage]) -> tuple[Tag, list[dict[str, Any]]]:
        by_source = {image_source(image): image for image in images}
        soup = BeautifulSoup(f'<article style="{ARTICLE_STYLE}">{html}</article>', "html.parser")
        article = soup.article

        for img in article.find_all("img"):
            if not is_http_url(img.get("src")):
                parent = img.parent
                img.decompose()
                if parent is not None and parent.name == "p" and not parent.get_text(strip=True) and not parent.find("img"):
                    parent.decompose()

        for tag in article.find_all(["h1", "h5", "h6"]):
            tag.name = "h2" if tag.name == "h1" else "h4"
        for tag in article.find_all(["h2", "h3", "h4"]):
            tag["style"] = HEADING_STYLES[int(tag.name[1])]
        for tag in article.find_all("blockquote"):
            tag["style"] = BLOCKQUOTE_STYLE
        for tag in article.find_all(["ul", "ol"]):
            tag["style"] = LIST_STYLE
        for tag in article.find_all("li"):
            tag["style"] = LIST_ITEM_STYLE

        for paragraph in article.find_all("p"):
            imgs = paragraph.find_all("img")
            if imgs and not paragraph.get_text(strip=True):
                self._style_image_block(soup, paragraph, imgs, by_source)
            elif "style" not in paragraph.attrs:
                paragraph["style"] = PARAGRAPH_STYLE

        return article, self._blocks(article)

    def _style_image_block(
        self,
        soup: BeautifulSoup,
        paragraph: Tag,
        imgs: list[Tag],
        by_source: dict[str, CachedImage],
    ) -> None:
        paragraph["style"] = IMAGE_WRAPPER_STYLE
        anchor: Tag = paragraph
        for img in imgs:
            img["style"] = IMAGE_STYLE
            image = by_source.get(img.get("src", ""))
            caption = (image.caption or "").strip() if image else ""
            if caption:
                caption_tag = soup.new_tag("p", attrs={"style": IMAGE_CAPTION_STYLE})
                caption_tag.string = caption
                anchor.insert_after(caption_tag)
                anchor = caption_tag

    @staticmethod
    def _blocks(article: Tag) -> list[dict[str, Any]]:
        blocks: list[dict[str, Any]] = []
        for child in article.find_all(recursive=False):
            if child.name in {"h2", "h3", "h4"}:
                blocks.append({"type": "heading", "text": child.get_text(" ", strip=True), "level": int(child.name[1])})
            elif child.name == "p" and child.find("img") and not child.get_text(strip=True):
                for img in child.find_all("img"):
                    blocks.append({"type": "image", "src": img.get("src", "")})
            elif child.name == "p":
                style = child.get("style", "")
                kind = "caption" if style == IMAGE_CAPTION_STYLE else "paragraph"
                blocks.append({"type": kind, "text": child.get_text(" ", strip=True)})
            elif child.name == "blockquote":
                blocks.append({"type": "quote", "text": child.get_text(" ", strip=True)})
            elif child.name in {"ul", "ol"}:
                blocks.append({"type": "list", "text": child.get_text("\n", strip=True), "ordered": child.name == "ol"})
        return blocks

    @staticmethod
    def _strip_block_leading_whitespace(html: str) -> str:
        """Remove indentation that would surface as visible spaces in WeChat."""
        return _BLOCK_LEADING_WHITESPACE.sub(r"\1", html) if html else html


__all__ = ["WeChatFormatter", "image_source", "is_http_url"]
