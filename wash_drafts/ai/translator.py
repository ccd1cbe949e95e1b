"""Article translation and headline generation powered by the google-genai SDK."""

from __future__ import annotations

from typing import Any, Sequence

from ..core.errors import ProviderError
from ..platforms.base import TitleResult, TranslationResult
from ..settings.loader import GeminiSettings
from ..settings.store import Settings
from ..state.models import ContentItem
from ..utils.logging import get_logger
from .base_node import (
    ClientFactory,
    GeminiNode,
    GenerationOptions,
    language_name,
    load_prompt_text,
    model_turn,
    user_turn,
)
from .title_generator import clean_title, render_items_markdown

LOGGER = get_logger(__name__)

EMPTY_INPUT = "empty-input"

TRANSLATION_OPTIONS = GenerationOptions(temperature=0.3, top_p=0.8, max_output_tokens=65536)
TITLE_OPTIONS = GenerationOptions(temperature=0.6, top_p=0.9, max_output_tokens=1024)

SYSTEM_INSTRUCTION = (
    "You are an experienced bilingual editor who localises English articles for a "
    "WeChat Official Account audience.\n"
    "Keep paragraph breaks, lists, numbers, inline emphasis and image placeholders intact.\n"
    "Deliver fluent, native and professional {language} without commentary or explanations."
)


def _context_block(source_url: str, fallback_title: str) -> str:
    lines = []
    if fallback_title:
        lines.append(f"Original title: {fallback_title}")
    if source_url:
        lines.append(f"Source: {source_url}")
    return "\n".join(lines)


class GeminiTranslator(GeminiNode):
    """Translates captured articles and titles them in the same conversation."""

    def __init__(
        self,
        config: GeminiSettings,
        *,
        api_key: str = "",
        model: str | None = None,
        translate_prompt: str | None = None,
        title_prompt: str | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._language = language_name(config.target_language)
        super().__init__(
            api_key=api_key,
            model=model or config.model,
            system_instruction=SYSTEM_INSTRUCTION.format(language=self._language),
            client_factory=client_factory,
            logger=LOGGER,
        )
        self._translate_prompt = translate_prompt or load_prompt_text(config.translate_prompt)
        self._title_prompt = title_prompt or load_prompt_text(config.title_prompt)

    def update_settings(self, settings: Settings) -> None:
        self.configure(api_key=settings.gemini_api_key, model=settings.gemini_model or self.model)

    async def translate_article(
        self,
        markdown: str,
        *,
        source_url: str = "",
        fallback_title: str = "",
    ) -> TranslationResult:
        article = (markdown or "").strip()
        if not article:
            return TranslationResult(text="", conversation=[], finish_reason=EMPTY_INPUT)

        prompt = self._translate_prompt.format(
            text=article,
            language=self._language,
            context=_context_block(source_url, fallback_title),
        )
        LOGGER.info(
            "Translating article",
            extra={"event": "gemini.translate", "model": self.model, "chars": len(article)},
        )
        output = await self._make_request([user_turn(prompt)], TRANSLATION_OPTIONS)
        if not output.text:
            raise ProviderError(
                "Translation result was empty.",
                finish_reason=output.finish_reason,
                details={"source_url": source_url},
            )
        conversation = [user_turn(prompt), model_turn(output.text)]
        return TranslationResult(text=output.text, conversation=conversation, finish_reason=output.finish_reason)

    async def generate_title(
        self,
        context: Sequence[dict[str, Any]] | Sequence[ContentItem],
        *,
        source_url: str = "",
        fallback_title: str = "",
    ) -> TitleResult:
        conversation = self._as_conversation(context)
        if not conversation:
            raise ProviderError("No content available for title generation.", finish_reason=EMPTY_INPUT)

        prompt = self._title_prompt.format(
            language=self._language,
            context=_context_block(source_url, fallback_title),
            text="",
        )
        output = await self._make_request([*conversation, user_turn(prompt)], TITLE_OPTIONS)
        title = clean_title(output.text)
        if not title:
            raise ProviderError("Title generation result was empty.", finish_reason=output.finish_reason)
        LOGGER.info("Generated title", extra={"event": "gemini.title", "chars": len(title)})
        return TitleResult(text=title, finish_reason=output.finish_reason)

    @staticmethod
    def _as_conversation(context: Sequence[Any]) -> list[dict[str, Any]]:
        if not context:
            return []
        if all(isinstance(entry, ContentItem) for entry in context):
            markdown = render_items_markdown(context)
            return [user_turn(markdown)] if markdown else []
        return [dict(entry) for entry in context]


__all__ = ["EMPTY_INPUT", "GeminiTranslator", "TITLE_OPTIONS", "TRANSLATION_OPTIONS"]
