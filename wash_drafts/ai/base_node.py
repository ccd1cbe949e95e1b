"""Shared helpers for Gemini-powered nodes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ..core.errors import ConfigError, ProviderError
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

ClientFactory = Callable[[str], Any]

LANGUAGE_NAMES = {
    "zh-CN": "Simplified Chinese",
    "zh-TW": "Traditional Chinese",
    "en": "English",
    "ja": "Japanese",
}


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    temperature: float
    top_p: float
    max_output_tokens: int
    thinking_budget: int = 0


@dataclass(slots=True)
class GenerationOutput:
    text: str
    finish_reason: str | None


def load_prompt_text(prompt_path: Path) -> str:
    """Load a prompt from a file or concatenate all .txt files in a directory."""
    if prompt_path.is_dir():
        parts: list[str] = []
        for file in sorted(prompt_path.glob("*.txt")):
            content = file.read_text(encoding="utf-8").strip()
            if content:
                parts.append(content)
        if not parts:
            raise ConfigError(f"No prompt files found in {prompt_path}", setting=str(prompt_path))
        return "\n\n".join(parts)
    return prompt_path.read_text(encoding="utf-8")


def create_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def user_turn(text: str) -> dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


def model_turn(text: str) -> dict[str, Any]:
    return {"role": "model", "parts": [{"text": text}]}


def _finish_reason(response: Any) -> str | None:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", None) or str(reason)


class GeminiNode:
    """Owns the Gemini client and re-points it when the API key or model changes."""

    def __init__(
        self,
        *,
        api_key: str = "",
        model: str,
        system_instruction: str | None = None,
        client_factory: ClientFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._system_instruction = system_instruction
        self._client_factory = client_factory or create_client
        self._client: Any | None = None
        self._logger = logger or LOGGER

    @property
    def model(self) -> str:
        return self._model

    def has_credentials(self) -> bool:
        return bool(self._api_key)

    def configure(self, *, api_key: str, model: str) -> None:
        """Swap credentials; the client is rebuilt on next use."""
        if api_key == self._api_key and model == self._model:
            return
        if api_key != self._api_key:
            self._client = None
        self._api_key = api_key
        self._model = model
        self._logger.debug("Gemini client reconfigured", extra={"event": "gemini.configure", "model": model})

    def _get_client(self) -> Any:
        if not self._api_key:
            raise ConfigError("Gemini API key not found. Set GEMINI_API_KEY.", setting="gemini_api_key")
        if self._client is None:
            self._client = self._client_factory(self._api_key)
        return self._client

    async def _make_request(
        self,
        contents: Sequence[dict[str, Any]],
        options: GenerationOptions,
    ) -> GenerationOutput:
        client = self._get_client()
        config = types.GenerateContentConfig(
            temperature=options.temperature,
            top_p=options.top_p,
            max_output_tokens=options.max_output_tokens,
            system_instruction=self._system_instruction,
            thinking_config=types.ThinkingConfig(thinking_budget=options.thinking_budget),
        )
        try:
            response = await client.aio.models.generate_content(
                model=self._model,
                contents=list(contents),
                config=config,
            )
        except genai_errors.APIError as exc:
            raise ProviderError(
                f"Gemini request failed: {exc.message or exc}",
                code=exc.code,
                details={"status": exc.status},
            ) from exc
        return GenerationOutput(text=(response.text or "").strip(), finish_reason=_finish_reason(response))


__all__ = [
    "GeminiNode",
    "GenerationOptions",
    "GenerationOutput",
    "create_client",
    "language_name",
    "load_prompt_text",
    "model_turn",
    "user_turn",
]
