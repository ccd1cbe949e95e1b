"""Secret resolution for the credentials seeded into the settings store."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from configparser import ConfigParser
from pathlib import Path
from typing import Iterable, Mapping

# Settings field -> (environment variable, "section.option" in the secrets file)
SECRET_SOURCES: dict[str, tuple[str, str]] = {
    "gemini_api_key": ("GEMINI_API_KEY", "gemini.api_key"),
    "wechat_app_id": ("WECHAT_APP_ID", "wechat.app_id"),
    "wechat_app_secret": ("WECHAT_APP_SECRET", "wechat.app_secret"),
}


class SecretNotFoundError(KeyError):
    """Raised when a secret cannot be resolved."""


class SecretProvider(ABC):
    """Abstract secret lookup contract."""

    @abstractmethod
    def get_secret(self, key: str) -> str:
        """Return the secret associated with ``key``."""


class EnvSecretProvider(SecretProvider):
    """Reads secrets from environment variables.

    ``gemini.api_key`` and ``GEMINI_API_KEY`` name the same variable.
    """

    def __init__(self, environ: Mapping[str, str] | None = None, *, prefix: str = "") -> None:
        self._env = os.environ if environ is None else environ
        self._prefix = prefix

    def get_secret(self, key: str) -> str:
        compound = f"{self._prefix}{key}" if self._prefix else key
        value = self._env.get(compound.upper().replace(".", "_"), "").strip()
        if not value:
            raise SecretNotFoundError(compound)
        return value


class FileSecretProvider(SecretProvider):
    """Loads secrets from an INI file; keys are ``section.option``."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._parser = ConfigParser()
        if path.exists():
            self._parser.read(path, encoding="utf-8")

    def get_secret(self, key: str) -> str:
        section, _, option = key.partition(".")
        if section and option and self._parser.has_option(section, option):
            value = self._parser.get(section, option).strip()
            if value:
                return value
        raise SecretNotFoundError(key)


class MappingSecretProvider(SecretProvider):
    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = mapping

    def get_secret(self, key: str) -> str:
        value = self._mapping.get(key)
        if not value:
            raise SecretNotFoundError(key)
        return value


class ChainedSecretProvider(SecretProvider):
    """Tries multiple providers until one returns a secret."""

    def __init__(self, providers: Iterable[SecretProvider]) -> None:
        self._providers = tuple(providers)

    def get_secret(self, key: str) -> str:
        for provider in self._providers:
            try:
                return provider.get_secret(key)
            except SecretNotFoundError:
                continue
        raise SecretNotFoundError(key)


def default_provider(secrets_file: Path | None = None) -> SecretProvider:
    providers: list[SecretProvider] = [EnvSecretProvider()]
    if secrets_file is not None:
        providers.append(FileSecretProvider(secrets_file))
    return ChainedSecretProvider(providers)


def resolve_credentials(provider: SecretProvider) -> dict[str, str]:
    """Collect every known credential; missing ones resolve to an empty string."""
    resolved: dict[str, str] = {}
    for name, (env_name, file_key) in SECRET_SOURCES.items():
        value = ""
        for key in (env_name, file_key):
            try:
                value = provider.get_secret(key)
                break
            except SecretNotFoundError:
                continue
        resolved[name] = value
    return resolved


__all__ = [
    "ChainedSecretProvider",
    "EnvSecretProvider",
    "FileSecretProvider",
    "MappingSecretProvider",
    "SECRET_SOURCES",
    "SecretNotFoundError",
    "SecretProvider",
    "default_provider",
    "resolve_credentials",
]
