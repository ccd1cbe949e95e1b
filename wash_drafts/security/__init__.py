"""Secret providers."""

from .credential_provider import (
    ChainedSecretProvider,
    EnvSecretProvider,
    FileSecretProvider,
    MappingSecretProvider,
    SecretNotFoundError,
    SecretProvider,
    default_provider,
    resolve_credentials,
)

__all__ = [
    "ChainedSecretProvider",
    "EnvSecretProvider",
    "FileSecretProvider",
    "MappingSecretProvider",
    "SecretNotFoundError",
    "SecretProvider",
    "default_provider",
    "resolve_credentials",
]
