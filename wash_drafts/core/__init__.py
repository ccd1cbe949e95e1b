"""Core primitives: error taxonomy and concurrency guards."""

from .errors import (
    ConfigError,
    ExtractionError,
    ProviderError,
    RelayError,
    TransportError,
    WorkflowError,
)
from .single_flight import SingleFlight

__all__ = [
    "ConfigError",
    "ExtractionError",
    "ProviderError",
    "RelayError",
    "SingleFlight",
    "TransportError",
    "WorkflowError",
]
