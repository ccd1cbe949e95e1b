"""Application layer: boundary messages, the relay service and the CLI."""

from .messages import CapturePayload, DraftOverrides
from .orchestrator import WorkflowOrchestrator
from .runtime import build_service
from .service import RelayService

__all__ = [
    "CapturePayload",
    "DraftOverrides",
    "RelayService",
    "WorkflowOrchestrator",
    "build_service",
]
