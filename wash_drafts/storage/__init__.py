"""Persistence for images and history."""

from .export import ExportedDocument, export_history_entry
from .memory import InMemoryStore, build_history_entry

__all__ = ["ExportedDocument", "InMemoryStore", "build_history_entry", "export_history_entry"]
