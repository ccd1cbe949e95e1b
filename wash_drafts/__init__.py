"""Relay captured articles through Gemini translation into WeChat drafts."""

__version__ = "0.1.0"
