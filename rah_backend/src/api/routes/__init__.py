"""HTTP API route handlers."""

from . import analytics, chat, system

__all__ = ["analytics", "chat", "system"]
