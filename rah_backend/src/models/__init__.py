"""Pydantic models for data validation and serialization."""

from .chat import (
    ApiKeyOverrides,
    CacheStats,
    ChatMessage,
    ChatRequest,
    ChatStreamChunk,
    NodeTab,
    SystemPromptBlock,
    UsageData,
)

__all__ = [
    "ApiKeyOverrides",
    "NodeTab",
    "ChatMessage",
    "ChatRequest",
    "SystemPromptBlock",
    "CacheStats",
    "UsageData",
    "ChatStreamChunk",
]
