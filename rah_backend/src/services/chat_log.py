"""In-memory ledger of completed chat turns and their usage."""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.chat import UsageData

logger = logging.getLogger(__name__)

MAX_ENTRIES = 500


class ChatLogEntry(BaseModel):
    helper: str
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_message: Optional[str] = None
    assistant_message: Optional[str] = None
    usage: UsageData


class ChatLogStore:
    """Bounded, thread-safe store of chat turns for the analytics endpoint."""

    def __init__(self, max_entries: int = MAX_ENTRIES) -> None:
        self._entries: Deque[ChatLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(
        self,
        helper: str,
        usage: UsageData,
        user_message: Optional[str] = None,
        assistant_message: Optional[str] = None,
    ) -> ChatLogEntry:
        entry = ChatLogEntry(
            helper=helper,
            usage=usage,
            user_message=user_message,
            assistant_message=assistant_message,
        )
        with self._lock:
            self._entries.append(entry)
        logger.info(
            "Chat turn logged",
            extra={
                "helper": helper,
                "trace_id": usage.trace_id,
                "total_tokens": usage.total_tokens,
                "cost_usd": usage.estimated_cost_usd,
            },
        )
        return entry

    def entries(
        self,
        limit: Optional[int] = None,
        trace_id: Optional[str] = None,
        helper: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ChatLogEntry]:
        with self._lock:
            items = list(self._entries)
        if trace_id:
            items = [e for e in items if e.usage.trace_id == trace_id]
        if helper:
            items = [e for e in items if e.helper == helper]
        if since is not None:
            items = [e for e in items if e.recorded_at >= since]
        items.reverse()
        return items[:limit] if limit else items

    def summary(self, entries: Optional[List[ChatLogEntry]] = None) -> Dict[str, Any]:
        items = self.entries() if entries is None else entries
        total_cost = sum(e.usage.estimated_cost_usd for e in items)
        cache_hits = sum(1 for e in items if e.usage.cache_hit)
        anthropic_turns = sum(1 for e in items if e.usage.provider == "anthropic")
        return {
            "turns": len(items),
            "inputTokens": sum(e.usage.input_tokens for e in items),
            "outputTokens": sum(e.usage.output_tokens for e in items),
            "cacheWriteTokens": sum(e.usage.cache_write_tokens for e in items),
            "cacheReadTokens": sum(e.usage.cache_read_tokens for e in items),
            "totalTokens": sum(e.usage.total_tokens for e in items),
            "estimatedCostUsd": round(total_cost, 6),
            "cacheHitRate": round(cache_hits / anthropic_turns, 4) if anthropic_turns else 0.0,
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_store: Optional[ChatLogStore] = None


def get_chat_log_store() -> ChatLogStore:
    global _store
    if _store is None:
        _store = ChatLogStore()
    return _store


__all__ = ["ChatLogEntry", "ChatLogStore", "get_chat_log_store"]
