"""Usage analytics and prompt-cache diagnostics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from ...services.cache_stats import CacheStatsMonitor, get_cache_stats_monitor
from ...services.chat_log import ChatLogStore, get_chat_log_store

router = APIRouter(tags=["analytics"])


@router.get("/api/cache-stats")
async def cache_stats(monitor: CacheStatsMonitor = Depends(get_cache_stats_monitor)):
    """Prompt-cache hit/miss, token breakdown and savings for the last Anthropic turn."""
    report = monitor.report()
    if report is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": "No cache statistics available yet",
                "message": "Send a message to ra-h to generate cache stats",
            },
        )
    return report


@router.get("/api/analytics/usage")
async def usage_analytics(
    limit: int = Query(50, ge=1, le=500),
    trace_id: Optional[str] = Query(None, alias="traceId"),
    helper: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    store: ChatLogStore = Depends(get_chat_log_store),
):
    """
    Recent per-turn usage records plus totals over the filtered window.

    **Query:** `limit`, `traceId`, `helper`, `since` (ISO timestamp).
    """
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    matching = store.entries(trace_id=trace_id, helper=helper, since=since)
    return {
        "success": True,
        "summary": store.summary(matching),
        "entries": [
            {
                "helper": entry.helper,
                "recordedAt": entry.recorded_at.isoformat(),
                "usage": entry.usage.model_dump(by_alias=True, exclude_none=True),
            }
            for entry in matching[:limit]
        ],
    }
