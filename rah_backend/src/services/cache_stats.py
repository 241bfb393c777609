"""Last-turn Anthropic prompt-cache statistics."""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..models.chat import CacheStats
from .usage import UsageTotals

logger = logging.getLogger(__name__)

# Claude Sonnet input pricing per 1M tokens; cache writes cost 1.25x, reads 0.1x
BASE_INPUT_PRICE = 3.0
CACHE_WRITE_MULTIPLIER = 1.25
CACHE_READ_MULTIPLIER = 0.1


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def savings_percentage(totals: UsageTotals) -> int:
    """Share of input tokens served from the prompt cache, rounded to a whole percent."""
    total_input = totals.input_tokens + totals.cache_write_tokens + totals.cache_read_tokens
    if total_input <= 0:
        return 0
    return _round_half_up(totals.cache_read_tokens / total_input * 100)


def build_cache_stats(totals: UsageTotals) -> CacheStats:
    return CacheStats(
        cache_creation_input_tokens=totals.cache_write_tokens,
        cache_read_input_tokens=totals.cache_read_tokens,
        input_tokens=totals.input_tokens,
        output_tokens=totals.output_tokens,
        savings_percentage=savings_percentage(totals),
    )


class CacheStatsMonitor:
    """Holds the most recent cache stats; last writer wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: Optional[CacheStats] = None
        self._recorded_at: Optional[datetime] = None

    def record(self, stats: CacheStats) -> None:
        with self._lock:
            self._last = stats
            self._recorded_at = datetime.now(timezone.utc)
        logger.debug(
            "Recorded cache stats",
            extra={
                "cache_read": stats.cache_read_input_tokens,
                "cache_write": stats.cache_creation_input_tokens,
                "savings_pct": stats.savings_percentage,
            },
        )

    def latest(self) -> Optional[CacheStats]:
        with self._lock:
            return self._last

    def reset(self) -> None:
        with self._lock:
            self._last = None
            self._recorded_at = None

    def report(self) -> Optional[Dict[str, Any]]:
        """Hit/miss, token breakdown and cost savings for the last turn."""
        stats = self.latest()
        if stats is None:
            return None

        total_input = (
            stats.input_tokens + stats.cache_creation_input_tokens + stats.cache_read_input_tokens
        )
        write_price = BASE_INPUT_PRICE * CACHE_WRITE_MULTIPLIER
        read_price = BASE_INPUT_PRICE * CACHE_READ_MULTIPLIER
        actual_cost = (
            stats.input_tokens * BASE_INPUT_PRICE
            + stats.cache_creation_input_tokens * write_price
            + stats.cache_read_input_tokens * read_price
        ) / 1_000_000
        no_cache_cost = total_input * BASE_INPUT_PRICE / 1_000_000
        cost_pct = (
            _round_half_up((no_cache_cost - actual_cost) / no_cache_cost * 100)
            if no_cache_cost > 0
            else 0
        )

        return {
            "status": "success",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "lastRequest": {
                "hitRate": "HIT" if stats.cache_read_input_tokens > 0 else "MISS",
                "tokens": {
                    "cacheWrite": stats.cache_creation_input_tokens,
                    "cacheRead": stats.cache_read_input_tokens,
                    "regular": stats.input_tokens,
                    "totalInput": total_input,
                    "output": stats.output_tokens,
                },
                "savings": {
                    "tokenPercentage": stats.savings_percentage,
                    "costPercentage": cost_pct,
                    "actualCostUSD": f"{actual_cost:.6f}",
                    "noCacheCostUSD": f"{no_cache_cost:.6f}",
                    "savedUSD": f"{no_cache_cost - actual_cost:.6f}",
                },
            },
        }


_monitor: Optional[CacheStatsMonitor] = None


def get_cache_stats_monitor() -> CacheStatsMonitor:
    global _monitor
    if _monitor is None:
        _monitor = CacheStatsMonitor()
    return _monitor


__all__ = [
    "CacheStatsMonitor",
    "build_cache_stats",
    "get_cache_stats_monitor",
    "savings_percentage",
]
