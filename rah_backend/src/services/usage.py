"""Token usage normalization and aggregation.

Provider SDKs report usage in several shapes: camelCase and snake_case field
names, numbers serialized as strings, and Anthropic metadata nested under
``requests[]``, ``response.usage`` or ``usage``. Everything here is pure and
never raises, so a malformed usage record can only ever produce zeros.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

INPUT_FIELDS = ("inputTokens", "promptTokens", "input_tokens")
OUTPUT_FIELDS = ("outputTokens", "completionTokens", "output_tokens")
CACHE_WRITE_FIELDS = (
    "cacheCreationInputTokens",
    "cache_creation_input_tokens",
    "cacheWriteInputTokens",
    "cache_write_input_tokens",
)
CACHE_READ_FIELDS = (
    "cachedInputTokens",
    "cacheReadInputTokens",
    "cache_read_input_tokens",
)


@dataclass(frozen=True)
class NormalizedUsage:
    """Canonical per-entry usage tuple."""

    input: int = 0
    output: int = 0
    cache_write: int = 0
    cache_read: int = 0

    def is_empty(self) -> bool:
        return not (self.input or self.output or self.cache_write or self.cache_read)


@dataclass
class UsageTotals:
    """Token totals for one step or one whole conversation turn."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0

    def is_empty(self) -> bool:
        return not (
            self.input_tokens
            or self.output_tokens
            or self.cache_write_tokens
            or self.cache_read_tokens
        )

    def add(self, usage: NormalizedUsage) -> None:
        self.input_tokens += usage.input
        self.output_tokens += usage.output
        self.cache_write_tokens += usage.cache_write
        self.cache_read_tokens += usage.cache_read


def _to_number(value: Any) -> int:
    # bool is an int subclass; a flag is never a token count
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return 0
    else:
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def _lookup(entry: Any, key: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(key)
    try:
        return getattr(entry, key, None)
    except Exception:
        return None


def _first_present(entry: Any, keys: Sequence[str]) -> int:
    for key in keys:
        value = _lookup(entry, key)
        if value is not None:
            return _to_number(value)
    return 0


def normalize_usage(entry: Any) -> NormalizedUsage:
    """Extract ``(input, output, cache_write, cache_read)`` from a raw usage record.

    The first field present on each axis wins, in the order given by the
    ``*_FIELDS`` tuples. Non-numeric or non-finite values count as zero.
    """
    if entry is None:
        return NormalizedUsage()
    try:
        return NormalizedUsage(
            input=_first_present(entry, INPUT_FIELDS),
            output=_first_present(entry, OUTPUT_FIELDS),
            cache_write=_first_present(entry, CACHE_WRITE_FIELDS),
            cache_read=_first_present(entry, CACHE_READ_FIELDS),
        )
    except Exception:
        return NormalizedUsage()


def _as_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def aggregate_step(usage: Any, provider_metadata: Any) -> UsageTotals:
    """Fold one Anthropic step's usage and provider metadata into totals.

    Sources, in priority order: every entry of ``anthropic.requests[]``;
    otherwise ``anthropic.response.usage``; then ``anthropic.usage`` when
    nothing has been counted yet; finally the step's top-level ``usage``.
    """
    totals = UsageTotals()
    data_sources = 0

    def add(entry: Any) -> None:
        nonlocal data_sources
        if entry is None:
            return
        normalized = normalize_usage(entry)
        if normalized.is_empty():
            return
        totals.add(normalized)
        data_sources += 1

    metadata = _as_mapping(provider_metadata) or {}
    anthropic_meta = _as_mapping(metadata.get("anthropic"))

    if anthropic_meta:
        requests = anthropic_meta.get("requests")
        response = _as_mapping(anthropic_meta.get("response"))
        if isinstance(requests, list):
            for request in requests:
                request_map = _as_mapping(request)
                if request_map is not None and request_map.get("usage") is not None:
                    add(request_map["usage"])
                else:
                    add(request)
        elif response and response.get("usage") is not None:
            add(response["usage"])

        if anthropic_meta.get("usage") is not None and data_sources == 0:
            add(anthropic_meta["usage"])

    if data_sources == 0:
        add(usage)

    # Metadata may omit cache figures that the top-level usage still reports.
    if usage is not None:
        top_level = normalize_usage(usage)
        if totals.cache_read_tokens == 0 and _lookup(usage, "cachedInputTokens"):
            totals.cache_read_tokens = top_level.cache_read
        if totals.cache_write_tokens == 0 and _lookup(usage, "cacheCreationInputTokens"):
            totals.cache_write_tokens = top_level.cache_write

    return totals


def aggregate_openai_usage(usage: Any) -> UsageTotals:
    """OpenAI usage carries no cache fields; read input/output directly."""
    normalized = normalize_usage(usage)
    return UsageTotals(input_tokens=normalized.input, output_tokens=normalized.output)


def aggregate_conversation(steps: Iterable[UsageTotals]) -> UsageTotals:
    """Reduce per-step totals into conversation totals.

    Input, output and cache-read tokens are summed. Cache-write tokens take
    the maximum: a prompt cache is written at most once per conversation and
    later steps may echo the same write.
    """
    totals = UsageTotals()
    for step in steps:
        totals.input_tokens += step.input_tokens
        totals.output_tokens += step.output_tokens
        totals.cache_write_tokens = max(totals.cache_write_tokens, step.cache_write_tokens)
        totals.cache_read_tokens += step.cache_read_tokens
    return totals


def aggregate_result(
    provider: str,
    usage: Any = None,
    provider_metadata: Any = None,
    steps: Optional[Sequence[Any]] = None,
) -> UsageTotals:
    """Aggregate a finished multi-step run.

    ``steps`` items expose ``usage`` and ``provider_metadata`` (attributes or
    keys). Without a step array the whole-response usage is one step.
    """
    if provider != "anthropic":
        if steps:
            return aggregate_conversation(
                aggregate_openai_usage(_lookup(step, "usage")) for step in steps
            )
        return aggregate_openai_usage(usage)

    if steps:
        return aggregate_conversation(
            aggregate_step(_lookup(step, "usage"), _lookup(step, "provider_metadata"))
            for step in steps
        )
    return aggregate_step(usage, provider_metadata)


__all__ = [
    "NormalizedUsage",
    "UsageTotals",
    "normalize_usage",
    "aggregate_step",
    "aggregate_openai_usage",
    "aggregate_conversation",
    "aggregate_result",
]
