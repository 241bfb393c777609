"""Request-scoped ambient context for the chat pipeline.

Values live in a ``contextvars.ContextVar`` so every asyncio task (one per
HTTP request under uvicorn/Starlette) sees only its own request's trace id,
tabs, mode and key overrides, without threading them through every call.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.chat import ApiKeyOverrides, NodeTab


class RequestContext(BaseModel):
    """Ambient values readable by nested collaborators during one chat turn."""

    model_config = ConfigDict(frozen=True)

    trace_id: str = ""
    open_tabs: List[NodeTab] = Field(default_factory=list)
    active_tab_id: Optional[int] = None
    mode: Literal["easy", "hard"] = "easy"
    api_keys: ApiKeyOverrides = Field(default_factory=ApiKeyOverrides)
    workflow_key: Optional[str] = None
    workflow_node_id: Optional[int] = None
    parent_chat_id: Optional[int] = None


_request_context: ContextVar[RequestContext] = ContextVar(
    "rah_request_context", default=RequestContext()
)


def get_request_context() -> RequestContext:
    return _request_context.get()


def bind_request_context(context: RequestContext) -> None:
    """Install ``context`` for the current task (e.g. inside a response stream)."""
    _request_context.set(context)


def set_request_context(**values: Any) -> RequestContext:
    """Merge ``values`` into the current task's context and return it."""
    updated = get_request_context().model_copy(update=values)
    _request_context.set(updated)
    return updated


@contextmanager
def request_scope(**values: Any) -> Iterator[RequestContext]:
    """Bind a fresh context for the duration of the block."""
    token = _request_context.set(RequestContext(**values))
    try:
        yield _request_context.get()
    finally:
        _request_context.reset(token)


__all__ = [
    "RequestContext",
    "bind_request_context",
    "get_request_context",
    "set_request_context",
    "request_scope",
]
