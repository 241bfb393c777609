"""RA-H chat endpoint - streamed, tool-using conversation turns."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from ...models.chat import ChatStreamChunk
from ...services.agent_registry import helper_key_for_mode
from ...services.chat_session import ChatOrchestrator, get_chat_orchestrator, parse_chat_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rah", tags=["chat"])

ERROR_DETAILS = "Check server logs for full error details"


@router.post("/chat")
async def chat(
    request: Request,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """
    Run one chat turn and stream the assistant's reply (Server-Sent Events).

    **Request Body:**
    - `messages`: Conversation so far; only user/assistant/system roles are used
    - `openTabs`, `activeTabId`: Nodes currently in focus
    - `mode`: "hard" (Claude orchestrator) or anything else for "easy"
    - `traceId`, `sessionId`, `currentView`: Optional client metadata
    - `apiKeys`: Optional per-request `{openai, anthropic}` key overrides

    **Response:** SSE stream of UI message chunks (`start`, `text-delta`,
    `tool-call`, `tool-result`, `finish` with usage, `error`).

    **Errors:** Failures before streaming starts return HTTP 500
    `{"error": ..., "details": "Check server logs for full error details"}`.
    """
    helper_key = "unknown"
    try:
        body = await request.json()
        chat_request = parse_chat_request(body)
        helper_key = helper_key_for_mode(chat_request.mode)
        turn = await orchestrator.prepare(chat_request)
    except Exception as e:
        logger.exception(
            "Chat request failed",
            extra={"helper": helper_key, "timestamp": datetime.now(timezone.utc).isoformat()},
        )
        orchestrator.helper_logger.log_error(helper_key, e, {"stage": "setup"})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e) or type(e).__name__, "details": ERROR_DETAILS},
        )

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE events from the orchestrator stream."""
        chunk: ChatStreamChunk
        async for chunk in orchestrator.stream(turn):
            yield chunk.to_sse_data()

    return EventSourceResponse(event_generator())
