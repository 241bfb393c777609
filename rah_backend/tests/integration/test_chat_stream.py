"""Integration tests for the RA-H chat turn.

A scripted provider stands in for the Anthropic/OpenAI SDKs; tools run for
real through ToolExecutor against the mocked REST API, so the test covers
streaming, tool execution, usage aggregation, costing and cache stats.
"""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from rah_backend.src.models.chat import SystemPromptBlock
from rah_backend.src.services.agent_registry import AgentRegistry
from rah_backend.src.services.cache_stats import CacheStatsMonitor, get_cache_stats_monitor
from rah_backend.src.services.chat_log import ChatLogStore, get_chat_log_store
from rah_backend.src.services.chat_session import (
    ChatOrchestrator,
    get_chat_orchestrator,
    parse_chat_request,
)
from rah_backend.src.services.helper_logger import HelperLogger
from rah_backend.src.services.providers import StepFinish, TextDelta, ToolCallEvent
from rah_backend.src.services.system_prompt import SystemPromptResult
from rah_backend.src.services.tool_executor import ToolExecutor


class ScriptedProvider:
    """Replays one scripted list of events per model step."""

    def __init__(self, provider: str, model_name: str, steps: List[List[Any]]) -> None:
        self.provider = provider
        self.model_name = model_name
        self.headers: Dict[str, str] = {}
        self._steps = list(steps)
        self.calls: List[Dict[str, Any]] = []

    async def stream_step(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncGenerator[Any, None]:
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        for event in self._steps.pop(0):
            if isinstance(event, Exception):
                raise event
            yield event


def _anthropic_step(
    text: str,
    input_tokens: int,
    output_tokens: int,
    cache_write: int,
    cache_read: int,
    tool_calls: Optional[List[ToolCallEvent]] = None,
) -> List[Any]:
    calls = tool_calls or []
    return [
        TextDelta(text=text),
        *calls,
        StepFinish(
            finish_reason="tool-calls" if calls else "stop",
            text=text,
            tool_calls=calls,
            usage={"inputTokens": input_tokens, "outputTokens": output_tokens},
            provider_metadata={
                "anthropic": {
                    "usage": {
                        "input_tokens": input_tokens,
                        "output_tokens": output_tokens,
                        "cache_creation_input_tokens": cache_write,
                        "cache_read_input_tokens": cache_read,
                    }
                }
            },
        ),
    ]


@pytest.fixture
def prompt_builder() -> AsyncMock:
    builder = AsyncMock()
    builder.build.return_value = SystemPromptResult(
        blocks=[
            SystemPromptBlock(text="base", cache_control={"type": "ephemeral"}),
            SystemPromptBlock(text="focus"),
        ]
    )
    return builder


@pytest.fixture
def make_orchestrator(api_client, prompt_builder, tmp_path):
    def factory(provider: ScriptedProvider, registry: Optional[AgentRegistry] = None) -> ChatOrchestrator:
        return ChatOrchestrator(
            registry=registry,
            tool_executor=ToolExecutor(api_client=api_client),
            prompt_builder=prompt_builder,
            cache_monitor=CacheStatsMonitor(),
            chat_log=ChatLogStore(),
            helper_logger=HelperLogger(log_path=tmp_path / "helpers.log", session_id="test"),
            model_resolver=lambda model_id, overrides: provider,
        )

    return factory


async def _collect(orchestrator: ChatOrchestrator, body: Dict[str, Any]) -> List[Dict[str, Any]]:
    turn = await orchestrator.prepare(parse_chat_request(body))
    return [json.loads(chunk.to_sse_data()) async for chunk in orchestrator.stream(turn)]


class TestChatTurn:
    """End-to-end chat turns through ChatOrchestrator."""

    @pytest.mark.asyncio
    async def test_hard_mode_tool_turn(self, make_orchestrator, fake_api) -> None:
        fake_api.on("GET", "/api/nodes", {"success": True, "data": [{"id": 7, "title": "Agents"}]})
        call = ToolCallEvent(call_id="call_1", name="queryNodes", arguments={"filters": {"search": "agents"}})
        provider = ScriptedProvider(
            "anthropic",
            "claude-sonnet-4-5-20250929",
            [
                _anthropic_step("Looking.", 100, 10, 1000, 0, [call]),
                _anthropic_step("Found it.", 50, 20, 1000, 800),
            ],
        )
        orchestrator = make_orchestrator(provider)

        chunks = await _collect(
            orchestrator,
            {"mode": "hard", "traceId": "trace-42", "messages": [{"role": "user", "content": "agents?"}]},
        )

        assert [c["type"] for c in chunks] == [
            "start",
            "text-delta",
            "tool-call",
            "tool-result",
            "text-delta",
            "finish",
        ]
        assert chunks[2]["toolName"] == "queryNodes"
        assert chunks[3]["output"]["data"]["count"] == 1

        usage = chunks[-1]["usage"]
        assert usage["inputTokens"] == 150
        assert usage["outputTokens"] == 30
        assert usage["cacheWriteTokens"] == 1000
        assert usage["cacheReadTokens"] == 800
        assert usage["totalTokens"] == 1980
        assert usage["cacheHit"] is True
        assert usage["cacheSavingsPct"] == 41
        assert usage["estimatedCostUsd"] == pytest.approx(0.00489)
        assert usage["modelUsed"] == "claude-sonnet-4-5-20250929"
        assert usage["provider"] == "anthropic"
        assert usage["toolsUsed"] == ["queryNodes"]
        assert usage["toolCallsCount"] == 1
        assert usage["traceId"] == "trace-42"
        assert usage["mode"] == "hard"

        stats = orchestrator.cache_monitor.latest()
        assert stats.cache_read_input_tokens == 800
        assert stats.savings_percentage == 41

        [entry] = orchestrator.chat_log.entries()
        assert entry.helper == "ra-h"
        assert entry.user_message == "agents?"
        assert entry.assistant_message == "Looking.Found it."

        second_call_messages = provider.calls[1]["messages"]
        assert second_call_messages[0]["cache_control"] == {"type": "ephemeral"}
        assert second_call_messages[-1]["role"] == "tool"
        assert second_call_messages[-1]["tool_call_id"] == "call_1"

    @pytest.mark.asyncio
    async def test_easy_mode_uses_openai_without_cache_stats(self, make_orchestrator) -> None:
        provider = ScriptedProvider(
            "openai",
            "gpt-5-mini",
            [
                [
                    TextDelta(text="Hi"),
                    StepFinish(
                        finish_reason="stop",
                        text="Hi",
                        usage={"inputTokens": 40, "outputTokens": 5, "cachedInputTokens": 30},
                    ),
                ]
            ],
        )
        orchestrator = make_orchestrator(provider)

        chunks = await _collect(orchestrator, {"messages": [{"role": "user", "content": "hello"}]})

        usage = chunks[-1]["usage"]
        assert usage["modelUsed"] == "gpt-5-mini"
        assert usage["provider"] == "openai"
        assert usage["cacheReadTokens"] == 0
        assert usage["cacheSavingsPct"] == 0
        assert usage["mode"] == "easy"
        assert "toolsUsed" not in usage
        assert "toolCallsCount" not in usage
        assert orchestrator.cache_monitor.latest() is None
        assert all("cache_control" not in m for m in provider.calls[0]["messages"])

    @pytest.mark.asyncio
    async def test_provider_failure_becomes_error_chunk(self, make_orchestrator, tmp_path) -> None:
        provider = ScriptedProvider("openai", "gpt-5-mini", [[RuntimeError("rate limited")]])
        orchestrator = make_orchestrator(provider)

        chunks = await _collect(orchestrator, {"messages": [{"role": "user", "content": "hi"}]})

        assert [c["type"] for c in chunks] == ["start", "error"]
        assert chunks[-1]["errorText"] == "rate limited"
        assert orchestrator.chat_log.entries() == []

        orchestrator.helper_logger.close()
        log_types = [
            json.loads(line)["type"]
            for line in (tmp_path / "helpers.log").read_text(encoding="utf-8").splitlines()
        ]
        assert log_types[-1] == "ERROR"

    @pytest.mark.asyncio
    async def test_no_usage_means_no_usage_data(self, make_orchestrator) -> None:
        provider = ScriptedProvider(
            "openai", "gpt-5-mini", [[StepFinish(finish_reason="stop", text="ok")]]
        )
        orchestrator = make_orchestrator(provider)

        chunks = await _collect(orchestrator, {"messages": [{"role": "user", "content": "hi"}]})

        assert chunks[-1]["type"] == "finish"
        assert "usage" not in chunks[-1]
        assert orchestrator.chat_log.entries() == []

    @pytest.mark.asyncio
    async def test_empty_anthropic_turn_keeps_previous_cache_stats(self, make_orchestrator) -> None:
        provider = ScriptedProvider(
            "anthropic",
            "claude-sonnet-4-5-20250929",
            [
                _anthropic_step("First.", 10, 5, 100, 0),
                [StepFinish(finish_reason="stop", text="Second.")],
            ],
        )
        orchestrator = make_orchestrator(provider)
        body = {"mode": "hard", "messages": [{"role": "user", "content": "hi"}]}

        await _collect(orchestrator, body)
        chunks = await _collect(orchestrator, body)

        assert "usage" not in chunks[-1]
        stats = orchestrator.cache_monitor.latest()
        assert stats.cache_creation_input_tokens == 100
        assert stats.input_tokens == 10

    @pytest.mark.asyncio
    async def test_step_limit(self, make_orchestrator, fake_api) -> None:
        fake_api.on("GET", "/api/nodes", {"success": True, "data": []})
        call = ToolCallEvent(call_id="c", name="queryNodes", arguments={})
        looping_step = [
            call,
            StepFinish(finish_reason="tool-calls", tool_calls=[call], usage={"inputTokens": 1}),
        ]
        provider = ScriptedProvider("openai", "gpt-5-mini", [list(looping_step) for _ in range(3)])
        orchestrator = make_orchestrator(provider)
        orchestrator.max_steps = 2

        chunks = await _collect(orchestrator, {"messages": [{"role": "user", "content": "loop"}]})

        assert len(provider.calls) == 2
        assert chunks[-1]["usage"]["toolCallsCount"] == 1
        assert chunks[-1]["usage"]["toolsUsed"] == ["queryNodes"]


class TestChatRoutes:
    """HTTP surface: setup failures, cache stats and analytics."""

    @pytest.fixture
    def client(self):
        from rah_backend.src.api.main import app

        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_setup_failure_returns_500(self, client, make_orchestrator) -> None:
        from rah_backend.src.api.main import app

        orchestrator = make_orchestrator(
            ScriptedProvider("openai", "gpt-5-mini", []), registry=AgentRegistry(agents={})
        )
        app.dependency_overrides[get_chat_orchestrator] = lambda: orchestrator

        response = client.post("/api/rah/chat", json={"messages": []})

        assert response.status_code == 500
        assert response.json() == {
            "error": "No orchestrator configured for mode 'easy'",
            "details": "Check server logs for full error details",
        }

    def test_cache_stats_404_then_report(self, client) -> None:
        from rah_backend.src.api.main import app

        monitor = CacheStatsMonitor()
        app.dependency_overrides[get_cache_stats_monitor] = lambda: monitor

        missing = client.get("/api/cache-stats")
        assert missing.status_code == 404
        assert missing.json()["error"] == "No cache statistics available yet"

        from rah_backend.src.services.cache_stats import build_cache_stats
        from rah_backend.src.services.usage import UsageTotals

        monitor.record(build_cache_stats(UsageTotals(input_tokens=10, cache_write_tokens=90)))
        report = client.get("/api/cache-stats").json()
        assert report["lastRequest"]["hitRate"] == "MISS"

    def test_usage_analytics(self, client) -> None:
        from rah_backend.src.api.main import app
        from rah_backend.src.models.chat import UsageData

        store = ChatLogStore()
        app.dependency_overrides[get_chat_log_store] = lambda: store
        for trace_id, helper in (("a", "ra-h"), ("b", "ra-h-easy")):
            store.record(
                helper,
                UsageData(
                    input_tokens=10,
                    output_tokens=2,
                    total_tokens=12,
                    model_used="gpt-5-mini",
                    provider="openai",
                    trace_id=trace_id,
                    mode="easy",
                ),
            )

        body = client.get("/api/analytics/usage", params={"helper": "ra-h"}).json()

        assert body["success"] is True
        assert body["summary"]["turns"] == 1
        assert body["entries"][0]["usage"]["traceId"] == "a"

        by_trace = client.get("/api/analytics/usage", params={"traceId": "b"}).json()
        assert by_trace["entries"][0]["helper"] == "ra-h-easy"

        assert client.get("/api/analytics/usage", params={"limit": 0}).status_code == 400

    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "healthy"}
