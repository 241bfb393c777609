"""Streaming chat adapters over the Anthropic and OpenAI SDKs.

Both adapters consume the same provider-neutral conversation format:

- ``{"role": "system", "content": str, "cache_control": {...}?}``
- ``{"role": "user" | "assistant", "content": str}``
- ``{"role": "assistant", "content": str, "tool_calls": [ToolCallEvent, ...]}``
- ``{"role": "tool", "tool_call_id": str, "name": str, "content": str}``

and yield the same events for one model step: ``TextDelta`` while text
streams, one ``ToolCallEvent`` per requested tool call, then a single
``StepFinish`` carrying raw usage and provider metadata.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import anthropic
import openai

logger = logging.getLogger(__name__)

ANTHROPIC_CACHE_HEADERS = {"anthropic-beta": "prompt-caching-2024-07-31"}
DEFAULT_MAX_TOKENS = 4096

# Model name prefixes that accept the ``reasoning_effort`` parameter
REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallEvent:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StepFinish:
    finish_reason: str
    text: str = ""
    tool_calls: List[ToolCallEvent] = field(default_factory=list)
    usage: Dict[str, Any] = field(default_factory=dict)
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


StepEvent = Union[TextDelta, ToolCallEvent, StepFinish]


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Discarding unparsable tool arguments", extra={"raw": str(raw)[:200]})
        return {}
    return parsed if isinstance(parsed, dict) else {}


class AnthropicProvider:
    """Claude models through ``anthropic.AsyncAnthropic`` with prompt caching."""

    provider = "anthropic"
    supports_prompt_caching = True

    def __init__(
        self,
        model_name: str,
        api_key: str,
        client: Optional[anthropic.AsyncAnthropic] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.model_name = model_name
        self.headers = dict(ANTHROPIC_CACHE_HEADERS)
        self.max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key,
            default_headers=self.headers,
        )

    def _system_blocks(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for message in messages:
            if message["role"] != "system":
                continue
            block: Dict[str, Any] = {"type": "text", "text": message["content"]}
            if message.get("cache_control"):
                block["cache_control"] = message["cache_control"]
            blocks.append(block)
        return blocks

    def _conversation(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            role = message["role"]
            if role == "system":
                continue

            if role == "tool":
                result_block = {
                    "type": "tool_result",
                    "tool_use_id": message["tool_call_id"],
                    "content": message["content"],
                }
                # Consecutive tool results share one user turn
                previous = converted[-1] if converted else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(block.get("type") == "tool_result" for block in previous["content"])
                ):
                    previous["content"].append(result_block)
                else:
                    converted.append({"role": "user", "content": [result_block]})
                continue

            if role == "assistant" and message.get("tool_calls"):
                content: List[Dict[str, Any]] = []
                if message.get("content"):
                    content.append({"type": "text", "text": message["content"]})
                for call in message["tool_calls"]:
                    content.append(
                        {
                            "type": "tool_use",
                            "id": call.call_id,
                            "name": call.name,
                            "input": call.arguments,
                        }
                    )
                converted.append({"role": "assistant", "content": content})
                continue

            converted.append({"role": role, "content": message.get("content") or ""})
        return converted

    async def stream_step(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncGenerator[StepEvent, None]:
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "max_tokens": self.max_tokens,
            "system": self._system_blocks(messages),
            "messages": self._conversation(messages),
        }
        if tools:
            kwargs["tools"] = tools

        text_buffer = ""
        async with self._client.messages.stream(**kwargs) as stream:
            async for event in stream:
                if event.type == "text" and event.text:
                    text_buffer += event.text
                    yield TextDelta(text=event.text)
            final = await stream.get_final_message()

        tool_calls = [
            ToolCallEvent(call_id=block.id, name=block.name, arguments=_parse_arguments(block.input))
            for block in final.content
            if block.type == "tool_use"
        ]
        for call in tool_calls:
            yield call

        usage = final.usage
        usage_dump = usage.model_dump() if usage is not None else {}
        yield StepFinish(
            finish_reason=_anthropic_finish_reason(final.stop_reason),
            text=text_buffer,
            tool_calls=tool_calls,
            usage={
                "inputTokens": getattr(usage, "input_tokens", 0) or 0,
                "outputTokens": getattr(usage, "output_tokens", 0) or 0,
                "cachedInputTokens": getattr(usage, "cache_read_input_tokens", 0) or 0,
            },
            provider_metadata={
                "anthropic": {
                    "usage": usage_dump,
                    "cacheCreationInputTokens": getattr(usage, "cache_creation_input_tokens", 0) or 0,
                }
            },
        )


def _anthropic_finish_reason(stop_reason: Optional[str]) -> str:
    if stop_reason == "tool_use":
        return "tool-calls"
    if stop_reason == "max_tokens":
        return "length"
    return "stop"


class OpenAIProvider:
    """OpenAI chat models through ``openai.AsyncOpenAI`` streaming completions."""

    provider = "openai"
    supports_prompt_caching = False

    def __init__(
        self,
        model_name: str,
        api_key: str,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        self.model_name = model_name
        self.headers: Dict[str, str] = {}
        self._client = client or openai.AsyncOpenAI(api_key=api_key)

    @property
    def accepts_reasoning_effort(self) -> bool:
        return self.model_name.startswith(REASONING_MODEL_PREFIXES)

    def _conversation(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for message in messages:
            role = message["role"]
            if role == "tool":
                converted.append(
                    {
                        "role": "tool",
                        "tool_call_id": message["tool_call_id"],
                        "content": message["content"],
                    }
                )
            elif role == "assistant" and message.get("tool_calls"):
                converted.append(
                    {
                        "role": "assistant",
                        "content": message.get("content") or None,
                        "tool_calls": [
                            {
                                "id": call.call_id,
                                "type": "function",
                                "function": {
                                    "name": call.name,
                                    "arguments": json.dumps(call.arguments),
                                },
                            }
                            for call in message["tool_calls"]
                        ],
                    }
                )
            else:
                converted.append({"role": role, "content": message.get("content") or ""})
        return converted

    async def stream_step(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncGenerator[StepEvent, None]:
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": self._conversation(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.accepts_reasoning_effort:
            kwargs["reasoning_effort"] = "low"

        content_buffer = ""
        tool_calls_buffer: Dict[int, Dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        usage = None

        stream = await self._client.chat.completions.create(**kwargs)
        async for chunk in stream:
            if chunk.usage is not None:
                usage = chunk.usage
            if not chunk.choices:
                continue

            choice = chunk.choices[0]
            if choice.finish_reason:
                finish_reason = choice.finish_reason
            delta = choice.delta
            if delta is None:
                continue

            if delta.content:
                content_buffer += delta.content
                yield TextDelta(text=delta.content)

            for tc in delta.tool_calls or []:
                idx = tc.index or 0
                if idx not in tool_calls_buffer:
                    tool_calls_buffer[idx] = {"id": "", "name": "", "arguments": ""}
                if tc.id:
                    tool_calls_buffer[idx]["id"] = tc.id
                if tc.function is not None:
                    if tc.function.name:
                        tool_calls_buffer[idx]["name"] = tc.function.name
                    if tc.function.arguments:
                        tool_calls_buffer[idx]["arguments"] += tc.function.arguments

        tool_calls = [
            ToolCallEvent(
                call_id=tool_calls_buffer[i]["id"],
                name=tool_calls_buffer[i]["name"],
                arguments=_parse_arguments(tool_calls_buffer[i]["arguments"]),
            )
            for i in sorted(tool_calls_buffer.keys())
        ]
        for call in tool_calls:
            yield call

        usage_dump = usage.model_dump() if usage is not None else {}
        yield StepFinish(
            finish_reason="tool-calls" if tool_calls else (finish_reason or "stop"),
            text=content_buffer,
            tool_calls=tool_calls,
            usage={
                "inputTokens": getattr(usage, "prompt_tokens", 0) or 0,
                "outputTokens": getattr(usage, "completion_tokens", 0) or 0,
            },
            provider_metadata={"openai": {"usage": usage_dump}},
        )


ProviderClient = Union[AnthropicProvider, OpenAIProvider]


__all__ = [
    "AnthropicProvider",
    "OpenAIProvider",
    "ProviderClient",
    "StepEvent",
    "StepFinish",
    "TextDelta",
    "ToolCallEvent",
    "ANTHROPIC_CACHE_HEADERS",
]
