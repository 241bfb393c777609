"""Chat orchestrator: one streamed, multi-step, tool-using turn per request.

A turn moves through parsing, context building, streaming and finishing.
``ChatOrchestrator.prepare`` covers everything up to model resolution and
raises on failure so the route can answer with a plain JSON 500.
``ChatOrchestrator.stream`` runs the provider loop and yields UI message
chunks; failures there surface as an ``error`` chunk on the open stream.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..models.chat import (
    ApiKeyOverrides,
    ChatMessage,
    ChatRequest,
    ChatStreamChunk,
    NodeTab,
    SystemPromptBlock,
    UsageData,
)
from .agent_registry import (
    AgentDefinition,
    AgentRegistry,
    default_tool_names_for_role,
    get_agent_registry,
    helper_key_for_mode,
)
from .cache_stats import CacheStatsMonitor, build_cache_stats, get_cache_stats_monitor, savings_percentage
from .chat_log import ChatLogStore, get_chat_log_store
from .config import get_config
from .errors import ConfigurationError
from .helper_logger import HelperLogger, get_helper_logger
from .model_resolver import canonical_model_id, resolve_model
from .pricing import CostInput, calculate_cost
from .providers import ProviderClient, StepFinish, TextDelta, ToolCallEvent
from .request_context import RequestContext, bind_request_context
from .system_prompt import SystemPromptBuilder, SystemPromptResult
from .tool_executor import ToolExecutor, get_tool_executor
from .usage import UsageTotals, aggregate_result

logger = logging.getLogger(__name__)

MAX_STEPS = 10
ALLOWED_ROLES = ("user", "assistant", "system")

ModelResolver = Callable[[str, Optional[ApiKeyOverrides]], ProviderClient]


# =============================================================================
# Parsing
# =============================================================================


def _message_text(entry: Dict[str, Any]) -> Optional[str]:
    content = entry.get("content")
    if isinstance(content, str):
        return content
    parts = entry.get("parts")
    if isinstance(parts, list):
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str)
        ]
        if texts:
            return "".join(texts)
    return None


def filter_messages(raw: Any) -> List[ChatMessage]:
    """Keep user/assistant/system messages in order; drop everything else silently."""
    if not isinstance(raw, list):
        return []
    messages: List[ChatMessage] = []
    for entry in raw:
        if not isinstance(entry, dict) or entry.get("role") not in ALLOWED_ROLES:
            continue
        text = _message_text(entry)
        if text is None:
            continue
        messages.append(ChatMessage(role=entry["role"], content=text))
    return messages


def _parse_tabs(raw: Any) -> List[NodeTab]:
    tabs: List[NodeTab] = []
    for entry in raw if isinstance(raw, list) else []:
        try:
            tabs.append(NodeTab.model_validate(entry))
        except ValidationError:
            logger.debug("Dropping malformed tab", extra={"tab": str(entry)[:200]})
    return tabs


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def parse_chat_request(body: Any) -> ChatRequest:
    """Build a :class:`ChatRequest` from a raw JSON body, tolerating junk fields."""
    body = body if isinstance(body, dict) else {}
    api_keys = body.get("apiKeys")
    return ChatRequest(
        messages=filter_messages(body.get("messages")),
        open_tabs=_parse_tabs(body.get("openTabs")),
        active_tab_id=_optional_int(body.get("activeTabId")),
        current_view=_optional_str(body.get("currentView")),
        session_id=_optional_str(body.get("sessionId")),
        trace_id=_optional_str(body.get("traceId")),
        mode="hard" if body.get("mode") == "hard" else "easy",
        api_keys=ApiKeyOverrides.model_validate(api_keys if isinstance(api_keys, dict) else {}),
    )


# =============================================================================
# Message conversion
# =============================================================================


def system_messages(blocks: List[SystemPromptBlock], provider: str) -> List[Dict[str, Any]]:
    """Turn prompt blocks into system messages; cache directives only reach Anthropic."""
    converted = []
    for block in blocks:
        message: Dict[str, Any] = {"role": "system", "content": block.text}
        if provider == "anthropic" and block.cache_control:
            message["cache_control"] = dict(block.cache_control)
        converted.append(message)
    return converted


def history_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    return [{"role": m.role, "content": m.content} for m in messages]


def _parse_tool_output(result: str) -> Any:
    try:
        return json.loads(result)
    except (TypeError, json.JSONDecodeError):
        return result


# =============================================================================
# Orchestration
# =============================================================================


@dataclass
class ChatTurn:
    """Per-request state shared by the streaming loop and its hooks."""

    request: ChatRequest
    context: RequestContext
    agent: AgentDefinition
    provider: ProviderClient
    system_prompt: SystemPromptResult
    tool_names: List[str]
    tool_schemas: List[Dict[str, Any]]
    messages: List[Dict[str, Any]] = field(default_factory=list)
    tools_used: List[str] = field(default_factory=list)
    steps: List[StepFinish] = field(default_factory=list)
    assistant_text: str = ""
    usage: Optional[UsageData] = None

    @property
    def helper_key(self) -> str:
        return self.agent.key

    @property
    def trace_id(self) -> str:
        return self.context.trace_id

    @property
    def last_user_message(self) -> Optional[str]:
        for message in reversed(self.request.messages):
            if message.role == "user":
                return message.content
        return None


class ChatOrchestrator:
    """Run RA-H chat turns against the configured orchestrator agents."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        tool_executor: Optional[ToolExecutor] = None,
        prompt_builder: Optional[SystemPromptBuilder] = None,
        cache_monitor: Optional[CacheStatsMonitor] = None,
        chat_log: Optional[ChatLogStore] = None,
        helper_logger: Optional[HelperLogger] = None,
        model_resolver: Optional[ModelResolver] = None,
        max_steps: int = MAX_STEPS,
    ) -> None:
        self.registry = registry or get_agent_registry()
        self.tools = tool_executor or get_tool_executor()
        self.prompt_builder = prompt_builder or SystemPromptBuilder(
            registry=self.registry, tool_executor=self.tools
        )
        self.cache_monitor = cache_monitor or get_cache_stats_monitor()
        self.chat_log = chat_log or get_chat_log_store()
        self.helper_logger = helper_logger or get_helper_logger()
        self.resolve_model = model_resolver or resolve_model
        self.max_steps = max_steps

    async def prepare(self, request: ChatRequest) -> ChatTurn:
        """Build the turn: request context, agent, system prompt, tools and model.

        Raises:
            ConfigurationError: no orchestrator agent is registered for the mode
            MissingCredentialError: no API key for the agent's provider
            UnsupportedModelError: the agent's model names an unknown provider
        """
        context = RequestContext(
            trace_id=request.trace_id or str(uuid.uuid4()),
            open_tabs=request.open_tabs,
            active_tab_id=request.active_tab_id,
            mode=request.mode,
            api_keys=request.api_keys,
        )
        bind_request_context(context)

        helper_key = helper_key_for_mode(request.mode)
        agent = self.registry.orchestrator_for_mode(request.mode)
        if agent is None:
            raise ConfigurationError(
                f"No orchestrator configured for mode '{request.mode}'",
                details={"helper": helper_key},
            )

        self.helper_logger.log_user_message(
            helper_key,
            history_messages(request.messages),
            [tab.id for tab in request.open_tabs],
            request.active_tab_id,
        )

        system_prompt = await self.prompt_builder.build(
            request.open_tabs, request.active_tab_id, helper_key
        )
        self.helper_logger.log_system_prompt(helper_key, system_prompt.as_text(), system_prompt.cache_hit)

        tool_names = agent.available_tools or default_tool_names_for_role(agent.role)
        provider = self.resolve_model(agent.model, request.api_keys)
        tool_schemas = self.tools.get_tool_schemas(tool_names, provider=provider.provider)

        messages = system_messages(system_prompt.blocks, provider.provider)
        messages.extend(history_messages(request.messages))

        if get_config().debug_cache:
            logger.debug(
                "System prompt cache structure",
                extra={
                    "helper": helper_key,
                    "blocks": [
                        {"chars": len(b.text), "cache_control": b.cache_control}
                        for b in system_prompt.blocks
                    ],
                },
            )

        logger.info(
            "Chat turn prepared",
            extra={
                "helper": helper_key,
                "trace_id": context.trace_id,
                "model": provider.model_name,
                "tools": len(tool_schemas),
                "messages": len(request.messages),
            },
        )
        return ChatTurn(
            request=request,
            context=context,
            agent=agent,
            provider=provider,
            system_prompt=system_prompt,
            tool_names=tool_names,
            tool_schemas=tool_schemas,
            messages=messages,
        )

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def on_tool_call(self, turn: ChatTurn, call: ToolCallEvent) -> None:
        self.helper_logger.log_tool_call(turn.helper_key, call.name, call.arguments)
        if call.name not in turn.tools_used:
            turn.tools_used.append(call.name)

    def on_tool_result(self, turn: ChatTurn, call: ToolCallEvent, result: Any) -> None:
        self.helper_logger.log_tool_result(turn.helper_key, call.name, result)

    def on_finish(self, turn: ChatTurn) -> Optional[UsageData]:
        """Aggregate usage over every step and assemble the turn's UsageData."""
        provider = turn.provider.provider
        if get_config().debug_cache:
            for index, step in enumerate(turn.steps):
                logger.debug(
                    "Step usage",
                    extra={
                        "step": index,
                        "usage": step.usage,
                        "provider_metadata": step.provider_metadata,
                    },
                )

        totals: UsageTotals = aggregate_result(provider, steps=turn.steps)
        if totals.is_empty():
            logger.info("No usage reported for turn", extra={"trace_id": turn.trace_id})
            return None

        if provider == "anthropic":
            stats = build_cache_stats(totals)
            self.cache_monitor.record(stats)
            logger.info(
                "Prompt cache stats",
                extra={"trace_id": turn.trace_id, **stats.model_dump(by_alias=True)},
            )

        model_used = canonical_model_id(turn.agent.model)
        cost = calculate_cost(
            CostInput(
                input_tokens=totals.input_tokens,
                output_tokens=totals.output_tokens,
                model_id=model_used,
                cache_write_tokens=totals.cache_write_tokens,
                cache_read_tokens=totals.cache_read_tokens,
            )
        )
        turn.usage = UsageData(
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            total_tokens=cost.total_tokens,
            cache_write_tokens=totals.cache_write_tokens,
            cache_read_tokens=totals.cache_read_tokens,
            cache_hit=totals.cache_read_tokens > 0,
            cache_savings_pct=savings_percentage(totals) if provider == "anthropic" else 0,
            estimated_cost_usd=cost.total_cost_usd,
            model_used=model_used,
            provider=provider,
            tools_used=list(turn.tools_used) or None,
            tool_calls_count=len(turn.tools_used) or None,
            trace_id=turn.trace_id,
            workflow_key=turn.context.workflow_key,
            workflow_node_id=turn.context.workflow_node_id,
            mode=turn.context.mode,
        )
        return turn.usage

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def stream(self, turn: ChatTurn) -> AsyncGenerator[ChatStreamChunk, None]:
        """Run up to ``max_steps`` model steps, executing tools between them."""
        bind_request_context(turn.context)
        message_id = uuid.uuid4().hex
        yield ChatStreamChunk(type="start", message_id=message_id)

        finish_reason = "stop"
        try:
            for step_index in range(self.max_steps):
                logger.debug(
                    f"Chat step {step_index + 1}/{self.max_steps}",
                    extra={"trace_id": turn.trace_id},
                )
                finish: Optional[StepFinish] = None
                async for event in turn.provider.stream_step(turn.messages, turn.tool_schemas or None):
                    if isinstance(event, TextDelta):
                        yield ChatStreamChunk(type="text-delta", message_id=message_id, delta=event.text)
                    elif isinstance(event, ToolCallEvent):
                        self.on_tool_call(turn, event)
                        yield ChatStreamChunk(
                            type="tool-call",
                            tool_call_id=event.call_id,
                            tool_name=event.name,
                            input=event.arguments,
                        )
                    elif isinstance(event, StepFinish):
                        finish = event

                if finish is None:
                    break
                turn.steps.append(finish)
                turn.assistant_text += finish.text
                finish_reason = finish.finish_reason
                if not finish.tool_calls:
                    break

                turn.messages.append(
                    {"role": "assistant", "content": finish.text, "tool_calls": finish.tool_calls}
                )
                for call in finish.tool_calls:
                    result = await self.tools.execute(call.name, call.arguments)
                    output = _parse_tool_output(result)
                    self.on_tool_result(turn, call, output)
                    turn.messages.append(
                        {"role": "tool", "tool_call_id": call.call_id, "name": call.name, "content": result}
                    )
                    yield ChatStreamChunk(
                        type="tool-result",
                        tool_call_id=call.call_id,
                        tool_name=call.name,
                        output=output,
                    )
        except Exception as exc:
            logger.exception(
                "Chat stream failed",
                extra={"helper": turn.helper_key, "trace_id": turn.trace_id},
            )
            self.helper_logger.log_error(turn.helper_key, exc, {"traceId": turn.trace_id})
            yield ChatStreamChunk(type="error", error_text=str(exc) or type(exc).__name__)
            return

        usage = self.on_finish(turn)
        if turn.assistant_text:
            self.helper_logger.log_assistant_response(turn.helper_key, turn.assistant_text)
        if usage is not None:
            self.chat_log.record(
                turn.helper_key,
                usage,
                user_message=turn.last_user_message,
                assistant_message=turn.assistant_text or None,
            )
        yield ChatStreamChunk(
            type="finish",
            message_id=message_id,
            finish_reason=finish_reason,
            usage=usage,
        )


_orchestrator: Optional[ChatOrchestrator] = None


def get_chat_orchestrator() -> ChatOrchestrator:
    """Get or create the chat orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator()
    return _orchestrator


__all__ = [
    "ChatOrchestrator",
    "ChatTurn",
    "MAX_STEPS",
    "filter_messages",
    "get_chat_orchestrator",
    "history_messages",
    "parse_chat_request",
    "system_messages",
]
