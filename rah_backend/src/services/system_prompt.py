"""Assemble the ordered system prompt blocks for a chat turn.

Block order: base context plus agent instructions, available tools,
available workflows (primary orchestrators only), then the current focus.
The first three are stable across turns and carry an Anthropic cache
directive when the helper runs on an Anthropic model; the focus block
changes with the open tabs and is never cached.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from ..models.chat import NodeTab, SystemPromptBlock
from .agent_registry import (
    AgentRegistry,
    default_tool_names_for_role,
    get_agent_registry,
    is_primary_orchestrator,
)
from .errors import RahError
from .prompt_loader import PromptLoader, PromptLoaderError, get_prompt_loader
from .rah_api_client import RahApiClient
from .tool_executor import ToolExecutor, get_tool_executor

logger = logging.getLogger(__name__)

EPHEMERAL = {"type": "ephemeral"}
PREVIEW_WORDS = 25
FOCUS_RULE = "==================================="


class SystemPromptResult(BaseModel):
    blocks: List[SystemPromptBlock] = Field(default_factory=list)
    cache_hit: bool = False

    def as_text(self) -> str:
        return "".join(block.text for block in self.blocks)


def truncate_words(text: str, max_words: int = PREVIEW_WORDS) -> str:
    words = text.strip().split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + "…"


def _parse_metadata(metadata: Any) -> Dict[str, Any]:
    if isinstance(metadata, dict):
        return metadata
    if isinstance(metadata, str) and metadata:
        try:
            parsed = json.loads(metadata)
        except json.JSONDecodeError:
            logger.warning("Failed to parse node metadata JSON")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _approx_k(chars: int) -> int:
    return max(1, math.floor(chars / 1000 + 0.5))


def describe_chunk_status(tab: NodeTab) -> str:
    status = tab.chunk_status or "unknown"
    chunk_length = len(tab.chunk) if isinstance(tab.chunk, str) else 0
    approx = f" (~{_approx_k(chunk_length)}k chars)" if chunk_length > 0 else ""

    transcript_length = _parse_metadata(tab.metadata).get("transcript_length")
    transcript = ""
    if isinstance(transcript_length, (int, float)) and not isinstance(transcript_length, bool) and transcript_length > 0:
        transcript = f", transcript ≈{_approx_k(transcript_length)}k chars"

    embeddings = "available" if status == "chunked" or chunk_length > 0 else "missing"
    return f"Chunks: {status}{approx}{transcript}; Embeddings: {embeddings}"


def _tab_body(tab: NodeTab) -> str:
    return (
        f'ID: {tab.id} | "{tab.title or "Untitled"}"\n'
        f"{truncate_words(tab.content or 'No content')}\n"
        f"Link: {tab.link or 'No link'}"
    )


def build_focus_block(open_tabs: Iterable[NodeTab], active_tab_id: Optional[int]) -> str:
    """Render the open tabs, active tab first, as the uncached focus block."""
    tabs = [tab for tab in open_tabs if tab is not None]
    if not tabs:
        return "\n=== CURRENT FOCUS ===\nNo nodes currently in focus."

    text = "=== CURRENT FOCUS ==="
    text += "\n25-word previews; use queryNodes/searchContentEmbeddings for full detail\n"

    active = next((tab for tab in tabs if tab.id == active_tab_id), None)
    others = [tab for tab in tabs if tab.id != active_tab_id]

    if active is not None:
        text += f"\n[PRIMARY - Tab 1]\n{_tab_body(active)}"
        text += f"\n{describe_chunk_status(active)}"

    for index, tab in enumerate(others):
        text += f"\n\n[Tab {index + 2}]\n{_tab_body(tab)}\n{describe_chunk_status(tab)}"

    text += f"\n{FOCUS_RULE}"
    return text


def build_tools_block(tools: List[Dict[str, str]]) -> str:
    described = [tool for tool in tools if (tool.get("description") or "").strip()]
    if not described:
        return ""
    lines = ["=== AVAILABLE TOOLS ==="]
    for tool in described:
        lines.append(f"\n## {tool['name']}\n{tool['description'].strip()}")
    return "\n".join(lines)


def build_workflows_block(workflows: List[Dict[str, Any]]) -> Optional[str]:
    if not workflows:
        return None
    lines = ["=== AVAILABLE WORKFLOWS ==="]
    for workflow in workflows:
        lines.append(f"\n## {workflow.get('displayName')} ({workflow.get('key')})")
        lines.append(workflow.get("description") or "")
    return "\n".join(lines)


class SystemPromptBuilder:
    """Builds :class:`SystemPromptResult` objects from agent and focus state."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        loader: Optional[PromptLoader] = None,
        tool_executor: Optional[ToolExecutor] = None,
        api_client: Optional[RahApiClient] = None,
    ) -> None:
        self.registry = registry or get_agent_registry()
        self.loader = loader or get_prompt_loader()
        self.tools = tool_executor or get_tool_executor()
        self.api = api_client or self.tools.api

    def _instructions(self, helper_key: str, system_prompt: str) -> str:
        try:
            base = self.loader.load("base_context.md").strip()
            instructions = self.loader.load(
                "agent_instructions.md",
                {"helper_key": helper_key, "system_prompt": system_prompt},
            ).strip()
        except PromptLoaderError as exc:
            logger.error("Base prompt templates unavailable", extra={"error": str(exc)})
            raise
        return "\n\n".join(section for section in (base, instructions) if section)

    async def _enabled_workflows(self, helper_key: str) -> List[Dict[str, Any]]:
        if not is_primary_orchestrator(helper_key):
            return []
        try:
            body = await self.api.get("/api/workflows")
        except RahError as exc:
            logger.warning(
                "Workflow definitions load failed",
                extra={"helper": helper_key, "error": exc.message},
            )
            return []
        data = body.get("data") if isinstance(body, dict) else None
        return [w for w in data or [] if isinstance(w, dict) and w.get("enabled")]

    async def build(
        self,
        open_tabs: Iterable[NodeTab],
        active_tab_id: Optional[int],
        helper_key: str,
    ) -> SystemPromptResult:
        agent = self.registry.get_agent(helper_key)
        cache_control = EPHEMERAL if agent is not None and agent.is_anthropic else None
        blocks: List[SystemPromptBlock] = []

        system_prompt = agent.system_prompt(self.loader) if agent else "No instructions provided."
        instructions = self._instructions(helper_key, system_prompt)
        if instructions:
            blocks.append(SystemPromptBlock(text=instructions, cache_control=cache_control))

        if agent is not None and agent.available_tools:
            tool_names = agent.available_tools
        else:
            role = agent.role if agent is not None else "orchestrator"
            tool_names = default_tool_names_for_role("executor" if role == "executor" else "orchestrator")
        tools_block = build_tools_block(self.tools.describe_tools(tool_names))
        if tools_block.strip():
            blocks.append(SystemPromptBlock(text=tools_block, cache_control=cache_control))

        workflows_block = build_workflows_block(await self._enabled_workflows(helper_key))
        if workflows_block and workflows_block.strip():
            blocks.append(SystemPromptBlock(text=workflows_block, cache_control=cache_control))

        blocks.append(SystemPromptBlock(text=build_focus_block(open_tabs, active_tab_id)))
        return SystemPromptResult(blocks=blocks, cache_hit=False)


async def build_system_prompt_blocks(
    open_tabs: Iterable[NodeTab],
    active_tab_id: Optional[int],
    helper_key: str,
    builder: Optional[SystemPromptBuilder] = None,
) -> SystemPromptResult:
    return await (builder or SystemPromptBuilder()).build(open_tabs, active_tab_id, helper_key)


__all__ = [
    "SystemPromptBuilder",
    "SystemPromptResult",
    "build_focus_block",
    "build_system_prompt_blocks",
    "build_tools_block",
    "build_workflows_block",
    "describe_chunk_status",
    "truncate_words",
]
