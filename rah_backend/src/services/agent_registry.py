"""Code-defined agent registry and role-based tool sets."""

from __future__ import annotations

import logging
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .prompt_loader import PromptLoader, PromptLoaderError, get_prompt_loader

logger = logging.getLogger(__name__)

AgentRole = Literal["orchestrator", "executor", "planner"]

# Read-only graph queries (every agent)
CORE_TOOLS: List[str] = [
    "queryNodes",
    "getNodesById",
    "queryEdge",
    "queryDimensions",
    "searchContentEmbeddings",
]

# Reasoning and workflow hand-off
ORCHESTRATION_TOOLS: List[str] = [
    "think",
    "executeWorkflow",
]

# Graph writes and content extraction
EXECUTION_TOOLS: List[str] = [
    "createNode",
    "updateNode",
    "createEdge",
    "updateEdge",
    "createDimension",
    "updateDimension",
    "lockDimension",
    "unlockDimension",
    "deleteDimension",
    "youtubeExtract",
    "websiteExtract",
    "paperExtract",
]

TOOL_GROUPS: Dict[str, List[str]] = {
    "core": CORE_TOOLS,
    "orchestration": ORCHESTRATION_TOOLS,
    "execution": EXECUTION_TOOLS,
}

ORCHESTRATOR_TOOL_NAMES: List[str] = [*CORE_TOOLS, "think", "executeWorkflow", *EXECUTION_TOOLS]
EXECUTOR_TOOL_NAMES: List[str] = [*CORE_TOOLS, "think", *EXECUTION_TOOLS]
PLANNER_TOOL_NAMES: List[str] = [*CORE_TOOLS, "think", "updateNode"]

PRIMARY_ORCHESTRATORS = ("ra-h", "ra-h-easy")


def default_tool_names_for_role(role: str) -> List[str]:
    """Return a fresh list of the default tool names for ``role``.

    Unknown roles fall back to the executor set.
    """
    if role == "orchestrator":
        return list(ORCHESTRATOR_TOOL_NAMES)
    if role == "planner":
        return list(PLANNER_TOOL_NAMES)
    return list(EXECUTOR_TOOL_NAMES)


def tool_group(tool_name: str) -> Optional[str]:
    for group, names in TOOL_GROUPS.items():
        if tool_name in names:
            return group
    return None


def is_primary_orchestrator(helper_key: str) -> bool:
    return helper_key in PRIMARY_ORCHESTRATORS


class AgentDefinition(BaseModel):
    """A named persona: model, role, prompt template and tool allow-list."""

    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    display_name: str
    description: str
    model: str = Field(..., description="provider/modelName identifier")
    role: AgentRole
    prompt_template: str = Field(..., description="Template path under prompts/")
    available_tools: List[str] = Field(default_factory=list)
    enabled: bool = True

    @property
    def provider(self) -> str:
        return self.model.partition("/")[0]

    @property
    def is_anthropic(self) -> bool:
        return self.provider == "anthropic"

    def system_prompt(self, loader: Optional[PromptLoader] = None) -> str:
        loader = loader or get_prompt_loader()
        try:
            return loader.load(self.prompt_template, {"agent": self}).strip()
        except PromptLoaderError as exc:
            logger.warning(
                "Agent prompt unavailable",
                extra={"agent": self.key, "template": self.prompt_template, "error": str(exc)},
            )
            return "No instructions provided."


AGENTS: Dict[str, AgentDefinition] = {
    "ra-h": AgentDefinition(
        id=1,
        key="ra-h",
        display_name="ra-h (hard)",
        description="Opinionated orchestrator agent",
        model="anthropic/claude-sonnet-4.5",
        role="orchestrator",
        prompt_template="agents/ra-h.md",
        available_tools=default_tool_names_for_role("orchestrator"),
    ),
    "ra-h-easy": AgentDefinition(
        id=4,
        key="ra-h-easy",
        display_name="ra-h (easy)",
        description="Fast, low-latency orchestrator",
        model="openai/gpt-5-mini",
        role="orchestrator",
        prompt_template="agents/ra-h-easy.md",
        available_tools=default_tool_names_for_role("orchestrator"),
    ),
    "mini-rah": AgentDefinition(
        id=2,
        key="mini-rah",
        display_name="mini ra-h",
        description="Executor agent for delegated tasks",
        model="openai/gpt-4o-mini",
        role="executor",
        prompt_template="agents/mini-rah.md",
        available_tools=default_tool_names_for_role("executor"),
    ),
    "wise-rah": AgentDefinition(
        id=3,
        key="wise-rah",
        display_name="wise ra-h",
        description="Complex workflow planner and orchestrator",
        model="openai/gpt-5",
        role="planner",
        prompt_template="agents/wise-rah.md",
        available_tools=default_tool_names_for_role("planner"),
    ),
}


class AgentRegistry:
    """Lookup over a fixed set of agent definitions."""

    def __init__(self, agents: Optional[Dict[str, AgentDefinition]] = None) -> None:
        self._agents = dict(AGENTS if agents is None else agents)

    def get_agent(self, key: str) -> Optional[AgentDefinition]:
        return self._agents.get(key)

    def get_agent_by_id(self, agent_id: int) -> Optional[AgentDefinition]:
        return next((a for a in self._agents.values() if a.id == agent_id), None)

    def enabled_agents(self) -> List[AgentDefinition]:
        return [a for a in self._agents.values() if a.enabled]

    def orchestrator_for_mode(self, mode: str) -> Optional[AgentDefinition]:
        return self._agents.get(helper_key_for_mode(mode))


def helper_key_for_mode(mode: str) -> str:
    return "ra-h" if mode == "hard" else "ra-h-easy"


_registry: Optional[AgentRegistry] = None


def get_agent_registry() -> AgentRegistry:
    global _registry
    if _registry is None:
        _registry = AgentRegistry()
    return _registry


__all__ = [
    "AgentDefinition",
    "AgentRegistry",
    "AgentRole",
    "CORE_TOOLS",
    "ORCHESTRATION_TOOLS",
    "EXECUTION_TOOLS",
    "TOOL_GROUPS",
    "default_tool_names_for_role",
    "get_agent_registry",
    "helper_key_for_mode",
    "is_primary_orchestrator",
    "tool_group",
]
