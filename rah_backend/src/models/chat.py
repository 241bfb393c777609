"""Pydantic models for the RA-H chat endpoint and usage telemetry."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApiKeyOverrides(BaseModel):
    """Per-request provider keys; blank values count as absent."""
    openai: Optional[str] = Field(None, description="OpenAI key override")
    anthropic: Optional[str] = Field(None, description="Anthropic key override")

    @field_validator("openai", "anthropic", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        cleaned = value.strip()
        return cleaned or None


class NodeTab(BaseModel):
    """An open node tab sent by the UI as focus context."""
    model_config = ConfigDict(extra="allow")

    id: int = Field(..., description="Node ID")
    title: Optional[str] = Field(None, description="Node title")
    content: Optional[str] = Field(None, description="Node content/notes")
    link: Optional[str] = Field(None, description="Source link")
    chunk: Optional[str] = Field(None, description="Raw chunked source text")
    chunk_status: Optional[Literal["not_chunked", "chunked"]] = Field(
        None, description="Embedding/chunking status"
    )
    dimensions: List[str] = Field(default_factory=list, description="Dimension tags")
    metadata: Optional[Any] = Field(None, description="Node metadata (dict or JSON string)")

    @field_validator("chunk_status", mode="before")
    @classmethod
    def _unknown_status_to_none(cls, value: Any) -> Optional[str]:
        return value if value in ("not_chunked", "chunked") else None


class ChatMessage(BaseModel):
    """A single conversation message after filtering."""
    role: Literal["user", "assistant", "system"] = Field(..., description="Message role")
    content: str = Field(..., description="Plain text content")


class ChatRequest(BaseModel):
    """Request payload for POST /api/rah/chat."""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    open_tabs: List[NodeTab] = Field(default_factory=list, alias="openTabs")
    active_tab_id: Optional[int] = Field(None, alias="activeTabId")
    current_view: Optional[str] = Field(None, alias="currentView")
    session_id: Optional[str] = Field(None, alias="sessionId")
    trace_id: Optional[str] = Field(None, alias="traceId")
    mode: Literal["easy", "hard"] = Field("easy")
    api_keys: ApiKeyOverrides = Field(default_factory=ApiKeyOverrides, alias="apiKeys")


class SystemPromptBlock(BaseModel):
    """One ordered section of the system prompt."""
    text: str = Field(..., description="Block text")
    cache_control: Optional[Dict[str, str]] = Field(
        None, description="Provider cache directive, e.g. {'type': 'ephemeral'}"
    )


class CacheStats(BaseModel):
    """Prompt-cache counters for the most recent Anthropic turn."""
    model_config = ConfigDict(populate_by_name=True)

    cache_creation_input_tokens: int = Field(0, alias="cacheCreationInputTokens")
    cache_read_input_tokens: int = Field(0, alias="cacheReadInputTokens")
    input_tokens: int = Field(0, alias="inputTokens")
    output_tokens: int = Field(0, alias="outputTokens")
    savings_percentage: int = Field(0, alias="savingsPercentage")


class UsageData(BaseModel):
    """Usage telemetry produced once per completed chat turn."""
    model_config = ConfigDict(populate_by_name=True)

    input_tokens: int = Field(0, alias="inputTokens")
    output_tokens: int = Field(0, alias="outputTokens")
    total_tokens: int = Field(0, alias="totalTokens")
    cache_write_tokens: int = Field(0, alias="cacheWriteTokens")
    cache_read_tokens: int = Field(0, alias="cacheReadTokens")
    cache_hit: bool = Field(False, alias="cacheHit")
    cache_savings_pct: int = Field(0, alias="cacheSavingsPct")
    estimated_cost_usd: float = Field(0.0, alias="estimatedCostUsd")
    model_used: str = Field(..., alias="modelUsed")
    provider: Literal["anthropic", "openai"]
    tools_used: Optional[List[str]] = Field(None, alias="toolsUsed")
    tool_calls_count: Optional[int] = Field(None, alias="toolCallsCount")
    trace_id: str = Field(..., alias="traceId")
    workflow_key: Optional[str] = Field(None, alias="workflowKey")
    workflow_node_id: Optional[int] = Field(None, alias="workflowNodeId")
    mode: Literal["easy", "hard"]


class ChatStreamChunk(BaseModel):
    """Server-sent UI message chunk for streaming chat responses."""
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["start", "text-delta", "tool-call", "tool-result", "finish", "error"]
    message_id: Optional[str] = Field(None, alias="messageId")
    delta: Optional[str] = Field(None, description="Text fragment (text-delta only)")
    tool_call_id: Optional[str] = Field(None, alias="toolCallId")
    tool_name: Optional[str] = Field(None, alias="toolName")
    input: Optional[Dict[str, Any]] = Field(None, description="Tool input (tool-call only)")
    output: Optional[Any] = Field(None, description="Tool output (tool-result only)")
    finish_reason: Optional[str] = Field(None, alias="finishReason")
    usage: Optional[UsageData] = Field(None, description="Turn usage (finish only)")
    error_text: Optional[str] = Field(None, alias="errorText")

    def to_sse_data(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
