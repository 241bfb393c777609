"""Structured results published by the MCP graph tools."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NodeRecord(BaseModel):
    """A node as reported by ``rah_get_nodes``."""
    id: Optional[int] = Field(..., description="Node ID")
    title: Optional[str] = Field(..., description="Node title")
    content: Optional[str] = None
    link: Optional[str] = None
    dimensions: List[str] = Field(default_factory=list)
    updated_at: Optional[str] = None


class NodeSearchRecord(NodeRecord):
    """A node as reported by ``rah_search_nodes``."""
    description: Optional[str] = None


class AddNodeOutput(BaseModel):
    nodeId: Optional[int] = Field(..., description="ID of the created node")
    title: Optional[str] = None
    dimensions: List[str]
    message: str


class SearchNodesOutput(BaseModel):
    count: int
    nodes: List[NodeSearchRecord]


class UpdateNodeOutput(BaseModel):
    success: bool
    nodeId: Optional[int] = None
    message: str


class GetNodesOutput(BaseModel):
    count: int
    nodes: List[NodeRecord]


class CreateEdgeOutput(BaseModel):
    success: bool
    edgeId: int
    message: str


class ExplainedEdgeRecord(BaseModel):
    """Edge view of the HTTP bridge; type and weight come from the inferred context."""
    id: Optional[int] = None
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    type: Optional[str] = None
    weight: Optional[float] = None


class TypedEdgeRecord(BaseModel):
    """Edge view of the stdio bridge."""
    id: Optional[int] = None
    from_node_id: Optional[int] = None
    to_node_id: Optional[int] = None
    type: Optional[str] = None
    weight: Optional[float] = None


class ExplainedEdgesOutput(BaseModel):
    count: int
    edges: List[ExplainedEdgeRecord]


class TypedEdgesOutput(BaseModel):
    count: int
    edges: List[TypedEdgeRecord]


class MessageOutput(BaseModel):
    """Shared by the edge update and dimension delete tools."""
    success: bool
    message: str


class DimensionOutput(BaseModel):
    success: bool
    dimension: str
    message: str


class EmbeddingHit(BaseModel):
    nodeId: Optional[int] = None
    title: str
    chunkPreview: str
    similarity: float


class SearchEmbeddingsOutput(BaseModel):
    count: int
    results: List[EmbeddingHit]


class WorkflowSummary(BaseModel):
    key: Optional[str] = None
    displayName: Optional[str] = None
    description: Optional[str] = None
    enabled: bool


class WorkflowDetail(WorkflowSummary):
    instructions: str


class ListWorkflowsOutput(BaseModel):
    count: int
    workflows: List[WorkflowSummary]


class GetWorkflowOutput(BaseModel):
    """``success`` is false and ``workflow`` is null when the key is unknown."""
    success: bool
    workflow: Optional[WorkflowDetail] = None
    message: str


class ExecuteWorkflowOutput(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None


class ExtractedContentOutput(BaseModel):
    """Result of the webpage and PDF extractors."""
    success: bool
    title: str
    content: str
    chunk: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExtractedTranscriptOutput(BaseModel):
    success: bool
    title: str
    channel: str
    transcript: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


def output_schema(model: type[BaseModel]) -> Dict[str, Any]:
    """JSON schema published as a tool's ``outputSchema``."""
    return model.model_json_schema()


__all__ = [
    "AddNodeOutput",
    "CreateEdgeOutput",
    "DimensionOutput",
    "EmbeddingHit",
    "ExecuteWorkflowOutput",
    "ExplainedEdgeRecord",
    "ExplainedEdgesOutput",
    "ExtractedContentOutput",
    "ExtractedTranscriptOutput",
    "GetNodesOutput",
    "GetWorkflowOutput",
    "ListWorkflowsOutput",
    "MessageOutput",
    "NodeRecord",
    "NodeSearchRecord",
    "SearchEmbeddingsOutput",
    "SearchNodesOutput",
    "TypedEdgeRecord",
    "TypedEdgesOutput",
    "UpdateNodeOutput",
    "WorkflowDetail",
    "WorkflowSummary",
    "output_schema",
]
