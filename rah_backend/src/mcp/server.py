"""FastMCP server exposing the RA-H knowledge-graph tools.

Two variants share one tool set. The HTTP bridge (embedded in the desktop app)
creates edges from a free-text explanation and lets the REST API infer the
relationship type; the stdio bridge (launched by external assistants) takes an
explicit edge type and weight and additionally exposes the workflow and
content-extraction tools.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Dict, List, Literal, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from mcp.types import TextContent
from pydantic import BaseModel, ConfigDict, Field

from ..models.graph_tools import (
    AddNodeOutput,
    CreateEdgeOutput,
    DimensionOutput,
    ExecuteWorkflowOutput,
    ExplainedEdgesOutput,
    ExtractedContentOutput,
    ExtractedTranscriptOutput,
    GetNodesOutput,
    GetWorkflowOutput,
    ListWorkflowsOutput,
    MessageOutput,
    SearchEmbeddingsOutput,
    SearchNodesOutput,
    TypedEdgesOutput,
    UpdateNodeOutput,
    output_schema,
)
from ..services import graph_operations as ops
from ..services.errors import RahError
from ..services.graph_operations import ToolOutcome
from ..services.rah_api_client import RahApiClient

logger = logging.getLogger(__name__)

Variant = Literal["http", "stdio"]

SERVER_NAMES: Dict[str, str] = {"http": "ra-h-local-mcp", "stdio": "ra-h-local-stdio"}

INSTRUCTIONS = " ".join(
    [
        "Use rah.add_node to summarize conversations or files into nodes with dimensions.",
        "Use rah.search_nodes to recall prior notes before you suggest creating new ones.",
        "All operations happen locally on this device; data never leaves 127.0.0.1.",
    ]
)

URL_PATTERN = r"^[A-Za-z][A-Za-z0-9+.\-]*://\S+$"

BASE_TOOLS = (
    "rah_add_node",
    "rah_search_nodes",
    "rah_update_node",
    "rah_get_nodes",
    "rah_create_edge",
    "rah_query_edges",
    "rah_update_edge",
    "rah_create_dimension",
    "rah_update_dimension",
    "rah_delete_dimension",
    "rah_search_embeddings",
)
STDIO_ONLY_TOOLS = (
    "rah_list_workflows",
    "rah_get_workflow",
    "rah_execute_workflow",
    "rah_extract_url",
    "rah_extract_youtube",
    "rah_extract_pdf",
)


class NodeUpdates(BaseModel):
    """Fields accepted by ``rah_update_node``; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, description="New title")
    content: Optional[str] = Field(default=None, description="Content to APPEND (not replace)")
    link: Optional[str] = Field(default=None, description="New link")
    dimensions: Optional[List[str]] = Field(
        default=None, description="New dimensions (replaces existing)"
    )
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, description="New metadata (replaces existing)"
    )


async def _run(
    tool_name: str, operation: Awaitable[ToolOutcome], **log_fields: Any
) -> ToolResult:
    """Await a graph operation and wrap it as a tool result.

    Domain failures become ``ToolError`` so the client receives an RPC error
    carrying the REST message.
    """
    start_time = time.time()
    try:
        outcome = await operation
    except RahError as exc:
        logger.warning(
            "MCP tool failed",
            extra={"tool_name": tool_name, "error": exc.message, **log_fields},
        )
        raise ToolError(exc.message) from exc

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "MCP tool called",
        extra={"tool_name": tool_name, **log_fields, "duration_ms": f"{duration_ms:.2f}"},
    )
    return ToolResult(
        content=[TextContent(type="text", text=outcome.summary)],
        structured_content=outcome.structured,
    )


def _register_node_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_add_node",
        output_schema=output_schema(AddNodeOutput),
        title="Add RA-H node",
        description="Create a new node in the local RA-H knowledge base.",
    )
    async def add_node(
        title: str = Field(..., min_length=1, max_length=160, description="Node title"),
        dimensions: List[str] = Field(
            ..., min_length=1, max_length=5, description="1-5 dimensions/tags for the node"
        ),
        content: Optional[str] = Field(default=None, max_length=20000, description="Node body"),
        link: Optional[str] = Field(default=None, pattern=URL_PATTERN, description="Source URL"),
        description: Optional[str] = Field(
            default=None, max_length=2000, description="Short description"
        ),
        metadata: Optional[Dict[str, Any]] = Field(default=None, description="Extra metadata"),
        chunk: Optional[str] = Field(
            default=None, max_length=50000, description="Full source text to embed"
        ),
    ) -> ToolResult:
        return await _run(
            "rah_add_node",
            ops.add_node(
                client,
                title=title,
                dimensions=dimensions,
                content=content,
                link=link,
                description=description,
                metadata=metadata,
                chunk=chunk,
            ),
            node_title=title,
        )

    @mcp.tool(
        name="rah_search_nodes",
        output_schema=output_schema(SearchNodesOutput),
        title="Search RA-H nodes",
        description="Find existing RA-H entries that mention a topic before adding new ones.",
    )
    async def search_nodes(
        query: str = Field(..., min_length=1, max_length=400, description="Search text"),
        limit: Optional[int] = Field(default=None, ge=1, le=25, description="Max nodes (1-25)"),
        dimensions: Optional[List[str]] = Field(
            default=None, max_length=5, description="Only nodes tagged with these dimensions"
        ),
    ) -> ToolResult:
        return await _run(
            "rah_search_nodes",
            ops.search_nodes(client, query, limit=limit, dimensions=dimensions),
            query=query,
        )

    @mcp.tool(
        name="rah_update_node",
        output_schema=output_schema(UpdateNodeOutput),
        title="Update RA-H node",
        description=(
            "Update an existing node. Content is APPENDED (not replaced). Dimensions are replaced."
        ),
    )
    async def update_node(
        id: int = Field(..., gt=0, description="The ID of the node to update"),
        updates: NodeUpdates = Field(..., description="Fields to change"),
    ) -> ToolResult:
        return await _run(
            "rah_update_node",
            ops.update_node(client, id, updates.model_dump(exclude_none=True)),
            node_id=id,
        )

    @mcp.tool(
        name="rah_get_nodes",
        output_schema=output_schema(GetNodesOutput),
        title="Get RA-H nodes by ID",
        description="Load full node records by their IDs.",
    )
    async def get_nodes(
        nodeIds: List[int] = Field(
            ..., min_length=1, max_length=10, description="List of node IDs to load"
        ),
    ) -> ToolResult:
        if any(node_id <= 0 for node_id in nodeIds):
            raise ToolError("nodeIds must be positive integers.")
        return await _run(
            "rah_get_nodes",
            ops.get_nodes(client, nodeIds),
            requested=len(nodeIds),
        )


def _register_explained_edge_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_create_edge",
        output_schema=output_schema(CreateEdgeOutput),
        title="Create RA-H edge",
        description="Create a connection between two nodes.",
    )
    async def create_edge(
        sourceId: int = Field(..., gt=0, description="Source node ID"),
        targetId: int = Field(..., gt=0, description="Target node ID"),
        explanation: str = Field(
            ...,
            min_length=1,
            description="REQUIRED: Why does this connection exist? Be specific.",
        ),
    ) -> ToolResult:
        return await _run(
            "rah_create_edge",
            ops.create_explained_edge(client, sourceId, targetId, explanation),
            source_id=sourceId,
            target_id=targetId,
        )

    @mcp.tool(
        name="rah_query_edges",
        output_schema=output_schema(ExplainedEdgesOutput),
        title="Query RA-H edges",
        description="Find connections between nodes.",
    )
    async def query_edges(
        nodeId: Optional[int] = Field(
            default=None, gt=0, description="Find edges connected to this node"
        ),
        limit: Optional[int] = Field(default=None, ge=1, le=50, description="Max edges to return"),
    ) -> ToolResult:
        return await _run(
            "rah_query_edges",
            ops.query_edges(client, node_id=nodeId, limit=limit, style="explained"),
            node_id=nodeId,
        )

    @mcp.tool(
        name="rah_update_edge",
        output_schema=output_schema(MessageOutput),
        title="Update RA-H edge",
        description="Update an existing edge connection.",
    )
    async def update_edge(
        id: int = Field(..., gt=0, description="Edge ID to update"),
        explanation: Optional[str] = Field(
            default=None,
            min_length=1,
            description="New explanation text (will re-infer relationship type)",
        ),
    ) -> ToolResult:
        return await _run(
            "rah_update_edge",
            ops.update_explained_edge(client, id, explanation),
            edge_id=id,
        )


def _register_typed_edge_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_create_edge",
        output_schema=output_schema(CreateEdgeOutput),
        title="Create RA-H edge",
        description="Create a connection between two nodes.",
    )
    async def create_edge(
        sourceId: int = Field(..., gt=0, description="Source node ID"),
        targetId: int = Field(..., gt=0, description="Target node ID"),
        type: Optional[str] = Field(default=None, description="Edge type/label"),
        weight: Optional[float] = Field(default=None, ge=0, le=1, description="Edge weight 0-1"),
    ) -> ToolResult:
        return await _run(
            "rah_create_edge",
            ops.create_typed_edge(client, sourceId, targetId, edge_type=type, weight=weight),
            source_id=sourceId,
            target_id=targetId,
        )

    @mcp.tool(
        name="rah_query_edges",
        output_schema=output_schema(TypedEdgesOutput),
        title="Query RA-H edges",
        description="Find connections between nodes.",
    )
    async def query_edges(
        nodeId: Optional[int] = Field(
            default=None, gt=0, description="Find edges connected to this node"
        ),
        limit: Optional[int] = Field(default=None, ge=1, le=50, description="Max edges to return"),
    ) -> ToolResult:
        return await _run(
            "rah_query_edges",
            ops.query_edges(client, node_id=nodeId, limit=limit, style="typed"),
            node_id=nodeId,
        )

    @mcp.tool(
        name="rah_update_edge",
        output_schema=output_schema(MessageOutput),
        title="Update RA-H edge",
        description="Update an existing edge connection.",
    )
    async def update_edge(
        id: int = Field(..., gt=0, description="Edge ID to update"),
        type: Optional[str] = Field(default=None, description="New edge type/label"),
        weight: Optional[float] = Field(
            default=None, ge=0, le=1, description="New edge weight 0-1"
        ),
    ) -> ToolResult:
        return await _run(
            "rah_update_edge",
            ops.update_typed_edge(client, id, edge_type=type, weight=weight),
            edge_id=id,
        )


def _register_dimension_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_create_dimension",
        output_schema=output_schema(DimensionOutput),
        title="Create RA-H dimension",
        description="Create a new dimension/tag for organizing nodes.",
    )
    async def create_dimension(
        name: str = Field(..., min_length=1, description="Dimension name"),
        description: Optional[str] = Field(
            default=None, max_length=500, description="Dimension description"
        ),
        isPriority: Optional[bool] = Field(
            default=None, description="Lock dimension for auto-assignment"
        ),
    ) -> ToolResult:
        return await _run(
            "rah_create_dimension",
            ops.create_dimension(client, name, description=description, is_priority=isPriority),
            dimension=name,
        )

    @mcp.tool(
        name="rah_update_dimension",
        output_schema=output_schema(DimensionOutput),
        title="Update RA-H dimension",
        description="Update dimension properties (rename, description, lock/unlock).",
    )
    async def update_dimension(
        name: str = Field(..., min_length=1, description="Current dimension name"),
        newName: Optional[str] = Field(default=None, description="New name (for renaming)"),
        description: Optional[str] = Field(
            default=None, max_length=500, description="New description"
        ),
        isPriority: Optional[bool] = Field(default=None, description="Lock/unlock dimension"),
    ) -> ToolResult:
        return await _run(
            "rah_update_dimension",
            ops.update_dimension(
                client,
                name,
                new_name=newName,
                description=description,
                is_priority=isPriority,
            ),
            dimension=name,
        )

    @mcp.tool(
        name="rah_delete_dimension",
        output_schema=output_schema(MessageOutput),
        title="Delete RA-H dimension",
        description="Delete a dimension and remove it from all nodes.",
    )
    async def delete_dimension(
        name: str = Field(..., min_length=1, description="Dimension name to delete"),
    ) -> ToolResult:
        return await _run("rah_delete_dimension", ops.delete_dimension(client, name), dimension=name)

    @mcp.tool(
        name="rah_search_embeddings",
        output_schema=output_schema(SearchEmbeddingsOutput),
        title="Semantic search RA-H",
        description="Search node content using semantic similarity (vector search).",
    )
    async def search_embeddings(
        query: str = Field(..., min_length=1, description="Semantic search query"),
        limit: Optional[int] = Field(default=None, ge=1, le=20, description="Max results"),
    ) -> ToolResult:
        return await _run(
            "rah_search_embeddings",
            ops.search_embeddings(client, query, limit=limit),
            query=query,
        )


def _register_workflow_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_list_workflows",
        output_schema=output_schema(ListWorkflowsOutput),
        title="List RA-H workflows",
        description="List all available workflows.",
    )
    async def list_workflows() -> ToolResult:
        return await _run("rah_list_workflows", ops.list_workflows(client))

    @mcp.tool(
        name="rah_get_workflow",
        output_schema=output_schema(GetWorkflowOutput),
        title="Get RA-H workflow",
        description=(
            'Fetch a workflow definition by key (e.g., "integrate", "prep"). '
            "Returns instructions that can be followed."
        ),
    )
    async def get_workflow(
        workflowKey: str = Field(
            ..., description='Workflow key to fetch (e.g., "integrate", "prep")'
        ),
    ) -> ToolResult:
        return await _run(
            "rah_get_workflow", ops.get_workflow(client, workflowKey), workflow_key=workflowKey
        )

    @mcp.tool(
        name="rah_execute_workflow",
        output_schema=output_schema(ExecuteWorkflowOutput),
        title="Execute RA-H workflow",
        description='Execute a predefined workflow (e.g., "integrate" for connection discovery).',
    )
    async def execute_workflow(
        workflowKey: str = Field(
            ..., description='Workflow key to execute (e.g., "integrate")'
        ),
        nodeId: Optional[int] = Field(
            default=None, gt=0, description="Target node ID for the workflow"
        ),
    ) -> ToolResult:
        return await _run(
            "rah_execute_workflow",
            ops.execute_workflow(client, workflowKey, node_id=nodeId),
            workflow_key=workflowKey,
            node_id=nodeId,
        )


def _register_extraction_tools(mcp: FastMCP, client: RahApiClient) -> None:
    @mcp.tool(
        name="rah_extract_url",
        output_schema=output_schema(ExtractedContentOutput),
        title="Extract URL content",
        description=(
            "Extract content from a webpage URL. "
            "Returns title, content, and metadata for creating nodes."
        ),
    )
    async def extract_url(
        url: str = Field(
            ..., pattern=URL_PATTERN, description="URL of the webpage to extract content from"
        ),
    ) -> ToolResult:
        return await _run("rah_extract_url", ops.extract_url(client, url), url=url)

    @mcp.tool(
        name="rah_extract_youtube",
        output_schema=output_schema(ExtractedTranscriptOutput),
        title="Extract YouTube transcript",
        description=(
            "Extract transcript from a YouTube video. "
            "Returns title, channel, transcript, and metadata."
        ),
    )
    async def extract_youtube(
        url: str = Field(..., description="YouTube video URL to extract transcript from"),
    ) -> ToolResult:
        return await _run("rah_extract_youtube", ops.extract_youtube(client, url), url=url)

    @mcp.tool(
        name="rah_extract_pdf",
        output_schema=output_schema(ExtractedContentOutput),
        title="Extract PDF content",
        description=(
            "Extract content from a PDF file URL. "
            "Returns title, content, and metadata for creating nodes."
        ),
    )
    async def extract_pdf(
        url: str = Field(
            ..., pattern=URL_PATTERN, description="URL of the PDF file to extract content from"
        ),
    ) -> ToolResult:
        return await _run("rah_extract_pdf", ops.extract_pdf(client, url), url=url)


def create_server(variant: Variant = "http", api_client: Optional[RahApiClient] = None) -> FastMCP:
    """Build a FastMCP server for one transport variant."""
    if variant not in SERVER_NAMES:
        raise ValueError(f"Unknown MCP variant: {variant}")

    client = api_client or RahApiClient()
    mcp = FastMCP(SERVER_NAMES[variant], instructions=INSTRUCTIONS)

    _register_node_tools(mcp, client)
    if variant == "http":
        _register_explained_edge_tools(mcp, client)
    else:
        _register_typed_edge_tools(mcp, client)
    _register_dimension_tools(mcp, client)

    if variant == "stdio":
        _register_workflow_tools(mcp, client)
        _register_extraction_tools(mcp, client)

    logger.debug("MCP server created", extra={"variant": variant, "server_name": SERVER_NAMES[variant]})
    return mcp


__all__ = ["BASE_TOOLS", "STDIO_ONLY_TOOLS", "NodeUpdates", "create_server"]
