"""Knowledge-graph operations shared by the MCP bridges and the chat tools.

Every operation takes a :class:`RahApiClient`, performs one (occasionally a
few) REST calls against the sibling RA-H API and normalises the response into
a :class:`ToolOutcome`: a one-line human summary plus the structured payload
the calling transport returns. Transport concerns (RPC error codes, schema
declaration) stay in the adapters.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

from .errors import ToolValidationError, UpstreamRequestError
from .rah_api_client import RahApiClient

logger = logging.getLogger(__name__)

MAX_DIMENSIONS = 5
EdgeStyle = Literal["explained", "typed"]


class ToolOutcome(BaseModel):
    """Result of a graph operation."""

    summary: str
    structured: Dict[str, Any] = Field(default_factory=dict)


def sanitize_dimensions(raw: Any) -> List[str]:
    """Keep non-empty trimmed strings, de-duplicated case-insensitively, at most five.

    The first spelling of a dimension wins; non-list input yields ``[]``.
    """
    if not isinstance(raw, (list, tuple)):
        return []
    result: List[str] = []
    seen = set()
    for value in raw:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if not trimmed:
            continue
        lowered = trimmed.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        result.append(trimmed)
        if len(result) >= MAX_DIMENSIONS:
            break
    return result


def _clamp(value: Optional[int], default: int, low: int, high: int) -> int:
    if value is None:
        return default
    return min(max(int(value), low), high)


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _data_list(body: Any) -> List[Dict[str, Any]]:
    data = body.get("data") if isinstance(body, dict) else None
    return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []


def _record(body: Any, *keys: str) -> Optional[Dict[str, Any]]:
    if not isinstance(body, dict):
        return None
    for key in keys:
        value = body.get(key)
        if isinstance(value, dict):
            return value
    return None


def _node_summary(node: Dict[str, Any], include_description: bool = False) -> Dict[str, Any]:
    summary = {
        "id": node.get("id"),
        "title": node.get("title"),
        "content": node.get("content"),
        "link": node.get("link"),
        "dimensions": node.get("dimensions") or [],
        "updated_at": node.get("updated_at"),
    }
    if include_description:
        summary["description"] = node.get("description")
    return summary


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


async def add_node(
    client: RahApiClient,
    title: str,
    dimensions: Iterable[str],
    content: Optional[str] = None,
    link: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    chunk: Optional[str] = None,
) -> ToolOutcome:
    normalized = sanitize_dimensions(list(dimensions or []))
    if not normalized:
        raise ToolValidationError("At least one dimension/tag is required when creating a node.")

    payload = _drop_none(
        {
            "title": title.strip(),
            "content": _strip_or_none(content),
            "link": _strip_or_none(link),
            "description": _strip_or_none(description),
            "dimensions": normalized,
            "metadata": metadata or {},
            "chunk": _strip_or_none(chunk),
        }
    )
    body = await client.post("/api/nodes", payload)

    node = _record(body, "data", "node") or {}
    node_dimensions = node.get("dimensions") or normalized
    summary = f"Created node #{node.get('id')}: {node.get('title')} [{', '.join(node_dimensions)}]"
    return ToolOutcome(
        summary=summary,
        structured={
            "nodeId": node.get("id"),
            "title": node.get("title"),
            "dimensions": node_dimensions,
            "message": body.get("message") or summary,
        },
    )


async def search_nodes(
    client: RahApiClient,
    query: str,
    limit: Optional[int] = 10,
    dimensions: Optional[Iterable[str]] = None,
) -> ToolOutcome:
    params: Dict[str, Any] = {"search": query.strip(), "limit": _clamp(limit, 10, 1, 25)}
    dimension_list = sanitize_dimensions(list(dimensions or []))
    if dimension_list:
        params["dimensions"] = ",".join(dimension_list)

    body = await client.get("/api/nodes", params)
    nodes = _data_list(body)
    summary = (
        "No existing RA-H nodes mention that topic yet."
        if not nodes
        else f"Found {len(nodes)} node(s) mentioning that topic."
    )
    return ToolOutcome(
        summary=summary,
        structured={
            "count": len(nodes),
            "nodes": [_node_summary(node, include_description=True) for node in nodes],
        },
    )


async def update_node(
    client: RahApiClient,
    node_id: int,
    updates: Optional[Dict[str, Any]],
) -> ToolOutcome:
    """Update a node; the REST layer appends ``content`` and replaces dimensions."""
    cleaned = _drop_none(dict(updates or {}))
    if not cleaned:
        raise ToolValidationError("At least one field must be provided in updates.")
    if "dimensions" in cleaned:
        cleaned["dimensions"] = sanitize_dimensions(cleaned["dimensions"])

    body = await client.put(f"/api/nodes/{node_id}", cleaned)
    node = _record(body, "node", "data") or {}
    message = body.get("message") or f"Updated node #{node_id}"
    return ToolOutcome(
        summary=f"Updated node #{node_id}",
        structured={"success": True, "nodeId": node.get("id") or node_id, "message": message},
    )


async def fetch_node(client: RahApiClient, node_id: int) -> Optional[Dict[str, Any]]:
    """Return the node record, or ``None`` if the REST layer cannot serve it."""
    try:
        body = await client.get(f"/api/nodes/{node_id}")
    except UpstreamRequestError as exc:
        logger.debug("Skipping unresolved node", extra={"node_id": node_id, "error": exc.message})
        return None
    return _record(body, "node", "data")


def unique_node_ids(node_ids: Iterable[Any]) -> List[int]:
    ids: List[int] = []
    for value in node_ids or []:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            continue
        if value not in ids:
            ids.append(value)
    return ids


async def get_nodes(client: RahApiClient, node_ids: Iterable[int]) -> ToolOutcome:
    """Load each id independently; ids that fail to resolve are skipped."""
    ids = unique_node_ids(node_ids)
    if not ids:
        raise ToolValidationError("No valid node IDs provided.")

    nodes = []
    for node_id in ids:
        node = await fetch_node(client, node_id)
        if node:
            nodes.append(_node_summary(node))

    return ToolOutcome(
        summary=f"Loaded {len(nodes)} of {len(ids)} nodes.",
        structured={"count": len(nodes), "nodes": nodes},
    )


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


def _edge_created(body: Dict[str, Any], source_id: int, target_id: int) -> ToolOutcome:
    edge = _record(body, "edge", "data") or {}
    message = f"Created edge from #{source_id} to #{target_id}"
    return ToolOutcome(
        summary=message,
        structured={
            "success": True,
            "edgeId": edge.get("id") or 0,
            "message": body.get("message") or message,
        },
    )


async def create_explained_edge(
    client: RahApiClient,
    source_id: int,
    target_id: int,
    explanation: str,
) -> ToolOutcome:
    """Create an edge whose relationship type the REST layer infers from ``explanation``."""
    cleaned = (explanation or "").strip()
    if not cleaned:
        raise ToolValidationError("explanation is required.")
    payload = {
        "from_node_id": source_id,
        "to_node_id": target_id,
        "explanation": cleaned,
        "source": "helper_name",
        "created_via": "mcp",
    }
    body = await client.post("/api/edges", payload)
    return _edge_created(body, source_id, target_id)


async def create_typed_edge(
    client: RahApiClient,
    source_id: int,
    target_id: int,
    edge_type: Optional[str] = None,
    weight: Optional[float] = None,
) -> ToolOutcome:
    payload = {
        "from_node_id": source_id,
        "to_node_id": target_id,
        "type": edge_type or "related",
        "weight": 0.5 if weight is None else weight,
    }
    body = await client.post("/api/edges", payload)
    return _edge_created(body, source_id, target_id)


def _explained_edge_view(edge: Dict[str, Any]) -> Dict[str, Any]:
    context = edge.get("context") if isinstance(edge.get("context"), dict) else {}
    confidence = context.get("confidence")
    return {
        "id": edge.get("id"),
        "source_id": edge.get("from_node_id"),
        "target_id": edge.get("to_node_id"),
        "type": context.get("type"),
        "weight": confidence if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else None,
    }


def _typed_edge_view(edge: Dict[str, Any]) -> Dict[str, Any]:
    edge_type = edge.get("type")
    if edge_type is None:
        edge_type = edge.get("source")
    return {
        "id": edge.get("id"),
        "from_node_id": edge.get("from_node_id"),
        "to_node_id": edge.get("to_node_id"),
        "type": edge_type,
        "weight": edge.get("weight"),
    }


async def query_edges(
    client: RahApiClient,
    node_id: Optional[int] = None,
    limit: Optional[int] = 25,
    style: EdgeStyle = "explained",
) -> ToolOutcome:
    params: Dict[str, Any] = {"limit": _clamp(limit, 25, 1, 50)}
    if node_id:
        params = {"nodeId": node_id, **params}
    body = await client.get("/api/edges", params)
    edges = _data_list(body)
    view = _typed_edge_view if style == "typed" else _explained_edge_view
    return ToolOutcome(
        summary=f"Found {len(edges)} edge(s).",
        structured={"count": len(edges), "edges": [view(edge) for edge in edges]},
    )


def _edge_updated(body: Dict[str, Any], edge_id: int) -> ToolOutcome:
    message = f"Updated edge #{edge_id}"
    return ToolOutcome(
        summary=message,
        structured={"success": True, "message": body.get("message") or message},
    )


async def update_explained_edge(
    client: RahApiClient,
    edge_id: int,
    explanation: Optional[str] = None,
) -> ToolOutcome:
    """Replace an edge's explanation; the REST layer re-infers its type."""
    if not isinstance(explanation, str) or not explanation.strip():
        raise ToolValidationError("explanation is required.")
    body = await client.put(
        f"/api/edges/{edge_id}",
        {"context": {"explanation": explanation.strip(), "created_via": "mcp"}},
    )
    return _edge_updated(body, edge_id)


async def update_typed_edge(
    client: RahApiClient,
    edge_id: int,
    edge_type: Optional[str] = None,
    weight: Optional[float] = None,
) -> ToolOutcome:
    payload = _drop_none({"type": edge_type, "weight": weight})
    if not payload:
        raise ToolValidationError("At least one field (type or weight) must be provided.")
    body = await client.put(f"/api/edges/{edge_id}", payload)
    return _edge_updated(body, edge_id)


# ---------------------------------------------------------------------------
# Dimensions
# ---------------------------------------------------------------------------


def _dimension_name(body: Any, fallback: str) -> str:
    data = _record(body, "data") or {}
    name = data.get("dimension")
    return name if isinstance(name, str) and name else fallback


async def create_dimension(
    client: RahApiClient,
    name: str,
    description: Optional[str] = None,
    is_priority: Optional[bool] = None,
) -> ToolOutcome:
    payload: Dict[str, Any] = {"name": name}
    if description:
        payload["description"] = description
    if is_priority is not None:
        payload["isPriority"] = is_priority

    body = await client.post("/api/dimensions", payload)
    dimension = _dimension_name(body, name)
    message = f"Created dimension: {dimension}"
    return ToolOutcome(
        summary=message,
        structured={"success": True, "dimension": dimension, "message": message},
    )


async def update_dimension(
    client: RahApiClient,
    name: str,
    new_name: Optional[str] = None,
    description: Optional[str] = None,
    is_priority: Optional[bool] = None,
) -> ToolOutcome:
    """Rename, describe, or lock/unlock a dimension in a single PUT."""
    payload: Dict[str, Any] = (
        {"currentName": name, "newName": new_name} if new_name else {"name": name}
    )
    if description is not None:
        payload["description"] = description
    if is_priority is not None:
        payload["isPriority"] = is_priority

    body = await client.put("/api/dimensions", payload)
    dimension = _dimension_name(body, new_name or name)
    message = f"Updated dimension: {dimension}"
    return ToolOutcome(
        summary=message,
        structured={"success": True, "dimension": dimension, "message": message},
    )


async def delete_dimension(client: RahApiClient, name: str) -> ToolOutcome:
    await client.delete("/api/dimensions", {"name": name})
    message = f"Deleted dimension: {name}"
    return ToolOutcome(summary=message, structured={"success": True, "message": message})


# ---------------------------------------------------------------------------
# Semantic search
# ---------------------------------------------------------------------------


async def search_embeddings(
    client: RahApiClient,
    query: str,
    limit: Optional[int] = 10,
) -> ToolOutcome:
    body = await client.get(
        "/api/nodes/search", {"q": query, "limit": _clamp(limit, 10, 1, 20)}
    )
    results = []
    for item in _data_list(body):
        preview = item.get("chunk") or item.get("content") or ""
        results.append(
            {
                "nodeId": item.get("node_id") or item.get("nodeId") or item.get("id"),
                "title": item.get("title") or "Untitled",
                "chunkPreview": preview[:200],
                "similarity": item.get("similarity") or item.get("score") or 0,
            }
        )
    return ToolOutcome(
        summary=f"Found {len(results)} semantically similar result(s).",
        structured={"count": len(results), "results": results},
    )


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


async def list_workflows(client: RahApiClient) -> ToolOutcome:
    workflows = [
        {
            "key": item.get("key"),
            "displayName": item.get("displayName"),
            "description": item.get("description") or None,
            "enabled": bool(item.get("enabled")),
        }
        for item in _data_list(await client.get("/api/workflows"))
    ]
    return ToolOutcome(
        summary=f"Found {len(workflows)} workflow(s).",
        structured={"count": len(workflows), "workflows": workflows},
    )


async def get_workflow(client: RahApiClient, workflow_key: str) -> ToolOutcome:
    """Fetch a workflow; a lookup failure is reported in-band, never raised."""
    try:
        body = await client.get(f"/api/workflows/{quote(workflow_key, safe='')}")
    except UpstreamRequestError as exc:
        logger.info("Workflow lookup failed", extra={"workflow_key": workflow_key, "error": exc.message})
        return ToolOutcome(
            summary=f'Workflow "{workflow_key}" not found.',
            structured={
                "success": False,
                "workflow": None,
                "message": f'Workflow "{workflow_key}" not found',
            },
        )

    workflow = _record(body, "data")
    return ToolOutcome(
        summary=f'Workflow "{workflow_key}": {(workflow or {}).get("displayName") or "Unknown"}',
        structured={
            "success": True,
            "workflow": {
                "key": workflow.get("key"),
                "displayName": workflow.get("displayName"),
                "description": workflow.get("description") or None,
                "instructions": workflow.get("instructions") or "",
                "enabled": bool(workflow.get("enabled")),
            }
            if workflow
            else None,
            "message": f'Fetched workflow "{workflow_key}"',
        },
    )


async def execute_workflow(
    client: RahApiClient,
    workflow_key: str,
    node_id: Optional[int] = None,
    user_context: Optional[str] = None,
) -> ToolOutcome:
    payload: Dict[str, Any] = {"workflowKey": workflow_key}
    if node_id:
        payload["nodeId"] = node_id
    if user_context:
        payload["userContext"] = user_context

    body = await client.post("/api/workflows/execute", payload)
    message = f'Workflow "{workflow_key}" initiated.'
    return ToolOutcome(
        summary=message,
        structured={
            "success": True,
            "message": body.get("message") or message,
            "data": body.get("data"),
        },
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _metadata(body: Dict[str, Any]) -> Dict[str, Any]:
    value = body.get("metadata")
    return value if isinstance(value, dict) else {}


async def extract_url(client: RahApiClient, url: str) -> ToolOutcome:
    body = await client.post("/api/extract/url", {"url": url})
    return ToolOutcome(
        summary=f"Extracted content from: {body.get('title') or 'webpage'}",
        structured={
            "success": True,
            "title": body.get("title") or "Untitled",
            "content": body.get("content") or "",
            "chunk": body.get("chunk") or "",
            "metadata": _metadata(body),
        },
    )


async def extract_youtube(client: RahApiClient, url: str) -> ToolOutcome:
    body = await client.post("/api/extract/youtube", {"url": url})
    return ToolOutcome(
        summary=f"Extracted transcript from: {body.get('title') or 'YouTube video'}",
        structured={
            "success": True,
            "title": body.get("title") or "Untitled",
            "channel": body.get("channel") or "Unknown",
            "transcript": body.get("transcript") or "",
            "metadata": _metadata(body),
        },
    )


async def extract_pdf(client: RahApiClient, url: str) -> ToolOutcome:
    body = await client.post("/api/extract/pdf", {"url": url})
    return ToolOutcome(
        summary=f"Extracted content from: {body.get('title') or 'PDF document'}",
        structured={
            "success": True,
            "title": body.get("title") or "Untitled PDF",
            "content": body.get("content") or "",
            "chunk": body.get("chunk") or "",
            "metadata": _metadata(body),
        },
    )


__all__ = [
    "EdgeStyle",
    "ToolOutcome",
    "add_node",
    "create_dimension",
    "create_explained_edge",
    "create_typed_edge",
    "delete_dimension",
    "execute_workflow",
    "extract_pdf",
    "extract_url",
    "extract_youtube",
    "fetch_node",
    "get_nodes",
    "get_workflow",
    "list_workflows",
    "query_edges",
    "sanitize_dimensions",
    "search_embeddings",
    "search_nodes",
    "unique_node_ids",
    "update_dimension",
    "update_explained_edge",
    "update_node",
    "update_typed_edge",
]
