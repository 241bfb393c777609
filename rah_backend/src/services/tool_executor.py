"""Tool Executor - Dispatches chat tool calls to the RA-H graph operations.

This service routes tool calls from the orchestrator agents to the sibling
RA-H REST API (through :mod:`graph_operations`), and handles schema loading,
filtering by agent tool set and per-provider rendering.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from . import graph_operations as ops
from .errors import RahError, ToolValidationError
from .rah_api_client import RahApiClient

logger = logging.getLogger(__name__)

DEFAULT_TOOLS_PATH = Path(__file__).resolve().parent.parent.parent / "prompts" / "tools.json"
NOTES_PREVIEW_WORDS = 80
_NUMERIC_ID = re.compile(r"^\d+$")


def format_node_label(node: Dict[str, Any]) -> str:
    """Node marker the chat UI renders as a clickable label."""
    return f'[NODE:{node.get("id")}:"{node.get("title")}"]'


def _ok(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    result: Dict[str, Any] = {"success": True, "data": data}
    if message:
        result["message"] = message
    return result


class ToolExecutor:
    """
    Executes chat tool calls against the RA-H REST API.

    Tool schemas are loaded once from rah_backend/prompts/tools.json. Results
    are JSON strings; failures are reported as ``{"success": false, "error"}``
    so the model can recover instead of aborting the turn.
    """

    def __init__(
        self,
        api_client: Optional[RahApiClient] = None,
        tools_path: Optional[Path] = None,
    ) -> None:
        self.api = api_client or RahApiClient()
        self._tools_path = tools_path or DEFAULT_TOOLS_PATH

        # Tool registry mapping tool names to handler methods
        self._tools: Dict[str, Any] = {
            # Core (read) tools
            "queryNodes": self._query_nodes,
            "getNodesById": self._get_nodes_by_id,
            "queryEdge": self._query_edge,
            "queryDimensions": self._query_dimensions,
            "searchContentEmbeddings": self._search_content_embeddings,
            # Orchestration tools
            "think": self._think,
            "executeWorkflow": self._execute_workflow,
            # Execution (write) tools
            "createNode": self._create_node,
            "updateNode": self._update_node,
            "createEdge": self._create_edge,
            "updateEdge": self._update_edge,
            "createDimension": self._create_dimension,
            "updateDimension": self._update_dimension,
            "lockDimension": self._lock_dimension,
            "unlockDimension": self._unlock_dimension,
            "deleteDimension": self._delete_dimension,
            "youtubeExtract": self._youtube_extract,
            "websiteExtract": self._website_extract,
            "paperExtract": self._paper_extract,
        }

        # Cache for tool schemas
        self._schema_cache: Optional[Dict[str, Any]] = None

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    async def execute(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Execute a tool call and return the result as a JSON string.

        Args:
            name: Tool name to execute
            arguments: Tool arguments dictionary

        Returns:
            JSON string containing the tool result or error
        """
        if name not in self._tools:
            logger.warning(f"Unknown tool requested: {name}")
            return json.dumps({"success": False, "error": f"Unknown tool: {name}"})

        handler = self._tools[name]
        arguments = arguments or {}

        try:
            logger.info(
                f"Executing tool: {name}",
                extra={"tool": name, "args_keys": list(arguments.keys())},
            )
            result = await handler(**arguments)
            return json.dumps(result, default=str)
        except RahError as e:
            logger.warning(f"Tool {name} failed: {e.message}")
            return json.dumps({"success": False, "error": e.message})
        except TypeError as e:
            logger.warning(f"Tool {name} received invalid arguments: {e}")
            return json.dumps({"success": False, "error": f"Invalid arguments: {str(e)}"})
        except Exception as e:
            logger.exception(f"Tool {name} execution failed: {e}")
            return json.dumps({"success": False, "error": f"Tool execution failed: {str(e)}"})

    def get_tool_schemas(
        self,
        names: Optional[Iterable[str]] = None,
        provider: str = "openai",
    ) -> List[Dict[str, Any]]:
        """
        Get tool schemas for the given tool names, rendered for a provider.

        Args:
            names: Tool names to include, in order (all known tools if None)
            provider: "anthropic" renders ``{name, description, input_schema}``;
                anything else renders OpenAI ``{type: function, function}``

        Returns:
            List of tool definitions; unknown names are skipped with a warning
        """
        if self._schema_cache is None:
            self._schema_cache = self._load_tool_schemas()

        by_name = {
            tool["function"]["name"]: tool
            for tool in self._schema_cache.get("tools", [])
            if isinstance(tool, dict) and "function" in tool
        }
        wanted = list(names) if names is not None else list(by_name)

        rendered = []
        for name in wanted:
            tool = by_name.get(name)
            if tool is None or name not in self._tools:
                logger.warning(f"No schema or handler for tool: {name}")
                continue
            function = tool["function"]
            parameters = function.get("parameters") or {"type": "object", "properties": {}}
            if provider == "anthropic":
                rendered.append(
                    {
                        "name": function["name"],
                        "description": function.get("description", ""),
                        "input_schema": parameters,
                    }
                )
            else:
                rendered.append(
                    {
                        "type": "function",
                        "function": {
                            "name": function["name"],
                            "description": function.get("description", ""),
                            "parameters": parameters,
                        },
                    }
                )
        return rendered

    def describe_tools(self, names: Iterable[str]) -> List[Dict[str, str]]:
        """Name and description pairs for the system prompt tools block."""
        return [
            {"name": tool["name"], "description": tool["description"]}
            for tool in self.get_tool_schemas(names, provider="anthropic")
        ]

    def _load_tool_schemas(self) -> Dict[str, Any]:
        """
        Load tool schemas from JSON file.

        Returns:
            Parsed JSON data containing tool definitions
        """
        if not self._tools_path.exists():
            logger.error(f"Tool schemas not found at {self._tools_path}")
            return {"tools": []}

        try:
            with open(self._tools_path, "r", encoding="utf-8") as f:
                data = json.load(f)
                logger.info(f"Loaded tool schemas from {self._tools_path}")
                return data
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse tool schemas: {e}")
            return {"tools": []}

    # =========================================================================
    # Core Tool Implementations
    # =========================================================================

    async def _query_nodes(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        filters = filters or {}
        limit = filters.get("limit") or 10
        search = (filters.get("search") or "").strip()
        dimensions = filters.get("dimensions")

        if search and _NUMERIC_ID.match(search):
            node = await ops.fetch_node(self.api, int(search))
            if node is None:
                return _ok(
                    {"nodes": [], "count": 0, "filters_applied": filters},
                    f"Found 0 nodes matching id {search}",
                )
            entry = {
                "id": node.get("id"),
                "title": node.get("title"),
                "dimensions": node.get("dimensions") or [],
                "formatted_display": format_node_label(node),
            }
            return _ok(
                {"nodes": [entry], "count": 1, "filters_applied": filters},
                f"Found 1 node matching id {search}:\n{entry['formatted_display']}",
            )

        params: Dict[str, Any] = {"limit": limit}
        if search:
            params["search"] = search
        sanitized = ops.sanitize_dimensions(dimensions or [])
        if sanitized:
            params["dimensions"] = ",".join(sanitized)

        body = await self.api.get("/api/nodes", params)
        nodes = body.get("data") if isinstance(body.get("data"), list) else []
        entries = [
            {
                "id": node.get("id"),
                "title": node.get("title"),
                "dimensions": node.get("dimensions") or [],
                "formatted_display": format_node_label(node),
            }
            for node in nodes[:limit]
        ]

        message = f"Found {len(nodes)} nodes"
        if dimensions:
            message += f" with dimensions: {', '.join(dimensions)}"
        if search:
            message += f' matching: "{search}"'
        labels = ", ".join(entry["formatted_display"] for entry in entries)
        if labels:
            message += f":\n{labels}"
        return _ok({"nodes": entries, "count": len(nodes), "filters_applied": filters}, message)

    async def _get_nodes_by_id(
        self,
        nodeIds: List[int],
        includeNotesPreview: bool = True,
    ) -> Dict[str, Any]:
        ids = ops.unique_node_ids(nodeIds)
        if not ids:
            raise ToolValidationError("No valid node IDs provided")

        found = []
        for node_id in ids:
            node = await ops.fetch_node(self.api, node_id)
            if node is None:
                continue
            preview = None
            if includeNotesPreview:
                text = node.get("notes") or node.get("content") or node.get("description") or ""
                preview = " ".join(text.split()[:NOTES_PREVIEW_WORDS]) or None
            found.append(
                {
                    "id": node.get("id"),
                    "title": node.get("title"),
                    "link": node.get("link"),
                    "dimensions": node.get("dimensions") or [],
                    "chunk_status": node.get("chunk_status") or "unknown",
                    "updated_at": node.get("updated_at"),
                    "notes_preview": preview,
                    "metadata": node.get("metadata"),
                }
            )

        found_ids = {node["id"] for node in found}
        return _ok(
            {
                "nodes": found,
                "requested": ids,
                "missing": [node_id for node_id in ids if node_id not in found_ids],
            },
            f"Loaded {len(found)} of {len(ids)} requested nodes.",
        )

    async def _query_edge(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        filters = filters or {}
        limit = filters.get("limit") or 20
        source = filters.get("source")

        edge_id = filters.get("edge_id")
        if edge_id:
            body = await self.api.get(f"/api/edges/{edge_id}")
            edge = body.get("data") or body.get("edge")
            return _ok(
                {"edges": [edge] if edge else [], "count": 1 if edge else 0, "filters_applied": filters},
                f"Found edge {edge_id}" if edge else f"Edge {edge_id} not found",
            )

        node_id = filters.get("node_id")
        if node_id:
            body = await self.api.get(f"/api/nodes/{node_id}/edges")
            connections = body.get("data") if isinstance(body.get("data"), list) else []
            edges = [conn.get("edge", conn) for conn in connections]
            if source:
                edges = [edge for edge in edges if edge.get("source") == source]
            labels = ", ".join(
                format_node_label(conn["connected_node"])
                for conn in connections[:limit]
                if isinstance(conn.get("connected_node"), dict)
            )
            message = f"Found {len(edges)} edges for node {node_id}"
            if labels:
                message += f". Connected nodes: {labels}"
            return _ok(
                {
                    "edges": edges[:limit],
                    "connections": connections[:limit],
                    "count": len(edges),
                    "filters_applied": filters,
                },
                message,
            )

        body = await self.api.get("/api/edges")
        edges = body.get("data") if isinstance(body.get("data"), list) else []
        if filters.get("from_node_id"):
            edges = [e for e in edges if e.get("from_node_id") == filters["from_node_id"]]
        if filters.get("to_node_id"):
            edges = [e for e in edges if e.get("to_node_id") == filters["to_node_id"]]
        if source:
            edges = [e for e in edges if e.get("source") == source]
        return _ok(
            {"edges": edges[:limit], "count": len(edges), "filters_applied": filters},
            f"Found {len(edges)} edges",
        )

    async def _query_dimensions(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        filters = filters or {}
        limit = filters.get("limit") or 50
        body = await self.api.get("/api/dimensions/popular")
        dimensions = body.get("data") if isinstance(body.get("data"), list) else []

        search = filters.get("search")
        if search:
            dimensions = [d for d in dimensions if search.lower() in str(d.get("dimension", "")).lower()]
        if filters.get("isPriority") is not None:
            dimensions = [d for d in dimensions if d.get("isPriority") == filters["isPriority"]]

        formatted = [
            {
                "name": d.get("dimension"),
                "count": d.get("count", 0),
                "isPriority": bool(d.get("isPriority")),
                "description": d.get("description"),
            }
            for d in dimensions[:limit]
        ]
        message = f"Found {len(dimensions)} dimensions"
        if formatted:
            message += ": " + ", ".join(
                f"{d['name']}{' (locked)' if d['isPriority'] else ''}" for d in formatted
            )
        return _ok({"dimensions": formatted, "count": len(dimensions)}, message)

    async def _search_content_embeddings(
        self,
        query: str,
        limit: int = 5,
        node_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"q": query, "limit": limit}
        if node_id:
            params["nodeId"] = node_id
        body = await self.api.get("/api/nodes/search", params)
        items = body.get("data") if isinstance(body.get("data"), list) else []
        chunks = []
        for item in items:
            text = item.get("chunk") or item.get("text") or item.get("content") or ""
            chunks.append(
                {
                    "node_id": item.get("node_id") or item.get("nodeId") or item.get("id"),
                    "title": item.get("title"),
                    "preview": f"{text[:180]}{'…' if len(text) > 180 else ''}",
                    "similarity": item.get("similarity") or item.get("score") or 0,
                }
            )
        return _ok(
            {
                "chunks": chunks,
                "query": query,
                "searched_nodes": [node_id] if node_id else "all",
                "count": len(chunks),
            }
        )

    # =========================================================================
    # Orchestration Tool Implementations
    # =========================================================================

    async def _think(
        self,
        purpose: str,
        thoughts: str,
        next_action: Optional[str] = None,
        step: Optional[int] = None,
        done: Optional[bool] = None,
    ) -> Dict[str, Any]:
        trace = {
            "purpose": purpose,
            "thoughts": thoughts,
            "next_action": next_action,
            "step": step,
            "done": done,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return _ok({"logged": True, "continue": not done, "trace": trace})

    async def _execute_workflow(
        self,
        workflowKey: str,
        nodeId: Optional[int] = None,
        userContext: Optional[str] = None,
    ) -> Dict[str, Any]:
        outcome = await ops.execute_workflow(self.api, workflowKey, nodeId, userContext)
        return _ok(outcome.structured.get("data"), outcome.structured["message"])

    # =========================================================================
    # Execution Tool Implementations
    # =========================================================================

    async def _create_node(
        self,
        title: str,
        dimensions: Optional[List[str]] = None,
        content: Optional[str] = None,
        link: Optional[str] = None,
        description: Optional[str] = None,
        chunk: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        outcome = await ops.add_node(
            self.api,
            title=title,
            dimensions=dimensions or [],
            content=content,
            link=link,
            description=description,
            metadata=metadata,
            chunk=chunk,
        )
        node = {"id": outcome.structured["nodeId"], "title": outcome.structured["title"]}
        return _ok(
            {**node, "dimensions": outcome.structured["dimensions"]},
            f"Created node {format_node_label(node)} with dimensions: "
            f"{', '.join(outcome.structured['dimensions'])}",
        )

    async def _update_node(self, id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        outcome = await ops.update_node(self.api, id, updates)
        message = f"Updated node ID {id}"
        if (updates or {}).get("dimensions"):
            message += f" with dimensions: {', '.join(updates['dimensions'])}"
        return _ok({"nodeId": outcome.structured["nodeId"]}, message)

    async def _create_edge(
        self,
        from_node_id: int,
        to_node_id: int,
        explanation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        source: str = "helper_name",
    ) -> Dict[str, Any]:
        for field, value in (("from_node_id", from_node_id), ("to_node_id", to_node_id)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ToolValidationError(
                    f"{field} must be a positive integer. Use queryNodes to confirm the node ID."
                )
        if from_node_id == to_node_id:
            raise ToolValidationError("Cannot create edge from a node to itself")

        payload: Dict[str, Any] = {
            "from_node_id": from_node_id,
            "to_node_id": to_node_id,
            "source": source or "helper_name",
            "context": context or {},
        }
        if explanation and explanation.strip():
            payload["explanation"] = explanation.strip()
        body = await self.api.post("/api/edges", payload)
        edge = body.get("data") or body.get("edge") or {}
        return _ok(edge, f"Created edge connection from node {from_node_id} to node {to_node_id}")

    async def _update_edge(self, edge_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {k: v for k, v in (updates or {}).items() if v is not None}
        if not cleaned:
            raise ToolValidationError("No valid updates provided")
        body = await self.api.put(f"/api/edges/{edge_id}", cleaned)
        return _ok(
            body.get("data") or body.get("edge"),
            f"Updated edge {edge_id}: {', '.join(sorted(cleaned))}",
        )

    async def _create_dimension(
        self,
        name: str,
        description: Optional[str] = None,
        isPriority: Optional[bool] = None,
    ) -> Dict[str, Any]:
        trimmed = (name or "").strip()
        if not trimmed:
            raise ToolValidationError("Dimension name is required")
        outcome = await ops.create_dimension(self.api, trimmed, description, isPriority)
        message = f'Created dimension "{trimmed}"'
        if isPriority:
            message += " (locked)"
        if description:
            message += " with description"
        return _ok({"dimension": outcome.structured["dimension"]}, message)

    async def _update_dimension(
        self,
        name: str,
        newName: Optional[str] = None,
        description: Optional[str] = None,
        isPriority: Optional[bool] = None,
    ) -> Dict[str, Any]:
        if newName is None and description is None and isPriority is None:
            raise ToolValidationError(
                "At least one update field (newName, description, or isPriority) must be provided"
            )
        outcome = await ops.update_dimension(self.api, name, newName, description, isPriority)
        changes = []
        if newName:
            changes.append(f'renamed to "{newName}"')
        if description is not None:
            changes.append("description updated")
        if isPriority is not None:
            changes.append("locked" if isPriority else "unlocked")
        return _ok(
            {"dimension": outcome.structured["dimension"]},
            f'Updated dimension "{name}": {", ".join(changes)}',
        )

    async def _set_dimension_lock(self, name: str, locked: bool) -> Dict[str, Any]:
        trimmed = (name or "").strip()
        if not trimmed:
            raise ToolValidationError("Dimension name is required")
        body = await self.api.put("/api/dimensions", {"name": trimmed, "isPriority": locked})
        message = (
            f'Locked dimension "{trimmed}" - it will now be auto-assigned to new nodes'
            if locked
            else f'Unlocked dimension "{trimmed}" - it will no longer be auto-assigned'
        )
        return _ok(body.get("data"), message)

    async def _lock_dimension(self, name: str) -> Dict[str, Any]:
        return await self._set_dimension_lock(name, True)

    async def _unlock_dimension(self, name: str) -> Dict[str, Any]:
        return await self._set_dimension_lock(name, False)

    async def _delete_dimension(self, name: str) -> Dict[str, Any]:
        trimmed = (name or "").strip()
        if not trimmed:
            raise ToolValidationError("Dimension name is required")
        await ops.delete_dimension(self.api, trimmed)
        return _ok(
            {"dimension": trimmed},
            f'Deleted dimension "{trimmed}" and removed all node associations',
        )

    # =========================================================================
    # Extraction Tool Implementations
    # =========================================================================

    async def _extract_and_create(
        self,
        outcome: ops.ToolOutcome,
        url: str,
        title: Optional[str],
        dimensions: Optional[List[str]],
        chunk: str,
        content: str,
        fallback_title: str,
    ) -> Dict[str, Any]:
        extracted = outcome.structured
        node_title = (title or "").strip() or extracted.get("title") or fallback_title
        sanitized = ops.sanitize_dimensions(dimensions or [])
        payload = {
            "title": node_title,
            "link": url,
            "content": content or None,
            "chunk": chunk or None,
            "dimensions": sanitized,
            "metadata": extracted.get("metadata") or {},
        }
        body = await self.api.post("/api/nodes", {k: v for k, v in payload.items() if v is not None})
        node = body.get("data") or body.get("node") or {}
        return _ok(
            {
                "nodeId": node.get("id"),
                "title": node.get("title") or node_title,
                "dimensions": node.get("dimensions") or sanitized,
                "contentLength": len(chunk),
            },
            f"Created node {format_node_label({'id': node.get('id'), 'title': node.get('title') or node_title})}"
            f" from {url}",
        )

    async def _youtube_extract(
        self,
        url: str,
        title: Optional[str] = None,
        dimensions: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        outcome = await ops.extract_youtube(self.api, url)
        data = outcome.structured
        return await self._extract_and_create(
            outcome,
            url,
            title,
            dimensions,
            chunk=data.get("transcript") or "",
            content=f"YouTube video by {data.get('channel')}",
            fallback_title="YouTube Video",
        )

    async def _website_extract(
        self,
        url: str,
        title: Optional[str] = None,
        dimensions: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        outcome = await ops.extract_url(self.api, url)
        data = outcome.structured
        return await self._extract_and_create(
            outcome,
            url,
            title,
            dimensions,
            chunk=data.get("chunk") or "",
            content=data.get("content") or "",
            fallback_title="Untitled",
        )

    async def _paper_extract(
        self,
        url: str,
        title: Optional[str] = None,
        dimensions: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        outcome = await ops.extract_pdf(self.api, url)
        data = outcome.structured
        return await self._extract_and_create(
            outcome,
            url,
            title,
            dimensions,
            chunk=data.get("chunk") or "",
            content=data.get("content") or "",
            fallback_title="Untitled PDF",
        )


# Singleton instance for dependency injection
_tool_executor: Optional[ToolExecutor] = None


def get_tool_executor() -> ToolExecutor:
    """Get or create the tool executor singleton."""
    global _tool_executor
    if _tool_executor is None:
        _tool_executor = ToolExecutor()
    return _tool_executor


__all__ = ["ToolExecutor", "format_node_label", "get_tool_executor"]
