"""Tests for the knowledge-graph operations against a mocked REST API."""

import pytest

from rah_backend.src.services import graph_operations as ops
from rah_backend.src.services.errors import ToolValidationError, UpstreamRequestError


class TestSanitizeDimensions:
    def test_dedupes_case_insensitively_and_caps_at_five(self) -> None:
        raw = ["A", "a", "B", " b ", "", 42, "c", "d", "e", "f"]

        assert ops.sanitize_dimensions(raw) == ["A", "B", "c", "d", "e"]

    def test_is_idempotent(self) -> None:
        once = ops.sanitize_dimensions([" research ", "Research", "AI", "notes"])

        assert ops.sanitize_dimensions(once) == once
        assert once == ["research", "AI", "notes"]

    @pytest.mark.parametrize("raw", [None, "research", 5, {"a": 1}])
    def test_non_list_input_is_empty(self, raw) -> None:
        assert ops.sanitize_dimensions(raw) == []


class TestNodes:
    @pytest.mark.asyncio
    async def test_add_node_posts_sanitized_payload(self, fake_api, api_client) -> None:
        fake_api.on(
            "POST",
            "/api/nodes",
            {"success": True, "data": {"id": 7, "title": "T", "dimensions": ["x", "y"]}},
        )

        outcome = await ops.add_node(api_client, title="  T  ", dimensions=["x", "y"], content=" body ")

        sent = fake_api.json_body()
        assert sent["title"] == "T"
        assert sent["dimensions"] == ["x", "y"]
        assert sent["content"] == "body"
        assert sent["metadata"] == {}
        assert "link" not in sent
        assert outcome.summary == "Created node #7: T [x, y]"
        assert outcome.structured["nodeId"] == 7
        assert outcome.structured["dimensions"] == ["x", "y"]

    @pytest.mark.asyncio
    async def test_add_node_falls_back_to_sanitized_dimensions(self, fake_api, api_client) -> None:
        fake_api.on(
            "POST",
            "/api/nodes",
            {"success": True, "message": "Node created", "data": {"id": 3, "title": "Paper"}},
        )

        outcome = await ops.add_node(api_client, title="Paper", dimensions=["ml", "ML", "papers"])

        assert outcome.structured["dimensions"] == ["ml", "papers"]
        assert outcome.structured["message"] == "Node created"

    @pytest.mark.asyncio
    async def test_add_node_requires_a_dimension(self, fake_api, api_client) -> None:
        with pytest.raises(ToolValidationError):
            await ops.add_node(api_client, title="T", dimensions=["  ", ""])

        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_get_nodes_skips_unresolved_ids(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/nodes/1", {"success": True, "node": {"id": 1, "title": "One"}})
        fake_api.on("GET", "/api/nodes/3", {"success": True, "data": {"id": 3, "title": "Three"}})

        outcome = await ops.get_nodes(api_client, [1, 2, 3, 1])

        assert outcome.summary == "Loaded 2 of 3 nodes."
        assert outcome.structured["count"] == 2
        assert [node["id"] for node in outcome.structured["nodes"]] == [1, 3]
        assert outcome.structured["nodes"][0]["dimensions"] == []
        assert len(fake_api.requests) == 3

    @pytest.mark.asyncio
    async def test_get_nodes_rejects_only_invalid_ids(self, api_client) -> None:
        with pytest.raises(ToolValidationError):
            await ops.get_nodes(api_client, [0, -1, True])

    @pytest.mark.asyncio
    async def test_search_nodes_clamps_limit_and_joins_dimensions(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/nodes", {"success": True, "data": []})

        outcome = await ops.search_nodes(api_client, " agents ", limit=100, dimensions=["ai", "AI", "ml"])

        params = fake_api.requests[-1].url.params
        assert params["search"] == "agents"
        assert params["limit"] == "25"
        assert params["dimensions"] == "ai,ml"
        assert outcome.summary == "No existing RA-H nodes mention that topic yet."
        assert outcome.structured == {"count": 0, "nodes": []}

    @pytest.mark.asyncio
    async def test_update_node_requires_a_field(self, api_client) -> None:
        with pytest.raises(ToolValidationError):
            await ops.update_node(api_client, 4, {"title": None})

    @pytest.mark.asyncio
    async def test_update_node_sanitizes_dimensions(self, fake_api, api_client) -> None:
        fake_api.on("PUT", "/api/nodes/4", {"success": True, "node": {"id": 4}})

        outcome = await ops.update_node(api_client, 4, {"dimensions": ["a", "A", "b"]})

        assert fake_api.json_body() == {"dimensions": ["a", "b"]}
        assert outcome.structured == {"success": True, "nodeId": 4, "message": "Updated node #4"}


class TestEdges:
    EDGE = {
        "id": 11,
        "from_node_id": 1,
        "to_node_id": 2,
        "source": "user",
        "weight": 0.8,
        "context": {"type": "supports", "confidence": 0.6},
    }

    @pytest.mark.asyncio
    async def test_explained_view(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/edges", {"success": True, "data": [self.EDGE]})

        outcome = await ops.query_edges(api_client, node_id=1)

        assert fake_api.requests[-1].url.params["nodeId"] == "1"
        assert outcome.summary == "Found 1 edge(s)."
        assert outcome.structured["edges"] == [
            {"id": 11, "source_id": 1, "target_id": 2, "type": "supports", "weight": 0.6}
        ]

    @pytest.mark.asyncio
    async def test_typed_view_falls_back_to_source(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/edges", {"success": True, "data": [self.EDGE]})

        outcome = await ops.query_edges(api_client, limit=500, style="typed")

        assert fake_api.requests[-1].url.params["limit"] == "50"
        assert outcome.structured["edges"] == [
            {"id": 11, "from_node_id": 1, "to_node_id": 2, "type": "user", "weight": 0.8}
        ]

    @pytest.mark.asyncio
    async def test_create_explained_edge(self, fake_api, api_client) -> None:
        fake_api.on("POST", "/api/edges", {"success": True, "data": {"id": 21}})

        outcome = await ops.create_explained_edge(api_client, 1, 2, "  builds on  ")

        sent = fake_api.json_body()
        assert sent["explanation"] == "builds on"
        assert sent["created_via"] == "mcp"
        assert outcome.structured["edgeId"] == 21
        assert outcome.summary == "Created edge from #1 to #2"

    @pytest.mark.asyncio
    async def test_create_typed_edge_defaults(self, fake_api, api_client) -> None:
        fake_api.on("POST", "/api/edges", {"success": True})

        outcome = await ops.create_typed_edge(api_client, 1, 2)

        assert fake_api.json_body() == {
            "from_node_id": 1,
            "to_node_id": 2,
            "type": "related",
            "weight": 0.5,
        }
        assert outcome.structured["edgeId"] == 0

    @pytest.mark.asyncio
    async def test_update_explained_edge_requires_explanation(self, api_client) -> None:
        with pytest.raises(ToolValidationError):
            await ops.update_explained_edge(api_client, 5, "   ")

    @pytest.mark.asyncio
    async def test_update_typed_edge_requires_a_field(self, api_client) -> None:
        with pytest.raises(ToolValidationError):
            await ops.update_typed_edge(api_client, 5)


class TestDimensionsAndWorkflows:
    @pytest.mark.asyncio
    async def test_update_dimension_rename_payload(self, fake_api, api_client) -> None:
        fake_api.on("PUT", "/api/dimensions", {"success": True, "data": {"dimension": "ml"}})

        outcome = await ops.update_dimension(api_client, "ai", new_name="ml", is_priority=True)

        assert fake_api.json_body() == {"currentName": "ai", "newName": "ml", "isPriority": True}
        assert outcome.summary == "Updated dimension: ml"

    @pytest.mark.asyncio
    async def test_delete_dimension_uses_query(self, fake_api, api_client) -> None:
        fake_api.on("DELETE", "/api/dimensions", {"success": True})

        outcome = await ops.delete_dimension(api_client, "old")

        assert fake_api.requests[-1].url.params["name"] == "old"
        assert outcome.structured["message"] == "Deleted dimension: old"

    @pytest.mark.asyncio
    async def test_missing_workflow_is_reported_in_band(self, api_client) -> None:
        outcome = await ops.get_workflow(api_client, "nope")

        assert outcome.structured["success"] is False
        assert outcome.structured["workflow"] is None
        assert outcome.summary == 'Workflow "nope" not found.'

    @pytest.mark.asyncio
    async def test_execute_workflow_payload(self, fake_api, api_client) -> None:
        fake_api.on("POST", "/api/workflows/execute", {"success": True, "data": {"runId": 1}})

        outcome = await ops.execute_workflow(api_client, "integrate", node_id=9, user_context="focus")

        assert fake_api.json_body() == {"workflowKey": "integrate", "nodeId": 9, "userContext": "focus"}
        assert outcome.structured["data"] == {"runId": 1}
        assert outcome.structured["message"] == 'Workflow "integrate" initiated.'

    @pytest.mark.asyncio
    async def test_search_embeddings_truncates_preview(self, fake_api, api_client) -> None:
        fake_api.on(
            "GET",
            "/api/nodes/search",
            {"success": True, "data": [{"node_id": 4, "chunk": "x" * 500, "similarity": 0.9}]},
        )

        outcome = await ops.search_embeddings(api_client, "query", limit=0)

        assert fake_api.requests[-1].url.params["limit"] == "1"
        result = outcome.structured["results"][0]
        assert result["nodeId"] == 4
        assert result["title"] == "Untitled"
        assert len(result["chunkPreview"]) == 200


class TestUpstreamErrors:
    @pytest.mark.asyncio
    async def test_rest_error_text_is_surfaced(self, fake_api, api_client) -> None:
        fake_api.on("POST", "/api/dimensions", {"success": False, "error": "Dimension exists"}, 409)

        with pytest.raises(UpstreamRequestError) as exc_info:
            await ops.create_dimension(api_client, "ai")

        assert exc_info.value.message == "Dimension exists"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_generic_message_names_the_path(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/nodes", {"detail": "boom"}, 500)

        with pytest.raises(UpstreamRequestError) as exc_info:
            await ops.search_nodes(api_client, "x", limit=3)

        assert exc_info.value.message == "RA-H API request failed at /api/nodes?search=x&limit=3"
