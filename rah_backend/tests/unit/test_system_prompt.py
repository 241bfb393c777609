"""Tests for system prompt assembly."""

import pytest

from rah_backend.src.models.chat import NodeTab
from rah_backend.src.services.system_prompt import (
    SystemPromptBuilder,
    build_focus_block,
    build_tools_block,
    build_workflows_block,
    describe_chunk_status,
    truncate_words,
)
from rah_backend.src.services.tool_executor import ToolExecutor


class TestFocusBlock:
    def test_no_tabs(self) -> None:
        assert build_focus_block([], None) == "\n=== CURRENT FOCUS ===\nNo nodes currently in focus."

    def test_active_tab_is_first(self) -> None:
        tabs = [
            NodeTab(id=1, title="First"),
            NodeTab(id=2, title="Second", link="https://example.com"),
        ]

        text = build_focus_block(tabs, active_tab_id=2)

        assert text.index("[PRIMARY - Tab 1]") < text.index('ID: 2 | "Second"')
        assert text.index('ID: 2 | "Second"') < text.index("[Tab 2]")
        assert text.index("[Tab 2]") < text.index('ID: 1 | "First"')
        assert "Link: https://example.com" in text
        assert text.endswith("===================================")

    def test_without_active_tab_numbering_starts_at_two(self) -> None:
        text = build_focus_block([NodeTab(id=3)], active_tab_id=None)

        assert "[PRIMARY" not in text
        assert '[Tab 2]\nID: 3 | "Untitled"\nNo content\nLink: No link' in text

    def test_truncate_words(self) -> None:
        long_text = " ".join(f"w{i}" for i in range(30))

        assert truncate_words("short text") == "short text"
        assert truncate_words(long_text) == " ".join(f"w{i}" for i in range(25)) + "…"


class TestChunkStatus:
    def test_chunked_with_transcript(self) -> None:
        tab = NodeTab(
            id=1,
            chunk="x" * 2500,
            chunk_status="chunked",
            metadata='{"transcript_length": 12400}',
        )

        assert describe_chunk_status(tab) == (
            "Chunks: chunked (~3k chars), transcript ≈12k chars; Embeddings: available"
        )

    def test_unknown_status(self) -> None:
        assert describe_chunk_status(NodeTab(id=1)) == "Chunks: unknown; Embeddings: missing"

    def test_bad_metadata_is_ignored(self) -> None:
        tab = NodeTab(id=1, chunk_status="not_chunked", metadata="{not json")

        assert describe_chunk_status(tab) == "Chunks: not_chunked; Embeddings: missing"


class TestBlocks:
    def test_tools_block_skips_undescribed(self) -> None:
        block = build_tools_block(
            [{"name": "a", "description": "does a"}, {"name": "b", "description": "  "}]
        )

        assert block == "=== AVAILABLE TOOLS ===\n\n## a\ndoes a"
        assert build_tools_block([]) == ""

    def test_workflows_block(self) -> None:
        assert build_workflows_block([]) is None
        block = build_workflows_block([{"key": "integrate", "displayName": "Integrate"}])

        assert "## Integrate (integrate)" in block


class TestSystemPromptBuilder:
    @pytest.fixture
    def builder(self, api_client) -> SystemPromptBuilder:
        return SystemPromptBuilder(tool_executor=ToolExecutor(api_client=api_client))

    @pytest.mark.asyncio
    async def test_anthropic_agent_caches_stable_blocks(self, builder, fake_api) -> None:
        fake_api.on(
            "GET",
            "/api/workflows",
            {
                "success": True,
                "data": [
                    {"key": "integrate", "displayName": "Integrate", "enabled": True},
                    {"key": "off", "displayName": "Off", "enabled": False},
                ],
            },
        )

        result = await builder.build([NodeTab(id=1, title="Tab")], 1, "ra-h")

        assert result.cache_hit is False
        assert len(result.blocks) == 4
        assert all(block.cache_control == {"type": "ephemeral"} for block in result.blocks[:3])
        assert result.blocks[-1].cache_control is None
        assert "AVAILABLE WORKFLOWS" in result.blocks[2].text
        assert "Off" not in result.blocks[2].text
        assert "CURRENT FOCUS" in result.blocks[-1].text

    @pytest.mark.asyncio
    async def test_openai_agent_has_no_cache_control(self, builder, fake_api) -> None:
        fake_api.on("GET", "/api/workflows", {"success": True, "data": []})

        result = await builder.build([], None, "ra-h-easy")

        assert all(block.cache_control is None for block in result.blocks)
        assert "AGENT INSTRUCTIONS (ra-h-easy)" in result.blocks[0].text

    @pytest.mark.asyncio
    async def test_non_primary_agent_skips_workflows(self, builder, fake_api) -> None:
        result = await builder.build([], None, "mini-rah")

        assert fake_api.requests == []
        assert not any("AVAILABLE WORKFLOWS" in block.text for block in result.blocks)

    @pytest.mark.asyncio
    async def test_workflow_failure_is_tolerated(self, builder, fake_api) -> None:
        fake_api.on("GET", "/api/workflows", {"success": False, "error": "down"}, 503)

        result = await builder.build([], None, "ra-h")

        assert len(result.blocks) == 3
