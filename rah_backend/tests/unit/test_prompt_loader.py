"""Unit tests for PromptLoader service."""

from pathlib import Path

import pytest

from rah_backend.src.services.prompt_loader import (
    DEFAULT_PROMPTS_DIR,
    PromptLoader,
    PromptLoaderError,
)


@pytest.fixture
def prompts_dir(tmp_path: Path) -> Path:
    """Create a temporary prompts directory with test templates."""
    prompts = tmp_path / "prompts"
    (prompts / "agents").mkdir(parents=True)
    (prompts / "agents" / "tester.md").write_text("You are {{ agent.display_name }}.")
    (prompts / "agent_instructions.md").write_text("== {{ helper_key }} ==\n{{ system_prompt }}")
    (prompts / "broken.md").write_text("{% if %}")
    return prompts


@pytest.fixture
def loader(prompts_dir: Path) -> PromptLoader:
    return PromptLoader(prompts_dir=prompts_dir)


class TestPromptLoaderInit:
    """Tests for PromptLoader initialization."""

    def test_init_with_existing_directory(self, prompts_dir: Path) -> None:
        loader = PromptLoader(prompts_dir=prompts_dir)

        assert loader.prompts_dir == prompts_dir
        assert loader.env is not None

    def test_init_with_nonexistent_directory(self, tmp_path: Path) -> None:
        """Loader falls back to inline prompts when directory doesn't exist."""
        loader = PromptLoader(prompts_dir=tmp_path / "nonexistent")

        assert loader.env is None

    def test_default_prompts_dir_ships_agent_templates(self) -> None:
        assert DEFAULT_PROMPTS_DIR.name == "prompts"
        assert DEFAULT_PROMPTS_DIR.parent.name == "rah_backend"
        assert (DEFAULT_PROMPTS_DIR / "agents" / "ra-h.md").is_file()


class TestPromptLoaderLoad:
    """Tests for PromptLoader.load() method."""

    def test_renders_filesystem_template(self, loader: PromptLoader) -> None:
        result = loader.load("agent_instructions.md", {"helper_key": "ra-h", "system_prompt": "Be terse."})

        assert result == "== ra-h ==\nBe terse."

    def test_missing_template_uses_inline_fallback(self, loader: PromptLoader) -> None:
        result = loader.load("base_context.md")

        assert "=== RA-H BASE CONTEXT ===" in result

    def test_unknown_prompt_raises(self, loader: PromptLoader) -> None:
        with pytest.raises(PromptLoaderError, match="Prompt not found"):
            loader.load("agents/unknown.md")

    def test_syntax_error_raises(self, loader: PromptLoader) -> None:
        with pytest.raises(PromptLoaderError, match="Failed to render"):
            loader.load("broken.md")

    def test_inline_agent_instructions(self, tmp_path: Path) -> None:
        loader = PromptLoader(prompts_dir=tmp_path / "nonexistent")

        result = loader.load("agent_instructions.md", {"helper_key": "wise-rah", "system_prompt": "Plan."})

        assert "=== AGENT INSTRUCTIONS (wise-rah) ===" in result
        assert "Plan." in result


def test_list_available(loader: PromptLoader) -> None:
    available = loader.list_available()

    assert "agents/tester.md" in available["filesystem"]
    assert "base_context.md" in available["inline"]
