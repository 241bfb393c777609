"""Jinja2-based prompt template loader for RA-H agent system prompts.

Templates live in rah_backend/prompts/ and are re-read on every call so
persona instructions can be edited without restarting the server. A small
set of inline fallbacks keeps the system prompt assembler working when the
prompts directory is missing (e.g. a stripped-down install).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import jinja2

logger = logging.getLogger(__name__)

# rah_backend/src/services/prompt_loader.py -> rah_backend/prompts/
DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

INLINE_PROMPTS: Dict[str, str] = {
    "base_context.md": """=== RA-H BASE CONTEXT ===
- Nodes store content (title, content, dimensions, metadata, link, chunk)
- Edges capture directed relationships between nodes
- Dimensions organize nodes; locked dimensions (isPriority=true) auto-assign to new nodes
- Node references must use [NODE:id:"title"] so the UI renders clickable labels
""",
    "agent_instructions.md": """=== AGENT INSTRUCTIONS ({{ helper_key }}) ===
{{ system_prompt }}
""",
}


class PromptLoaderError(Exception):
    """Raised when a prompt cannot be loaded."""

    pass


class PromptLoader:
    """Load and render Jinja2 prompt templates.

    Example:
        >>> loader = PromptLoader()
        >>> loader.load("agent_instructions.md", {"helper_key": "ra-h", "system_prompt": "..."})
    """

    def __init__(self, prompts_dir: Optional[Path] = None) -> None:
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,  # Prompts are markdown, not HTML
                auto_reload=True,
                keep_trailing_newline=True,
            )
            logger.debug(
                "PromptLoader initialized with filesystem templates",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None
            logger.warning(
                "Prompts directory not found, using inline fallbacks",
                extra={"prompts_dir": str(self.prompts_dir)},
            )

    def load(self, path: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Load and render a prompt template.

        Args:
            path: Relative path to the template file (e.g., "agents/ra-h.md").
            context: Dictionary of variables to render into the template.

        Returns:
            The rendered prompt string.

        Raises:
            PromptLoaderError: If the template cannot be loaded or rendered.
        """
        context = context or {}

        if self.env is not None:
            try:
                template = self.env.get_template(path)
                return template.render(**context)
            except jinja2.TemplateNotFound:
                logger.debug(
                    "Template not found in filesystem, trying inline fallback",
                    extra={"path": path},
                )
            except jinja2.TemplateError as e:
                logger.error(
                    "Failed to render template",
                    extra={"path": path, "error": str(e)},
                )
                raise PromptLoaderError(f"Failed to render template {path}: {e}") from e

        return self._get_inline_prompt(path, context)

    def _get_inline_prompt(self, path: str, context: Dict[str, Any]) -> str:
        template_str = INLINE_PROMPTS.get(path)
        if template_str is None:
            logger.warning(
                "No inline fallback for prompt path",
                extra={"path": path, "available": list(INLINE_PROMPTS.keys())},
            )
            raise PromptLoaderError(
                f"Prompt not found: {path}. "
                f"Available inline prompts: {list(INLINE_PROMPTS.keys())}"
            )

        try:
            return jinja2.Template(template_str).render(**context)
        except jinja2.TemplateError as e:
            raise PromptLoaderError(
                f"Failed to render inline template {path}: {e}"
            ) from e

    def list_available(self) -> Dict[str, List[str]]:
        """List filesystem and inline prompt templates."""
        result: Dict[str, List[str]] = {
            "filesystem": [],
            "inline": list(INLINE_PROMPTS.keys()),
        }
        if self.prompts_dir.is_dir():
            for md_file in self.prompts_dir.rglob("*.md"):
                result["filesystem"].append(md_file.relative_to(self.prompts_dir).as_posix())
        return result


_prompt_loader: Optional[PromptLoader] = None


def get_prompt_loader() -> PromptLoader:
    """Get or create the prompt loader singleton."""
    global _prompt_loader
    if _prompt_loader is None:
        _prompt_loader = PromptLoader()
    return _prompt_loader


__all__ = ["PromptLoader", "PromptLoaderError", "DEFAULT_PROMPTS_DIR", "get_prompt_loader"]
