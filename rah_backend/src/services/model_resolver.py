"""Resolve ``provider/modelName`` identifiers into streaming provider clients."""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple

from ..models.chat import ApiKeyOverrides
from .errors import MissingCredentialError, UnsupportedModelError
from .providers import AnthropicProvider, OpenAIProvider, ProviderClient

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("anthropic", "openai")

# Short Anthropic aliases used in agent definitions -> dated API model ids
ANTHROPIC_MODEL_MAP: Dict[str, str] = {
    "claude-sonnet-4.5": "claude-sonnet-4-5-20250929",
    "claude-3-5-sonnet": "claude-3-5-sonnet-20241022",
}

ANTHROPIC_KEY_ENV_VARS = ("RAH_ORCHESTRATOR_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY")
OPENAI_KEY_ENV_VARS = ("RAH_DELEGATE_OPENAI_API_KEY", "OPENAI_API_KEY")


def parse_model_id(model_id: str) -> Tuple[str, str]:
    """Split ``provider/modelName``; the provider must be supported."""
    provider, _, model_name = (model_id or "").partition("/")
    if provider not in SUPPORTED_PROVIDERS:
        raise UnsupportedModelError(
            f"Unsupported model provider: {provider or model_id!r}",
            details={"model_id": model_id},
        )
    return provider, model_name


def canonical_model_id(model_id: str) -> str:
    """Return the dated model id used for pricing and ``modelUsed`` telemetry."""
    provider, model_name = parse_model_id(model_id)
    if provider == "anthropic":
        return ANTHROPIC_MODEL_MAP.get(model_name, model_name)
    return model_name


def _first_key(override: Optional[str], env_vars: Tuple[str, ...]) -> Optional[str]:
    if override:
        return override
    for name in env_vars:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


def resolve_model(
    model_id: str,
    overrides: Optional[ApiKeyOverrides] = None,
) -> ProviderClient:
    """Build a provider client for ``model_id``.

    Keys are read from the environment on every call so that rotated keys and
    per-request overrides take effect without a restart. No network request is
    made here.
    """
    overrides = overrides or ApiKeyOverrides()
    provider, model_name = parse_model_id(model_id)

    if provider == "anthropic":
        api_key = _first_key(overrides.anthropic, ANTHROPIC_KEY_ENV_VARS)
        if not api_key:
            raise MissingCredentialError(
                "RAH_ORCHESTRATOR_ANTHROPIC_API_KEY (or ANTHROPIC_API_KEY) is not set.",
                details={"provider": provider},
            )
        resolved = ANTHROPIC_MODEL_MAP.get(model_name, model_name)
        logger.debug(
            "Resolved Anthropic model",
            extra={"model_id": model_id, "resolved": resolved, "override": bool(overrides.anthropic)},
        )
        return AnthropicProvider(model_name=resolved, api_key=api_key)

    api_key = _first_key(overrides.openai, OPENAI_KEY_ENV_VARS)
    if not api_key:
        raise MissingCredentialError(
            "RAH_DELEGATE_OPENAI_API_KEY (or OPENAI_API_KEY) is not set.",
            details={"provider": provider},
        )
    logger.debug(
        "Resolved OpenAI model",
        extra={"model_id": model_id, "resolved": model_name, "override": bool(overrides.openai)},
    )
    return OpenAIProvider(model_name=model_name, api_key=api_key)


__all__ = [
    "ANTHROPIC_MODEL_MAP",
    "SUPPORTED_PROVIDERS",
    "canonical_model_id",
    "parse_model_id",
    "resolve_model",
]
