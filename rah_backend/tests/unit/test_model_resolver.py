"""Unit tests for provider/model resolution."""

import pytest

from rah_backend.src.models.chat import ApiKeyOverrides
from rah_backend.src.services.errors import MissingCredentialError, UnsupportedModelError
from rah_backend.src.services.model_resolver import (
    canonical_model_id,
    parse_model_id,
    resolve_model,
)
from rah_backend.src.services.providers import (
    ANTHROPIC_CACHE_HEADERS,
    AnthropicProvider,
    OpenAIProvider,
)


def test_anthropic_alias_with_generic_key(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-generic")

    provider = resolve_model("anthropic/claude-3-5-sonnet", ApiKeyOverrides())

    assert isinstance(provider, AnthropicProvider)
    assert provider.provider == "anthropic"
    assert provider.model_name == "claude-3-5-sonnet-20241022"
    assert provider.headers == ANTHROPIC_CACHE_HEADERS


def test_unknown_anthropic_model_is_used_as_is(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-generic")

    provider = resolve_model("anthropic/claude-opus-4-20250514")

    assert provider.model_name == "claude-opus-4-20250514"


def test_anthropic_key_priority(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "generic")
    monkeypatch.setenv("RAH_ORCHESTRATOR_ANTHROPIC_API_KEY", "scoped")

    from_env = resolve_model("anthropic/claude-sonnet-4.5")
    from_override = resolve_model(
        "anthropic/claude-sonnet-4.5", ApiKeyOverrides(anthropic="override")
    )

    assert from_env._client.api_key == "scoped"
    assert from_override._client.api_key == "override"


def test_openai_without_any_key_fails() -> None:
    with pytest.raises(MissingCredentialError) as exc_info:
        resolve_model("openai/gpt-4o", ApiKeyOverrides())

    assert "OPENAI_API_KEY" in exc_info.value.message


def test_anthropic_without_any_key_names_the_variable() -> None:
    with pytest.raises(MissingCredentialError) as exc_info:
        resolve_model("anthropic/claude-sonnet-4.5")

    assert "RAH_ORCHESTRATOR_ANTHROPIC_API_KEY" in exc_info.value.message


def test_openai_key_priority(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "generic")
    monkeypatch.setenv("RAH_DELEGATE_OPENAI_API_KEY", "delegate")

    provider = resolve_model("openai/gpt-5-mini")
    overridden = resolve_model("openai/gpt-5-mini", ApiKeyOverrides(openai="override"))

    assert isinstance(provider, OpenAIProvider)
    assert provider.headers == {}
    assert provider._client.api_key == "delegate"
    assert overridden._client.api_key == "override"


def test_blank_override_falls_back_to_environment(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "generic")

    provider = resolve_model("openai/gpt-4o-mini", ApiKeyOverrides(openai="   "))

    assert provider._client.api_key == "generic"


def test_anthropic_key_never_satisfies_openai(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")

    with pytest.raises(MissingCredentialError):
        resolve_model("openai/gpt-4o", ApiKeyOverrides(anthropic="sk-ant"))


@pytest.mark.parametrize("model_id", ["unknown/x", "x", "", "google/gemini"])
def test_unsupported_provider(model_id: str) -> None:
    with pytest.raises(UnsupportedModelError):
        resolve_model(model_id)


def test_parse_and_canonical_ids() -> None:
    assert parse_model_id("openai/gpt-5") == ("openai", "gpt-5")
    assert canonical_model_id("anthropic/claude-sonnet-4.5") == "claude-sonnet-4-5-20250929"
    assert canonical_model_id("openai/gpt-5-mini") == "gpt-5-mini"
