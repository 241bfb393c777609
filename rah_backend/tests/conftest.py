"""Shared fixtures: isolated environment and a mocked RA-H REST API."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

from rah_backend.src.services import config as config_module
from rah_backend.src.services.rah_api_client import RahApiClient

TEST_BASE_URL = "http://rah.test"

ISOLATED_ENV_VARS = (
    "RAH_ORCHESTRATOR_ANTHROPIC_API_KEY",
    "ANTHROPIC_API_KEY",
    "RAH_DELEGATE_OPENAI_API_KEY",
    "OPENAI_API_KEY",
    "RAH_MCP_TARGET_URL",
    "NEXT_PUBLIC_BASE_URL",
    "RAH_MCP_PORT",
    "RAH_MCP_HOST",
    "DEBUG_CACHE",
    "RAH_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path: Path):
    """
    Clear provider keys and point the status file and helper log at tmp_path.
    """
    for name in ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RAH_MCP_STATUS_PATH", str(tmp_path / "mcp-status.json"))
    monkeypatch.setenv("RAH_HELPER_LOG_PATH", str(tmp_path / "helper-interactions.log"))
    config_module.reload_config()
    yield
    config_module.get_config.cache_clear()


class FakeRahApi:
    """Route table for ``httpx.MockTransport`` that records every request."""

    def __init__(self) -> None:
        self.routes: Dict[tuple, Any] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status_code, body)

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content or b"null")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"success": False, "error": "Not found"})
        status_code, body = route
        if callable(body):
            body = body(request)
        return httpx.Response(status_code, json=body)

    def client(self) -> RahApiClient:
        return RahApiClient(
            base_url_resolver=lambda: TEST_BASE_URL,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_api() -> FakeRahApi:
    return FakeRahApi()


@pytest.fixture
def api_client(fake_api: FakeRahApi) -> RahApiClient:
    return fake_api.client()


@pytest.fixture
def make_api_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], RahApiClient]:
    def factory(handler):
        return RahApiClient(
            base_url_resolver=lambda: TEST_BASE_URL,
            transport=httpx.MockTransport(handler),
        )

    return factory
