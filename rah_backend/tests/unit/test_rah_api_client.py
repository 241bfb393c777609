"""Tests for the RA-H REST client and base URL discovery."""

import httpx
import pytest

from rah_backend.src.services import status_file
from rah_backend.src.services.config import DEFAULT_APP_BASE_URL
from rah_backend.src.services.errors import UpstreamRequestError
from rah_backend.src.services.rah_api_client import RahApiClient, default_base_url


class TestDefaultBaseUrl:
    def test_falls_back_to_default(self) -> None:
        assert default_base_url() == DEFAULT_APP_BASE_URL

    def test_target_url_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("RAH_MCP_TARGET_URL", "http://target.test/")
        monkeypatch.setenv("NEXT_PUBLIC_BASE_URL", "http://public.test")

        assert default_base_url() == "http://target.test"

    def test_public_base_url(self, monkeypatch) -> None:
        monkeypatch.setenv("NEXT_PUBLIC_BASE_URL", "http://public.test")

        assert default_base_url() == "http://public.test"

    def test_status_file_target(self) -> None:
        status_file.write_status({"enabled": True, "port": 9, "target_base_url": "http://status.test/"})

        assert default_base_url() == "http://status.test"

    def test_status_file_port(self) -> None:
        status_file.write_status({"enabled": True, "port": 3999})

        assert default_base_url() == "http://127.0.0.1:3999"


class TestRahApiClient:
    @pytest.mark.asyncio
    async def test_success_clears_last_error(self, fake_api, api_client) -> None:
        fake_api.on("GET", "/api/nodes", {"success": True, "data": []})
        api_client.last_error = "previous failure"

        body = await api_client.get("/api/nodes", {"limit": 5, "search": None})

        assert body == {"success": True, "data": []}
        assert api_client.last_error is None
        assert str(fake_api.requests[-1].url) == "http://rah.test/api/nodes?limit=5"

    @pytest.mark.asyncio
    async def test_success_false_envelope_is_an_error(self, fake_api, api_client) -> None:
        fake_api.on("PUT", "/api/edges/3", {"success": False, "error": "Edge not found"})

        with pytest.raises(UpstreamRequestError) as exc_info:
            await api_client.put("/api/edges/3", {"weight": 1})

        assert exc_info.value.message == "Edge not found"
        assert exc_info.value.path == "/api/edges/3"
        assert api_client.last_error == "Edge not found"

    @pytest.mark.asyncio
    async def test_non_json_body(self, make_api_client) -> None:
        client = make_api_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(UpstreamRequestError) as exc_info:
            await client.get("/api/dimensions/popular")

        assert exc_info.value.message == "RA-H API request failed at /api/dimensions/popular"

    @pytest.mark.asyncio
    async def test_network_error(self, make_api_client) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_api_client(refuse)

        with pytest.raises(UpstreamRequestError) as exc_info:
            await client.get("/api/workflows")

        assert exc_info.value.message == "Unable to reach local RA-H API at http://rah.test/api/workflows"
        assert client.last_error == exc_info.value.message

    def test_resolver_failure_falls_back(self) -> None:
        def broken() -> str:
            raise RuntimeError("no status")

        client = RahApiClient(base_url_resolver=broken)

        assert client.resolve_base_url() == DEFAULT_APP_BASE_URL
        assert client.last_error == "no status"

    def test_resolver_can_be_replaced(self) -> None:
        client = RahApiClient(base_url_resolver=lambda: "http://one.test")
        client.set_base_url_resolver(lambda: " http://two.test/ ")

        assert client.resolve_base_url() == "http://two.test"
