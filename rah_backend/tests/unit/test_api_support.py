"""Tests for the shared error handlers and the in-memory log endpoint."""

import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rah_backend.src.api.middleware import register_error_handlers
from rah_backend.src.api.routes import system
from rah_backend.src.services.errors import (
    MissingCredentialError,
    ToolValidationError,
    UpstreamRequestError,
)


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/missing-key")
    async def missing_key():
        raise MissingCredentialError("OPENAI_API_KEY is not set")

    @app.get("/bad-input")
    async def bad_input():
        raise ToolValidationError("At least one dimension/tag is required", {"field": "dimensions"})

    @app.get("/upstream")
    async def upstream():
        raise UpstreamRequestError("Unable to reach local RA-H API", "/api/nodes")

    app.include_router(system.router)
    return TestClient(app)


class TestDomainErrorHandlers:
    def test_missing_credentials(self, client: TestClient) -> None:
        response = client.get("/missing-key")

        assert response.status_code == 500
        assert response.json() == {
            "error": "missing_credentials",
            "message": "OPENAI_API_KEY is not set",
            "detail": None,
        }

    def test_validation_error_keeps_details(self, client: TestClient) -> None:
        response = client.get("/bad-input")

        assert response.status_code == 400
        assert response.json()["detail"] == {"field": "dimensions"}

    def test_upstream_error(self, client: TestClient) -> None:
        response = client.get("/upstream")

        assert response.status_code == 502
        assert response.json()["error"] == "upstream_error"


class TestSystemLogs:
    def test_captures_records_with_extra_fields(self, client: TestClient) -> None:
        system.LOG_BUFFER.clear()
        test_logger = logging.getLogger("rah_backend.tests.system")
        test_logger.addHandler(system.memory_handler)
        test_logger.setLevel(logging.INFO)
        test_logger.propagate = False
        try:
            test_logger.info("Chat turn prepared", extra={"helper": "ra-h"})
            test_logger.warning("RA-H API request failed", extra={"status_code": 503})
        finally:
            test_logger.removeHandler(system.memory_handler)

        everything = client.get("/api/system/logs").json()
        warnings = client.get("/api/system/logs", params={"level": "warning"}).json()

        assert [entry["message"] for entry in everything] == [
            "Chat turn prepared",
            "RA-H API request failed",
        ]
        assert everything[0]["extra"] == {"helper": "ra-h"}
        assert [entry["level"] for entry in warnings] == ["WARNING"]
