"""Async client for the sibling RA-H REST API (nodes, edges, dimensions, workflows)."""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from .config import DEFAULT_APP_BASE_URL, get_config
from .errors import UpstreamRequestError
from .status_file import read_status

logger = logging.getLogger(__name__)

BaseUrlResolver = Callable[[], Optional[str]]


def _strip(url: str) -> str:
    return url.strip().rstrip("/")


def default_base_url() -> str:
    """Resolve the REST target for this call.

    Order: ``RAH_MCP_TARGET_URL``, ``NEXT_PUBLIC_BASE_URL``, the status file's
    ``target_base_url`` (else its ``port`` on 127.0.0.1), then the default.
    """
    for name in ("RAH_MCP_TARGET_URL", "NEXT_PUBLIC_BASE_URL"):
        value = os.getenv(name)
        if value and value.strip():
            return _strip(value)

    status = read_status()
    if status:
        if status.get("target_base_url"):
            return _strip(str(status["target_base_url"]))
        if status.get("port"):
            return f"http://127.0.0.1:{status['port']}"
    return DEFAULT_APP_BASE_URL


class RahApiClient:
    """JSON client that turns REST failures into ``UpstreamRequestError``.

    The base URL is resolved on every request so a restarted app on a new
    port is picked up without recreating the client. ``last_error`` keeps the
    most recent failure message for status reporting and is cleared by the
    next successful call.
    """

    def __init__(
        self,
        base_url_resolver: Optional[BaseUrlResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._resolver = base_url_resolver or default_base_url
        self._transport = transport
        self._timeout = timeout if timeout is not None else get_config().api_timeout_seconds
        self.last_error: Optional[str] = None

    def set_base_url_resolver(self, resolver: BaseUrlResolver) -> None:
        self._resolver = resolver

    def resolve_base_url(self) -> str:
        try:
            value = self._resolver()
        except Exception as exc:
            self.last_error = str(exc)
            logger.warning("Base URL resolver failed", extra={"error": str(exc)})
            value = None
        if isinstance(value, str) and value.strip():
            return _strip(value)
        return _strip(os.getenv("NEXT_PUBLIC_BASE_URL") or DEFAULT_APP_BASE_URL)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            UpstreamRequestError: network failure, non-2xx status, unparsable
                body, or a body with ``success: false``.
        """
        base_url = self.resolve_base_url()
        query = {k: v for k, v in (params or {}).items() if v is not None}
        display_path = f"{path}?{urlencode(query)}" if query else path
        url = f"{base_url}{path}"

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    params=query or None,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as exc:
            message = f"Unable to reach local RA-H API at {base_url}{display_path}"
            self.last_error = message
            logger.warning(message, extra={"error": str(exc)})
            raise UpstreamRequestError(message, display_path, details={"error": str(exc)}) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success or body is None or (
            isinstance(body, dict) and body.get("success") is False
        ):
            error = body.get("error") if isinstance(body, dict) else None
            message = error if isinstance(error, str) and error else (
                f"RA-H API request failed at {display_path}"
            )
            self.last_error = message
            logger.warning(
                "RA-H API request failed",
                extra={"path": display_path, "status_code": response.status_code, "error": message},
            )
            raise UpstreamRequestError(message, display_path, status_code=response.status_code)

        self.last_error = None
        return body

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, json=payload)

    async def put(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("PUT", path, json=payload)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("DELETE", path, params=params)


__all__ = ["RahApiClient", "default_base_url"]
