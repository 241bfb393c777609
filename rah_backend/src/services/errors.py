"""Error taxonomy shared by the chat orchestrator and the MCP bridge."""

from __future__ import annotations

from typing import Any, Dict, Optional


class RahError(Exception):
    """Base class for RA-H domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RahError):
    """No agent/orchestrator definition is registered for the requested mode."""


class MissingCredentialError(RahError):
    """No usable API key could be found for the resolved provider."""


class UnsupportedModelError(RahError):
    """The model identifier names a provider we do not support."""


class ToolValidationError(RahError):
    """Tool input failed a schema or tool-specific precondition."""


class UpstreamRequestError(RahError):
    """A call to the sibling RA-H REST API failed or returned a failure envelope."""

    def __init__(
        self,
        message: str,
        path: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.path = path
        self.status_code = status_code


__all__ = [
    "RahError",
    "ConfigurationError",
    "MissingCredentialError",
    "UnsupportedModelError",
    "ToolValidationError",
    "UpstreamRequestError",
]
