"""Service layer for chat orchestration and RA-H API integrations."""

from .config import AppConfig, get_config, reload_config
from .errors import (
    ConfigurationError,
    MissingCredentialError,
    RahError,
    ToolValidationError,
    UnsupportedModelError,
    UpstreamRequestError,
)
from .prompt_loader import PromptLoader, PromptLoaderError
from .rah_api_client import RahApiClient
from .tool_executor import ToolExecutor, get_tool_executor

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "RahError",
    "ConfigurationError",
    "MissingCredentialError",
    "UnsupportedModelError",
    "ToolValidationError",
    "UpstreamRequestError",
    "PromptLoader",
    "PromptLoaderError",
    "RahApiClient",
    "ToolExecutor",
    "get_tool_executor",
]
