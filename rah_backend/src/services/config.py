"""Application configuration helpers."""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_APP_BASE_URL = "http://127.0.0.1:3000"
DEFAULT_MCP_PORT = 44145
DEFAULT_MCP_HOST = "127.0.0.1"
DEFAULT_STATUS_PATH = (
    Path.home() / "Library" / "Application Support" / "RA-H" / "config" / "mcp-status.json"
)
DEFAULT_HELPER_LOG_PATH = PROJECT_ROOT / "logs" / "helper-interactions.log"


class AppConfig(BaseModel):
    """Runtime configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True)

    app_base_url: str = Field(
        default=DEFAULT_APP_BASE_URL,
        description="Base URL of the RA-H REST API (nodes/edges/dimensions/workflows)",
    )
    mcp_target_url: Optional[str] = Field(
        default=None,
        description="Explicit REST target for the MCP bridge (overrides app_base_url)",
    )
    mcp_port: int = Field(default=DEFAULT_MCP_PORT, description="HTTP MCP bridge port")
    mcp_host: str = Field(default=DEFAULT_MCP_HOST, description="HTTP MCP bridge host")
    mcp_status_path: Path = Field(
        default=DEFAULT_STATUS_PATH,
        description="JSON status file shared by the HTTP and stdio bridges",
    )
    helper_log_path: Path = Field(
        default=DEFAULT_HELPER_LOG_PATH,
        description="JSON-lines log of helper interactions",
    )
    debug_cache: bool = Field(
        default=False, description="Log prompt-cache structure and raw usage per step"
    )
    api_timeout_seconds: float = Field(
        default=30.0, description="Timeout for calls to the RA-H REST API"
    )
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed to call the chat API",
    )

    @field_validator("app_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_APP_BASE_URL
        return str(value).strip().rstrip("/")

    @field_validator("mcp_target_url", mode="before")
    @classmethod
    def _normalize_target_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        if not cleaned:
            return None
        return cleaned.rstrip("/")

    @field_validator("mcp_port")
    @classmethod
    def _validate_port(cls, value: int) -> int:
        if value <= 0 or value > 65535:
            raise ValueError("RAH_MCP_PORT must be between 1 and 65535")
        return value

    @field_validator("mcp_status_path", "helper_log_path", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            path = value
        else:
            path = Path(value)
        return path.expanduser()


def _read_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(key, default)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load and cache application configuration."""
    cors_raw = _read_env("RAH_CORS_ORIGINS")
    kwargs = {}
    if cors_raw:
        kwargs["cors_origins"] = [o.strip() for o in cors_raw.split(",") if o.strip()]

    return AppConfig(
        app_base_url=_read_env("NEXT_PUBLIC_BASE_URL"),
        mcp_target_url=_read_env("RAH_MCP_TARGET_URL"),
        mcp_port=int(_read_env("RAH_MCP_PORT", str(DEFAULT_MCP_PORT))),
        mcp_host=_read_env("RAH_MCP_HOST", DEFAULT_MCP_HOST),
        mcp_status_path=_read_env("RAH_MCP_STATUS_PATH", str(DEFAULT_STATUS_PATH)),
        helper_log_path=_read_env("RAH_HELPER_LOG_PATH", str(DEFAULT_HELPER_LOG_PATH)),
        debug_cache=(_read_env("DEBUG_CACHE", "false") or "").lower() == "true",
        api_timeout_seconds=float(_read_env("RAH_API_TIMEOUT_SECONDS", "30")),
        **kwargs,
    )


def reload_config() -> AppConfig:
    """Clear cached config (useful for tests) and reload."""
    get_config.cache_clear()
    return get_config()


__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "PROJECT_ROOT",
    "DEFAULT_APP_BASE_URL",
    "DEFAULT_MCP_PORT",
    "DEFAULT_STATUS_PATH",
]
