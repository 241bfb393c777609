"""Read and write the MCP bridge status file.

The file is shared with the desktop shell: the HTTP bridge writes it, the
stdio bridge and the REST client read it to discover the target base URL.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .config import get_config

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def status_path() -> Path:
    return get_config().mcp_status_path


def read_status(path: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """Return the parsed status snapshot, or ``None`` when absent or unreadable."""
    target = path or status_path()
    try:
        raw = target.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.debug("Failed to read MCP status file", extra={"path": str(target), "error": str(exc)})
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def write_status(snapshot: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Atomically replace the status file; failures are logged, never raised."""
    target = path or status_path()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=".mcp-status-")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(snapshot, handle, indent=2)
        os.replace(tmp_name, target)
        return True
    except OSError as exc:
        logger.error(
            "Failed to persist MCP status",
            extra={"path": str(target), "error": str(exc)},
        )
        return False


def enabled_snapshot(
    host: str,
    port: int,
    target_base_url: str,
    last_error: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "enabled": True,
        "port": port,
        "url": f"http://{host}:{port}/mcp",
        "target_base_url": target_base_url,
        "last_updated": _now_iso(),
        "last_error": last_error,
    }


def disabled_snapshot() -> Dict[str, Any]:
    return {"enabled": False, "port": None, "url": None, "last_updated": _now_iso()}


__all__ = [
    "disabled_snapshot",
    "enabled_snapshot",
    "read_status",
    "status_path",
    "write_status",
]
