"""JSON-lines log of helper (agent) interactions.

Each entry is one line ``{timestamp, helper, type, content, sessionId}``
written through a dedicated ``rah.helpers`` logger with its own
``FileHandler``. Write failures are reported by the logging machinery and
never interrupt a chat turn.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_config

logger = logging.getLogger(__name__)

HELPER_LOGGER_NAME = "rah.helpers"


class _JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(record.msg, default=str)


class HelperLogger:
    """Record the lifecycle of a chat turn for offline inspection."""

    def __init__(self, log_path: Optional[Path] = None, session_id: Optional[str] = None) -> None:
        self.log_path = Path(log_path or get_config().helper_log_path)
        self.session_id = session_id or str(int(time.time() * 1000))
        self._logger = logging.getLogger(f"{HELPER_LOGGER_NAME}.{self.session_id}")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._handler: Optional[logging.Handler] = None

    def _ensure_handler(self) -> None:
        if self._handler is not None:
            return
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(self.log_path, encoding="utf-8", delay=True)
        except OSError as exc:
            logger.error(
                "Failed to open helper log",
                extra={"path": str(self.log_path), "error": str(exc)},
            )
            handler = logging.NullHandler()
        handler.setFormatter(_JsonLineFormatter())
        self._logger.addHandler(handler)
        self._handler = handler

    def _write(self, helper: str, entry_type: str, content: Dict[str, Any]) -> None:
        self._ensure_handler()
        self._logger.info(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "helper": helper,
                "type": entry_type,
                "content": content,
                "sessionId": self.session_id,
            }
        )

    def log_user_message(
        self,
        helper: str,
        messages: List[Dict[str, Any]],
        open_tab_ids: List[int],
        active_tab_id: Optional[int],
    ) -> None:
        self._write(
            helper,
            "USER_MESSAGE",
            {
                "lastMessage": messages[-1] if messages else None,
                "messageCount": len(messages),
                "openTabIds": open_tab_ids,
                "activeTabId": active_tab_id,
            },
        )
        logger.info("Helper request received", extra={"helper": helper})

    def log_system_prompt(self, helper: str, system_prompt: str, cache_hit: bool) -> None:
        self._write(helper, "SYSTEM_PROMPT", {"systemPrompt": system_prompt, "cacheHit": cache_hit})

    def log_tool_call(self, helper: str, tool_name: str, parameters: Dict[str, Any]) -> None:
        self._write(helper, "TOOL_CALL", {"toolName": tool_name, "parameters": parameters})

    def log_tool_result(self, helper: str, tool_name: str, result: Any) -> None:
        self._write(helper, "TOOL_RESULT", {"toolName": tool_name, "result": result})

    def log_assistant_response(self, helper: str, response: str) -> None:
        self._write(helper, "ASSISTANT_RESPONSE", {"response": response})

    def log_error(self, helper: str, error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        self._write(
            helper,
            "ERROR",
            {"message": str(error), "errorType": type(error).__name__, "context": context or {}},
        )

    def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None


_helper_logger: Optional[HelperLogger] = None


def get_helper_logger() -> HelperLogger:
    """Get or create the process-wide helper logger."""
    global _helper_logger
    if _helper_logger is None:
        _helper_logger = HelperLogger()
    return _helper_logger


__all__ = ["HelperLogger", "get_helper_logger", "HELPER_LOGGER_NAME"]
