"""System routes for logs and diagnostics."""

import logging
from collections import deque
from typing import List, Dict, Any
from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel

router = APIRouter()

# Global in-memory log buffer
LOG_BUFFER: deque = deque(maxlen=200)

_RECORD_FIELDS = {
    'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message', 'msg', 'name',
    'pathname', 'process', 'processName', 'relativeCreated', 'stack_info', 'thread',
    'threadName', 'taskName',
}


class LogEntry(BaseModel):
    timestamp: str
    level: str
    logger: str
    message: str
    extra: Dict[str, Any]


class MemoryLogHandler(logging.Handler):
    """Custom handler to capture logs into memory."""
    def emit(self, record):
        try:
            msg = self.format(record)
            extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_FIELDS}
            entry = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": msg,
                "extra": extra,
            }
            LOG_BUFFER.append(entry)
        except Exception:
            self.handleError(record)


memory_handler = MemoryLogHandler()
memory_handler.setFormatter(logging.Formatter('%(message)s'))


def install_memory_handler() -> None:
    """Attach the buffer handler to the root logger once."""
    root = logging.getLogger()
    if memory_handler not in root.handlers:
        root.addHandler(memory_handler)
    if root.level > logging.INFO or root.level == logging.NOTSET:
        root.setLevel(logging.INFO)


@router.get("/api/system/logs", response_model=List[LogEntry])
async def get_logs(level: str = Query(None, description="Minimum level, e.g. WARNING")):
    """Retrieve recent system logs."""
    entries = list(LOG_BUFFER)
    if level:
        threshold = logging.getLevelName(level.upper())
        if isinstance(threshold, int):
            entries = [e for e in entries if logging.getLevelName(e["level"]) >= threshold]
    return entries
