"""Bounded in-memory buffer of recent log records.

WHY: When a webhook misbehaves in a hosted deployment, the quickest way
to see what happened is to ask the running process for its last few
log lines. The buffer has to be bounded so it cannot grow with traffic.

HOW: Two components work together:
  LogBuffer:     thread-safe deque(maxlen=capacity) of plain dicts
  BufferHandler: logging.Handler that mirrors formatted records into it

RULES:
- All buffer mutations are protected by threading.Lock
- Oldest entries are dropped first once capacity is reached
- entries() returns a copy, newest last
- install_buffer_handler() is idempotent per logger
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List

DEFAULT_CAPACITY = 50


class LogBuffer:
    """Thread-safe ring buffer of log entries."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque = deque(maxlen=max(capacity, 1))
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, entry: Dict[str, Any]) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed


class BufferHandler(logging.Handler):
    """Logging handler that writes into a LogBuffer."""

    def __init__(self, buffer: LogBuffer, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.append({
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            })
        except Exception:
            self.handleError(record)


def install_buffer_handler(buffer: LogBuffer, logger_name: str) -> BufferHandler:
    """Attach a BufferHandler for ``buffer`` to a logger, once."""
    target = logging.getLogger(logger_name)
    for handler in target.handlers:
        if isinstance(handler, BufferHandler) and handler.buffer is buffer:
            return handler
    handler = BufferHandler(buffer)
    target.addHandler(handler)
    return handler
