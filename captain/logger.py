"""
Structured JSONL logging for Captain.

This module provides:
- JSONL event logging for debugging and audit trails
- Log files organized by session and date
- Log levels (debug, info, warn, error)
- Context manager for task-scoped logging
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class CaptainLogger:
    """
    JSONL event logger for Captain.

    Writes structured log entries to <logs_dir>/<session>-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - session: Session name
    - data: Additional event data (dict)
    - task_id: Present inside a task_context block
    """

    def __init__(self, logs_dir: Path, session: str = "captain") -> None:
        """
        Initialize logger for a session.

        Args:
            logs_dir: Directory for JSONL files (created on first write).
            session: Name used as the log file prefix.
        """
        self.logs_dir = Path(logs_dir)
        self.session = session
        self._current_task_id: Optional[str] = None
        # Bus worker threads and the loop thread share one file.
        self._lock = threading.Lock()

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        """Get the log file path for a date (default today)."""
        if date is None:
            date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.logs_dir / f"{self.session}-{date}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a log entry to the JSONL file."""
        log_path = self._get_log_path()
        with self._lock:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(log_path, "a") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "checkpoint_created", "gate_blocked").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "session": self.session,
            "data": data or {},
        }

        if self._current_task_id:
            entry["task_id"] = self._current_task_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a debug event."""
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an info event."""
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a warning event."""
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an error event."""
        self.log(event_type, data, LogLevel.ERROR)

    @contextmanager
    def task_context(self, task_id: str) -> Iterator[CaptainLogger]:
        """
        Context manager for task-scoped logging.

        All logs within this context will include the task_id.

        Example:
            with logger.task_context("T-1") as log:
                log.info("checkpoint_created", {"checkpoint_id": "abc123"})
        """
        old_task_id = self._current_task_id
        self._current_task_id = task_id
        self.info("task_context_start", {"task_id": task_id})
        try:
            yield self
        finally:
            self.info("task_context_end", {"task_id": task_id})
            self._current_task_id = old_task_id

    def read_logs(
        self,
        date: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read log entries with optional filtering.

        Args:
            date: Date string (YYYY-MM-DD) to read. If None, reads today's logs.
            level: Filter by log level.
            event_type: Filter by event type.
            task_id: Filter by task ID.
            limit: Maximum number of entries to return.

        Returns:
            List of log entries matching the filters.
        """
        log_path = self._get_log_path(date)
        if not log_path.exists():
            return []

        entries = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level") != level:
                    continue
                if event_type and entry.get("event_type") != event_type:
                    continue
                if task_id and entry.get("task_id") != task_id:
                    continue

                entries.append(entry)
                if limit is not None and len(entries) >= limit:
                    break

        return entries
