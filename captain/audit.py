"""
Append-only forensic log for Captain.

This module provides a human-readable, append-only Markdown table at
RequestLog.md. Each row is (timestamp, event type, correlation id,
details). Rows are never rewritten or truncated.

AuditLogger is attached to the event bus as an observer so that every
triage decision, verification outcome, human interaction and halt or
recovery transition is recorded without the loop having to call it. The
loop writes the few entries that have no topic (directive injection)
directly.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from captain.events.types import Event, Topic
from captain.utils.fs import append_line, read_file

if TYPE_CHECKING:
    from captain.events.bus import EventBus, Subscription
    from captain.models import RecoveryRecord

AUDIT_HEADER = (
    "# Captain Request Log\n"
    "\n"
    "| Timestamp | Event Type | Correlation ID | Details |\n"
    "| --- | --- | --- | --- |\n"
)

# Event types recorded for each topic
TOPIC_EVENT_TYPES: dict[Topic, str] = {
    Topic.TASK_START: "TASK_START",
    Topic.TASK_COMPLETE: "TASK_COMPLETE",
    Topic.TASK_FAILED: "TASK_FAILED",
    Topic.TRIAGE_DECISION: "TRIAGE_DECISION",
    Topic.TEST_STRATEGY: "VERIFICATION_STRATEGY",
    Topic.BUILD_DONE: "BUILD_DONE",
    Topic.BUILD_BLOCKED: "BUILD_BLOCKED",
    Topic.BUILD_TASK_ABANDONED: "TASK_ABANDONED",
    Topic.HUMAN_INTERACT: "HUMAN_INTERACTION_REQUESTED",
    Topic.HUMAN_RESPONSE: "HUMAN_DECISION",
    Topic.LOOP_HALTED: "LOOP_HALTED",
    Topic.LOOP_RESUMED: "LOOP_RESUMED",
}


def _cell(text: Any) -> str:
    """Make a value safe for a single Markdown table cell."""
    return " ".join(str(text).split()).replace("|", "\\|")


def describe(event: Event) -> str:
    """One-line summary of an event's payload."""
    p = event.payload
    topic = event.topic
    if topic is Topic.TRIAGE_DECISION:
        forced = " (forced)" if p.get("forced") else ""
        return (
            f"task={p.get('task_id')} mode={p.get('mode')}{forced} "
            f"confidence={p.get('confidence')} reason={p.get('reason', '')}"
        )
    if topic is Topic.TEST_STRATEGY:
        return (
            f"task={p.get('task_id')} tier={p.get('tier')} "
            f"coverage>={p.get('coverage_threshold')} "
            f"categories={','.join(p.get('required_categories') or ()) or 'none'} "
            f"gates={','.join(p.get('hard_gates') or ()) or 'none'}"
        )
    if topic is Topic.BUILD_BLOCKED:
        return (
            f"task={p.get('task_id')} attempt={p.get('attempt')} "
            f"retries={p.get('retries')}/{p.get('max_retries')} "
            f"reasons={'; '.join(p.get('reasons') or ())}"
        )
    if topic is Topic.HUMAN_INTERACT:
        labels = ",".join(o.get("label", "?") for o in p.get("options") or ())
        return f"request={p.get('request_id')} question={p.get('question')} options={labels}"
    if topic is Topic.HUMAN_RESPONSE:
        return f"request={p.get('request_id')} selected=Option {p.get('selected_label')}"
    return " ".join(f"{key}={value}" for key, value in p.items() if value not in (None, ""))


class AuditLogger:
    """
    Append-only Markdown request log.

    Safe to call from the loop thread and from bus delivery threads.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None

    def log_event(
        self,
        event_type: str,
        correlation_id: str = "",
        details: str = "",
        timestamp: Optional[str] = None,
    ) -> None:
        """Append one row."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc).isoformat()
        row = (
            f"| {_cell(timestamp)} | {_cell(event_type)} | "
            f"{_cell(correlation_id or '-')} | {_cell(details)} |"
        )
        with self._lock:
            append_line(self.path, row, header=AUDIT_HEADER)

    def record(self, event: Event) -> None:
        """Bus observer: record any published event."""
        event_type = TOPIC_EVENT_TYPES.get(event.topic, event.topic.name)
        self.log_event(event_type, event.correlation_id, describe(event), event.timestamp)

    def attach(self, bus: EventBus) -> Subscription:
        """Subscribe to every topic on a bus."""
        self._subscription = bus.subscribe_all(self.record, name="audit")
        return self._subscription

    def log_directive(self, task_id: str, directive: str, correlation_id: str = "") -> None:
        self.log_event(
            "HUMAN_DIRECTIVE_INJECTED", correlation_id, f"task={task_id} directive={directive}"
        )

    def log_halt(self, record: RecoveryRecord, correlation_id: str = "") -> None:
        self.log_event(
            "RECOVERY_RECORDED",
            correlation_id,
            f"task={record.task_id} checkpoint={record.last_checkpoint_id or 'unknown'} "
            f"reason={record.failure_reason}",
        )

    def entries(self) -> list[dict[str, str]]:
        """Parse the table rows back (oldest first)."""
        rows = []
        for line in read_file(self.path).splitlines():
            if not line.startswith("| ") or line.startswith("| Timestamp") or line.startswith("| ---"):
                continue
            cells = [c.strip() for c in _split_row(line)]
            if len(cells) != 4:
                continue
            rows.append({
                "timestamp": cells[0],
                "event_type": cells[1],
                "correlation_id": cells[2],
                "details": cells[3],
            })
        return rows


def _split_row(line: str) -> list[str]:
    """Split a table row on unescaped pipes."""
    cells, current, escaped = [], [], False
    for ch in line.strip()[1:-1]:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            current.append(ch)
            escaped = True
        elif ch == "|":
            cells.append("".join(current))
            current = []
        else:
            current.append(ch)
    cells.append("".join(current))
    return [c.replace("\\|", "|") for c in cells]

