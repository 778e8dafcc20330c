"""
Recovery queue for Captain.

The recovery queue is a Markdown document in the workspace. While it has
any non-whitespace content the loop is halted; a human clears it (deletes
or empties the file) to let orchestration resume. RecoveryWatcher polls
for that clearance on a bounded interval and can be stopped cooperatively.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from captain.errors import FileSystemError
from captain.models import RecoveryRecord
from captain.utils.fs import read_file, safe_write

logger = logging.getLogger(__name__)

RECOVERY_TEMPLATE = """# RECOVERY REQUIRED ({timestamp})

## Failed Task

- **ID:** {task_id}
- **Title:** {title}
- **Reason:** {reason}

## Recovery Options

- **Last Safe Checkpoint:** `{checkpoint}`
- **Rollback Command:** {rollback}

---

*Resolve the issue and CLEAR THIS FILE to resume orchestration.*
"""

_FIELD = re.compile(r"^- \*\*(?P<name>[^*]+):\*\* (?P<value>.*)$", re.MULTILINE)
_TIMESTAMP = re.compile(r"^# RECOVERY REQUIRED \((?P<ts>[^)]*)\)", re.MULTILINE)


def _one_line(text: str) -> str:
    return " ".join(text.split())


class RecoveryQueue:
    """Reads and writes the recovery document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def is_blocked(self) -> bool:
        """True while the recovery document has any content."""
        if not self.path.exists():
            return False
        try:
            return bool(self.path.read_text(encoding="utf-8").strip())
        except OSError:
            # An unreadable queue cannot prove the loop is clear.
            logger.warning("Recovery queue %s is unreadable; treating as blocked", self.path)
            return True

    def record_failure(
        self,
        task_id: str,
        title: str,
        reason: str,
        last_checkpoint_id: Optional[str],
        rollback_instruction: str,
    ) -> RecoveryRecord:
        """
        Write the recovery document.

        Raises:
            FileSystemError: If the document cannot be written.
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        record = RecoveryRecord(
            task_id=task_id,
            title=_one_line(title),
            failure_reason=_one_line(reason),
            last_checkpoint_id=last_checkpoint_id,
            rollback_instruction=rollback_instruction,
            recorded_at=timestamp,
        )
        rollback = (
            f"`{rollback_instruction}`" if last_checkpoint_id else f"*{rollback_instruction}*"
        )
        safe_write(
            self.path,
            RECOVERY_TEMPLATE.format(
                timestamp=timestamp,
                task_id=record.task_id,
                title=record.title,
                reason=record.failure_reason,
                checkpoint=last_checkpoint_id or "unknown",
                rollback=rollback,
            ),
        )
        return record

    def read(self) -> Optional[RecoveryRecord]:
        """
        Parse the recovery document.

        Returns:
            None when the queue is clear. Content that does not follow the
            template still blocks and is returned verbatim as the reason.
        """
        try:
            content = read_file(self.path)
        except FileSystemError:
            return RecoveryRecord(
                task_id="unknown",
                title="",
                failure_reason=f"Recovery queue {self.path} is unreadable",
                last_checkpoint_id=None,
                rollback_instruction="",
            )
        if not content.strip():
            return None

        fields = {m.group("name"): m.group("value").strip() for m in _FIELD.finditer(content)}
        if "ID" not in fields:
            return RecoveryRecord(
                task_id="unknown",
                title="",
                failure_reason=_one_line(content),
                last_checkpoint_id=None,
                rollback_instruction="",
            )

        checkpoint = fields.get("Last Safe Checkpoint", "").strip("`")
        stamp = _TIMESTAMP.search(content)
        return RecoveryRecord(
            task_id=fields["ID"],
            title=fields.get("Title", ""),
            failure_reason=fields.get("Reason", ""),
            last_checkpoint_id=None if checkpoint in ("", "unknown") else checkpoint,
            rollback_instruction=fields.get("Rollback Command", "").strip("`*"),
            recorded_at=stamp.group("ts") if stamp else "",
        )

    def clear(self) -> None:
        """Empty the recovery document (the human action that ends a halt)."""
        if self.path.exists():
            safe_write(self.path, "")


class RecoveryWatcher:
    """
    Background poll that fires once when the recovery queue clears.

    If on_clear returns False the clearance was not accepted and polling
    continues.

    Stop it with stop(); the poll thread exits at its next wake-up.
    """

    def __init__(
        self,
        queue: RecoveryQueue,
        on_clear: Callable[[], Optional[bool]],
        interval_seconds: float = 2.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.queue = queue
        self.on_clear = on_clear
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="captain-recovery-watcher", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            if self.queue.is_blocked():
                continue
            try:
                accepted = self.on_clear()
            except Exception:
                logger.exception("Recovery clearance handler failed")
                return
            if accepted is False:
                continue
            return
