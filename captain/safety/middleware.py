"""
Safety middleware for Captain.

Wraps the snapshotter, the checkpoint history and the recovery queue
behind the three operations the loop relies on:
- checkpoint(task_id): must succeed before a mutating step is dispatched
- record_failure(...): writes the halt witness
- is_blocked(): polled at startup and before every iteration
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from captain.errors import CheckpointError
from captain.models import Checkpoint, RecoveryRecord, TaskIntent
from captain.safety.recovery import RecoveryQueue
from captain.safety.snapshot import CheckpointLog, Snapshotter

if TYPE_CHECKING:
    from captain.logger import CaptainLogger


class SafetyMiddleware:
    """Checkpoint-before-mutation and recovery blocking."""

    def __init__(
        self,
        snapshotter: Snapshotter,
        checkpoint_log: CheckpointLog,
        recovery_queue: RecoveryQueue,
        message_template: str = "captain: checkpoint {task_id}",
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        self.snapshotter = snapshotter
        self.checkpoint_log = checkpoint_log
        self.recovery_queue = recovery_queue
        self.message_template = message_template
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "safety"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def checkpoint(self, task_id: str) -> Checkpoint:
        """
        Create and record a checkpoint for a task.

        Raises:
            CheckpointError: If the snapshot or its history entry fails. The
                caller must not dispatch the step it was guarding.
        """
        message = self.message_template.format(task_id=task_id)
        try:
            checkpoint_id = self.snapshotter.snapshot(task_id, message)
        except CheckpointError as e:
            self._log("checkpoint_failed", {"task_id": task_id, "error": str(e)}, level="error")
            raise
        except Exception as e:
            self._log("checkpoint_failed", {"task_id": task_id, "error": str(e)}, level="error")
            raise CheckpointError(f"Snapshot failed for task {task_id}: {e}", task_id=task_id) from e

        if not checkpoint_id:
            raise CheckpointError(f"Snapshot for task {task_id} returned no id", task_id=task_id)

        checkpoint = Checkpoint(id=checkpoint_id, task_id=task_id)
        self.checkpoint_log.append(checkpoint)
        self._log("checkpoint_created", checkpoint.to_dict())
        return checkpoint

    def last_checkpoint(self, task_id: Optional[str] = None) -> Optional[Checkpoint]:
        """Latest recorded checkpoint, optionally for one task."""
        return self.checkpoint_log.latest(task_id)

    def record_failure(
        self,
        task: TaskIntent,
        reason: str,
        last_checkpoint: Optional[Checkpoint],
    ) -> RecoveryRecord:
        """Write the recovery record that halts the loop."""
        checkpoint_id = last_checkpoint.id if last_checkpoint else None
        record = self.recovery_queue.record_failure(
            task_id=task.id,
            title=task.title,
            reason=reason,
            last_checkpoint_id=checkpoint_id,
            rollback_instruction=self.snapshotter.rollback_instruction(checkpoint_id),
        )
        self._log("recovery_recorded", record.to_dict(), level="error")
        return record

    def is_blocked(self) -> bool:
        """True while a recovery record exists."""
        return self.recovery_queue.is_blocked()

    def read_record(self) -> Optional[RecoveryRecord]:
        return self.recovery_queue.read()
