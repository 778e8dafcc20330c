"""
Status artifacts for Captain.

Writes a machine-readable (.captain-status.json) and a human-readable
(.captain-status.md) mirror of the loop: objective, state, active task,
iteration/time/cost counters, last checkpoint and recovery queue health.
Both files are regenerated at the start of every iteration with an atomic
write, so readers never see a half-written status.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from captain.utils.fs import read_file, safe_write


@dataclass
class StatusSnapshot:
    """Point-in-time view of the orchestrator."""

    state: str
    objective: str = ""
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    routing_mode: Optional[str] = None
    tier: Optional[int] = None
    iteration: int = 0
    total_iterations: int = 0
    elapsed_seconds: float = 0.0
    cost_usd: float = 0.0
    last_checkpoint_id: Optional[str] = None
    recovery_blocked: bool = False
    recovery_reason: Optional[str] = None
    updated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def headline(self) -> str:
        if self.recovery_blocked or self.state == "halted":
            return "HALTED (Recovery Required)"
        return self.state.replace("_", " ").upper()

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "headline": self.headline,
            "objective": self.objective,
            "active_task": (
                {"id": self.task_id, "title": self.task_title} if self.task_id else None
            ),
            "routing_mode": self.routing_mode,
            "tier": self.tier,
            "counters": {
                "iteration": self.iteration,
                "total_iterations": self.total_iterations,
                "elapsed_seconds": round(self.elapsed_seconds, 2),
                "cost_usd": round(self.cost_usd, 4),
            },
            "last_checkpoint_id": self.last_checkpoint_id,
            "recovery": {
                "blocked": self.recovery_blocked,
                "reason": self.recovery_reason,
            },
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusSnapshot:
        task = data.get("active_task") or {}
        counters = data.get("counters") or {}
        recovery = data.get("recovery") or {}
        return cls(
            state=data.get("state", "idle"),
            objective=data.get("objective", ""),
            task_id=task.get("id"),
            task_title=task.get("title"),
            routing_mode=data.get("routing_mode"),
            tier=data.get("tier"),
            iteration=counters.get("iteration", 0),
            total_iterations=counters.get("total_iterations", 0),
            elapsed_seconds=counters.get("elapsed_seconds", 0.0),
            cost_usd=counters.get("cost_usd", 0.0),
            last_checkpoint_id=data.get("last_checkpoint_id"),
            recovery_blocked=recovery.get("blocked", False),
            recovery_reason=recovery.get("reason"),
            updated_at=data.get("updated_at", ""),
        )

    def to_markdown(self) -> str:
        task = f"{self.task_id}: {self.task_title}" if self.task_id else "none"
        lines = [
            "# Captain Status",
            "",
            f"**State:** {self.headline}",
            "",
            f"- **Objective:** {self.objective or 'not set'}",
            f"- **Active Task:** {task}",
        ]
        if self.routing_mode:
            lines.append(f"- **Routing:** {self.routing_mode}")
        if self.tier is not None:
            lines.append(f"- **Verification:** Tier {self.tier}")
        lines += [
            f"- **Iteration:** {self.iteration} (total {self.total_iterations})",
            f"- **Elapsed:** {self.elapsed_seconds:.1f}s",
            f"- **Cost:** ${self.cost_usd:.4f}",
            f"- **Last Checkpoint:** `{self.last_checkpoint_id or 'none'}`",
            f"- **Recovery Queue:** {'BLOCKED' if self.recovery_blocked else 'clear'}",
        ]
        if self.recovery_blocked and self.recovery_reason:
            lines.append(f"- **Recovery Reason:** {self.recovery_reason}")
        lines += ["", f"*Updated {self.updated_at}*", ""]
        return "\n".join(lines)


class StatusManager:
    """Writes and reads the status artifacts."""

    def __init__(self, json_path: str | Path, markdown_path: str | Path) -> None:
        self.json_path = Path(json_path)
        self.markdown_path = Path(markdown_path)

    def write(self, snapshot: StatusSnapshot) -> None:
        """
        Regenerate both artifacts.

        Raises:
            FileSystemError: If either file cannot be written.
        """
        safe_write(self.json_path, json.dumps(snapshot.to_dict(), indent=2) + "\n")
        safe_write(self.markdown_path, snapshot.to_markdown())

    def read(self) -> Optional[StatusSnapshot]:
        """Last written snapshot, or None if there is none or it is unreadable."""
        content = read_file(self.json_path)
        if not content.strip():
            return None
        try:
            return StatusSnapshot.from_dict(json.loads(content))
        except (json.JSONDecodeError, AttributeError, TypeError):
            return None
