"""
Workspace checkpoints for Captain.

This module provides:
- Snapshotter protocol: creates a reversible save point and returns its id
- GitSnapshotter: commits the dirty worktree (or reuses HEAD when clean)
- CheckpointLog: append-only JSONL history of every checkpoint taken
"""

from __future__ import annotations

import json
import subprocess
import threading
from pathlib import Path
from typing import Optional, Protocol, Sequence

from captain.errors import CheckpointError, FileSystemError
from captain.models import Checkpoint
from captain.utils.fs import append_line


class Snapshotter(Protocol):
    """Creates a reversible save point of the workspace."""

    def snapshot(self, task_id: str, message: str) -> str:
        """Return a commit-like reference. Raise CheckpointError on failure."""
        ...

    def rollback_instruction(self, checkpoint_id: Optional[str]) -> str:
        """Human instruction for restoring the workspace to a checkpoint."""
        ...


class GitSnapshotter:
    """
    Checkpoints backed by git commits.

    Captain's own artifacts (status files, audit log, recovery queue, state
    directory) are excluded so they never trigger or pollute a checkpoint.
    """

    def __init__(
        self,
        repo_root: str | Path,
        git_binary: str = "git",
        timeout_seconds: int = 60,
        exclude: Sequence[str] = (),
    ) -> None:
        self.repo_root = Path(repo_root)
        self.git_binary = git_binary
        self.timeout_seconds = timeout_seconds
        self.exclude = list(exclude)

    def _pathspec(self) -> list[str]:
        return ["--", "."] + [f":(exclude){path}" for path in self.exclude]

    def _git(self, *args: str) -> str:
        try:
            result = subprocess.run(
                [self.git_binary, *args],
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            raise CheckpointError(f"git {args[0]} timed out after {self.timeout_seconds}s")
        except OSError as e:
            raise CheckpointError(f"Could not run {self.git_binary}: {e}")

        if result.returncode != 0:
            raise CheckpointError(
                f"git {args[0]} failed: {result.stderr.strip() or result.stdout.strip()}",
                stderr=result.stderr,
            )
        return result.stdout

    def snapshot(self, task_id: str, message: str) -> str:
        """
        Commit pending changes and return the resulting HEAD sha.

        Raises:
            CheckpointError: If git is unavailable, this is not a repository,
                or the commit fails.
        """
        dirty = self._git("status", "--porcelain", *self._pathspec()).strip()
        if dirty:
            self._git("add", "-A", *self._pathspec())
            self._git("commit", "--no-verify", "-m", message)
        try:
            return self._git("rev-parse", "HEAD").strip()
        except CheckpointError as e:
            raise CheckpointError(
                f"No commit to checkpoint for task {task_id}: {e}", task_id=task_id
            )

    def rollback_instruction(self, checkpoint_id: Optional[str]) -> str:
        if not checkpoint_id:
            return "No checkpoint available for automated rollback."
        return f"git reset --hard {checkpoint_id}"


class CheckpointLog:
    """Append-only history of checkpoints (one JSON object per line)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, checkpoint: Checkpoint) -> None:
        """
        Record a checkpoint.

        Raises:
            CheckpointError: If the history cannot be written.
        """
        with self._lock:
            try:
                append_line(self.path, json.dumps(checkpoint.to_dict()))
            except FileSystemError as e:
                raise CheckpointError(
                    f"Failed to record checkpoint {checkpoint.id}: {e}",
                    task_id=checkpoint.task_id,
                )

    def history(self, task_id: Optional[str] = None) -> list[Checkpoint]:
        """All recorded checkpoints, oldest first, optionally for one task."""
        if not self.path.exists():
            return []
        checkpoints = []
        with self._lock, open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    checkpoint = Checkpoint.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, ValueError):
                    continue
                if task_id is None or checkpoint.task_id == task_id:
                    checkpoints.append(checkpoint)
        return checkpoints

    def latest(self, task_id: Optional[str] = None) -> Optional[Checkpoint]:
        """The most recent checkpoint, optionally for one task."""
        history = self.history(task_id)
        return history[-1] if history else None
