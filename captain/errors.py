"""
Error taxonomy for Captain.

This module provides:
- FailureKind enum classifying how a task went wrong
- CaptainError hierarchy raised by the orchestrator and its subsystems
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(Enum):
    """
    Classification of task-level problems.

    Carried on task.failed events and in the run log so a halt can be
    traced back to its cause.
    """

    LOW_CONFIDENCE = "low_confidence"   # Not an error: forced onto the Full path
    GATE_VIOLATION = "gate_violation"   # build.blocked, retried locally
    AMBIGUITY = "ambiguity"             # Deferred to the Human Bridge
    UNRECOVERABLE = "unrecoverable"     # Halts the loop
    CHECKPOINT = "checkpoint"           # Snapshot failed, step never dispatched


class CaptainError(Exception):
    """Base exception for all Captain errors."""

    pass


class ConfigError(CaptainError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


class FileSystemError(CaptainError):
    """Raised when a file system operation fails."""

    pass


class CheckpointError(CaptainError):
    """Raised when a checkpoint cannot be created before a mutating step."""

    def __init__(self, message: str, task_id: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.task_id = task_id
        self.stderr = stderr


class RecoveryRequiredError(CaptainError):
    """Raised when work is dispatched while the loop is halted."""

    def __init__(self, message: str = "Recovery required: clear the recovery queue to resume") -> None:
        super().__init__(message)


class LoopStateError(CaptainError):
    """Raised on an illegal loop state transition."""

    pass


class PayloadValidationError(CaptainError, ValueError):
    """Raised when an event topic or payload violates the vocabulary."""

    pass


class InteractionError(CaptainError):
    """Base exception for human interaction errors."""

    pass


class OutstandingRequestError(InteractionError):
    """Raised when a request is made while another one is outstanding."""

    pass


class StaleResponseError(InteractionError):
    """Raised when a response does not match the outstanding request."""

    def __init__(self, message: str, request_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class InvalidSelectionError(InteractionError):
    """Raised when the selected label is not one of the offered options."""

    pass


class HumanTimeoutError(InteractionError):
    """Raised when an operator-configured decision timeout expires."""

    pass
