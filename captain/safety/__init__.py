"""Safety middleware: checkpoints before mutation and the recovery queue."""

from captain.safety.middleware import SafetyMiddleware
from captain.safety.recovery import RecoveryQueue, RecoveryWatcher
from captain.safety.snapshot import CheckpointLog, GitSnapshotter, Snapshotter

__all__ = [
    "CheckpointLog",
    "GitSnapshotter",
    "RecoveryQueue",
    "RecoveryWatcher",
    "SafetyMiddleware",
    "Snapshotter",
]
