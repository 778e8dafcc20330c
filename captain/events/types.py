"""
Event types for the Captain event bus.

Defines the closed topic vocabulary and the immutable Event record that
carries payloads between components.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union


class Topic(Enum):
    """All topics in the orchestration vocabulary."""

    # Task lifecycle
    TASK_START = "task.start"
    TASK_COMPLETE = "task.complete"
    TASK_FAILED = "task.failed"

    # Routing and verification policy
    TRIAGE_DECISION = "triage.decision"
    TEST_STRATEGY = "test.strategy"

    # Completion gate
    BUILD_DONE = "build.done"
    BUILD_BLOCKED = "build.blocked"
    BUILD_TASK_ABANDONED = "build.task.abandoned"

    # Human bridge
    HUMAN_INTERACT = "human.interact"
    HUMAN_RESPONSE = "human.response"

    # Safety transitions
    LOOP_HALTED = "loop.halted"
    LOOP_RESUMED = "loop.resumed"

    @classmethod
    def parse(cls, value: Union[str, Topic]) -> Topic:
        """Resolve a topic name, raising ValueError for names outside the vocabulary."""
        if isinstance(value, Topic):
            return value
        return cls(value)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Event:
    """A single published event. Immutable once created."""

    topic: Topic
    payload: Mapping[str, Any] = field(default_factory=dict)
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    source: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(dict(self.payload)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "topic": self.topic.value,
            "payload": _thaw(self.payload),
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Create from dict."""
        return cls(
            topic=Topic(data["topic"]),
            payload=data.get("payload", {}),
            correlation_id=data["correlation_id"],
            timestamp=data["timestamp"],
            source=data.get("source", ""),
        )

    def __str__(self) -> str:
        return f"[{self.timestamp}] {self.topic.value} correlation={self.correlation_id}"
