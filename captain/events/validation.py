"""
Event payload validation for the Captain event bus.

Each Topic has a fixed payload shape. Publishing a field outside the
allowed set, or omitting a required field, is rejected before any
subscriber sees the event.
"""

from typing import Any, Mapping, Set

from captain.errors import PayloadValidationError
from captain.events.types import Topic


# Schema defining allowed payload fields per topic
ALLOWED_FIELDS: dict[Topic, Set[str]] = {
    # Task lifecycle
    Topic.TASK_START: {"task_id", "title", "description"},
    Topic.TASK_COMPLETE: {"task_id", "title", "iterations", "checkpoint_id"},
    Topic.TASK_FAILED: {"task_id", "title", "reason", "kind", "checkpoint_id"},

    # Routing and verification policy
    Topic.TRIAGE_DECISION: {"task_id", "mode", "reason", "confidence", "raw_mode", "forced"},
    Topic.TEST_STRATEGY: {
        "task_id", "tier", "coverage_threshold", "required_categories", "hard_gates", "reason",
    },

    # Completion gate
    Topic.BUILD_DONE: {"task_id", "attempt", "evidence", "summary"},
    Topic.BUILD_BLOCKED: {"task_id", "attempt", "reasons", "retries", "max_retries"},
    Topic.BUILD_TASK_ABANDONED: {"task_id", "reason", "blocked_attempts"},

    # Human bridge
    Topic.HUMAN_INTERACT: {"request_id", "task_id", "question", "options"},
    Topic.HUMAN_RESPONSE: {"request_id", "task_id", "selected_label", "directive"},

    # Safety transitions
    Topic.LOOP_HALTED: {"task_id", "reason", "checkpoint_id"},
    Topic.LOOP_RESUMED: {"reason"},
}

# Fields every payload of the topic must carry
REQUIRED_FIELDS: dict[Topic, Set[str]] = {
    Topic.TASK_START: {"task_id", "title"},
    Topic.TASK_COMPLETE: {"task_id"},
    Topic.TASK_FAILED: {"task_id", "reason"},
    Topic.TRIAGE_DECISION: {"task_id", "mode", "confidence"},
    Topic.TEST_STRATEGY: {"task_id", "tier", "coverage_threshold"},
    Topic.BUILD_DONE: {"task_id"},
    Topic.BUILD_BLOCKED: {"task_id", "reasons"},
    Topic.BUILD_TASK_ABANDONED: {"task_id", "reason"},
    Topic.HUMAN_INTERACT: {"request_id", "question", "options"},
    Topic.HUMAN_RESPONSE: {"request_id", "selected_label"},
    Topic.LOOP_HALTED: {"reason"},
    Topic.LOOP_RESUMED: set(),
}


def validate_payload(topic: Topic, payload: Mapping[str, Any]) -> bool:
    """
    Validate a payload against the topic schema.

    Returns:
        True if validation passes.

    Raises:
        PayloadValidationError: If the payload has unknown or missing fields.
    """
    allowed = ALLOWED_FIELDS.get(topic, set())
    actual = set(payload.keys())

    invalid = actual - allowed
    if invalid:
        raise PayloadValidationError(
            f"Invalid payload field(s) for {topic.value}: {sorted(invalid)}"
        )

    missing = REQUIRED_FIELDS.get(topic, set()) - actual
    if missing:
        raise PayloadValidationError(
            f"Missing payload field(s) for {topic.value}: {sorted(missing)}"
        )

    return True
