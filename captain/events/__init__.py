"""
Event infrastructure for the Captain orchestrator.

Every component talks through a single EventBus instance constructed for
one orchestrator. Topics form a closed vocabulary (see Topic), and each
topic has a fixed payload schema (see validation.ALLOWED_FIELDS).
"""

from captain.events.types import Event, Topic
from captain.events.bus import EventBus, EventHandler, Subscription
from captain.events.validation import ALLOWED_FIELDS, validate_payload

__all__ = [
    "ALLOWED_FIELDS",
    "Event",
    "EventBus",
    "EventHandler",
    "Subscription",
    "Topic",
    "validate_payload",
]
