"""
Routing engine (triage) for Captain.

Classifies an incoming task and selects an execution path:
- Simple: skip full planning, resolve a minimal verification strategy
- Full: route through the planner before strategy selection

The raw classification comes from a pluggable Classifier (heuristic or
model-backed). TriageEngine only enforces the routing policy on top of it:
a classification below the confidence threshold is always forced onto the
Full path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Protocol

from captain.models import RoutingDecision, RoutingMode, TaskIntent

if TYPE_CHECKING:
    from captain.logger import CaptainLogger

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.8


class Classifier(Protocol):
    """Produces a raw routing decision for a task. Must be deterministic."""

    def classify(self, task: TaskIntent) -> RoutingDecision:
        ...


class KeywordClassifier:
    """
    Deterministic keyword heuristic.

    - Small-change vocabulary and no complex indicators -> Simple (0.9)
    - Complex vocabulary or a long description -> Full (0.85)
    - Very short text with no indicators -> Simple (0.8)
    - Anything else -> Full (0.6), the ambiguous case
    """

    SIMPLE_KEYWORDS = (
        "typo", "documentation", "readme", "comment", "rename", "format", "indent",
        "spelling", "grammar", "license", "ignore", "changelog", "todo",
    )

    FULL_KEYWORDS = (
        "feature", "implement", "refactor", "design", "architecture", "database",
        "api", "endpoint", "ui", "component", "integration", "test", "fix bug",
        "logic", "module", "system", "service", "rewrite", "optimize",
    )

    SHORT_TEXT_CHARS = 40
    LONG_TEXT_CHARS = 200

    def classify(self, task: TaskIntent) -> RoutingDecision:
        text = task.text
        lowered = text.lower()
        words = set(lowered.replace("/", " ").replace(".", " ").split())

        has_simple = any(kw in lowered for kw in self.SIMPLE_KEYWORDS)
        has_full = any(self._matches(kw, lowered, words) for kw in self.FULL_KEYWORDS)

        if has_simple and not has_full:
            return RoutingDecision(
                mode=RoutingMode.SIMPLE,
                reason="Task contains small-change keywords and no complex indicators",
                confidence=0.9,
            )
        if has_full or len(text) > self.LONG_TEXT_CHARS:
            reason = (
                "Task contains complex keywords (e.g. feature, refactor)"
                if has_full
                else "Task description is substantial, suggesting complexity"
            )
            return RoutingDecision(mode=RoutingMode.FULL, reason=reason, confidence=0.85)
        if len(text) < self.SHORT_TEXT_CHARS:
            return RoutingDecision(
                mode=RoutingMode.SIMPLE,
                reason="Task description is very short and has no complex indicators",
                confidence=0.8,
            )
        return RoutingDecision(
            mode=RoutingMode.FULL,
            reason="Task is ambiguous; defaulting to the full planning path",
            confidence=0.6,
        )

    @staticmethod
    def _matches(keyword: str, lowered: str, words: set[str]) -> bool:
        # Short keywords like "ui" and "api" would match inside other words.
        if len(keyword) <= 3:
            return keyword in words
        return keyword in lowered


class TriageEngine:
    """Applies the routing policy to a classifier's raw decision."""

    def __init__(
        self,
        classifier: Optional[Classifier] = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        self.classifier = classifier or KeywordClassifier()
        self.confidence_threshold = confidence_threshold
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "triage"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def classify(self, task: TaskIntent) -> RoutingDecision:
        """
        Classify a task and return the decision the loop must follow.

        Returns:
            The raw decision when it is confident enough, otherwise a Full
            decision carrying the raw confidence and the override reason.
        """
        return self.classify_with_raw(task)[1]

    def classify_with_raw(self, task: TaskIntent) -> tuple[RoutingDecision, RoutingDecision]:
        """Classify a task, returning the raw classifier output and the enforced decision."""
        raw = self.classifier.classify(task)
        decision = self.apply_policy(raw)
        self._log("triage_decision", {
            "task_id": task.id,
            "raw_mode": raw.mode.value,
            "mode": decision.mode.value,
            "confidence": decision.confidence,
            "forced": decision.mode is not raw.mode,
        })
        return raw, decision

    def apply_policy(self, raw: RoutingDecision) -> RoutingDecision:
        """Force the Full path for any decision below the confidence threshold."""
        if raw.confidence >= self.confidence_threshold:
            return raw
        if raw.mode is RoutingMode.FULL:
            return RoutingDecision(
                mode=RoutingMode.FULL,
                reason=f"{raw.reason} (low confidence {raw.confidence:.2f})",
                confidence=raw.confidence,
            )
        logger.info(
            "Low-confidence %s classification (%.2f < %.2f); forcing Full path",
            raw.mode.value, raw.confidence, self.confidence_threshold,
        )
        return RoutingDecision(
            mode=RoutingMode.FULL,
            reason=(
                f"Confidence {raw.confidence:.2f} below threshold "
                f"{self.confidence_threshold:.2f}; forced Full path "
                f"(raw: {raw.mode.value}, {raw.reason})"
            ),
            confidence=raw.confidence,
        )
