"""
Data models for Captain.

This module defines the core data structures shared by every subsystem:
- TaskIntent: a unit of work entering the loop
- RoutingDecision / RoutingMode: triage output
- VerificationStrategy / SafetyTier: risk-proportional completion policy
- AttemptResult / GateResult: completion evidence and its verdict
- Checkpoint / RecoveryRecord: safety middleware records
- InteractionRequest / InteractionResponse / OptionChoice: human bridge messages
- LoopState: the orchestrator's single state value

All records are immutable except AttemptResult, which hats build up
incrementally before handing it to the gate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_id() -> str:
    return str(uuid.uuid4())[:8]


class LoopState(Enum):
    """Orchestration loop states."""

    IDLE = "idle"
    RUNNING = "running"
    AWAITING_HUMAN = "awaiting_human"
    HALTED = "halted"


class RoutingMode(Enum):
    """Execution path selected by triage."""

    SIMPLE = "Simple"   # Skip full planning, minimal verification
    FULL = "Full"       # Full planning before strategy selection


class SafetyTier(Enum):
    """Verification rigor tiers, 1 being the most rigorous."""

    TIER1 = 1
    TIER2 = 2
    TIER3 = 3

    @classmethod
    def most_rigorous(cls, *tiers: SafetyTier) -> SafetyTier:
        """Return the most rigorous (lowest numbered) of the given tiers."""
        return cls(min(t.value for t in tiers))

    def __str__(self) -> str:
        return f"Tier {self.value}"


@dataclass(frozen=True)
class TaskIntent:
    """A task entering the orchestration loop."""

    id: str
    title: str
    description: str = ""

    @classmethod
    def create(cls, title: str, description: str = "") -> TaskIntent:
        """Create a task intent with a generated id."""
        return cls(id=f"task-{_short_id()}", title=title, description=description)

    @property
    def text(self) -> str:
        """Title and description joined, as seen by classifiers."""
        if self.description:
            return f"{self.title}\n{self.description}"
        return self.title

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "description": self.description}


@dataclass(frozen=True)
class RoutingDecision:
    """Triage output, produced once per task."""

    mode: RoutingMode
    reason: str
    confidence: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "reason": self.reason,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoutingDecision:
        return cls(
            mode=RoutingMode(data["mode"]),
            reason=data.get("reason", ""),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class VerificationStrategy:
    """
    The completion policy active for a task.

    Replaced wholesale, never partially updated.
    """

    tier: SafetyTier
    coverage_threshold: float
    required_categories: frozenset[str] = frozenset()
    hard_gates: frozenset[str] = frozenset()
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "coverage_threshold": self.coverage_threshold,
            "required_categories": sorted(self.required_categories),
            "hard_gates": sorted(self.hard_gates),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VerificationStrategy:
        return cls(
            tier=SafetyTier(int(data["tier"])),
            coverage_threshold=float(data.get("coverage_threshold", 0.0)),
            required_categories=frozenset(data.get("required_categories", [])),
            hard_gates=frozenset(data.get("hard_gates", [])),
            reason=data.get("reason", ""),
        )


@dataclass
class AttemptResult:
    """
    Evidence reported for a completion attempt.

    Attributes:
        coverage: Measured coverage percentage, None if not reported.
        categories: Check category -> passed (e.g. {"unit": True, "integration": False}).
        lint_warnings: Number of lint warnings, None if not reported.
        lint_errors: Number of error-level lint findings, None if not reported.
        gates: Named hard gate -> satisfied, for gates without a built-in check.
        summary: Free-form text from the executing hat.
    """

    coverage: Optional[float] = None
    categories: dict[str, bool] = field(default_factory=dict)
    lint_warnings: Optional[int] = None
    lint_errors: Optional[int] = None
    gates: dict[str, bool] = field(default_factory=dict)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "coverage": self.coverage,
            "categories": dict(self.categories),
            "lint_warnings": self.lint_warnings,
            "lint_errors": self.lint_errors,
            "gates": dict(self.gates),
            "summary": self.summary,
        }


@dataclass(frozen=True)
class GateResult:
    """Verdict of a gate evaluation: Pass, or Blocked with one reason per failed criterion."""

    passed: bool
    reasons: tuple[str, ...] = ()

    @classmethod
    def pass_(cls) -> GateResult:
        return cls(passed=True)

    @classmethod
    def blocked(cls, reasons: list[str]) -> GateResult:
        return cls(passed=False, reasons=tuple(reasons))

    @property
    def is_blocked(self) -> bool:
        return not self.passed

    def __str__(self) -> str:
        if self.passed:
            return "Pass"
        return "Blocked: " + "; ".join(self.reasons)


@dataclass(frozen=True)
class Checkpoint:
    """A reversible save point taken before a mutating step."""

    id: str
    task_id: str
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class RecoveryRecord:
    """The halt witness. Exists only while the loop is halted."""

    task_id: str
    title: str
    failure_reason: str
    last_checkpoint_id: Optional[str]
    rollback_instruction: str
    recorded_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "failure_reason": self.failure_reason,
            "last_checkpoint_id": self.last_checkpoint_id,
            "rollback_instruction": self.rollback_instruction,
            "recorded_at": self.recorded_at,
        }


@dataclass(frozen=True)
class OptionChoice:
    """One trade-off annotated option offered to the human."""

    label: str
    description: str
    pros: tuple[str, ...] = ()
    cons: tuple[str, ...] = ()
    impact: str = ""
    risk: str = ""
    effort: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "description": self.description,
            "pros": list(self.pros),
            "cons": list(self.cons),
            "impact": self.impact,
            "risk": self.risk,
            "effort": self.effort,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OptionChoice:
        return cls(
            label=data["label"],
            description=data["description"],
            pros=tuple(data.get("pros", ())),
            cons=tuple(data.get("cons", ())),
            impact=data.get("impact", ""),
            risk=data.get("risk", ""),
            effort=data.get("effort", ""),
        )


@dataclass(frozen=True)
class InteractionRequest:
    """A blocking question with two or three structured options."""

    question: str
    options: tuple[OptionChoice, ...]
    task_id: str = ""
    request_id: str = field(default_factory=_short_id)

    def __post_init__(self) -> None:
        if not 2 <= len(self.options) <= 3:
            raise ValueError(
                f"An interaction request needs 2 or 3 options, got {len(self.options)}"
            )
        labels = [opt.label for opt in self.options]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Option labels must be unique: {labels}")

    @property
    def labels(self) -> list[str]:
        return [opt.label for opt in self.options]

    def option(self, label: str) -> Optional[OptionChoice]:
        """Find an option by label (case-insensitive)."""
        wanted = label.strip().upper()
        for opt in self.options:
            if opt.label.upper() == wanted:
                return opt
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "task_id": self.task_id,
            "question": self.question,
            "options": [opt.to_dict() for opt in self.options],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InteractionRequest:
        return cls(
            question=data["question"],
            options=tuple(OptionChoice.from_dict(o) for o in data["options"]),
            task_id=data.get("task_id", ""),
            request_id=data.get("request_id") or _short_id(),
        )


@dataclass(frozen=True)
class InteractionResponse:
    """The human's selection for an outstanding request."""

    request_id: str
    selected_label: str

    def to_dict(self) -> dict[str, Any]:
        return {"request_id": self.request_id, "selected_label": self.selected_label}
