"""
Hats (execution roles) for Captain.

Hats form a closed set of variants (Triage, Planner, Executor, Verifier)
that share one capability: handle(StepContext) -> StepOutcome. The loop
looks hats up by their HatKind tag in a HatRegistry and never subclasses
them. What a hat produces (plans, code, test runs) is up to the hat; the
loop only reads the outcome kind and the fields that go with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from captain.models import (
    AttemptResult,
    InteractionRequest,
    RoutingDecision,
    TaskIntent,
    VerificationStrategy,
)

if TYPE_CHECKING:
    from captain.triage import TriageEngine


class HatKind(Enum):
    """The closed set of roles the loop can dispatch to."""

    TRIAGE = "triage"
    PLANNER = "planner"
    EXECUTOR = "executor"
    VERIFIER = "verifier"


# Hats whose steps may change the workspace and so need a checkpoint first
MUTATING_HATS = frozenset({HatKind.PLANNER, HatKind.EXECUTOR})


class OutcomeKind(Enum):
    """What a hat reports back to the loop."""

    ROUTED = "routed"          # Triage produced a raw routing decision
    PLANNED = "planned"        # Planner produced a plan (and optionally scope/complexity)
    COMPLETED = "completed"    # Executor claims completion, with evidence
    VERIFIED = "verified"      # Verifier measured a completion attempt
    AMBIGUOUS = "ambiguous"    # A decision only a human may make
    FAILED = "failed"          # Unrecoverable failure of the task


# Outcome kinds each hat may legitimately return
ALLOWED_OUTCOMES: dict[HatKind, frozenset[OutcomeKind]] = {
    HatKind.TRIAGE: frozenset({OutcomeKind.ROUTED, OutcomeKind.FAILED}),
    HatKind.PLANNER: frozenset({OutcomeKind.PLANNED, OutcomeKind.AMBIGUOUS, OutcomeKind.FAILED}),
    HatKind.EXECUTOR: frozenset(
        {OutcomeKind.COMPLETED, OutcomeKind.AMBIGUOUS, OutcomeKind.FAILED}
    ),
    HatKind.VERIFIER: frozenset(
        {OutcomeKind.VERIFIED, OutcomeKind.AMBIGUOUS, OutcomeKind.FAILED}
    ),
}


@dataclass
class StepContext:
    """
    Everything a hat sees for one step.

    Attributes:
        task: The active task.
        hat: The hat being dispatched.
        iteration: 1-based step number within the task.
        decision: Routing decision, None during triage.
        strategy: Active verification strategy, None before it is selected.
        directives: Human decisions that must lead the step's instructions.
        feedback: Gate rejection reasons from the previous attempt.
        plan: Output of the planner, empty on the Simple path.
        attempt: For the verifier, the executor's claimed result.
        evidence: For the verifier, the executor's raw evidence text.
        correlation_id: Correlation id shared by the task's events.
    """

    task: TaskIntent
    hat: HatKind
    iteration: int
    decision: Optional[RoutingDecision] = None
    strategy: Optional[VerificationStrategy] = None
    directives: list[str] = field(default_factory=list)
    feedback: list[str] = field(default_factory=list)
    plan: str = ""
    attempt: Optional[AttemptResult] = None
    evidence: str = ""
    correlation_id: str = ""

    def prompt(self) -> str:
        """
        Render the step's instructions.

        Human directives always come first, ahead of the task itself.
        """
        sections = list(self.directives)
        sections.append(f"## Task {self.task.id}: {self.task.title}")
        if self.task.description:
            sections.append(self.task.description)
        if self.plan:
            sections.append(f"## Plan\n{self.plan}")
        if self.strategy is not None:
            sections.append(
                f"## Verification\n{self.strategy.tier}: "
                f"coverage >= {self.strategy.coverage_threshold:g}%, "
                f"checks: {', '.join(sorted(self.strategy.required_categories)) or 'none'}, "
                f"hard gates: {', '.join(sorted(self.strategy.hard_gates)) or 'none'}"
            )
        if self.feedback:
            lines = "\n".join(f"- {reason}" for reason in self.feedback)
            sections.append(f"## Previous attempt was blocked\n{lines}")
        return "\n\n".join(sections)


@dataclass
class StepOutcome:
    """The result of one hat step."""

    kind: OutcomeKind
    decision: Optional[RoutingDecision] = None
    plan: str = ""
    module_scope: Optional[str] = None
    complexity_class: Optional[str] = None
    evidence: str = ""
    attempt: Optional[AttemptResult] = None
    request: Optional[InteractionRequest] = None
    reason: str = ""
    cost_usd: float = 0.0

    @classmethod
    def routed(cls, decision: RoutingDecision, cost_usd: float = 0.0) -> StepOutcome:
        return cls(kind=OutcomeKind.ROUTED, decision=decision, cost_usd=cost_usd)

    @classmethod
    def planned(
        cls,
        plan: str,
        module_scope: Optional[str] = None,
        complexity_class: Optional[str] = None,
        cost_usd: float = 0.0,
    ) -> StepOutcome:
        return cls(
            kind=OutcomeKind.PLANNED,
            plan=plan,
            module_scope=module_scope,
            complexity_class=complexity_class,
            cost_usd=cost_usd,
        )

    @classmethod
    def completed(
        cls,
        evidence: str = "",
        attempt: Optional[AttemptResult] = None,
        cost_usd: float = 0.0,
    ) -> StepOutcome:
        """Completion candidate, with evidence text and/or a measured attempt."""
        return cls(kind=OutcomeKind.COMPLETED, evidence=evidence, attempt=attempt, cost_usd=cost_usd)

    @classmethod
    def verified(cls, attempt: AttemptResult, cost_usd: float = 0.0) -> StepOutcome:
        return cls(kind=OutcomeKind.VERIFIED, attempt=attempt, cost_usd=cost_usd)

    @classmethod
    def ambiguous(cls, request: InteractionRequest, cost_usd: float = 0.0) -> StepOutcome:
        return cls(kind=OutcomeKind.AMBIGUOUS, request=request, cost_usd=cost_usd)

    @classmethod
    def failed(cls, reason: str, cost_usd: float = 0.0) -> StepOutcome:
        return cls(kind=OutcomeKind.FAILED, reason=reason, cost_usd=cost_usd)


class Hat(Protocol):
    """A role the loop can dispatch a step to."""

    kind: HatKind

    def handle(self, context: StepContext) -> StepOutcome:
        ...


class FunctionHat:
    """Adapts a plain callable into a hat."""

    def __init__(
        self,
        kind: HatKind,
        fn: Callable[[StepContext], StepOutcome],
        name: str = "",
    ) -> None:
        self.kind = kind
        self.fn = fn
        self.name = name or getattr(fn, "__name__", kind.value)

    def handle(self, context: StepContext) -> StepOutcome:
        return self.fn(context)

    def __repr__(self) -> str:
        return f"FunctionHat({self.kind.value}, {self.name})"


class TriageHat:
    """Triage hat backed by the routing engine's classifier."""

    kind = HatKind.TRIAGE

    def __init__(self, engine: TriageEngine) -> None:
        self.engine = engine

    def handle(self, context: StepContext) -> StepOutcome:
        # The raw classification; the loop applies the confidence policy.
        return StepOutcome.routed(self.engine.classifier.classify(context.task))


class HatRegistry:
    """One hat per kind, dispatched by tag."""

    def __init__(self, hats: Optional[list[Hat]] = None) -> None:
        self._hats: dict[HatKind, Hat] = {}
        for hat in hats or []:
            self.register(hat)

    def register(self, hat: Hat) -> None:
        """Register a hat, replacing any previous hat of the same kind."""
        if not isinstance(getattr(hat, "kind", None), HatKind):
            raise TypeError(f"{hat!r} has no HatKind tag")
        self._hats[hat.kind] = hat

    def has(self, kind: HatKind) -> bool:
        return kind in self._hats

    def get(self, kind: HatKind) -> Hat:
        try:
            return self._hats[kind]
        except KeyError:
            raise KeyError(f"No {kind.value} hat registered") from None

    def kinds(self) -> list[HatKind]:
        return [kind for kind in HatKind if kind in self._hats]

    def dispatch(self, context: StepContext) -> StepOutcome:
        """
        Hand a step to the hat its context names.

        Raises:
            KeyError: If no hat of that kind is registered.
            TypeError: If the hat returns something other than an allowed outcome.
        """
        hat = self.get(context.hat)
        outcome = hat.handle(context)
        if not isinstance(outcome, StepOutcome):
            raise TypeError(f"{context.hat.value} hat returned {type(outcome).__name__}")
        if outcome.kind not in ALLOWED_OUTCOMES[context.hat]:
            raise TypeError(
                f"{context.hat.value} hat returned a {outcome.kind.value} outcome"
            )
        if outcome.kind is OutcomeKind.ROUTED and outcome.decision is None:
            raise TypeError("routed outcome carries no decision")
        if outcome.kind is OutcomeKind.AMBIGUOUS and outcome.request is None:
            raise TypeError("ambiguous outcome carries no interaction request")
        if outcome.kind is OutcomeKind.VERIFIED and outcome.attempt is None:
            raise TypeError("verified outcome carries no attempt")
        return outcome
