"""
Orchestration loop for Captain.

The Orchestrator is the single state machine that drives a task through
routing, planning, execution and verification:

    Idle ──submit──> Running ──pass/abandon──> Idle
                      │   ▲
          ambiguity   │   │ response
                      ▼   │
                   AwaitingHuman
                      │
    Running ──unrecoverable failure──> Halted ──record cleared──> Idle

Every high-level step goes through _step(), which re-checks the recovery
queue and the human bridge, enforces the iteration and cost bounds, takes
a checkpoint before any mutating hat runs, injects pending human
directives and dispatches the step by hat kind.

Halted is entered only together with a written recovery record (under the
same lock that guards dispatch), and left only when a RecoveryWatcher sees
the record cleared.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Optional

from captain.errors import (
    CheckpointError,
    FailureKind,
    FileSystemError,
    InteractionError,
    LoopStateError,
    RecoveryRequiredError,
)
from captain.events.types import Topic
from captain.hats import (
    MUTATING_HATS,
    HatKind,
    HatRegistry,
    OutcomeKind,
    StepContext,
    StepOutcome,
    TriageHat,
)
from captain.human import format_directive
from captain.models import (
    AttemptResult,
    Checkpoint,
    InteractionRequest,
    LoopState,
    OptionChoice,
    RoutingDecision,
    RoutingMode,
    TaskIntent,
    VerificationStrategy,
)
from captain.safety.recovery import RecoveryWatcher
from captain.status import StatusSnapshot
from captain.triage import TriageEngine
from captain.verification import parse_evidence

if TYPE_CHECKING:
    from captain.audit import AuditLogger
    from captain.config import CaptainConfig
    from captain.events.bus import EventBus
    from captain.human import HumanBridge
    from captain.logger import CaptainLogger
    from captain.safety.middleware import SafetyMiddleware
    from captain.status import StatusManager
    from captain.verification import VerificationGate

logger = logging.getLogger(__name__)


# Legal LoopState transitions
TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.IDLE: frozenset({LoopState.RUNNING, LoopState.HALTED}),
    LoopState.RUNNING: frozenset({LoopState.IDLE, LoopState.AWAITING_HUMAN, LoopState.HALTED}),
    LoopState.AWAITING_HUMAN: frozenset({LoopState.RUNNING}),
    LoopState.HALTED: frozenset({LoopState.IDLE}),
}

# Options offered when the gate keeps blocking a task
RETRY_WITH_GUIDANCE = "A"
ABANDON_TASK = "B"
HALT_FOR_RECOVERY = "C"


class TaskStatus(Enum):
    """Terminal outcome of a submitted task."""

    COMPLETED = "completed"
    ABANDONED = "abandoned"
    HALTED = "halted"


@dataclass
class TaskOutcome:
    """What happened to a submitted task."""

    task_id: str
    status: TaskStatus
    iterations: int = 0
    reason: str = ""
    checkpoint_id: Optional[str] = None
    decision: Optional[RoutingDecision] = None
    strategy: Optional[VerificationStrategy] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "iterations": self.iterations,
            "reason": self.reason,
            "checkpoint_id": self.checkpoint_id,
            "decision": self.decision.to_dict() if self.decision else None,
            "strategy": self.strategy.to_dict() if self.strategy else None,
        }


class _TaskFailure(Exception):
    """Unwinds an unrecoverable task failure to the halt path."""

    def __init__(
        self,
        reason: str,
        kind: FailureKind = FailureKind.UNRECOVERABLE,
        record_exists: bool = False,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.kind = kind
        self.record_exists = record_exists


class _TaskAbandoned(Exception):
    """Unwinds a task the human chose to abandon."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class _TaskRun:
    """Mutable bookkeeping for the active task."""

    task: TaskIntent
    correlation_id: str
    decision: Optional[RoutingDecision] = None
    strategy: Optional[VerificationStrategy] = None
    plan: str = ""
    module_scope: Optional[str] = None
    complexity_class: Optional[str] = None
    iterations: int = 0
    attempts: int = 0
    blocked_attempts: int = 0
    retries: int = 0
    feedback: list[str] = field(default_factory=list)
    pending_directives: list[str] = field(default_factory=list)
    last_checkpoint: Optional[Checkpoint] = None
    started_at: float = field(default_factory=time.monotonic)
    human_wait_seconds: float = 0.0

    def runtime_seconds(self) -> float:
        """Wall-clock time on the task, excluding waits for a human."""
        return time.monotonic() - self.started_at - self.human_wait_seconds


class Orchestrator:
    """
    The Captain orchestration loop.

    Exactly one task is active at a time. submit() runs a task to a
    terminal outcome on the calling thread; human decisions are answered
    from other threads through the HumanBridge, and recovery is detected
    by a background RecoveryWatcher.
    """

    def __init__(
        self,
        config: CaptainConfig,
        bus: EventBus,
        hats: HatRegistry,
        gate: VerificationGate,
        safety: SafetyMiddleware,
        bridge: HumanBridge,
        triage: Optional[TriageEngine] = None,
        status: Optional[StatusManager] = None,
        audit: Optional[AuditLogger] = None,
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Loaded configuration.
            bus: Event bus scoped to this orchestrator.
            hats: Registered hats. Planner and executor are required; a
                triage hat backed by the routing engine is added if missing.
            gate: Verification gate.
            safety: Checkpoint and recovery middleware.
            bridge: Human decision channel.
            triage: Routing engine whose confidence policy is applied to
                every triage outcome.
            status: Optional status artifact writer.
            audit: Optional forensic log, for entries with no bus topic.
            logger: Optional JSONL logger.

        Raises:
            ValueError: If a required hat is missing.
        """
        for kind in (HatKind.PLANNER, HatKind.EXECUTOR):
            if not hats.has(kind):
                raise ValueError(f"A {kind.value} hat must be registered")

        self.config = config
        self.bus = bus
        self.hats = hats
        self.gate = gate
        self.safety = safety
        self.bridge = bridge
        self.triage = triage or TriageEngine(
            confidence_threshold=config.triage.confidence_threshold, logger=logger
        )
        if not hats.has(HatKind.TRIAGE):
            hats.register(TriageHat(self.triage))
        self.status = status
        self.audit = audit
        self._logger = logger

        self._lock = threading.RLock()
        self._state_changed = threading.Condition(self._lock)
        self._state = LoopState.IDLE
        self._started = False
        self._started_at = time.monotonic()
        self._active: Optional[_TaskRun] = None
        self._total_iterations = 0
        self._cost_usd = 0.0
        self._last_checkpoint: Optional[Checkpoint] = None
        self._halt_unrecorded = False
        self._watcher: Optional[RecoveryWatcher] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "orchestrator"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> LoopState:
        with self._lock:
            return self._state

    @property
    def active_task(self) -> Optional[TaskIntent]:
        with self._lock:
            return self._active.task if self._active else None

    @property
    def cost_usd(self) -> float:
        return self._cost_usd

    @property
    def total_iterations(self) -> int:
        return self._total_iterations

    def start(self) -> LoopState:
        """
        Apply the startup contract.

        If a recovery record already exists the loop enters Halted directly
        and starts polling for clearance. Safe to call more than once.
        """
        with self._lock:
            if not self._started:
                self._started = True
                self._started_at = time.monotonic()
                self._last_checkpoint = self.safety.last_checkpoint()
                self._log("loop_started", {"objective": self.config.objective})
            self._sync_recovery_locked()
            state = self._state
        self._write_status()
        return state

    def submit(self, intent: TaskIntent) -> TaskOutcome:
        """
        Run one task to a terminal outcome.

        Raises:
            RecoveryRequiredError: If the loop is halted.
            LoopStateError: If another task is active.
        """
        self.start()
        with self._lock:
            self._sync_recovery_locked()
            if self._state is LoopState.HALTED:
                self._log("task_refused", {"task_id": intent.id}, level="warn")
                raise RecoveryRequiredError()
            if self._state is not LoopState.IDLE:
                raise LoopStateError(
                    f"Cannot start task {intent.id}: loop is {self._state.value}"
                )
            self._transition(LoopState.RUNNING)
            run = _TaskRun(task=intent, correlation_id=str(uuid.uuid4()))
            self._active = run

        task_scope = (
            self._logger.task_context(intent.id) if self._logger else contextlib.nullcontext()
        )
        try:
            with task_scope:
                self._publish(run, Topic.TASK_START, {
                    "task_id": intent.id,
                    "title": intent.title,
                    "description": intent.description,
                })
                try:
                    outcome = self._drive(run)
                except _TaskFailure as failure:
                    outcome = self._halt(run, failure)
                except _TaskAbandoned as abandoned:
                    outcome = self._abandon(run, abandoned.reason)
                except Exception as e:
                    logger.exception("Unexpected error while running task %s", intent.id)
                    outcome = self._halt(
                        run, _TaskFailure(f"Unexpected error: {type(e).__name__}: {e}")
                    )
        finally:
            with self._lock:
                self._active = None
            self._write_status()

        self._log("task_finished", outcome.to_dict())
        return outcome

    def run(self, intents: Iterable[TaskIntent]) -> list[TaskOutcome]:
        """
        Run tasks one after another.

        Stops at the first task that halts the loop; the remaining tasks
        are not dispatched.
        """
        outcomes = []
        for intent in intents:
            outcome = self.submit(intent)
            outcomes.append(outcome)
            if outcome.status is TaskStatus.HALTED:
                break
        return outcomes

    def wait_for_recovery(self, timeout: Optional[float] = None) -> bool:
        """
        Block while the loop is halted.

        Returns:
            True once the loop has left Halted, False if the timeout expired.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._state_changed:
            while self._state is LoopState.HALTED:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._state_changed.wait(remaining)
        return True

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop recovery polling and drain and close the event bus."""
        watcher = self._watcher
        if watcher is not None:
            watcher.stop(timeout)
        if not self.bus.closed:
            self.bus.flush(timeout)
            self.bus.close(timeout)
        self._log("loop_shutdown", {"state": self.state.value})

    def snapshot(self) -> StatusSnapshot:
        """Current status, as written to the status artifacts."""
        with self._lock:
            run = self._active
            state = self._state
            checkpoint = (run.last_checkpoint if run else None) or self._last_checkpoint
        blocked = self.safety.is_blocked()
        record = self.safety.read_record() if blocked else None
        return StatusSnapshot(
            state=state.value,
            objective=self.config.objective,
            task_id=run.task.id if run else None,
            task_title=run.task.title if run else None,
            routing_mode=run.decision.mode.value if run and run.decision else None,
            tier=run.strategy.tier.value if run and run.strategy else None,
            iteration=run.iterations if run else 0,
            total_iterations=self._total_iterations,
            elapsed_seconds=time.monotonic() - self._started_at,
            cost_usd=self._cost_usd,
            last_checkpoint_id=checkpoint.id if checkpoint else None,
            recovery_blocked=blocked,
            recovery_reason=record.failure_reason if record else None,
        )

    # =========================================================================
    # State management
    # =========================================================================

    def _transition(self, new_state: LoopState) -> None:
        """Move to a new state. Caller must hold the lock."""
        if new_state not in TRANSITIONS[self._state]:
            raise LoopStateError(
                f"Illegal transition {self._state.value} -> {new_state.value}"
            )
        old_state = self._state
        self._state = new_state
        self._log("state_transition", {"from": old_state.value, "to": new_state.value})
        self._state_changed.notify_all()

    def _sync_recovery_locked(self) -> None:
        """Align the state with the recovery queue. Caller must hold the lock."""
        blocked = self.safety.is_blocked()
        if blocked and self._state is LoopState.IDLE:
            record = self.safety.read_record()
            logger.warning(
                "Recovery record present (task %s); loop is halted",
                record.task_id if record else "unknown",
            )
            self._transition(LoopState.HALTED)
            self._start_watcher()
        elif blocked and self._state is LoopState.HALTED:
            self._start_watcher()
        elif not blocked and self._state is LoopState.HALTED and not self._halt_unrecorded:
            self._resume_locked("Recovery record cleared")

    def _start_watcher(self) -> None:
        if self._watcher is None:
            self._watcher = RecoveryWatcher(
                self.safety.recovery_queue,
                self._on_recovery_cleared,
                interval_seconds=self.config.loop.recovery_poll_seconds,
            )
        self._watcher.start()

    def _on_recovery_cleared(self) -> bool:
        """Watcher callback. Returns False if the loop must keep waiting."""
        with self._lock:
            if self._state is not LoopState.HALTED:
                return True
            if self.safety.is_blocked():
                return False
            self._resume_locked("Recovery record cleared")
        self._write_status()
        return True

    def _resume_locked(self, reason: str) -> None:
        self._transition(LoopState.IDLE)
        logger.info("Loop resumed: %s", reason)
        self._log("loop_resumed", {"reason": reason})
        self.bus.publish(Topic.LOOP_RESUMED, {"reason": reason}, source="orchestrator")

    def _write_status(self) -> None:
        if self.status is None:
            return
        try:
            self.status.write(self.snapshot())
        except FileSystemError as e:
            logger.warning("Could not write status artifacts: %s", e)

    def _publish(self, run: _TaskRun, topic: Topic, payload: dict[str, Any]) -> None:
        self.bus.publish(topic, payload, correlation_id=run.correlation_id, source="orchestrator")

    # =========================================================================
    # Task flow
    # =========================================================================

    def _drive(self, run: _TaskRun) -> TaskOutcome:
        self._route(run)
        if run.decision.mode is RoutingMode.FULL:
            self._plan(run)

        run.strategy = self.gate.strategy_for_task(
            run.task, run.decision, run.module_scope, run.complexity_class
        )
        self._publish(run, Topic.TEST_STRATEGY, {"task_id": run.task.id, **run.strategy.to_dict()})
        return self._execute(run)

    def _route(self, run: _TaskRun) -> None:
        outcome = self._step(run, HatKind.TRIAGE)
        if outcome.kind is OutcomeKind.FAILED:
            raise _TaskFailure(f"Triage failed: {outcome.reason}")

        raw = outcome.decision
        run.decision = self.triage.apply_policy(raw)
        forced = run.decision.mode is not raw.mode
        self._log("triage_decision", {
            "task_id": run.task.id,
            "raw_mode": raw.mode.value,
            "mode": run.decision.mode.value,
            "confidence": run.decision.confidence,
            "forced": forced,
        })
        self._publish(run, Topic.TRIAGE_DECISION, {
            "task_id": run.task.id,
            "mode": run.decision.mode.value,
            "reason": run.decision.reason,
            "confidence": run.decision.confidence,
            "raw_mode": raw.mode.value,
            "forced": forced,
        })

    def _plan(self, run: _TaskRun) -> None:
        while True:
            outcome = self._step(run, HatKind.PLANNER)
            if outcome.kind is OutcomeKind.AMBIGUOUS:
                self._await_human(run, outcome.request)
                continue
            if outcome.kind is OutcomeKind.FAILED:
                raise _TaskFailure(f"Planner failed: {outcome.reason}")
            run.plan = outcome.plan
            run.module_scope = outcome.module_scope
            run.complexity_class = outcome.complexity_class
            return

    def _execute(self, run: _TaskRun) -> TaskOutcome:
        max_retries = self.config.loop.max_gate_retries
        while True:
            outcome = self._step(run, HatKind.EXECUTOR)
            if outcome.kind is OutcomeKind.AMBIGUOUS:
                self._await_human(run, outcome.request)
                continue
            if outcome.kind is OutcomeKind.FAILED:
                raise _TaskFailure(f"Executor failed: {outcome.reason}")

            run.attempts += 1
            attempt = self._verify(run, outcome)
            self._publish(run, Topic.BUILD_DONE, {
                "task_id": run.task.id,
                "attempt": run.attempts,
                "evidence": attempt.to_dict(),
                "summary": attempt.summary,
            })

            result = self.gate.evaluate(attempt, run.strategy)
            self._log("gate_evaluated", {
                "task_id": run.task.id,
                "attempt": run.attempts,
                "passed": result.passed,
                "reasons": list(result.reasons),
            })
            if result.passed:
                return self._complete(run)

            run.blocked_attempts += 1
            run.retries += 1
            run.feedback = list(result.reasons)
            self._publish(run, Topic.BUILD_BLOCKED, {
                "task_id": run.task.id,
                "attempt": run.attempts,
                "reasons": list(result.reasons),
                "retries": run.retries,
                "max_retries": max_retries,
            })
            if run.retries > max_retries:
                self._escalate_gate(run, list(result.reasons))

    def _verify(self, run: _TaskRun, outcome: StepOutcome) -> AttemptResult:
        """Turn a completion candidate into the attempt the gate evaluates."""
        attempt = (
            outcome.attempt
            or parse_evidence(outcome.evidence)
            or AttemptResult(summary=outcome.evidence)
        )
        if not self.hats.has(HatKind.VERIFIER):
            return attempt

        while True:
            verified = self._step(
                run, HatKind.VERIFIER, attempt=attempt, evidence=outcome.evidence
            )
            if verified.kind is OutcomeKind.AMBIGUOUS:
                self._await_human(run, verified.request)
                continue
            if verified.kind is OutcomeKind.FAILED:
                raise _TaskFailure(f"Verifier failed: {verified.reason}")
            return verified.attempt

    def _complete(self, run: _TaskRun) -> TaskOutcome:
        checkpoint_id = run.last_checkpoint.id if run.last_checkpoint else None
        self._publish(run, Topic.TASK_COMPLETE, {
            "task_id": run.task.id,
            "title": run.task.title,
            "iterations": run.iterations,
            "checkpoint_id": checkpoint_id,
        })
        with self._lock:
            self._transition(LoopState.IDLE)
        return TaskOutcome(
            task_id=run.task.id,
            status=TaskStatus.COMPLETED,
            iterations=run.iterations,
            checkpoint_id=checkpoint_id,
            decision=run.decision,
            strategy=run.strategy,
        )

    def _abandon(self, run: _TaskRun, reason: str) -> TaskOutcome:
        self._publish(run, Topic.BUILD_TASK_ABANDONED, {
            "task_id": run.task.id,
            "reason": reason,
            "blocked_attempts": run.blocked_attempts,
        })
        with self._lock:
            self._transition(LoopState.IDLE)
        self._log("task_abandoned", {"task_id": run.task.id, "reason": reason}, level="warn")
        return TaskOutcome(
            task_id=run.task.id,
            status=TaskStatus.ABANDONED,
            iterations=run.iterations,
            reason=reason,
            checkpoint_id=run.last_checkpoint.id if run.last_checkpoint else None,
            decision=run.decision,
            strategy=run.strategy,
        )

    # =========================================================================
    # Per-iteration protocol
    # =========================================================================

    def _step(self, run: _TaskRun, kind: HatKind, **extra: Any) -> StepOutcome:
        """Run one high-level step of the active task."""
        with self._lock:
            if self.safety.is_blocked():
                raise _TaskFailure(
                    "Recovery record appeared while the task was running",
                    record_exists=True,
                )
            if self.bridge.outstanding is not None:
                raise _TaskFailure("A human decision is outstanding; refusing to dispatch")
            run.iterations += 1
            self._total_iterations += 1
            if run.iterations > self.config.loop.max_iterations:
                raise _TaskFailure(
                    f"Exceeded max_iterations ({self.config.loop.max_iterations}) "
                    "without completing"
                )
            max_runtime = self.config.loop.max_runtime_seconds
            if max_runtime is not None and run.runtime_seconds() > max_runtime:
                raise _TaskFailure(
                    f"Exceeded max_runtime_seconds ({max_runtime:g}s) after "
                    f"{run.runtime_seconds():.1f}s without completing"
                )
        self._write_status()

        checkpoint = None
        if kind in MUTATING_HATS:
            try:
                checkpoint = self.safety.checkpoint(run.task.id)
            except CheckpointError as e:
                raise _TaskFailure(
                    f"Checkpoint failed before {kind.value} step: {e}",
                    kind=FailureKind.CHECKPOINT,
                )
            run.last_checkpoint = checkpoint
            self._last_checkpoint = checkpoint

        directives, run.pending_directives = run.pending_directives, []
        context = StepContext(
            task=run.task,
            hat=kind,
            iteration=run.iterations,
            decision=run.decision,
            strategy=run.strategy,
            directives=directives,
            feedback=list(run.feedback),
            plan=run.plan,
            correlation_id=run.correlation_id,
            **extra,
        )
        for directive in directives:
            self._log("directive_injected", {"task_id": run.task.id, "hat": kind.value})
            if self.audit is not None:
                self.audit.log_directive(run.task.id, directive, run.correlation_id)

        self._log("step_dispatched", {
            "task_id": run.task.id,
            "hat": kind.value,
            "iteration": run.iterations,
            "checkpoint_id": checkpoint.id if checkpoint else None,
        })
        try:
            outcome = self.hats.dispatch(context)
        except Exception as e:
            logger.exception("%s hat raised on task %s", kind.value, run.task.id)
            raise _TaskFailure(f"{kind.value} hat raised {type(e).__name__}: {e}") from e

        if self.bridge.outstanding is not None:
            raise _TaskFailure(
                f"{kind.value} hat left a human decision outstanding after its step"
            )

        self._cost_usd += outcome.cost_usd
        max_cost = self.config.loop.max_cost_usd
        if max_cost is not None and self._cost_usd > max_cost:
            raise _TaskFailure(
                f"Cost ${self._cost_usd:.2f} exceeded limit ${max_cost:.2f}"
            )
        return outcome

    # =========================================================================
    # Human bridge
    # =========================================================================

    def _await_human(self, run: _TaskRun, request: InteractionRequest) -> OptionChoice:
        """Suspend the loop until the human selects an option."""
        if not request.task_id:
            request = dataclasses.replace(request, task_id=run.task.id)

        with self._lock:
            self._transition(LoopState.AWAITING_HUMAN)
        self._write_status()
        self._log("awaiting_human", {"task_id": run.task.id, "request_id": request.request_id})

        waited_from = time.monotonic()
        try:
            choice = self.bridge.request_decision(request, correlation_id=run.correlation_id)
        except InteractionError as e:
            raise _TaskFailure(f"Human decision failed: {e}") from e
        finally:
            run.human_wait_seconds += time.monotonic() - waited_from
            with self._lock:
                self._transition(LoopState.RUNNING)

        run.pending_directives.append(format_directive(request, choice))
        self._log("human_decision", {
            "task_id": run.task.id,
            "request_id": request.request_id,
            "selected_label": choice.label,
        })
        return choice

    def _escalate_gate(self, run: _TaskRun, reasons: list[str]) -> None:
        """Ask the human how to proceed once local gate retries are exhausted."""
        strategy = run.strategy
        max_retries = self.config.loop.max_gate_retries
        request = InteractionRequest(
            question=(
                f"Task {run.task.id} ({run.task.title}) was blocked "
                f"{run.blocked_attempts} time(s) under {strategy.tier}: "
                f"{'; '.join(reasons)}. How should Captain proceed?"
            ),
            options=(
                OptionChoice(
                    label=RETRY_WITH_GUIDANCE,
                    description="Retry under the same verification strategy with this guidance",
                    pros=("Keeps the task moving", "Verification strategy is unchanged"),
                    cons=("May be blocked again for the same reasons",),
                    impact=f"The executor gets {max_retries + 1} more attempt(s)",
                    risk="Low",
                    effort="Medium",
                ),
                OptionChoice(
                    label=ABANDON_TASK,
                    description="Abandon this task and return the loop to idle",
                    pros=("Frees the loop for other work",),
                    cons=("The task stays undone", "Workspace keeps the partial changes"),
                    impact="Task is archived as abandoned",
                    risk="Low",
                    effort="Low",
                ),
                OptionChoice(
                    label=HALT_FOR_RECOVERY,
                    description="Halt the loop for manual recovery",
                    pros=("A human can inspect the workspace and roll back",),
                    cons=("All automated progress stops until the record is cleared",),
                    impact="A recovery record is written and the loop halts",
                    risk="None",
                    effort="High",
                ),
            ),
            task_id=run.task.id,
        )
        choice = self._await_human(run, request)

        if choice.label == RETRY_WITH_GUIDANCE:
            run.retries = 0
            return
        run.pending_directives.clear()
        if choice.label == ABANDON_TASK:
            raise _TaskAbandoned(
                f"Abandoned by human decision after {run.blocked_attempts} blocked attempt(s)"
            )
        raise _TaskFailure(
            f"Halted by human decision after {run.blocked_attempts} blocked attempt(s): "
            f"{'; '.join(reasons)}",
            kind=FailureKind.GATE_VIOLATION,
        )

    # =========================================================================
    # Halt
    # =========================================================================

    def _halt(self, run: _TaskRun, failure: _TaskFailure) -> TaskOutcome:
        """
        Write the recovery record and enter Halted.

        The record write and the transition happen under the dispatch lock,
        so no other task can start in between.
        """
        last = (
            run.last_checkpoint
            or self.safety.last_checkpoint(run.task.id)
            or self.safety.last_checkpoint()
        )
        with self._lock:
            if failure.record_exists:
                record = self.safety.read_record()
            else:
                try:
                    record = self.safety.record_failure(run.task, failure.reason, last)
                except Exception:
                    # No witness on disk: stay halted until restarted by hand.
                    self._state = LoopState.HALTED
                    self._halt_unrecorded = True
                    self._state_changed.notify_all()
                    logger.critical(
                        "Could not write recovery record for task %s; loop halted", run.task.id
                    )
                    self._log("recovery_record_failed", {"task_id": run.task.id}, level="error")
                    raise
            self._transition(LoopState.HALTED)
            self._start_watcher()

        checkpoint_id = last.id if last else None
        logger.warning("Loop halted on task %s: %s", run.task.id, failure.reason)
        self._log("loop_halted", {
            "task_id": run.task.id,
            "reason": failure.reason,
            "kind": failure.kind.value,
            "checkpoint_id": checkpoint_id,
        }, level="error")
        self._publish(run, Topic.TASK_FAILED, {
            "task_id": run.task.id,
            "title": run.task.title,
            "reason": failure.reason,
            "kind": failure.kind.value,
            "checkpoint_id": checkpoint_id,
        })
        self._publish(run, Topic.LOOP_HALTED, {
            "task_id": run.task.id,
            "reason": failure.reason,
            "checkpoint_id": checkpoint_id,
        })
        if self.audit is not None and record is not None:
            self.audit.log_halt(record, run.correlation_id)

        return TaskOutcome(
            task_id=run.task.id,
            status=TaskStatus.HALTED,
            iterations=run.iterations,
            reason=failure.reason,
            checkpoint_id=checkpoint_id,
            decision=run.decision,
            strategy=run.strategy,
        )
