"""
Verification gate (risk matrix / backpressure) for Captain.

This module provides:
- RiskMatrix: externally configurable lookup of (scope, complexity) -> tier
- VerificationGate: selects the active VerificationStrategy for a task and
  evaluates completion attempts against it
- parse_evidence: reads check results out of a build.done payload

A Blocked verdict always carries one human readable reason per failed
criterion. Evaluation is pure and never relaxes the strategy it is given.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import yaml

from captain.errors import ConfigError
from captain.models import (
    AttemptResult,
    GateResult,
    RoutingDecision,
    RoutingMode,
    SafetyTier,
    TaskIntent,
    VerificationStrategy,
)

if TYPE_CHECKING:
    from captain.logger import CaptainLogger


@dataclass(frozen=True)
class TierPolicy:
    """What a tier demands from a completion attempt."""

    coverage_threshold: float
    required_categories: frozenset[str]
    hard_gates: frozenset[str]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TierPolicy:
        return cls(
            coverage_threshold=float(data.get("coverage_threshold", 0.0)),
            required_categories=frozenset(data.get("required_categories") or []),
            hard_gates=frozenset(data.get("hard_gates") or []),
        )


@dataclass
class RiskMatrix:
    """
    Deterministic risk lookup table.

    Loaded from YAML so that changing risk policy is a data change.
    """

    tiers: dict[SafetyTier, TierPolicy]
    scopes: dict[str, SafetyTier] = field(default_factory=dict)
    complexity: dict[str, SafetyTier] = field(default_factory=dict)
    overrides: dict[str, SafetyTier] = field(default_factory=dict)
    minimal: Optional[TierPolicy] = None

    def __post_init__(self) -> None:
        missing = [t for t in SafetyTier if t not in self.tiers]
        if missing:
            raise ConfigError(f"Risk matrix is missing tier definitions: {missing}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskMatrix:
        """Build a matrix from its YAML mapping."""
        if not isinstance(data, dict):
            raise ConfigError("Risk matrix must be a mapping")
        try:
            tiers = {
                SafetyTier(int(key)): TierPolicy.from_dict(value or {})
                for key, value in (data.get("tiers") or {}).items()
            }
            scopes = {
                str(k).lower(): SafetyTier(int(v)) for k, v in (data.get("scopes") or {}).items()
            }
            complexity = {
                str(k).lower(): SafetyTier(int(v))
                for k, v in (data.get("complexity") or {}).items()
            }
            overrides = {
                str(k).lower(): SafetyTier(int(v))
                for k, v in (data.get("overrides") or {}).items()
            }
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid risk matrix: {e}")

        minimal_data = data.get("minimal")
        minimal = TierPolicy.from_dict(minimal_data) if minimal_data else None
        return cls(
            tiers=tiers,
            scopes=scopes,
            complexity=complexity,
            overrides=overrides,
            minimal=minimal,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> RiskMatrix:
        """
        Load a matrix from a YAML file.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Risk matrix not found: {path}")
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in risk matrix: {e}")
        return cls.from_dict(data or {})

    @classmethod
    def default(cls) -> RiskMatrix:
        """Load the matrix shipped with the package."""
        text = resources.files("captain").joinpath("data/risk_matrix.yaml").read_text()
        return cls.from_dict(yaml.safe_load(text))

    def tier_for(
        self,
        module_scope: Optional[str],
        complexity_class: Optional[str],
        default_tier: SafetyTier = SafetyTier.TIER2,
    ) -> SafetyTier:
        """
        Look up the tier for a scope and complexity class.

        An explicit "scope/complexity" override wins. Otherwise the result is
        the more rigorous of the scope tier and the complexity tier; unknown
        scopes fall back to default_tier and unknown complexity is ignored.
        """
        scope = (module_scope or "").strip().lower()
        complexity = (complexity_class or "").strip().lower()

        override = self.overrides.get(f"{scope}/{complexity}")
        if override is not None:
            return override

        scope_tier = self.scopes.get(scope, default_tier)
        complexity_tier = self.complexity.get(complexity)
        if complexity_tier is None:
            return scope_tier
        return SafetyTier.most_rigorous(scope_tier, complexity_tier)

    def infer_scope(self, text: str) -> Optional[str]:
        """
        Find the matrix scope mentioned in free text.

        The most rigorous matching scope wins; ties go to the first scope in
        matrix order.
        """
        words = set(re.findall(r"[a-z0-9_]+", text.lower()))
        best: Optional[str] = None
        best_tier: Optional[SafetyTier] = None
        for scope, tier in self.scopes.items():
            if scope not in words:
                continue
            if best_tier is None or tier.value < best_tier.value:
                best, best_tier = scope, tier
        return best


class VerificationGate:
    """Selects verification strategies and evaluates completion attempts."""

    def __init__(
        self,
        matrix: Optional[RiskMatrix] = None,
        default_tier: int = 2,
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        self.matrix = matrix or RiskMatrix.default()
        self.default_tier = SafetyTier(default_tier)
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "verification_gate"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def strategy_for(
        self,
        module_scope: Optional[str],
        complexity_class: Optional[str],
    ) -> VerificationStrategy:
        """Resolve the strategy for a module scope and complexity class."""
        tier = self.matrix.tier_for(module_scope, complexity_class, self.default_tier)
        policy = self.matrix.tiers[tier]
        return VerificationStrategy(
            tier=tier,
            coverage_threshold=policy.coverage_threshold,
            required_categories=policy.required_categories,
            hard_gates=policy.hard_gates,
            reason=(
                f"{tier} for scope '{module_scope or 'unknown'}' "
                f"and complexity '{complexity_class or 'unspecified'}'"
            ),
        )

    def minimal_strategy(self) -> VerificationStrategy:
        """The single-requirement strategy used for Simple-routed tasks."""
        policy = self.matrix.minimal or self.matrix.tiers[SafetyTier.TIER3]
        return VerificationStrategy(
            tier=SafetyTier.TIER3,
            coverage_threshold=policy.coverage_threshold,
            required_categories=policy.required_categories,
            hard_gates=policy.hard_gates,
            reason="Simple path: minimal verification",
        )

    def strategy_for_task(
        self,
        task: TaskIntent,
        decision: RoutingDecision,
        module_scope: Optional[str] = None,
        complexity_class: Optional[str] = None,
    ) -> VerificationStrategy:
        """
        Resolve the strategy for a routed task.

        Simple tasks always get the minimal strategy. Full tasks use the
        planner's declared scope, or the scope inferred from the task text.
        An undeclared complexity class leaves the scope tier as it is.
        """
        if decision.mode is RoutingMode.SIMPLE:
            strategy = self.minimal_strategy()
        else:
            scope = module_scope or self.matrix.infer_scope(task.text)
            strategy = self.strategy_for(scope, complexity_class)

        self._log("strategy_selected", {"task_id": task.id, **strategy.to_dict()})
        return strategy

    def evaluate(self, attempt: AttemptResult, strategy: VerificationStrategy) -> GateResult:
        """
        Validate a completion attempt against a strategy.

        Pure: the verdict and reasons depend only on the two arguments.
        Reasons are ordered coverage, categories, hard gates (each sorted).
        """
        reasons: list[str] = []

        if strategy.coverage_threshold > 0:
            if attempt.coverage is None:
                reasons.append(
                    f"coverage not reported, required {_pct(strategy.coverage_threshold)}"
                )
            elif attempt.coverage < strategy.coverage_threshold:
                reasons.append(
                    f"coverage {_pct(attempt.coverage)}, "
                    f"required {_pct(strategy.coverage_threshold)}"
                )

        for category in sorted(strategy.required_categories):
            outcome = attempt.categories.get(category)
            if outcome is None:
                reasons.append(f"required check '{category}' not reported")
            elif not outcome:
                reasons.append(f"required check '{category}' failed")

        for gate in sorted(strategy.hard_gates):
            failure = _check_hard_gate(gate, attempt)
            if failure:
                reasons.append(failure)

        if reasons:
            return GateResult.blocked(reasons)
        return GateResult.pass_()


def _pct(value: float) -> str:
    return f"{value:g}%"


def _check_hard_gate(gate: str, attempt: AttemptResult) -> Optional[str]:
    """Return a failure reason for an unmet hard gate, None when satisfied."""
    if gate == "zero_lint_warnings":
        if attempt.lint_warnings is None:
            return "lint warnings not reported, required 0"
        if attempt.lint_warnings > 0:
            return f"lint warnings {attempt.lint_warnings}, required 0"
        return None
    if gate == "zero_lint_errors":
        if attempt.lint_errors is None:
            return "lint errors not reported, required 0"
        if attempt.lint_errors > 0:
            return f"lint errors {attempt.lint_errors}, required 0"
        return None
    if attempt.gates.get(gate) is True:
        return None
    return f"hard gate '{gate}' not satisfied"


# Aliases accepted in build.done evidence
_CATEGORY_ALIASES = {
    "tests": "unit",
    "unit_tests": "unit",
    "audit": "security",
    "integration_tests": "integration",
}

_GATE_ALIASES = {
    "specs": "specs_verified",
}

_SEGMENT = re.compile(r"^\s*([a-z_ ]+?)\s*:\s*(.+?)\s*$")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_ANSI = re.compile(r"\x1b\[[0-9;]*m")


def parse_evidence(text: str) -> Optional[AttemptResult]:
    """
    Read check results from a build.done payload.

    Recognizes comma or newline separated "name: value" segments, e.g.
    "tests: pass, integration: fail, coverage: 82%, warnings: 0".

    Returns:
        An AttemptResult, or None if the text carries no evidence at all.
    """
    attempt = AttemptResult(summary=text.strip())
    found = False

    for raw_segment in re.split(r"[\n,]", _ANSI.sub("", text)):
        match = _SEGMENT.match(raw_segment.lower())
        if not match:
            continue
        key = match.group(1).strip().replace(" ", "_")
        value = match.group(2).strip()

        if key == "coverage":
            number = _NUMBER.search(value)
            if number:
                attempt.coverage = float(number.group())
                found = True
            continue
        if key in ("warnings", "lint_warnings"):
            number = _NUMBER.search(value)
            if number:
                attempt.lint_warnings = int(float(number.group()))
                found = True
            continue
        if key == "lint_errors":
            number = _NUMBER.search(value)
            if number:
                attempt.lint_errors = int(float(number.group()))
                found = True
            continue

        status = _status(value)
        if status is None:
            continue
        found = True

        if key == "lint":
            attempt.categories["lint"] = status
            if status and attempt.lint_errors is None:
                attempt.lint_errors = 0
            continue
        if key in _GATE_ALIASES:
            attempt.gates[_GATE_ALIASES[key]] = status
            continue
        attempt.categories[_CATEGORY_ALIASES.get(key, key)] = status

    return attempt if found else None


def _status(value: str) -> Optional[bool]:
    word = value.split()[0] if value.split() else ""
    if word in ("pass", "passed", "ok", "true", "yes"):
        return True
    if word in ("fail", "failed", "error", "false", "no"):
        return False
    return None
