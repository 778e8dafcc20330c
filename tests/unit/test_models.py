"""Unit tests for the shared data models."""

import pytest

from captain.models import (
    Checkpoint,
    GateResult,
    InteractionRequest,
    OptionChoice,
    RoutingDecision,
    RoutingMode,
    SafetyTier,
    TaskIntent,
    VerificationStrategy,
)


def _options(*labels):
    return tuple(OptionChoice(label=label, description=f"option {label}") for label in labels)


class TestTaskIntent:

    def test_create_generates_id(self):
        intent = TaskIntent.create("fix typo", "in README")
        assert intent.id.startswith("task-")
        assert intent.text == "fix typo\nin README"

    def test_text_without_description(self):
        assert TaskIntent(id="t1", title="fix typo").text == "fix typo"


class TestRoutingDecision:

    def test_confidence_must_be_in_range(self):
        with pytest.raises(ValueError):
            RoutingDecision(mode=RoutingMode.SIMPLE, reason="x", confidence=1.2)

    def test_dict_roundtrip(self):
        decision = RoutingDecision(mode=RoutingMode.FULL, reason="complex", confidence=0.85)
        assert RoutingDecision.from_dict(decision.to_dict()) == decision


class TestSafetyTier:

    def test_most_rigorous_is_lowest_number(self):
        assert SafetyTier.most_rigorous(SafetyTier.TIER3, SafetyTier.TIER1) is SafetyTier.TIER1
        assert SafetyTier.most_rigorous(SafetyTier.TIER2, SafetyTier.TIER3) is SafetyTier.TIER2

    def test_str(self):
        assert str(SafetyTier.TIER2) == "Tier 2"


class TestVerificationStrategy:

    def test_to_dict_sorts_sets(self):
        strategy = VerificationStrategy(
            tier=SafetyTier.TIER1,
            coverage_threshold=95.0,
            required_categories=frozenset({"unit", "integration"}),
            hard_gates=frozenset({"zero_lint_warnings"}),
        )
        data = strategy.to_dict()
        assert data["tier"] == 1
        assert data["required_categories"] == ["integration", "unit"]
        assert VerificationStrategy.from_dict(data) == strategy


class TestGateResult:

    def test_pass_and_blocked(self):
        assert GateResult.pass_().passed
        blocked = GateResult.blocked(["coverage 82%, required 95%"])
        assert blocked.is_blocked
        assert str(blocked) == "Blocked: coverage 82%, required 95%"


class TestCheckpoint:

    def test_dict_roundtrip(self):
        checkpoint = Checkpoint(id="abc123", task_id="t1")
        assert Checkpoint.from_dict(checkpoint.to_dict()) == checkpoint


class TestInteractionRequest:

    def test_requires_two_or_three_options(self):
        with pytest.raises(ValueError, match="2 or 3"):
            InteractionRequest(question="?", options=_options("A"))
        with pytest.raises(ValueError, match="2 or 3"):
            InteractionRequest(question="?", options=_options("A", "B", "C", "D"))

    def test_labels_must_be_unique(self):
        with pytest.raises(ValueError, match="unique"):
            InteractionRequest(question="?", options=_options("A", "A"))

    def test_option_lookup_is_case_insensitive(self):
        request = InteractionRequest(question="?", options=_options("A", "B"))
        assert request.option(" b ").label == "B"
        assert request.option("C") is None

    def test_from_dict_keeps_trade_offs(self):
        request = InteractionRequest(
            question="Which database?",
            options=(
                OptionChoice("A", "Postgres", pros=("mature",), cons=("ops",), risk="Low"),
                OptionChoice("B", "SQLite", effort="Low"),
            ),
            task_id="t1",
        )
        restored = InteractionRequest.from_dict(request.to_dict())
        assert restored == request
