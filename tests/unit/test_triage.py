"""Unit tests for the routing engine."""

import pytest

from captain.models import RoutingDecision, RoutingMode, TaskIntent
from captain.triage import KeywordClassifier, TriageEngine


@pytest.fixture
def classifier():
    return KeywordClassifier()


class TestKeywordClassifier:
    """The heuristic is deterministic and keyword driven."""

    def test_small_change_is_simple(self, classifier):
        decision = classifier.classify(TaskIntent(id="t1", title="fix typo in README"))
        assert decision.mode is RoutingMode.SIMPLE
        assert decision.confidence == 0.9

    def test_complex_keyword_is_full(self, classifier):
        decision = classifier.classify(
            TaskIntent(id="t1", title="implement OAuth login feature")
        )
        assert decision.mode is RoutingMode.FULL
        assert decision.confidence == 0.85

    def test_complex_keyword_beats_small_change(self, classifier):
        decision = classifier.classify(
            TaskIntent(id="t1", title="rename the payments module")
        )
        assert decision.mode is RoutingMode.FULL

    def test_short_keywords_match_whole_words(self, classifier):
        # "ui" inside "build" must not count as a UI task
        decision = classifier.classify(TaskIntent(id="t1", title="build it"))
        assert decision.mode is RoutingMode.SIMPLE
        assert decision.confidence == 0.8

    def test_long_description_is_full(self, classifier):
        decision = classifier.classify(
            TaskIntent(id="t1", title="do the thing", description="x " * 150)
        )
        assert decision.mode is RoutingMode.FULL

    def test_ambiguous_text_gets_low_confidence(self, classifier):
        decision = classifier.classify(
            TaskIntent(id="t1", title="make the nightly job behave better overall")
        )
        assert decision.mode is RoutingMode.FULL
        assert decision.confidence == 0.6

    def test_deterministic(self, classifier):
        task = TaskIntent(id="t1", title="update changelog")
        assert classifier.classify(task) == classifier.classify(task)


class _Fixed:
    def __init__(self, decision):
        self.decision = decision

    def classify(self, task):
        return self.decision


class TestTriageEngine:
    """The confidence policy is enforced on top of the classifier."""

    def test_confident_decision_is_kept(self):
        raw = RoutingDecision(RoutingMode.SIMPLE, "small", 0.9)
        engine = TriageEngine(_Fixed(raw), confidence_threshold=0.8)
        assert engine.classify(TaskIntent(id="t1", title="x")) == raw

    def test_threshold_is_inclusive(self):
        raw = RoutingDecision(RoutingMode.SIMPLE, "small", 0.8)
        engine = TriageEngine(_Fixed(raw), confidence_threshold=0.8)
        assert engine.classify(TaskIntent(id="t1", title="x")).mode is RoutingMode.SIMPLE

    def test_low_confidence_simple_is_forced_full(self):
        raw = RoutingDecision(RoutingMode.SIMPLE, "small", 0.6)
        engine = TriageEngine(_Fixed(raw), confidence_threshold=0.8)

        raw_out, decision = engine.classify_with_raw(TaskIntent(id="t1", title="x"))

        assert raw_out.mode is RoutingMode.SIMPLE
        assert decision.mode is RoutingMode.FULL
        assert decision.confidence == 0.6
        assert "below threshold" in decision.reason

    def test_low_confidence_full_stays_full(self):
        raw = RoutingDecision(RoutingMode.FULL, "unclear", 0.5)
        decision = TriageEngine(_Fixed(raw)).apply_policy(raw)
        assert decision.mode is RoutingMode.FULL
        assert "low confidence" in decision.reason

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            TriageEngine(confidence_threshold=1.5)

    def test_logs_decision(self, tmp_path):
        from captain.logger import CaptainLogger

        logger = CaptainLogger(tmp_path)
        engine = TriageEngine(logger=logger)
        engine.classify(TaskIntent(id="t1", title="fix typo"))

        entries = logger.read_logs(event_type="triage_decision")
        assert entries[0]["data"]["component"] == "triage"
        assert entries[0]["data"]["mode"] == "Simple"
