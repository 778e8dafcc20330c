"""Shared fixtures for Captain tests."""

import threading
from typing import Optional

import pytest
from typer.testing import CliRunner

from captain.config import CaptainConfig, clear_config_cache
from captain.events.bus import EventBus
from captain.errors import CheckpointError
from captain.factory import build_orchestrator
from captain.hats import FunctionHat, HatKind, StepOutcome
from captain.logger import CaptainLogger
from captain.models import RoutingDecision, RoutingMode


class FakeSnapshotter:
    """Snapshotter that hands out sequential ids without touching git."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def snapshot(self, task_id: str, message: str) -> str:
        if self.fail:
            raise CheckpointError("disk full", task_id=task_id)
        with self._lock:
            self.calls.append((task_id, message))
            return f"ckpt-{len(self.calls)}"

    def rollback_instruction(self, checkpoint_id: Optional[str]) -> str:
        if not checkpoint_id:
            return "No checkpoint available for automated rollback."
        return f"git reset --hard {checkpoint_id}"


class StaticClassifier:
    """Classifier that always returns the same raw decision."""

    def __init__(self, mode: RoutingMode, confidence: float, reason: str = "fixed"):
        self.decision = RoutingDecision(mode=mode, reason=reason, confidence=confidence)
        self.calls = 0

    def classify(self, task):
        self.calls += 1
        return self.decision


class EventRecorder:
    """Bus observer that keeps every delivered event."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event):
        with self._lock:
            self.events.append(event)

    def topics(self):
        return [e.topic.value for e in self.events]

    def of(self, topic):
        return [e for e in self.events if e.topic.value == topic]


def default_planner(ctx):
    return StepOutcome.planned("1. do the work")


def smoke_executor(ctx):
    return StepOutcome.completed(evidence="smoke: pass")


def standard_executor(ctx):
    return StepOutcome.completed(evidence="tests: pass, coverage: 85%, lint: pass")


@pytest.fixture(autouse=True)
def _reset_config_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def captain_config(tmp_path):
    """Config rooted in a temporary workspace with a fast recovery poll."""
    config = CaptainConfig(workspace_root=str(tmp_path))
    config.loop.recovery_poll_seconds = 0.05
    return config


@pytest.fixture
def bus():
    """Fresh event bus, closed after the test."""
    bus = EventBus()
    yield bus
    bus.close(timeout=1.0)


@pytest.fixture
def recorder(bus):
    """Observer recording every event on the bus."""
    rec = EventRecorder()
    bus.subscribe_all(rec, name="recorder")
    return rec


@pytest.fixture
def snapshotter():
    return FakeSnapshotter()


@pytest.fixture
def static_classifier():
    """Factory for classifiers returning a fixed raw decision."""
    return StaticClassifier


@pytest.fixture
def make_orchestrator(captain_config, bus, snapshotter):
    """Factory building an orchestrator from plain hat functions."""
    created = []

    def _make(
        planner=default_planner,
        executor=smoke_executor,
        verifier=None,
        classifier=None,
        snapshotter_override=None,
        config=None,
    ):
        config = config or captain_config
        hats = [
            FunctionHat(HatKind.PLANNER, planner),
            FunctionHat(HatKind.EXECUTOR, executor),
        ]
        if verifier is not None:
            hats.append(FunctionHat(HatKind.VERIFIER, verifier))
        orchestrator = build_orchestrator(
            config,
            hats,
            snapshotter=snapshotter_override or snapshotter,
            classifier=classifier,
            bus=bus,
            logger=CaptainLogger(config.logs_path),
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.shutdown(timeout=1.0)


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
