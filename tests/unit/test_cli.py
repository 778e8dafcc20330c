"""Tests for the captain CLI."""

import io
import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from captain.audit import AuditLogger
from captain.cli import app
from captain.cli.commands import ConsoleResponder
from captain.events.types import Event, Topic
from captain.human import HumanBridge
from captain.models import InteractionRequest, OptionChoice
from captain.safety import RecoveryQueue
from captain.status import StatusManager, StatusSnapshot


@pytest.fixture
def config_file(tmp_path):
    """Write a captain.yaml rooted at the temp workspace."""
    def _write(extra: str = "") -> str:
        path = tmp_path / "captain.yaml"
        path.write_text(f"workspace_root: {tmp_path}\nobjective: Ship login\n{extra}")
        return str(path)
    return _write


def _halt(tmp_path, reason="Checkpoint failed before executor step"):
    RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").record_failure(
        "task-1", "add login", reason, "abc123", "git reset --hard abc123"
    )


class TestAppCallback:

    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "captain version 0.1.0" in result.output

    def test_no_command_shows_help(self, cli_runner):
        result = cli_runner.invoke(app, [])
        assert result.exit_code == 0
        assert "recover" in result.output

    def test_missing_config_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "status"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestStatusCommand:

    def test_idle_without_artifacts(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["--config", config_file(), "status"])
        assert result.exit_code == 0
        assert "Idle" in result.output
        assert "Ship login" in result.output

    def test_json_reflects_recovery_queue(self, cli_runner, config_file, tmp_path):
        StatusManager(tmp_path / ".captain-status.json", tmp_path / ".captain-status.md").write(
            StatusSnapshot(state="idle", objective="Ship login")
        )
        _halt(tmp_path)

        result = cli_runner.invoke(app, ["--config", config_file(), "status", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["headline"] == "HALTED (Recovery Required)"
        assert data["recovery"]["blocked"] is True
        assert data["recovery"]["reason"] == "Checkpoint failed before executor step"


class TestRecoverCommand:

    def test_clear_queue(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["--config", config_file(), "recover"])
        assert result.exit_code == 0
        assert "Recovery queue is clear." in result.output

    def test_shows_record(self, cli_runner, config_file, tmp_path):
        _halt(tmp_path)
        result = cli_runner.invoke(app, ["--config", config_file(), "recover"])

        assert result.exit_code == 0
        assert "HALTED (Recovery Required)" in result.output
        assert "abc123" in result.output
        assert RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").is_blocked()

    def test_clear_with_yes(self, cli_runner, config_file, tmp_path):
        _halt(tmp_path)
        result = cli_runner.invoke(app, ["--config", config_file(), "recover", "--clear", "--yes"])

        assert result.exit_code == 0
        assert "Recovery record cleared." in result.output
        assert not RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").is_blocked()
        entries = AuditLogger(tmp_path / "RequestLog.md").entries()
        assert entries[-1]["event_type"] == "RECOVERY_CLEARED"
        assert "task=task-1" in entries[-1]["details"]

    def test_clear_declined(self, cli_runner, config_file, tmp_path):
        _halt(tmp_path)
        result = cli_runner.invoke(app, ["--config", config_file(), "recover", "--clear"], input="n\n")

        assert result.exit_code == 1
        assert RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").is_blocked()


class TestHealthCommand:

    def test_recovery_check_passes(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["--config", config_file(), "health", "-c", "recovery"])
        assert result.exit_code == 0
        assert "All health checks passed" in result.output

    def test_halted_workspace_is_unhealthy(self, cli_runner, config_file, tmp_path):
        _halt(tmp_path)
        result = cli_runner.invoke(
            app, ["--config", config_file(), "health", "--check", "recovery", "--json"]
        )
        assert result.exit_code == 1
        assert json.loads(result.output)["healthy"] is False

    def test_unknown_check(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["--config", config_file(), "health", "-c", "bogus"])
        assert result.exit_code == 1
        assert "Unknown health check" in result.output


class TestRunCommand:

    def test_refused_while_halted(self, cli_runner, config_file, tmp_path):
        _halt(tmp_path)
        result = cli_runner.invoke(app, ["--config", config_file(), "run", "fix typo"])

        assert result.exit_code == 1
        assert "Refusing to start" in result.output

    def test_requires_hat_commands(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["--config", config_file(), "run", "fix typo"])
        assert result.exit_code == 1
        assert "hats.planner" in result.output

    def test_runs_task_with_command_hats(self, cli_runner, config_file, tmp_path):
        path = config_file('hats:\n  planner: "agent plan"\n  executor: "agent build"\n')
        snapshotter = MagicMock()
        snapshotter.snapshot.return_value = "ckpt-1"
        snapshotter.rollback_instruction.return_value = "git reset --hard ckpt-1"
        proc = MagicMock(stdout='<event topic="build.done">smoke: pass</event>', returncode=0, stderr="")

        with patch("captain.factory.default_snapshotter", return_value=snapshotter), \
                patch("captain.command_hats.subprocess.run", return_value=proc) as run:
            result = cli_runner.invoke(app, ["--config", path, "run", "fix typo in README"])

        assert result.exit_code == 0, result.output
        assert "Completed" in result.output
        assert run.call_args[0][0] == ["agent", "build"]
        assert not RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").is_blocked()
        assert (tmp_path / ".captain-status.json").exists()

    def test_failed_task_exits_nonzero(self, cli_runner, config_file, tmp_path):
        path = config_file('hats:\n  planner: "agent plan"\n  executor: "agent build"\n')
        snapshotter = MagicMock()
        snapshotter.snapshot.return_value = "ckpt-1"
        snapshotter.rollback_instruction.return_value = "git reset --hard ckpt-1"
        proc = MagicMock(stdout="", returncode=1, stderr="agent crashed")

        with patch("captain.factory.default_snapshotter", return_value=snapshotter), \
                patch("captain.command_hats.subprocess.run", return_value=proc):
            result = cli_runner.invoke(app, ["--config", path, "run", "fix typo in README"])

        assert result.exit_code == 1
        assert "HALTED (Recovery Required)" in result.output
        assert RecoveryQueue(tmp_path / "RECOVERY_QUEUE.md").is_blocked()


class TestConsoleResponder:

    def test_prompts_until_valid_label(self):
        bridge = HumanBridge()
        request = InteractionRequest(
            question="Redis or cookies?",
            options=(OptionChoice("A", "Redis"), OptionChoice("B", "Cookies")),
            task_id="t1",
        )
        result = {}
        thread = threading.Thread(
            target=lambda: result.update(choice=bridge.request_decision(request))
        )
        thread.start()
        deadline = time.monotonic() + 2.0
        while bridge.outstanding is None and time.monotonic() < deadline:
            time.sleep(0.005)

        answers = iter(["Z", "a"])
        output = io.StringIO()
        responder = ConsoleResponder(
            bridge,
            Console(file=output, width=120),
            ask=lambda *args, **kwargs: next(answers),
        )
        responder.handle(Event(topic=Topic.HUMAN_INTERACT, payload=request.to_dict()))
        thread.join(2.0)

        assert result["choice"].label == "A"
        text = output.getvalue()
        assert "AMBIGUITY DETECTED" in text
        assert "is not one of" in text
        assert "Decision recorded" in text
