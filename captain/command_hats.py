"""
Hats backed by external commands.

A CommandHat runs a configured command (typically an agent CLI) in the
workspace, writes the step prompt to its stdin and reads its stdout. The
command reports back with event tags in its output:

    <event topic="build.done">tests: pass, coverage: 91%</event>
    <event topic="human.interact">{"question": ..., "options": [...]}</event>
    <event topic="task.failed">cannot reach the database</event>

Planner output is the plan itself; "scope:" and "complexity:" lines
declare the module scope and complexity class. If the command prints a
JSON object with "result" and "total_cost_usd" (agent CLIs in JSON output
mode), the result text and the cost are taken from it.
"""

from __future__ import annotations

import json
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from captain.hats import HatKind, StepContext, StepOutcome
from captain.models import AttemptResult, InteractionRequest
from captain.verification import parse_evidence

if TYPE_CHECKING:
    from captain.config import CaptainConfig
    from captain.logger import CaptainLogger


_EVENT_TAG = re.compile(
    r'<event\s+[^>]*?topic="(?P<topic>[^"]+)"[^>]*>(?P<payload>.*?)</event>',
    re.DOTALL,
)
_DECLARATION = re.compile(r"^\s*(?P<key>scope|complexity)\s*:\s*(?P<value>[\w\-]+)\s*$", re.I | re.M)


@dataclass
class CommandResult:
    """Output of one command invocation."""
    text: str
    cost_usd: float = 0.0
    returncode: int = 0
    stderr: str = ""


def parse_event_tags(output: str) -> list[tuple[str, str]]:
    """Return (topic, payload) for every event tag in the output, in order."""
    return [(m.group("topic"), m.group("payload").strip()) for m in _EVENT_TAG.finditer(output)]


class CommandHat:
    """A hat played by an external command."""

    def __init__(
        self,
        kind: HatKind,
        command: str,
        working_dir: str | Path,
        timeout_seconds: int = 1800,
        logger: Optional[CaptainLogger] = None,
    ) -> None:
        if kind is HatKind.TRIAGE:
            raise ValueError("Triage is handled by the routing engine")
        self.kind = kind
        self.command = command
        self.working_dir = Path(working_dir)
        self.timeout_seconds = timeout_seconds
        self._logger = logger

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": f"{self.kind.value}_hat"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def run(self, prompt: str) -> CommandResult:
        """Run the command with the prompt on stdin."""
        self._log("command_start", {"command": self.command, "prompt_length": len(prompt)})
        try:
            proc = subprocess.run(
                shlex.split(self.command),
                input=prompt,
                capture_output=True,
                text=True,
                cwd=self.working_dir,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            self._log("command_timeout", {"timeout_seconds": self.timeout_seconds}, level="error")
            return CommandResult(
                text="", returncode=-1, stderr=f"timed out after {self.timeout_seconds}s"
            )
        except OSError as e:
            self._log("command_error", {"error": str(e)}, level="error")
            return CommandResult(text="", returncode=-1, stderr=str(e))

        text, cost = _unwrap_json_output(proc.stdout)
        self._log("command_complete", {"returncode": proc.returncode, "cost_usd": cost})
        return CommandResult(text=text, cost_usd=cost, returncode=proc.returncode, stderr=proc.stderr)

    def handle(self, context: StepContext) -> StepOutcome:
        result = self.run(context.prompt())
        if result.returncode != 0:
            detail = (result.stderr or "").strip()[:500]
            return StepOutcome.failed(
                f"{self.kind.value} command exited with code {result.returncode}: {detail}",
                cost_usd=result.cost_usd,
            )

        for topic, payload in parse_event_tags(result.text):
            if topic == "task.failed":
                return StepOutcome.failed(payload or "reported failure", cost_usd=result.cost_usd)
            if topic == "human.interact":
                try:
                    request = _parse_request(payload, context.task.id)
                except ValueError as e:
                    self._log("malformed_interact", {"error": str(e)}, level="error")
                    # An unreadable question must not let the step complete.
                    return StepOutcome.failed(
                        f"malformed human.interact payload: {e}", cost_usd=result.cost_usd
                    )
                return StepOutcome.ambiguous(request, cost_usd=result.cost_usd)

        if self.kind is HatKind.PLANNER:
            declared = {m.group("key").lower(): m.group("value").lower()
                        for m in _DECLARATION.finditer(result.text)}
            return StepOutcome.planned(
                result.text.strip(),
                module_scope=declared.get("scope"),
                complexity_class=declared.get("complexity"),
                cost_usd=result.cost_usd,
            )

        evidence = "\n".join(
            payload for topic, payload in parse_event_tags(result.text) if topic == "build.done"
        ) or result.text
        if self.kind is HatKind.VERIFIER:
            attempt = parse_evidence(evidence) or AttemptResult(summary=evidence.strip())
            return StepOutcome.verified(attempt, cost_usd=result.cost_usd)
        return StepOutcome.completed(evidence=evidence, cost_usd=result.cost_usd)


def _unwrap_json_output(stdout: str) -> tuple[str, float]:
    stripped = stdout.strip()
    if not stripped.startswith("{"):
        return stdout, 0.0
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        return stdout, 0.0
    if not isinstance(data, dict) or "result" not in data:
        return stdout, 0.0
    return str(data.get("result", "")), float(data.get("total_cost_usd", 0.0) or 0.0)


def _parse_request(payload: str, task_id: str) -> InteractionRequest:
    """
    Build an InteractionRequest from a human.interact tag payload.

    Raises:
        ValueError: If the payload is not a valid request.
    """
    try:
        data = json.loads(payload)
        options = data["options"]
        # Agents may label options with "id" instead of "label".
        for option in options:
            if "label" not in option and "id" in option:
                option["label"] = option.pop("id")
        data.setdefault("task_id", task_id)
        return InteractionRequest.from_dict(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON ({e.msg})") from e
    except KeyError as e:
        raise ValueError(f"missing field {e}") from e
    except (TypeError, AttributeError) as e:
        raise ValueError(f"unexpected shape ({e})") from e


def build_command_hats(
    config: CaptainConfig,
    logger: Optional[CaptainLogger] = None,
) -> list[CommandHat]:
    """Create a CommandHat for every hat command in the config."""
    hats = []
    for kind, command in (
        (HatKind.PLANNER, config.hats.planner),
        (HatKind.EXECUTOR, config.hats.executor),
        (HatKind.VERIFIER, config.hats.verifier),
    ):
        if command:
            hats.append(CommandHat(
                kind,
                command,
                working_dir=config.workspace_path,
                timeout_seconds=config.hats.timeout_seconds,
                logger=logger,
            ))
    return hats
