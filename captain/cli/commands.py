"""Loop, status and recovery commands.

run     - run one task through the loop (refused while halted)
status  - show the status artifacts
health  - read-only health checks
recover - show or clear the recovery record

This module should NOT import heavy modules at the top level - use lazy imports inside functions.
"""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Callable, Optional

import typer
from rich.prompt import Prompt

from captain.cli.common import get_config_or_default, get_console
from captain.cli.display import (
    render_health,
    render_outcome,
    render_recovery,
    render_request,
    render_status,
)

if TYPE_CHECKING:
    from rich.console import Console

    from captain.events.bus import EventBus, Subscription
    from captain.events.types import Event
    from captain.human import HumanBridge

console = get_console()


# =============================================================================
# Human interaction
# =============================================================================


class ConsoleResponder:
    """
    Answers human.interact requests from the terminal.

    Renders the full option set and prompts until a valid label is given.
    Runs on the bus delivery thread while the loop is blocked on the bridge.
    """

    def __init__(
        self,
        bridge: HumanBridge,
        console: Console,
        ask: Optional[Callable[..., str]] = None,
    ) -> None:
        self.bridge = bridge
        self.console = console
        self.ask = ask or Prompt.ask

    def attach(self, bus: EventBus) -> Subscription:
        from captain.events.types import Topic

        return bus.subscribe(Topic.HUMAN_INTERACT, self.handle, name="console_responder")

    def handle(self, event: Event) -> None:
        from captain.errors import InvalidSelectionError, StaleResponseError
        from captain.models import InteractionRequest

        request = InteractionRequest.from_dict(event.to_dict()["payload"])
        self.console.print(render_request(request))
        while True:
            label = self.ask(
                f"Select an option ({'/'.join(request.labels)})",
                console=self.console,
            )
            try:
                option = self.bridge.respond(request.request_id, label)
            except InvalidSelectionError as e:
                self.console.print(f"[red]{e}[/red]")
                continue
            except StaleResponseError:
                self.console.print("[yellow]That request is no longer outstanding.[/yellow]")
                return
            self.console.print(
                f"[green]Decision recorded:[/green] Option {option.label} - {option.description}"
            )
            return


# =============================================================================
# Commands
# =============================================================================


def run(
    title: str = typer.Argument(..., help="Task title."),
    description: str = typer.Option(
        "",
        "--description",
        "-d",
        help="Task description.",
    ),
) -> None:
    """
    Run one task through triage, planning, execution and verification.

    Refused while a recovery record exists.

    Examples:
        captain run "fix typo in README"
        captain run "add login endpoint" -d "POST /login with session cookies"
    """
    from captain.command_hats import build_command_hats
    from captain.errors import ConfigError, RecoveryRequiredError
    from captain.factory import build_orchestrator
    from captain.logger import CaptainLogger
    from captain.loop import TaskStatus
    from captain.models import TaskIntent
    from captain.safety import RecoveryQueue

    config = get_config_or_default()

    queue = RecoveryQueue(config.recovery_path)
    if queue.is_blocked():
        record = queue.read()
        if record is not None:
            console.print(render_recovery(record))
        console.print("[red]Refusing to start: recovery required.[/red]")
        raise typer.Exit(1)

    if not config.hats.planner or not config.hats.executor:
        console.print(
            "[red]Error:[/red] configure hats.planner and hats.executor in captain.yaml"
        )
        raise typer.Exit(1)

    logger = CaptainLogger(config.logs_path)
    try:
        orchestrator = build_orchestrator(config, build_command_hats(config, logger), logger=logger)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    ConsoleResponder(orchestrator.bridge, console).attach(orchestrator.bus)

    intent = TaskIntent.create(title, description)
    console.print(f"[cyan]Starting task {intent.id}:[/cyan] {title}")
    try:
        outcome = orchestrator.submit(intent)
    except RecoveryRequiredError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        orchestrator.shutdown()

    console.print(render_outcome(outcome))
    if outcome.status is TaskStatus.HALTED:
        record = queue.read()
        if record is not None:
            console.print(render_recovery(record))
    if outcome.status is not TaskStatus.COMPLETED:
        raise typer.Exit(1)


def status(
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the machine-readable status.",
    ),
) -> None:
    """Show the last written status and the recovery queue."""
    from captain.safety import RecoveryQueue
    from captain.status import StatusManager, StatusSnapshot

    config = get_config_or_default()
    snapshot = StatusManager(config.status_json_path, config.status_markdown_path).read()
    queue = RecoveryQueue(config.recovery_path)
    blocked = queue.is_blocked()

    if snapshot is None:
        snapshot = StatusSnapshot(state="halted" if blocked else "idle", objective=config.objective)
    snapshot.recovery_blocked = blocked
    record = queue.read() if blocked else None
    snapshot.recovery_reason = record.failure_reason if record else None

    if as_json:
        console.print_json(json.dumps(snapshot.to_dict()))
        return

    console.print(render_status(snapshot))
    if record is not None:
        console.print(render_recovery(record))


def health(
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the report as JSON.",
    ),
    check: Optional[list[str]] = typer.Option(
        None,
        "--check",
        "-c",
        help="Run only this check (repeatable): recovery, git, config, disk.",
    ),
) -> None:
    """
    Run read-only health checks. Exits 1 if any check fails.

    Examples:
        captain health
        captain health --check recovery --json
    """
    from captain.health import HealthChecker

    config = get_config_or_default()
    checker = HealthChecker(config)
    try:
        report = checker.run_health_checks(check or None)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps(report.to_dict()))
    else:
        console.print(render_health(report))
        style = "green" if report.healthy else "red"
        console.print(f"[{style}]{report.summary}[/{style}]")

    if not report.healthy:
        raise typer.Exit(1)


def recover(
    clear: bool = typer.Option(
        False,
        "--clear",
        help="Clear the recovery record so the loop can resume.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Show the recovery record, or clear it after manual recovery."""
    from captain.audit import AuditLogger
    from captain.safety import RecoveryQueue

    config = get_config_or_default()
    queue = RecoveryQueue(config.recovery_path)

    if not queue.is_blocked():
        console.print("[green]Recovery queue is clear.[/green]")
        return

    record = queue.read()
    if record is not None:
        console.print(render_recovery(record))

    if not clear:
        return

    if not yes and not typer.confirm("Clear the recovery record and let the loop resume?"):
        console.print("[dim]Recovery record left in place.[/dim]")
        raise typer.Exit(1)

    queue.clear()
    AuditLogger(config.audit_path).log_event(
        "RECOVERY_CLEARED",
        details=f"task={record.task_id if record else 'unknown'} cleared from the CLI",
    )
    console.print("[green]Recovery record cleared.[/green]")
