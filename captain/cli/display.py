"""Display helpers and formatters for the CLI.

Contains Rich renderers for loop states, status snapshots, recovery records,
health reports and human interaction requests.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from captain.health import HealthReport
    from captain.loop import TaskOutcome
    from captain.models import InteractionRequest, RecoveryRecord
    from captain.status import StatusSnapshot

# Loop state display names and colors
STATE_DISPLAY: dict[str, tuple[str, str]] = {
    "idle": ("Idle", "dim"),
    "running": ("Running", "cyan bold"),
    "awaiting_human": ("Awaiting Human", "yellow bold"),
    "halted": ("HALTED (Recovery Required)", "red bold"),
}

# Task outcome display names and colors
OUTCOME_DISPLAY: dict[str, tuple[str, str]] = {
    "completed": ("Completed", "green bold"),
    "abandoned": ("Abandoned", "yellow bold"),
    "halted": ("Halted", "red bold"),
}


def format_state(state: str) -> Text:
    """Format a loop state with color."""
    name, style = STATE_DISPLAY.get(state, (state, "white"))
    return Text(name, style=style)


def format_cost(cost_usd: float) -> str:
    """Format a cost in USD."""
    return f"${cost_usd:.2f}"


def render_request(request: InteractionRequest) -> Panel:
    """The full option set with every trade-off."""
    table = Table(show_header=True, header_style="bold", expand=True, show_lines=True)
    table.add_column("Option", style="cyan bold", no_wrap=True)
    table.add_column("Description")
    table.add_column("Pros", style="green")
    table.add_column("Cons", style="red")
    table.add_column("Impact")
    table.add_column("Risk")
    table.add_column("Effort")

    for opt in request.options:
        table.add_row(
            opt.label,
            opt.description,
            "\n".join(f"+ {p}" for p in opt.pros) or "-",
            "\n".join(f"- {c}" for c in opt.cons) or "-",
            opt.impact or "-",
            opt.risk or "-",
            opt.effort or "-",
        )

    return Panel(
        Group(Text(request.question, style="bold"), table),
        title="[yellow bold]AMBIGUITY DETECTED: Human decision required[/yellow bold]",
        subtitle=f"request {request.request_id}",
        border_style="yellow",
    )


def render_recovery(record: RecoveryRecord) -> Panel:
    """The recovery record, as an unmistakable halt notice."""
    lines = [
        f"[bold]Task:[/bold] {record.task_id} {record.title}",
        f"[bold]Reason:[/bold] {record.failure_reason}",
        f"[bold]Last safe checkpoint:[/bold] {record.last_checkpoint_id or 'unknown'}",
    ]
    if record.rollback_instruction:
        lines.append(f"[bold]Rollback:[/bold] {record.rollback_instruction}")
    if record.recorded_at:
        lines.append(f"[dim]Recorded {record.recorded_at}[/dim]")
    lines.append("")
    lines.append("Resolve the issue, then run [cyan]captain recover --clear[/cyan].")
    return Panel(
        "\n".join(lines),
        title="[red bold]HALTED (Recovery Required)[/red bold]",
        border_style="red",
    )


def render_status(snapshot: StatusSnapshot) -> Table:
    """Status snapshot as a two-column table."""
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("State", format_state("halted" if snapshot.recovery_blocked else snapshot.state))
    table.add_row("Objective", snapshot.objective or "[dim]not set[/dim]")
    if snapshot.task_id:
        table.add_row("Active task", f"{snapshot.task_id}: {snapshot.task_title}")
    else:
        table.add_row("Active task", "[dim]none[/dim]")
    if snapshot.routing_mode:
        table.add_row("Routing", snapshot.routing_mode)
    if snapshot.tier is not None:
        table.add_row("Verification", f"Tier {snapshot.tier}")
    table.add_row("Iteration", f"{snapshot.iteration} (total {snapshot.total_iterations})")
    table.add_row("Elapsed", f"{snapshot.elapsed_seconds:.1f}s")
    table.add_row("Cost", format_cost(snapshot.cost_usd))
    table.add_row("Last checkpoint", snapshot.last_checkpoint_id or "[dim]none[/dim]")
    table.add_row(
        "Recovery queue",
        "[red]BLOCKED[/red]" if snapshot.recovery_blocked else "[green]clear[/green]",
    )
    table.add_row("Updated", f"[dim]{snapshot.updated_at}[/dim]")
    return table


def render_health(report: HealthReport) -> Table:
    """Health report as a table."""
    table = Table(title="Captain Health", show_header=True, header_style="bold")
    table.add_column("Check", style="cyan")
    table.add_column("Status")
    table.add_column("Message")

    for name, check in report.checks.items():
        status = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
        table.add_row(name, status, check.message)
    return table


def render_outcome(outcome: TaskOutcome) -> Text:
    """One-line summary of a finished task."""
    name, style = OUTCOME_DISPLAY.get(outcome.status.value, (outcome.status.value, "white"))
    text = Text()
    text.append(f"{name}: ", style=style)
    text.append(f"{outcome.task_id} after {outcome.iterations} step(s)")
    if outcome.strategy is not None:
        text.append(f" [{outcome.strategy.tier}]")
    if outcome.reason:
        text.append(f" - {outcome.reason}")
    return text
