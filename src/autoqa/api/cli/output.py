"""Shared console helpers for CLI commands."""

import logging

import structlog
from rich.console import Console
from rich.table import Table

from autoqa.core.domain.models import AgentResult, AgentStatus, ExecutionRecord

console = Console()

STATUS_STYLES = {
    AgentStatus.RUNNING: "cyan",
    AgentStatus.WAITING_FOR_APPROVAL: "magenta",
    AgentStatus.SUCCEEDED: "green",
    AgentStatus.FAILED: "red",
    AgentStatus.TIMEOUT: "yellow",
    AgentStatus.BUDGET_EXCEEDED: "yellow",
    AgentStatus.STOPPED: "dim",
}


def configure_logging(verbose: bool) -> None:
    """Route structlog through a level filter: DEBUG when verbose, else WARNING."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def styled_status(status: AgentStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def records_table(records: list[ExecutionRecord], title: str = "Executions") -> Table:
    table = Table(title=title)
    table.add_column("Execution ID", style="cyan")
    table.add_column("Agent", style="white")
    table.add_column("Status")
    table.add_column("Iteration", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Started", style="dim")

    for record in records:
        table.add_row(
            record.execution_id,
            record.agent_type.value,
            styled_status(record.status),
            str(record.current_iteration),
            f"${record.total_cost:.2f}",
            record.started_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    return table


def print_result(result: AgentResult) -> None:
    console.print(f"\n[bold]Execution:[/bold] {result.execution_id}")
    console.print(f"[bold]Status:[/bold] {styled_status(result.status)}")
    console.print(f"[bold]Iterations:[/bold] {result.iterations_completed}")
    console.print(f"[bold]Cost:[/bold] ${result.total_cost:.2f}")
    console.print(f"[bold]Duration:[/bold] {result.duration_seconds:.1f}s")
    if result.summary:
        console.print(f"[bold]Summary:[/bold] {result.summary}")
    if result.error_message:
        console.print(f"[red]{result.error_message}[/red]")
    if result.outputs:
        console.print_json(data=result.outputs, default=str)
