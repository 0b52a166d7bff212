"""Executions command - Inspect durable execution records."""

import asyncio
from typing import Optional

import typer
from rich.table import Table

from autoqa.api.cli.output import console, records_table, styled_status
from autoqa.application.factory import AutoQAFactory
from autoqa.core.domain.models import AgentStatus

app = typer.Typer(help="Inspect execution records")


def _store(ctx: typer.Context):
    profile = (ctx.obj or {}).get("profile", "dev")
    return AutoQAFactory().create_execution_store(profile)


@app.command("list")
def list_executions(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum records to show"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Only show this status"),
):
    """List recent executions."""
    store = _store(ctx)
    if status:
        try:
            wanted = AgentStatus(status.upper())
        except ValueError:
            console.print(f"[red]Unknown status '{status}'[/red]")
            raise typer.Exit(1)
        records = sorted(
            asyncio.run(store.find_all_in_status(wanted)),
            key=lambda r: r.started_at,
            reverse=True,
        )[:limit]
    else:
        records = asyncio.run(store.list_executions(limit=limit))

    if not records:
        console.print("[dim]No executions found[/dim]")
        return
    console.print(records_table(records))


@app.command("show")
def show_execution(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """Show one execution record."""
    record = asyncio.run(_store(ctx).find_by_id(execution_id))

    if not record:
        console.print(f"[red]Execution '{execution_id}' not found[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Execution:[/bold] {record.execution_id}")
    console.print(f"[bold]Agent:[/bold] {record.agent_type.value}")
    console.print(f"[bold]Status:[/bold] {styled_status(record.status)}")
    if record.error_message:
        console.print(f"[bold]Error:[/bold] [red]{record.error_message}[/red]")
    console.print_json(data=record.to_dict())


@app.command("history")
def show_history(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """Show the action history of an execution."""
    entries = asyncio.run(_store(ctx).get_history(execution_id))

    if not entries:
        console.print(f"[dim]No history for '{execution_id}'[/dim]")
        return

    table = Table(title=f"History {execution_id}")
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Result")
    table.add_column("Cost", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Error", style="red")

    for entry in entries:
        table.add_row(
            str(entry.iteration),
            entry.action_type.value,
            "[green]ok[/green]" if entry.success else "[red]failed[/red]",
            f"${entry.cost:.2f}",
            str(entry.duration_ms),
            entry.error_message or "",
        )
    console.print(table)
