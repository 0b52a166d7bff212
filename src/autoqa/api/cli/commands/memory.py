"""Memory command - Inspect and clear context snapshots."""

import asyncio

import typer
from rich.table import Table

from autoqa.api.cli.output import console
from autoqa.application.factory import AutoQAFactory

app = typer.Typer(help="Context snapshot management")


def _store(ctx: typer.Context):
    profile = (ctx.obj or {}).get("profile", "dev")
    return AutoQAFactory().create_memory_store(profile)


async def _snapshots(store) -> list[tuple[str, float | None]]:
    return [(eid, await store.remaining_ttl(eid)) for eid in await store.list_active()]


@app.command("list")
def list_snapshots(ctx: typer.Context):
    """List live context snapshots."""
    snapshots = asyncio.run(_snapshots(_store(ctx)))

    if not snapshots:
        console.print("[dim]No live snapshots[/dim]")
        return

    table = Table(title="Context Snapshots")
    table.add_column("Execution ID", style="cyan")
    table.add_column("Expires in", justify="right")
    for execution_id, ttl in snapshots:
        table.add_row(execution_id, f"{ttl:.0f}s" if ttl is not None else "-")
    console.print(table)


@app.command("clear")
def clear_snapshot(
    ctx: typer.Context,
    execution_id: str = typer.Argument(..., help="Execution ID"),
):
    """Remove the snapshot of one execution."""
    asyncio.run(_store(ctx).clear(execution_id))
    console.print(f"[green]Cleared snapshot for {execution_id}[/green]")
