"""Tools command - List registered tools."""

import typer
from rich.table import Table

from autoqa.api.cli.output import console
from autoqa.application.factory import AutoQAFactory

app = typer.Typer(help="Tool registry inspection")


@app.command("list")
def list_tools(ctx: typer.Context):
    """List tools registered for the profile."""
    profile = (ctx.obj or {}).get("profile", "dev")
    registry = AutoQAFactory().create_tool_registry(profile)

    table = Table(title="Registered Tools")
    table.add_column("Action", style="cyan")
    table.add_column("Category", style="white")
    table.add_column("Name", style="white")
    table.add_column("Circuit", style="dim")
    table.add_column("Description", style="white")

    for tool in registry.tool_catalog():
        table.add_row(
            tool["action_type"],
            tool["category"],
            tool["name"],
            tool["circuit_state"],
            tool["description"],
        )
    console.print(table)
