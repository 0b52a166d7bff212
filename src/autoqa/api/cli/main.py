"""autoqa CLI entry point."""

import asyncio

import typer
from rich.console import Console

from autoqa.api.cli.commands import executions, memory, run, tools
from autoqa.api.cli.output import configure_logging

app = typer.Typer(
    name="autoqa",
    help="autoqa - Autonomous QA agents with budgets, approvals and crash recovery",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register command groups
app.add_typer(run.app, name="run", help="Start agent executions")
app.add_typer(executions.app, name="executions", help="Inspect execution records")
app.add_typer(memory.app, name="memory", help="Context snapshot management")
app.add_typer(tools.app, name="tools", help="Tool registry inspection")


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("dev", "--profile", "-p", help="Configuration profile"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """autoqa Agent CLI."""
    # Store global options in context for subcommands
    ctx.obj = {"profile": profile, "verbose": verbose}
    configure_logging(verbose)


@app.command()
def reconcile(ctx: typer.Context):
    """Mark executions orphaned by a crash or restart as STOPPED."""
    from autoqa.application.factory import AutoQAFactory
    from autoqa.application.reconciliation import StartupReconciler

    profile = (ctx.obj or {}).get("profile", "dev")
    store = AutoQAFactory().create_execution_store(profile)
    count = asyncio.run(StartupReconciler(store).run())

    if count:
        console.print(f"[yellow]Stopped {count} orphaned execution(s)[/yellow]")
    else:
        console.print("[green]No orphaned executions[/green]")


@app.command()
def version():
    """Show autoqa version."""
    from autoqa import __version__

    console.print(f"[bold blue]autoqa[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
