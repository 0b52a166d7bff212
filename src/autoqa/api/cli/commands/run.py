"""Run command - Start agent executions and wait for their result."""

import asyncio
import dataclasses
from typing import List, Optional

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from autoqa.api.cli.output import console, print_result
from autoqa.application.factory import AutoQAFactory
from autoqa.application.reconciliation import StartupReconciler
from autoqa.core.domain.models import AgentResult, AgentStatus, AgentType, Goal

app = typer.Typer(help="Start agent executions")


async def _execute(
    profile: str,
    agent_type: AgentType,
    goal: Goal,
    max_iterations: Optional[int],
    max_cost: Optional[float],
) -> AgentResult:
    factory = AutoQAFactory()
    orchestrator = factory.create_orchestrator(profile=profile)
    await StartupReconciler(orchestrator.execution_store).run()

    config = factory.agent_config(profile, agent_type)
    if max_iterations is not None:
        config = dataclasses.replace(config, max_iterations=max_iterations)
    if max_cost is not None:
        config = dataclasses.replace(config, max_cost=max_cost)

    handle = await orchestrator.start_execution(agent_type, goal, config)
    result = await handle.result()
    # Delegated executions run to completion before the CLI exits.
    await orchestrator.shutdown()
    return result


def _run(
    ctx: typer.Context,
    agent_type: AgentType,
    goal: Goal,
    max_iterations: Optional[int],
    max_cost: Optional[float],
) -> None:
    profile = (ctx.obj or {}).get("profile", "dev")
    console.print(f"[bold]Agent:[/bold] {agent_type.value}  [bold]Profile:[/bold] {profile}")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("[>] Executing...", total=None)
        try:
            result = asyncio.run(_execute(profile, agent_type, goal, max_iterations, max_cost))
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

    print_result(result)
    if result.status != AgentStatus.SUCCEEDED:
        raise typer.Exit(1)


@app.command("generate")
def run_generate(
    ctx: typer.Context,
    jira_key: str = typer.Argument(..., help="Story key to generate a test for"),
    framework: str = typer.Option("PLAYWRIGHT", "--framework", help="Target test framework"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", help="Iteration limit"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Cost budget"),
):
    """Generate a test from a story and open a pull request.

    Examples:
        autoqa run generate PROJ-123
        autoqa -p prod run generate PROJ-123 --max-cost 2.5
    """
    goal = Goal(
        goal_type="GENERATE_TEST",
        parameters={"jiraKey": jira_key, "framework": framework},
        success_criteria="Pull request with generated test created",
        triggered_by="cli",
    )
    _run(ctx, AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, max_iterations, max_cost)


@app.command("heal")
def run_heal(
    ctx: typer.Context,
    test_ids: List[str] = typer.Argument(..., help="Test id(s) with broken locators"),
    error_message: Optional[str] = typer.Option(None, "--error", "-e", help="Failure message"),
    page_url: Optional[str] = typer.Option(None, "--page-url", help="Page the test runs against"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", help="Iteration limit"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Cost budget"),
):
    """Heal broken locators in one or more tests."""
    parameters: dict = {"testIds": test_ids}
    if error_message:
        parameters["errorMessage"] = error_message
    if page_url:
        parameters["pageUrl"] = page_url
    goal = Goal(
        goal_type="FIX_BROKEN_LOCATOR",
        parameters=parameters,
        success_criteria="Every test healed or flagged for manual review",
        triggered_by="cli",
    )
    _run(ctx, AgentType.SELF_HEALING_TEST_FIXER, goal, max_iterations, max_cost)


@app.command("flaky")
def run_flaky(
    ctx: typer.Context,
    test_ids: Optional[List[str]] = typer.Argument(None, help="Test id(s); all active tests if omitted"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", help="Iteration limit"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Cost budget"),
):
    """Analyze and stabilize flaky tests."""
    goal = Goal(
        goal_type="FIX_FLAKY_TESTS",
        parameters={"testIds": test_ids} if test_ids else {},
        success_criteria="Every test stabilized, delegated or flagged",
        triggered_by="cli",
    )
    _run(ctx, AgentType.FLAKY_TEST_FIXER, goal, max_iterations, max_cost)
