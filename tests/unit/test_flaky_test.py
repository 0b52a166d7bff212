"""
Unit Tests for FlakyTestAgent

Covers stability analysis, the bounded fix loop, delegation of locator
brittleness to the self-healing agent and fix delivery.
"""

import copy
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from autoqa.core.agents.flaky_test import FlakySettings, FlakyTestAgent
from autoqa.core.domain.events import ActionType
from autoqa.core.domain.models import AgentConfig, AgentContext, AgentStatus, AgentType, Goal
from autoqa.infrastructure.catalog import InMemoryTestCatalog

STABILITY = {
    "stabilityResult": {"passRate": 0.6, "errorMessages": ["Timeout 30000ms exceeded"]},
    "testCaseName": "LoginTest",
}


@pytest.fixture
def agent(memory_store, execution_store, tool_registry, catalog):
    return FlakyTestAgent(memory_store, execution_store, tool_registry, catalog)


async def start(agent, config=None, **parameters):
    context = AgentContext(goal=Goal(goal_type="FIX_FLAKY_TESTS", parameters=parameters), max_iterations=100)
    await agent.initialize_state(context, config or AgentConfig())
    return context


async def analyze(agent, context, run_step, root_cause="TIMING_ISSUE"):
    await run_step(agent, context, STABILITY)
    await run_step(agent, context, {"rootCause": root_cause})
    await run_step(agent, context, {"draftFilePath": "drafts/LoginTest.java"})


def test_settings_from_custom_config():
    """Tuning values come from the config's custom map with defaults for the rest."""
    settings = FlakySettings.from_config(AgentConfig(custom={"maxFixAttempts": 2, "stabilityCheckRuns": 10}))

    assert settings.max_fix_attempts == 2
    assert settings.stability_check_runs == 10
    assert settings.verification_runs == 5
    assert settings.flakiness_threshold == 0.2


@pytest.mark.asyncio
async def test_defaults_to_all_active_tests(agent):
    """Without test ids the agent works through every active test."""
    context = await start(agent)

    assert agent.test_ids(context) == ["t1", "t2"]


@pytest.mark.asyncio
async def test_no_active_tests_is_an_error(memory_store, execution_store, tool_registry):
    """An empty catalog leaves nothing to process."""
    agent = FlakyTestAgent(memory_store, execution_store, tool_registry, InMemoryTestCatalog())

    with pytest.raises(ValueError, match="No tests to process"):
        await start(agent)


@pytest.mark.asyncio
async def test_analysis_phase_order(agent, run_step):
    """Stability, root cause and failure pattern are gathered in order."""
    context = await start(agent, AgentConfig(custom={"stabilityCheckRuns": 7}), testIds=["t1"])

    plans = [await run_step(agent, context, STABILITY)]
    plans.append(await run_step(agent, context, {"rootCause": "TIMING_ISSUE"}))
    plans.append(await run_step(agent, context))

    assert [p.action for p in plans] == [
        ActionType.ANALYZE_TEST_STABILITY,
        ActionType.ANALYZE_FAILURE,
        ActionType.WRITE_FILE,
    ]
    assert plans[0].parameters["runCount"] == 7
    assert plans[1].parameters["stabilityResult"] == STABILITY["stabilityResult"]
    assert agent.get(context, "testAnalysis")["rootCause"] == "TIMING_ISSUE"
    assert agent.plan(context).action == ActionType.SUGGEST_FIX


@pytest.mark.asyncio
async def test_fix_attempts_are_bounded(agent, run_step):
    """After maxFixAttempts failed verifications the test goes to manual review."""
    context = await start(agent, AgentConfig(custom={"maxFixAttempts": 2}), testIds=["t1"])
    await analyze(agent, context, run_step)

    suggest = await run_step(agent, context, {"fixedTestCode": {"steps": []}})
    apply = await run_step(agent, context)
    await run_step(agent, context, {"isStable": False})
    assert agent.get(context, "fixAttempt") == 1

    retry = await run_step(agent, context, {"fixedTestCode": "{\"steps\": [1]}"})
    await run_step(agent, context)
    await run_step(agent, context, {"isStable": False})

    review = agent.plan(context)
    assert suggest.parameters["attemptNumber"] == 1
    assert json.loads(apply.parameters["fixedTestCode"]) == {"steps": []}
    assert retry.action == ActionType.SUGGEST_FIX
    assert retry.parameters["attemptNumber"] == 2
    assert review.action == ActionType.REQUEST_APPROVAL
    assert review.parameters["manualReview"] is True
    assert review.parameters["requestType"] == "FLAKY_MANUAL"
    assert review.parameters["jiraKey"] == "FLAKY-MANUAL-t1"


@pytest.mark.asyncio
async def test_verified_fix_is_delivered(agent, run_step):
    """A stable verification leads to branch, commit, approval and pull request."""
    context = await start(agent, testIds=["t1"])
    await analyze(agent, context, run_step)
    await run_step(agent, context, {"fixedTestCode": "{}"})
    await run_step(agent, context)
    await run_step(agent, context, {"isStable": True})

    branch = await run_step(agent, context, {"branchName": "fix/flaky-LoginTest"})
    commit = await run_step(agent, context)
    approval = await run_step(agent, context)
    pull_request = await run_step(agent, context)

    assert branch.action == ActionType.CREATE_BRANCH
    assert commit.parameters["filePaths"] == ["drafts/LoginTest.java"]
    assert commit.parameters["branchName"] == "fix/flaky-LoginTest"
    assert approval.parameters["requestType"] == "FLAKY_FIX"
    assert pull_request.action == ActionType.CREATE_PULL_REQUEST
    assert agent.get(context, "successfullyFixed") == 1
    assert agent.is_goal_achieved(context)


def plan_twice(agent, context):
    """Plan twice on the same context and check nothing changed in between."""
    state = copy.deepcopy(context.state)
    first = agent.plan(context)
    assert agent.plan(context) == first
    assert context.state == state
    return first


@pytest.mark.asyncio
async def test_plan_repeatable_in_fix_loop(agent, run_step):
    """After a failed verification the retry plans are stable and keep the attempt count."""
    context = await start(agent, AgentConfig(custom={"maxFixAttempts": 3}), testIds=["t1"])
    await analyze(agent, context, run_step)
    await run_step(agent, context, {"fixedTestCode": "{}"})
    await run_step(agent, context)
    await run_step(agent, context, {"isStable": False})

    retry = plan_twice(agent, context)
    assert retry.action == ActionType.SUGGEST_FIX
    assert retry.parameters["attemptNumber"] == 2
    assert agent.get(context, "fixAttempt") == 1

    await run_step(agent, context, {"fixedTestCode": "{\"steps\": [2]}"})
    apply = plan_twice(agent, context)
    assert apply.action == ActionType.MODIFY_FILE
    assert json.loads(apply.parameters["fixedTestCode"]) == {"steps": [2]}

    await run_step(agent, context)
    assert plan_twice(agent, context).action == ActionType.EXECUTE_TEST
    assert agent.get(context, "fixAttempt") == 1


@pytest.mark.asyncio
async def test_plan_repeatable_through_delivery(agent, run_step):
    """Each delivery step plans the same way twice before it runs."""
    context = await start(agent, testIds=["t1"])
    await analyze(agent, context, run_step)
    await run_step(agent, context, {"fixedTestCode": "{}"})
    await run_step(agent, context)
    await run_step(agent, context, {"isStable": True})

    actions = []
    for output in ({"branchName": "fix/flaky-LoginTest"}, None, None, None):
        plan = plan_twice(agent, context)
        actions.append(plan.action)
        await run_step(agent, context, output)

    assert actions == [
        ActionType.CREATE_BRANCH,
        ActionType.COMMIT_CHANGES,
        ActionType.REQUEST_APPROVAL,
        ActionType.CREATE_PULL_REQUEST,
    ]
    assert plan_twice(agent, context).action == ActionType.COMPLETE


@pytest.mark.asyncio
async def test_locator_brittleness_is_delegated(agent, run_step):
    """Locator brittleness starts a self-healing execution and moves on."""
    context = await start(agent, testIds=["t1", "t2"])
    agent.orchestrator = AsyncMock()
    agent.orchestrator.start_execution.return_value = MagicMock(execution_id="child-1")
    await analyze(agent, context, run_step, root_cause="LOCATOR_BRITTLENESS")

    delegate = await run_step(agent, context)

    assert delegate.action == ActionType.DELEGATE
    assert delegate.parameters["errorMessage"] == "Timeout 30000ms exceeded"
    agent_type, goal = agent.orchestrator.start_execution.await_args.args
    assert agent_type == AgentType.SELF_HEALING_TEST_FIXER
    assert goal.goal_type == "FIX_BROKEN_LOCATOR"
    assert goal.parameters["testId"] == "t1"
    assert goal.triggered_by == "FlakyTestAgent"
    assert context.work_products["delegatedExecutions"] == ["child-1"]
    assert agent.current_test(context)["test_id"] == "t2"
    assert agent.plan(context).action == ActionType.ANALYZE_TEST_STABILITY


@pytest.mark.asyncio
async def test_rejected_delegation_still_advances(agent, run_step):
    """A delegation the orchestrator refuses is logged and the work list moves on."""
    context = await start(agent, testIds=["t1"])
    agent.orchestrator = AsyncMock()
    agent.orchestrator.start_execution.side_effect = ValueError("No agent registered for type: SELF_HEALING_TEST_FIXER")
    await analyze(agent, context, run_step, root_cause="LOCATOR_BRITTLENESS")

    await run_step(agent, context)

    assert "delegatedExecutions" not in context.work_products
    assert agent.all_processed(context)


@pytest.mark.asyncio
async def test_full_run_over_two_tests(agent, register_static, make_record):
    """Both catalog tests are stabilized in one run."""
    register_static(ActionType.ANALYZE_TEST_STABILITY, output=STABILITY)
    register_static(ActionType.ANALYZE_FAILURE, output={"rootCause": "TIMING_ISSUE"})
    register_static(ActionType.WRITE_FILE, output={"draftFilePath": "drafts/x.java"})
    register_static(ActionType.SUGGEST_FIX, output={"fixedTestCode": "{}"})
    register_static(ActionType.MODIFY_FILE)
    register_static(ActionType.EXECUTE_TEST, output={"isStable": True})
    for action in (
        ActionType.CREATE_BRANCH,
        ActionType.COMMIT_CHANGES,
        ActionType.REQUEST_APPROVAL,
        ActionType.CREATE_PULL_REQUEST,
    ):
        register_static(action)
    await make_record(agent_type=AgentType.FLAKY_TEST_FIXER)

    result = await agent.execute(
        Goal(goal_type="FIX_FLAKY_TESTS"), AgentConfig(max_iterations=25), "exec-1"
    )

    assert result.status == AgentStatus.SUCCEEDED
    assert result.iterations_completed == 20
    assert result.outputs["successfullyFixed"] == 2
    assert result.outputs["totalTests"] == 2
