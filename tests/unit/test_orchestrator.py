"""
Unit Tests for the Orchestrator

Uses a small agent that blocks on an event so tests can observe and stop
executions while they run.
"""

import asyncio

import pytest

from autoqa.application.orchestrator import STOPPED_BY_OPERATOR, Orchestrator
from autoqa.core.domain.agent import BaseAgent
from autoqa.core.domain.events import ActionType, Plan
from autoqa.core.domain.models import AgentConfig, AgentStatus, AgentType, Goal


class GatedAgent(BaseAgent):
    """Completes one action once ``release`` is set."""

    agent_type = AgentType.PLAYWRIGHT_TEST_GENERATOR

    def __init__(self, *args, **kwargs):
        self.release = asyncio.Event()
        super().__init__(*args, **kwargs)

    def plan(self, context):
        return Plan(action=ActionType.COMPLETE, parameters={"done": True})

    def is_goal_achieved(self, context):
        return context.current_iteration >= 1

    async def initialize_state(self, context, config):
        await self.release.wait()


@pytest.fixture
def agent(memory_store, execution_store, tool_registry):
    return GatedAgent(memory_store, execution_store, tool_registry)


@pytest.fixture
def orchestrator(agent, execution_store, memory_store):
    orchestrator = Orchestrator(execution_store, memory_store)
    orchestrator.register_agent(AgentType.PLAYWRIGHT_TEST_GENERATOR, agent)
    return orchestrator


@pytest.fixture
def goal():
    return Goal(goal_type="GENERATE_TEST", parameters={"jiraKey": "PROJ-1"}, triggered_by="test")


def test_register_links_agent(orchestrator, agent):
    """Registration gives the agent a back-reference for delegation."""
    assert agent.orchestrator is orchestrator
    assert orchestrator.available_agent_types() == [AgentType.PLAYWRIGHT_TEST_GENERATOR]


@pytest.mark.asyncio
async def test_unknown_agent_type_rejected(orchestrator, goal):
    with pytest.raises(ValueError, match="No agent registered for type: FLAKY_TEST_FIXER"):
        await orchestrator.start_execution(AgentType.FLAKY_TEST_FIXER, goal)


@pytest.mark.asyncio
async def test_start_creates_running_record(orchestrator, agent, execution_store, goal):
    """The RUNNING record exists before the agent does any work."""
    handle = await orchestrator.start_execution(
        AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="exec-1"
    )

    record = await orchestrator.get_status("exec-1")
    assert record.status == AgentStatus.RUNNING
    assert record.goal_type == "GENERATE_TEST"
    assert record.goal_parameters == {"jiraKey": "PROJ-1"}
    assert record.triggered_by == "test"
    assert orchestrator.is_running("exec-1")

    agent.release.set()
    result = await handle.result()

    assert result.status == AgentStatus.SUCCEEDED
    assert result.outputs == {"done": True}
    assert (await execution_store.find_by_id("exec-1")).status == AgentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_duplicate_in_flight_id_rejected(orchestrator, agent, goal):
    """A second start for an id that is still running fails."""
    await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="exec-1")

    with pytest.raises(ValueError, match="Execution already running: exec-1"):
        await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="exec-1")

    agent.release.set()
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_generated_ids_are_unique(orchestrator, agent, goal):
    first = await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal)
    second = await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal)

    assert first.execution_id != second.execution_id
    assert sorted(orchestrator.running_executions()) == sorted([first.execution_id, second.execution_id])

    agent.release.set()
    await orchestrator.shutdown()
    assert orchestrator.running_executions() == []


@pytest.mark.asyncio
async def test_stop_marks_record_stopped(orchestrator, execution_store, memory_store, goal):
    """An operator stop cancels the task and records STOPPED."""
    handle = await orchestrator.start_execution(
        AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="exec-1"
    )
    await asyncio.sleep(0)

    assert await orchestrator.stop_execution("exec-1") is True

    result = await handle.result()
    assert result.status == AgentStatus.STOPPED
    assert result.error_message == STOPPED_BY_OPERATOR
    record = await execution_store.find_by_id("exec-1")
    assert record.status == AgentStatus.STOPPED
    assert record.error_message == STOPPED_BY_OPERATOR
    assert record.completed_at is not None
    assert await memory_store.exists("exec-1") is False
    assert await orchestrator.stop_execution("exec-1") is False


@pytest.mark.asyncio
async def test_shutdown_with_cancel_stops_everything(orchestrator, execution_store, goal):
    await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="a")
    await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal, execution_id="b")
    await asyncio.sleep(0)

    await orchestrator.shutdown(cancel=True)

    for execution_id in ("a", "b"):
        assert (await execution_store.find_by_id(execution_id)).status == AgentStatus.STOPPED


@pytest.mark.asyncio
async def test_default_config_applies(execution_store, memory_store, agent, goal):
    """Executions started without a config use the orchestrator default."""
    orchestrator = Orchestrator(execution_store, memory_store, default_config=AgentConfig(max_iterations=0))
    orchestrator.register_agent(AgentType.PLAYWRIGHT_TEST_GENERATOR, agent)
    agent.release.set()

    handle = await orchestrator.start_execution(AgentType.PLAYWRIGHT_TEST_GENERATOR, goal)
    result = await handle.result()

    assert result.status == AgentStatus.TIMEOUT
    assert result.error_message == "Max iterations reached: 0"
