"""Shared fixtures for autoqa unit tests."""

import pytest

from autoqa.core.domain.events import ActionResult, ActionType, HistoryEntry
from autoqa.core.domain.models import AgentContext, AgentType, ExecutionRecord, Goal
from autoqa.infrastructure.catalog import InMemoryTestCatalog
from autoqa.infrastructure.persistence.execution_store import InMemoryExecutionStore
from autoqa.infrastructure.persistence.memory_store import InMemoryMemoryStore
from autoqa.infrastructure.tools.registry import StaticTool, ToolRegistry


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryMemoryStore()


@pytest.fixture
def execution_store():
    return InMemoryExecutionStore()


@pytest.fixture
def tool_registry():
    return ToolRegistry(base_delay=0)


@pytest.fixture
def make_record(execution_store):
    """Create a RUNNING execution record the loop can update."""

    async def _make(execution_id: str = "exec-1", agent_type: AgentType = AgentType.PLAYWRIGHT_TEST_GENERATOR):
        record = ExecutionRecord(execution_id=execution_id, agent_type=agent_type)
        await execution_store.create_execution(record)
        return record

    return _make


@pytest.fixture
def register_static(tool_registry):
    """Register a StaticTool on the shared registry and return it."""

    def _register(action: ActionType, **kwargs) -> StaticTool:
        tool = StaticTool(action, **kwargs)
        tool_registry.register_tool(tool)
        return tool

    return _register


SAMPLE_CONTENT = (
    '{"steps": [{"action": "NAVIGATE", "value": "https://shop.test/login"}, '
    '{"action": "CLICK", "locator": "#login-btn"}]}'
)


@pytest.fixture
def sample_content():
    return SAMPLE_CONTENT


@pytest.fixture
def catalog():
    return InMemoryTestCatalog.from_records(
        [
            {"test_id": "t1", "name": "LoginTest", "content": SAMPLE_CONTENT, "last_error": "locator('#login-btn') not found"},
            {"test_id": "t2", "name": "CheckoutTest", "content": SAMPLE_CONTENT},
        ]
    )


@pytest.fixture
def goal():
    return Goal(goal_type="GENERATE_TEST", parameters={"jiraKey": "PROJ-1"})


@pytest.fixture
def run_step():
    """
    Advance a planner by one iteration the way the loop does.

    Plans, records a history entry with the given outcome, merges outputs
    into work products, runs the result handler and bumps the iteration.
    Returns the plan that was acted on.
    """

    async def _step(agent, context: AgentContext, output: dict | None = None, success: bool = True):
        plan = agent.plan(context)
        result = ActionResult(action_type=plan.action, success=success, output=dict(output or {}))
        context.add_history(
            HistoryEntry(
                iteration=context.current_iteration,
                action_type=plan.action,
                action_input=plan.parameters,
                action_output=result.output,
                success=success,
            )
        )
        if success:
            for key, value in result.output.items():
                context.put_work_product(key, value)
        handler = agent._result_handlers.get(plan.action)
        if handler is not None:
            await handler(context, plan, result)
        context.increment_iteration()
        return plan

    return _step
