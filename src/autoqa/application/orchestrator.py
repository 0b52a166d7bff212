"""
Application Layer - Agent Orchestrator

Entry point for starting and tracking agent executions. The orchestrator:
- maps agent types to registered agent instances
- creates the durable RUNNING record before any work starts
- runs each execution as its own asyncio task
- tracks in-flight executions and rejects a second start for the same id
- lets an operator stop a running execution

Both the CLI and the factory use this service; agents use it to delegate
work to another agent type.
"""

import asyncio
import uuid

import structlog

from autoqa.core.domain.agent import BaseAgent
from autoqa.core.domain.models import (
    AgentConfig,
    AgentResult,
    AgentStatus,
    AgentType,
    ExecutionRecord,
    Goal,
    utcnow,
)
from autoqa.core.interfaces.executions import ExecutionStoreProtocol
from autoqa.core.interfaces.memory import MemoryStoreProtocol

logger = structlog.get_logger()

STOPPED_BY_OPERATOR = "Execution stopped by operator"

DEFAULT_AGENT_CONFIG = AgentConfig(
    max_iterations=20,
    max_cost=5.0,
    approval_timeout_seconds=3600,
)


class ExecutionHandle:
    """Handle to one started execution."""

    def __init__(
        self,
        execution_id: str,
        agent_type: AgentType,
        goal: Goal,
        task: asyncio.Task,
    ):
        self.execution_id = execution_id
        self.agent_type = agent_type
        self.goal = goal
        self._task = task
        self._stopped_result: AgentResult | None = None

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> AgentResult:
        """Wait for the execution to finish and return its result."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return self._stopped_result or AgentResult(
                execution_id=self.execution_id,
                status=AgentStatus.STOPPED,
                goal=self.goal,
                iterations_completed=0,
                error_message=STOPPED_BY_OPERATOR,
                summary="Stopped by operator",
            )


class Orchestrator:
    """
    Starts and tracks agent executions.

    Args:
        execution_store: Durable execution record store
        memory_store: Context snapshot store (cleared on operator stop)
        default_config: Config used when ``start_execution`` gets none
    """

    def __init__(
        self,
        execution_store: ExecutionStoreProtocol,
        memory_store: MemoryStoreProtocol,
        default_config: AgentConfig | None = None,
    ):
        self.execution_store = execution_store
        self.memory_store = memory_store
        self.default_config = default_config or DEFAULT_AGENT_CONFIG
        self._agents: dict[AgentType, BaseAgent] = {}
        self._handles: dict[str, ExecutionHandle] = {}
        self.logger = logger.bind(component="orchestrator")

    def register_agent(self, agent_type: AgentType, agent: BaseAgent) -> None:
        if agent_type in self._agents:
            self.logger.warning("agent_replaced", agent_type=agent_type.value)
        agent.orchestrator = self
        self._agents[agent_type] = agent
        self.logger.debug("agent_registered", agent_type=agent_type.value)

    def available_agent_types(self) -> list[AgentType]:
        return list(self._agents)

    async def start_execution(
        self,
        agent_type: AgentType,
        goal: Goal,
        config: AgentConfig | None = None,
        execution_id: str | None = None,
    ) -> ExecutionHandle:
        """
        Start an execution in the background.

        Args:
            agent_type: Registered agent to run
            goal: Goal to pursue
            config: Limits and approval policy (defaults to ``default_config``)
            execution_id: Caller-chosen id; generated when omitted

        Returns:
            Handle whose ``result()`` awaits the AgentResult

        Raises:
            ValueError: If the agent type is not registered, or an execution
                with this id is in flight or already recorded
        """
        agent = self._agents.get(agent_type)
        if agent is None:
            raise ValueError(f"No agent registered for type: {agent_type.value}")

        execution_id = execution_id or str(uuid.uuid4())
        if execution_id in self._handles:
            raise ValueError(f"Execution already running: {execution_id}")

        config = config or self.default_config
        record = ExecutionRecord(
            execution_id=execution_id,
            agent_type=agent_type,
            status=AgentStatus.RUNNING,
            goal_type=goal.goal_type,
            goal_parameters=dict(goal.parameters),
            triggered_by=goal.triggered_by,
        )
        await self.execution_store.create_execution(record)

        task = asyncio.create_task(
            agent.execute(goal, config, execution_id),
            name=f"execution-{execution_id}",
        )
        handle = ExecutionHandle(execution_id, agent_type, goal, task)
        self._handles[execution_id] = handle
        task.add_done_callback(lambda _: self._handles.pop(execution_id, None))

        self.logger.info(
            "execution_started",
            execution_id=execution_id,
            agent_type=agent_type.value,
            goal_type=goal.goal_type,
            max_iterations=config.max_iterations,
            max_cost=config.max_cost,
        )
        return handle

    async def get_status(self, execution_id: str) -> ExecutionRecord | None:
        return await self.execution_store.find_by_id(execution_id)

    def is_running(self, execution_id: str) -> bool:
        handle = self._handles.get(execution_id)
        return handle is not None and not handle.done()

    def running_executions(self) -> list[str]:
        return [eid for eid, handle in self._handles.items() if not handle.done()]

    async def stop_execution(self, execution_id: str) -> bool:
        """
        Cancel a running execution and mark it STOPPED.

        Returns:
            True if a running execution was stopped
        """
        handle = self._handles.get(execution_id)
        if handle is None or handle.done():
            return False

        handle._task.cancel()
        try:
            await handle._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            self.logger.error("execution_stop_error", execution_id=execution_id, error=str(e))

        record = await self.execution_store.find_by_id(execution_id)
        iterations = 0
        if record is not None:
            if not record.status.is_terminal:
                record.status = AgentStatus.STOPPED
                record.error_message = STOPPED_BY_OPERATOR
                record.completed_at = utcnow()
                await self.execution_store.save(record)
            iterations = record.current_iteration

        await self.memory_store.clear(execution_id)
        handle._stopped_result = AgentResult(
            execution_id=execution_id,
            status=AgentStatus.STOPPED,
            goal=handle.goal,
            iterations_completed=iterations,
            error_message=STOPPED_BY_OPERATOR,
            summary="Stopped by operator",
        )
        self.logger.warning("execution_stopped", execution_id=execution_id)
        return True

    async def shutdown(self, cancel: bool = False) -> None:
        """Wait for (or, with ``cancel``, stop) every in-flight execution."""
        execution_ids = self.running_executions()
        if cancel:
            for execution_id in execution_ids:
                await self.stop_execution(execution_id)
            return

        tasks = [self._handles[eid]._task for eid in execution_ids if eid in self._handles]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.logger.info("orchestrator_shutdown", executions=len(execution_ids))
