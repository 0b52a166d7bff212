"""
Core Agent Execution Loop

This module implements the iterate-plan-approve-execute-observe cycle shared
by every concrete agent. The loop owns one execution end to end: it builds
the working context, asks the agent's planning state machine for the next
action, passes it through the approval gate, invokes the tool registry,
records history, charges cost and stops on goal achievement, budget
exhaustion, iteration exhaustion or an unexpected error.

Concrete agents supply:
- ``plan(context)``: a read-only decision function returning the next Plan
- ``is_goal_achieved(context)``: the goal predicate checked before planning
- ``initialize_state(context, config)``: optional scratch-state setup
- ``result_handlers()``: a dispatch table of per-action state transitions

Agent instances keep no per-execution fields; everything an execution needs
lives in its AgentContext, so one instance can serve concurrent executions.
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from autoqa.core.domain.events import ActionResult, ActionType, HistoryEntry, Plan
from autoqa.core.domain.models import (
    AgentConfig,
    AgentContext,
    AgentResult,
    AgentStatus,
    AgentType,
    Goal,
    utcnow,
)
from autoqa.core.interfaces.approval import ApprovalDecision, ApprovalGateProtocol
from autoqa.core.interfaces.executions import ExecutionStoreProtocol
from autoqa.core.interfaces.memory import MemoryStoreProtocol
from autoqa.core.interfaces.tools import ToolRegistryProtocol

ResultHandler = Callable[[AgentContext, Plan, ActionResult], Awaitable[None]]

# Actions worth retrying on transient failure; everything else gets one attempt.
CRITICAL_ACTIONS = frozenset(
    {
        ActionType.GENERATE_TEST_CODE,
        ActionType.FETCH_JIRA_STORY,
        ActionType.CREATE_BRANCH,
        ActionType.COMMIT_CHANGES,
        ActionType.CREATE_PULL_REQUEST,
    }
)
CRITICAL_ACTION_ATTEMPTS = 3

# Tool result keys that describe the call rather than produce work.
RESERVED_OUTPUT_KEYS = frozenset({"success", "error", "cost", "aiCost"})

ABORT_REASON_KEY = "abortReason"
PENDING_APPROVAL_KEY = "pendingApproval"


class BaseAgent:
    """
    Abstract agent running the bounded execution loop.

    Subclasses set ``agent_type`` and implement ``plan`` and
    ``is_goal_achieved``. Actions listed in ``fatal_actions`` end the
    execution FAILED when they fail; all other failures are recorded and
    left to the planner.
    """

    agent_type: AgentType
    fatal_actions: frozenset[ActionType] = frozenset()

    def __init__(
        self,
        memory_store: MemoryStoreProtocol,
        execution_store: ExecutionStoreProtocol,
        tool_registry: ToolRegistryProtocol,
        approval_gate: ApprovalGateProtocol | None = None,
    ):
        """
        Initialize agent with injected dependencies.

        Args:
            memory_store: Context snapshot storage (best-effort resume aid)
            execution_store: Durable execution records and history
            tool_registry: Action lookup and invocation
            approval_gate: Sign-off collaborator; None auto-approves
        """
        self.memory_store = memory_store
        self.execution_store = execution_store
        self.tool_registry = tool_registry
        self.approval_gate = approval_gate
        # Set by the orchestrator on registration; used for delegation.
        self.orchestrator: Any = None
        self.logger = structlog.get_logger().bind(
            component="agent", agent_type=self.agent_type.value
        )
        self._result_handlers: dict[ActionType, ResultHandler] = self.result_handlers()

    # ------------------------------------------------------------------
    # Hooks for concrete agents
    # ------------------------------------------------------------------

    def plan(self, context: AgentContext) -> Plan:
        raise NotImplementedError

    def is_goal_achieved(self, context: AgentContext) -> bool:
        raise NotImplementedError

    async def initialize_state(self, context: AgentContext, config: AgentConfig) -> None:
        """Populate scratch state before the first iteration."""

    def result_handlers(self) -> dict[ActionType, ResultHandler]:
        """Map action types to state-transition handlers run after each action."""
        return {}

    def publish_outputs(self, context: AgentContext) -> None:
        """Add final work products once the goal is achieved."""

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def execute(
        self, goal: Goal, config: AgentConfig, execution_id: str
    ) -> AgentResult:
        """
        Run the execution loop until a terminal outcome.

        Args:
            goal: Goal to pursue
            config: Limits and approval policy
            execution_id: Identifier of the durable execution record

        Returns:
            AgentResult with the terminal status
        """
        context = AgentContext(goal=goal, max_iterations=config.max_iterations)
        self.logger.info(
            "agent_execution_started",
            execution_id=execution_id,
            goal_type=goal.goal_type,
            max_iterations=config.max_iterations,
            max_cost=config.max_cost,
        )

        try:
            await self.initialize_state(context, config)
            await self.execution_store.update_execution(
                execution_id, context.current_iteration, AgentStatus.RUNNING
            )

            while context.current_iteration < context.max_iterations:
                await self._save_context(execution_id, context)

                if self.is_goal_achieved(context):
                    return await self._succeed(execution_id, context)

                plan = self.plan(context)
                self.logger.info(
                    "agent_iteration",
                    execution_id=execution_id,
                    iteration=context.current_iteration,
                    action=plan.action.value,
                    confidence=plan.confidence,
                    reasoning=plan.reasoning,
                )

                approval_required = self.requires_approval(plan, config)
                if approval_required:
                    decision = await self._await_approval(
                        execution_id, plan, context, config
                    )
                    if not decision.approved:
                        return await self._finish(
                            execution_id,
                            context,
                            AgentStatus.STOPPED,
                            error_message=(
                                f"Approval rejected for {plan.action.value}: "
                                f"{decision.reason}"
                            ),
                            summary="Stopped: approval rejected",
                        )

                result = await self._execute_action(plan)
                entry = HistoryEntry(
                    iteration=context.current_iteration,
                    action_type=plan.action,
                    action_input=plan.parameters,
                    action_output=result.output,
                    success=result.success,
                    error_message=result.error_message,
                    duration_ms=result.duration_ms,
                    cost=result.cost,
                    required_approval=approval_required,
                )
                context.add_history(entry)
                await self._save_action(execution_id, entry)

                if result.success:
                    for key, value in result.output.items():
                        context.put_work_product(key, value)

                handler = self._result_handlers.get(plan.action)
                if handler is not None:
                    await handler(context, plan, result)

                context.add_cost(result.cost)

                if not result.success and plan.action in self.fatal_actions:
                    self.logger.error(
                        "critical_action_failed",
                        execution_id=execution_id,
                        action=plan.action.value,
                        error=result.error_message,
                    )
                    return await self._finish(
                        execution_id,
                        context,
                        AgentStatus.FAILED,
                        error_message=(
                            f"Critical action failed: {plan.action.value}: "
                            f"{result.error_message}"
                        ),
                        summary=f"Failed: {plan.action.value} could not be completed",
                    )

                abort_reason = context.state.get(ABORT_REASON_KEY)
                if abort_reason:
                    self.logger.warning(
                        "agent_aborted", execution_id=execution_id, reason=abort_reason
                    )
                    return await self._finish(
                        execution_id,
                        context,
                        AgentStatus.FAILED,
                        error_message=abort_reason,
                        summary="Aborted: manual review required",
                    )

                if context.total_cost > config.max_cost:
                    self.logger.warning(
                        "budget_exceeded",
                        execution_id=execution_id,
                        total_cost=context.total_cost,
                        max_cost=config.max_cost,
                    )
                    return await self._finish(
                        execution_id,
                        context,
                        AgentStatus.BUDGET_EXCEEDED,
                        error_message=(
                            f"Budget exceeded: ${context.total_cost:.2f} > "
                            f"${config.max_cost:.2f}"
                        ),
                        summary="Stopped due to budget limit",
                    )

                context.increment_iteration()
                await self.execution_store.update_execution(
                    execution_id, context.current_iteration, AgentStatus.RUNNING
                )

            # The last pass may have completed the goal.
            if self.is_goal_achieved(context):
                return await self._succeed(execution_id, context)

            self.logger.warning(
                "max_iterations_reached",
                execution_id=execution_id,
                max_iterations=context.max_iterations,
            )
            return await self._finish(
                execution_id,
                context,
                AgentStatus.TIMEOUT,
                error_message=f"Max iterations reached: {context.max_iterations}",
                summary=f"Timeout after {context.max_iterations} iterations",
            )

        except Exception as e:
            self.logger.error(
                "agent_execution_failed",
                execution_id=execution_id,
                iteration=context.current_iteration,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self._fail(execution_id, context, e)

        finally:
            await self._clear_context(execution_id)

    def requires_approval(self, plan: Plan, config: AgentConfig) -> bool:
        """
        Decide whether a plan must pass the approval gate.

        The never-approve list takes precedence over both the plan's own
        flag and the always-approve list.
        """
        if plan.action in config.never_approve:
            return False
        return plan.requires_approval or plan.action in config.always_approve

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _execute_action(self, plan: Plan) -> ActionResult:
        if plan.action.is_meta:
            # Only COMPLETE publishes its parameters as work products.
            output = dict(plan.parameters) if plan.action == ActionType.COMPLETE else {}
            return ActionResult(action_type=plan.action, success=True, output=output)

        started = time.perf_counter()
        try:
            if plan.action in CRITICAL_ACTIONS:
                raw = await self.tool_registry.execute_with_retry(
                    plan.action, plan.parameters, max_attempts=CRITICAL_ACTION_ATTEMPTS
                )
            else:
                raw = await self.tool_registry.execute(plan.action, plan.parameters)
        except Exception as e:
            self.logger.error(
                "action_execution_failed",
                action=plan.action.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = ActionResult.failure(plan.action, str(e))
            result.duration_ms = int((time.perf_counter() - started) * 1000)
            return result

        duration_ms = int((time.perf_counter() - started) * 1000)
        return self._to_action_result(plan.action, raw or {}, duration_ms)

    @staticmethod
    def _to_action_result(
        action: ActionType, raw: dict[str, Any], duration_ms: int
    ) -> ActionResult:
        cost = raw.get("cost", raw.get("aiCost"))
        return ActionResult(
            action_type=action,
            success=bool(raw.get("success", False)),
            output={k: v for k, v in raw.items() if k not in RESERVED_OUTPUT_KEYS},
            error_message=raw.get("error"),
            duration_ms=duration_ms,
            cost=float(cost or 0.0),
        )

    async def _await_approval(
        self,
        execution_id: str,
        plan: Plan,
        context: AgentContext,
        config: AgentConfig,
    ) -> ApprovalDecision:
        self.logger.info(
            "approval_required",
            execution_id=execution_id,
            action=plan.action.value,
        )
        await self.execution_store.update_execution(
            execution_id, context.current_iteration, AgentStatus.WAITING_FOR_APPROVAL
        )
        context.state[PENDING_APPROVAL_KEY] = plan.to_dict()
        await self._save_context(execution_id, context)

        try:
            if self.approval_gate is None:
                self.logger.warning(
                    "approval_auto_granted",
                    execution_id=execution_id,
                    action=plan.action.value,
                )
                decision = ApprovalDecision(approved=True, reason="auto-approved")
            else:
                decision = await self.approval_gate.request(
                    execution_id,
                    plan,
                    context,
                    timeout=config.approval_timeout_seconds,
                )
        finally:
            context.state.pop(PENDING_APPROVAL_KEY, None)

        self.logger.info(
            "approval_decided",
            execution_id=execution_id,
            action=plan.action.value,
            approved=decision.approved,
            reason=decision.reason,
        )
        if decision.approved:
            await self.execution_store.update_execution(
                execution_id, context.current_iteration, AgentStatus.RUNNING
            )
        return decision

    # ------------------------------------------------------------------
    # Results and persistence
    # ------------------------------------------------------------------

    def _build_result(
        self,
        execution_id: str,
        context: AgentContext,
        status: AgentStatus,
        error_message: str | None = None,
        summary: str = "",
    ) -> AgentResult:
        return AgentResult(
            execution_id=execution_id,
            status=status,
            goal=context.goal,
            iterations_completed=context.current_iteration,
            outputs=dict(context.work_products),
            error_message=error_message,
            total_cost=context.total_cost,
            started_at=context.started_at,
            completed_at=utcnow(),
            summary=summary,
        )

    async def _finish(
        self,
        execution_id: str,
        context: AgentContext,
        status: AgentStatus,
        error_message: str | None = None,
        summary: str = "",
    ) -> AgentResult:
        result = self._build_result(execution_id, context, status, error_message, summary)
        await self.execution_store.record_result(execution_id, result)
        await self.execution_store.update_execution(
            execution_id, context.current_iteration, status
        )
        self.logger.info(
            "agent_execution_finished",
            execution_id=execution_id,
            status=status.value,
            iterations=context.current_iteration,
            total_cost=context.total_cost,
        )
        return result

    async def _succeed(self, execution_id: str, context: AgentContext) -> AgentResult:
        self.publish_outputs(context)
        self.logger.info(
            "goal_achieved",
            execution_id=execution_id,
            iteration=context.current_iteration,
        )
        return await self._finish(
            execution_id,
            context,
            AgentStatus.SUCCEEDED,
            summary=(
                f"Goal achieved successfully after {context.current_iteration} iterations"
            ),
        )

    async def _fail(
        self, execution_id: str, context: AgentContext, error: Exception
    ) -> AgentResult:
        message = str(error)
        try:
            await self.execution_store.record_error(execution_id, message)
            await self.execution_store.update_execution(
                execution_id, context.current_iteration, AgentStatus.FAILED
            )
        except Exception as store_error:
            self.logger.error(
                "execution_record_update_failed",
                execution_id=execution_id,
                error=str(store_error),
            )
        return self._build_result(
            execution_id,
            context,
            AgentStatus.FAILED,
            error_message=message,
            summary=f"Failed with error: {message}",
        )

    async def _save_context(self, execution_id: str, context: AgentContext) -> None:
        try:
            saved = await self.memory_store.save(execution_id, context)
        except Exception as e:
            saved = False
            self.logger.warning(
                "context_save_error", execution_id=execution_id, error=str(e)
            )
        if not saved:
            self.logger.warning("context_save_failed", execution_id=execution_id)

    async def _save_action(self, execution_id: str, entry: HistoryEntry) -> None:
        try:
            await self.execution_store.save_action(execution_id, entry)
        except Exception as e:
            self.logger.warning(
                "action_save_failed",
                execution_id=execution_id,
                iteration=entry.iteration,
                error=str(e),
            )

    async def _clear_context(self, execution_id: str) -> None:
        try:
            await self.memory_store.clear(execution_id)
        except Exception as e:
            self.logger.error(
                "context_clear_failed", execution_id=execution_id, error=str(e)
            )
