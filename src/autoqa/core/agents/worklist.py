"""
Work-List Agent Base

Shared bookkeeping for agents that process a list of stored tests one at a
time (self-healing, flaky-test fixing). The current position in the list,
the test being worked on and its original content all live in the
context's scratch state under a per-agent prefix.

Advancing to the next test restores the original content of an unfixed
test, resets per-test state and moves the sub-task markers so history
scoped "since this test began" starts empty.
"""

from typing import Any

from autoqa.core.domain.agent import BaseAgent, ResultHandler
from autoqa.core.domain.events import ActionResult, ActionType, Plan
from autoqa.core.domain.models import AgentConfig, AgentContext
from autoqa.core.domain.planning import FIX_PHASE_MARKER, TEST_START_MARKER
from autoqa.core.interfaces.approval import ApprovalGateProtocol
from autoqa.core.interfaces.catalog import TestCatalogProtocol
from autoqa.core.interfaces.executions import ExecutionStoreProtocol
from autoqa.core.interfaces.memory import MemoryStoreProtocol
from autoqa.core.interfaces.tools import ToolRegistryProtocol


class TestWorkListAgent(BaseAgent):
    """Base class for agents iterating over stored tests."""

    __test__ = False

    state_prefix: str = ""
    requested_by: str = ""

    def __init__(
        self,
        memory_store: MemoryStoreProtocol,
        execution_store: ExecutionStoreProtocol,
        tool_registry: ToolRegistryProtocol,
        test_catalog: TestCatalogProtocol,
        approval_gate: ApprovalGateProtocol | None = None,
    ):
        super().__init__(memory_store, execution_store, tool_registry, approval_gate)
        self.test_catalog = test_catalog

    # ------------------------------------------------------------------
    # Scratch state accessors
    # ------------------------------------------------------------------

    def key(self, name: str) -> str:
        return f"{self.state_prefix}{name}"

    def get(self, context: AgentContext, name: str, default: Any = None) -> Any:
        value = context.state.get(self.key(name))
        return default if value is None else value

    def put(self, context: AgentContext, name: str, value: Any) -> None:
        context.state[self.key(name)] = value

    def test_ids(self, context: AgentContext) -> list[str]:
        return self.get(context, "testIds", [])

    def test_index(self, context: AgentContext) -> int:
        return self.get(context, "currentTestIndex", 0)

    def current_test(self, context: AgentContext) -> dict[str, Any]:
        return self.get(context, "currentTest", {})

    def original_content(self, context: AgentContext) -> str:
        return self.get(context, "originalContent", "")

    def fix_verified(self, context: AgentContext) -> bool:
        return bool(self.get(context, "fixVerified", False))

    def all_processed(self, context: AgentContext) -> bool:
        return self.test_index(context) >= len(self.test_ids(context))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def resolve_test_ids(self, context: AgentContext) -> list[str]:
        """Tests to process, from the goal's ``testIds`` or ``testId``."""
        params = context.goal.parameters
        if params.get("testIds"):
            return [str(t) for t in params["testIds"]]
        if params.get("testId"):
            return [str(params["testId"])]
        return []

    def reset_test_state(self, context: AgentContext) -> None:
        """Clear per-test scratch state. Subclasses extend this."""
        self.put(context, "fixVerified", False)

    async def initialize_state(self, context: AgentContext, config: AgentConfig) -> None:
        test_ids = await self.resolve_test_ids(context)
        if not test_ids:
            raise ValueError("No tests to process")
        self.put(context, "testIds", test_ids)
        self.put(context, "currentTestIndex", 0)
        self.put(context, "successfullyFixed", 0)
        context.state[TEST_START_MARKER] = 0
        context.state[FIX_PHASE_MARKER] = 0
        self.reset_test_state(context)
        await self._load_current_test(context)
        self.logger.info("work_list_initialized", tests=len(test_ids))

    async def _load_current_test(self, context: AgentContext) -> None:
        if self.all_processed(context):
            self.put(context, "currentTest", {})
            self.put(context, "originalContent", "")
            return

        test_id = self.test_ids(context)[self.test_index(context)]
        test = await self.test_catalog.get_test(test_id)
        if test is None:
            raise ValueError(f"Test not found: {test_id}")
        self.put(context, "currentTest", test.to_dict())
        self.put(context, "originalContent", test.content)

    async def advance(self, context: AgentContext) -> None:
        """Finish the current test and move to the next one."""
        test = self.current_test(context)
        verified = self.fix_verified(context)

        if not verified and test and self.original_content(context):
            restored = await self.test_catalog.update_content(
                test["test_id"], self.original_content(context)
            )
            self.logger.info(
                "test_content_restored", test_id=test["test_id"], restored=restored
            )

        fixed = self.get(context, "successfullyFixed", 0) + (1 if verified else 0)
        self.put(context, "successfullyFixed", fixed)
        self.logger.info(
            "test_processed",
            test_id=test.get("test_id"),
            fixed=verified,
            successfully_fixed=fixed,
            total=len(self.test_ids(context)),
        )

        self.put(context, "currentTestIndex", self.test_index(context) + 1)
        self.reset_test_state(context)
        next_iteration = context.current_iteration + 1
        context.state[TEST_START_MARKER] = next_iteration
        context.state[FIX_PHASE_MARKER] = next_iteration
        await self._load_current_test(context)

    # ------------------------------------------------------------------
    # Shared handlers
    # ------------------------------------------------------------------

    def is_goal_achieved(self, context: AgentContext) -> bool:
        return bool(self.test_ids(context)) and self.all_processed(context)

    def publish_outputs(self, context: AgentContext) -> None:
        context.put_work_product("successfullyFixed", self.get(context, "successfullyFixed", 0))
        context.put_work_product("totalTests", len(self.test_ids(context)))

    def result_handlers(self) -> dict[ActionType, ResultHandler]:
        return {
            ActionType.REQUEST_APPROVAL: self._on_request_approval,
            ActionType.CREATE_PULL_REQUEST: self._on_pull_request,
            ActionType.FINALIZE: self._on_finalize,
        }

    async def _on_request_approval(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        if result.success and plan.parameters.get("manualReview"):
            await self.advance(context)

    async def _on_pull_request(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        if result.success:
            await self.advance(context)

    async def _on_finalize(
        self, context: AgentContext, plan: Plan, result: ActionResult
    ) -> None:
        await self.advance(context)

    # ------------------------------------------------------------------
    # Plan builders shared by subclasses
    # ------------------------------------------------------------------

    def story_key(self, context: AgentContext, prefix: str) -> str:
        return f"{prefix}-{str(self.current_test(context).get('test_id', ''))[:8]}"

    def complete_plan(self, context: AgentContext, **parameters: Any) -> Plan:
        return Plan(
            action=ActionType.COMPLETE,
            parameters=parameters,
            reasoning="All tests processed",
        )

    def finalize_plan(self) -> Plan:
        return Plan(
            action=ActionType.FINALIZE,
            reasoning="Work on current test finished; moving to next test",
        )
