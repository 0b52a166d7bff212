"""
Approval Gates

- AutoApproveGate: approves every request (dry runs, tests, trusted setups)
- PendingApprovalGate: suspends the requesting execution until an operator
  resolves it in-process; an unanswered request is rejected on timeout
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from autoqa.core.domain.events import Plan
from autoqa.core.domain.models import AgentContext, utcnow
from autoqa.core.interfaces.approval import ApprovalDecision


class AutoApproveGate:
    """Gate that approves everything and keeps a log of what it approved."""

    def __init__(self, decided_by: str = "auto"):
        self.decided_by = decided_by
        self.history: list[dict[str, Any]] = []
        self.logger = structlog.get_logger().bind(component="auto_approve_gate")

    async def request(
        self,
        execution_id: str,
        plan: Plan,
        context: AgentContext,
        timeout: float,
    ) -> ApprovalDecision:
        self.history.append(
            {"execution_id": execution_id, "action": plan.action.value, "approved": True}
        )
        self.logger.info("approval_auto_granted", execution_id=execution_id, action=plan.action.value)
        return ApprovalDecision(approved=True, reason="auto-approved", decided_by=self.decided_by)


@dataclass
class PendingApproval:
    """An approval request waiting for an operator decision."""

    execution_id: str
    plan: Plan
    requested_at: datetime = field(default_factory=utcnow)
    future: asyncio.Future | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "action": self.plan.action.value,
            "parameters": self.plan.parameters,
            "reasoning": self.plan.reasoning,
            "requested_at": self.requested_at.isoformat(),
        }


class PendingApprovalGate:
    """
    In-process approval gate.

    ``request`` parks the caller on a future keyed by execution id. An
    operator (CLI, API handler, test) calls ``resolve`` to approve or reject.
    If nobody answers within the timeout the request counts as rejected.
    """

    def __init__(self):
        self._pending: dict[str, PendingApproval] = {}
        self.logger = structlog.get_logger().bind(component="pending_approval_gate")

    def pending(self) -> list[PendingApproval]:
        return list(self._pending.values())

    def is_pending(self, execution_id: str) -> bool:
        return execution_id in self._pending

    async def request(
        self,
        execution_id: str,
        plan: Plan,
        context: AgentContext,
        timeout: float,
    ) -> ApprovalDecision:
        if execution_id in self._pending:
            raise ValueError(f"Approval already pending for execution: {execution_id}")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[execution_id] = PendingApproval(
            execution_id=execution_id, plan=plan, future=future
        )
        self.logger.info(
            "approval_requested",
            execution_id=execution_id,
            action=plan.action.value,
            timeout=timeout,
        )

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                "approval_timed_out", execution_id=execution_id, action=plan.action.value
            )
            return ApprovalDecision(
                approved=False, reason=f"No decision within {timeout:g}s"
            )
        finally:
            self._pending.pop(execution_id, None)

    def resolve(
        self,
        execution_id: str,
        approved: bool,
        reason: str = "",
        decided_by: str | None = None,
    ) -> bool:
        """
        Answer a pending request.

        Returns:
            True if a pending request was resolved, False if none was waiting
        """
        pending = self._pending.get(execution_id)
        if pending is None or pending.future is None or pending.future.done():
            self.logger.warning("approval_not_pending", execution_id=execution_id)
            return False

        pending.future.set_result(
            ApprovalDecision(approved=approved, reason=reason, decided_by=decided_by)
        )
        self.logger.info(
            "approval_resolved",
            execution_id=execution_id,
            approved=approved,
            decided_by=decided_by,
        )
        return True
