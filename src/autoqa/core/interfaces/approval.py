"""
Approval Gate Protocol

Checkpoint requiring sign-off before a sensitive action proceeds.
"""

from dataclasses import dataclass
from typing import Protocol

from autoqa.core.domain.events import Plan
from autoqa.core.domain.models import AgentContext


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of an approval request."""

    approved: bool
    reason: str = ""
    decided_by: str | None = None


class ApprovalGateProtocol(Protocol):
    async def request(
        self,
        execution_id: str,
        plan: Plan,
        context: AgentContext,
        timeout: float,
    ) -> ApprovalDecision:
        """
        Ask for a decision on a gated action.

        Args:
            execution_id: Execution waiting for the decision
            plan: The action awaiting sign-off
            context: Current working context (read-only)
            timeout: Seconds to wait before treating the request as rejected

        Returns:
            The decision
        """
        ...
