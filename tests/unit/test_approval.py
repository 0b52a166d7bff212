"""Unit tests for the approval gates."""

import asyncio

import pytest

from autoqa.core.domain.events import ActionType, Plan
from autoqa.core.domain.models import AgentContext, Goal
from autoqa.infrastructure.approval import AutoApproveGate, PendingApprovalGate

PLAN = Plan(action=ActionType.COMMIT_CHANGES, parameters={"branchName": "b"}, reasoning="Commit")


@pytest.fixture
def context():
    return AgentContext(goal=Goal(goal_type="GENERATE_TEST"), max_iterations=5)


@pytest.mark.asyncio
async def test_auto_gate_approves_and_logs(context):
    gate = AutoApproveGate(decided_by="ci")

    decision = await gate.request("exec-1", PLAN, context, timeout=1)

    assert decision.approved is True
    assert decision.decided_by == "ci"
    assert gate.history == [{"execution_id": "exec-1", "action": "COMMIT_CHANGES", "approved": True}]


@pytest.mark.asyncio
async def test_pending_gate_resolved_by_operator(context):
    """A waiting request returns the operator's decision."""
    gate = PendingApprovalGate()
    task = asyncio.create_task(gate.request("exec-1", PLAN, context, timeout=5))
    await asyncio.sleep(0)

    assert gate.is_pending("exec-1")
    assert gate.pending()[0].to_dict()["action"] == "COMMIT_CHANGES"
    assert gate.resolve("exec-1", approved=False, reason="wrong branch", decided_by="alice") is True

    decision = await task
    assert decision.approved is False
    assert decision.reason == "wrong branch"
    assert decision.decided_by == "alice"
    assert not gate.is_pending("exec-1")


@pytest.mark.asyncio
async def test_pending_gate_times_out_as_rejection(context):
    """No decision within the timeout counts as rejected."""
    gate = PendingApprovalGate()

    decision = await gate.request("exec-1", PLAN, context, timeout=0.01)

    assert decision.approved is False
    assert decision.reason == "No decision within 0.01s"
    assert gate.pending() == []


@pytest.mark.asyncio
async def test_resolve_without_request(context):
    """Resolving an id with nothing pending reports False."""
    assert PendingApprovalGate().resolve("exec-1", approved=True) is False


@pytest.mark.asyncio
async def test_second_request_for_same_execution_rejected(context):
    gate = PendingApprovalGate()
    task = asyncio.create_task(gate.request("exec-1", PLAN, context, timeout=5))
    await asyncio.sleep(0)

    with pytest.raises(ValueError, match="Approval already pending"):
        await gate.request("exec-1", PLAN, context, timeout=5)

    gate.resolve("exec-1", approved=True)
    assert (await task).approved is True
