"""Unit tests for startup reconciliation of orphaned executions."""

from unittest.mock import AsyncMock

import pytest

from autoqa.application.reconciliation import (
    INTERRUPTED_MESSAGE,
    StartupReconciler,
    reconcile_orphaned_executions,
)
from autoqa.core.domain.models import AgentStatus, AgentType, ExecutionRecord


def record(execution_id, status):
    return ExecutionRecord(
        execution_id=execution_id, agent_type=AgentType.FLAKY_TEST_FIXER, status=status, current_iteration=4
    )


@pytest.mark.asyncio
async def test_active_records_are_stopped(execution_store):
    """RUNNING and WAITING_FOR_APPROVAL records become STOPPED; others are untouched."""
    await execution_store.create_execution(record("running", AgentStatus.RUNNING))
    await execution_store.create_execution(record("waiting", AgentStatus.WAITING_FOR_APPROVAL))
    await execution_store.create_execution(record("done", AgentStatus.SUCCEEDED))

    count = await reconcile_orphaned_executions(execution_store)

    assert count == 2
    for execution_id in ("running", "waiting"):
        stopped = await execution_store.find_by_id(execution_id)
        assert stopped.status == AgentStatus.STOPPED
        assert stopped.error_message == INTERRUPTED_MESSAGE
        assert stopped.completed_at is not None
        assert stopped.current_iteration == 4
    done = await execution_store.find_by_id("done")
    assert done.status == AgentStatus.SUCCEEDED
    assert done.error_message is None


@pytest.mark.asyncio
async def test_second_sweep_finds_nothing(execution_store):
    await execution_store.create_execution(record("running", AgentStatus.RUNNING))

    assert await reconcile_orphaned_executions(execution_store) == 1
    assert await reconcile_orphaned_executions(execution_store) == 0


@pytest.mark.asyncio
async def test_one_failing_record_does_not_stop_the_sweep():
    """A save error on one record is logged and the others are still reconciled."""
    store = AsyncMock()
    store.find_all_in_status.return_value = [
        record("a", AgentStatus.RUNNING),
        record("b", AgentStatus.RUNNING),
    ]
    store.save.side_effect = [RuntimeError("disk full"), None]

    assert await reconcile_orphaned_executions(store) == 1
    assert store.save.await_count == 2


@pytest.mark.asyncio
async def test_reconciler_runs_once(execution_store):
    """The startup reconciler only sweeps on its first run."""
    await execution_store.create_execution(record("running", AgentStatus.RUNNING))
    reconciler = StartupReconciler(execution_store)

    assert await reconciler.run() == 1
    await execution_store.create_execution(record("later", AgentStatus.RUNNING))
    assert await reconciler.run() == 0

    assert reconciler.done is True
    assert reconciler.reconciled == 1
    assert (await execution_store.find_by_id("later")).status == AgentStatus.RUNNING
