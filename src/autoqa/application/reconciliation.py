"""
Application Layer - Startup Reconciliation

After a crash or restart no execution loop survives, yet the durable
store may still list executions as RUNNING or WAITING_FOR_APPROVAL. The
sweep here marks every such orphan STOPPED so operators see the truth and
can trigger a new execution.
"""

import structlog

from autoqa.core.domain.models import ACTIVE_STATUSES, AgentStatus, utcnow
from autoqa.core.interfaces.executions import ExecutionStoreProtocol

logger = structlog.get_logger().bind(component="startup_reconciliation")

INTERRUPTED_MESSAGE = (
    "Execution interrupted: process restarted while agent was running. "
    "Trigger a new execution to retry."
)


async def reconcile_orphaned_executions(store: ExecutionStoreProtocol) -> int:
    """
    Mark every active execution record STOPPED.

    Must only run before any execution is started in this process; all
    active records are assumed orphaned.

    Args:
        store: Durable execution store to sweep

    Returns:
        Number of records that were stopped
    """
    orphans = await store.find_all_in_status(*ACTIVE_STATUSES)
    if not orphans:
        logger.info("no_orphaned_executions")
        return 0

    stopped = 0
    for record in orphans:
        try:
            previous = record.status
            record.status = AgentStatus.STOPPED
            record.error_message = INTERRUPTED_MESSAGE
            record.completed_at = utcnow()
            await store.save(record)
            stopped += 1
            logger.info(
                "orphaned_execution_stopped",
                execution_id=record.execution_id,
                agent_type=record.agent_type.value,
                previous_status=previous.value,
                iteration=record.current_iteration,
            )
        except Exception as e:
            logger.error(
                "orphan_reconciliation_failed",
                execution_id=record.execution_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    logger.warning("orphaned_executions_reconciled", count=stopped, found=len(orphans))
    return stopped


class StartupReconciler:
    """Runs the orphan sweep at most once per process."""

    def __init__(self, store: ExecutionStoreProtocol):
        self.store = store
        self._done = False
        self.reconciled = 0

    @property
    def done(self) -> bool:
        return self._done

    async def run(self) -> int:
        if self._done:
            return 0
        self._done = True
        self.reconciled = await reconcile_orphaned_executions(self.store)
        return self.reconciled
