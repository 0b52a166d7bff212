"""
Execution Store Protocol

Durable store for execution records and their action history. This is the
canonical, crash-surviving view of every execution and is what startup
reconciliation inspects after a restart.
"""

from typing import Protocol

from autoqa.core.domain.events import HistoryEntry
from autoqa.core.domain.models import AgentResult, AgentStatus, ExecutionRecord


class ExecutionStoreProtocol(Protocol):
    """Protocol for durable execution record persistence."""

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Insert a new record. Raises ValueError if the id already exists."""
        ...

    async def update_execution(
        self, execution_id: str, iteration: int, status: AgentStatus
    ) -> ExecutionRecord | None:
        """
        Update iteration and status of a record.

        Sets ``completed_at`` when the status is terminal.

        Returns:
            The updated record, or None if the id is unknown
        """
        ...

    async def record_result(self, execution_id: str, result: AgentResult) -> None:
        """Persist the final result (status, summary, cost, error)."""
        ...

    async def record_error(self, execution_id: str, message: str) -> None:
        """Mark the record FAILED with the given message."""
        ...

    async def save_action(self, execution_id: str, entry: HistoryEntry) -> None:
        """
        Append a history entry. One entry per (execution id, iteration).

        Raises:
            ValueError: If an entry for this iteration already exists
        """
        ...

    async def save(self, record: ExecutionRecord) -> None:
        """
        Overwrite every field of an existing record.

        Raises:
            ValueError: If no record with this id exists
        """
        ...

    async def find_by_id(self, execution_id: str) -> ExecutionRecord | None:
        ...

    async def find_all_in_status(self, *statuses: AgentStatus) -> list[ExecutionRecord]:
        """Return all records whose status is one of ``statuses``."""
        ...

    async def list_executions(self, limit: int = 50) -> list[ExecutionRecord]:
        """Most recently started records first."""
        ...

    async def get_history(self, execution_id: str) -> list[HistoryEntry]:
        """History entries of one execution in iteration order."""
        ...
