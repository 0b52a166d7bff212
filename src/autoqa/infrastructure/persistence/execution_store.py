"""
Execution Record Stores

Adapters implementing ExecutionStoreProtocol:
- InMemoryExecutionStore: dict-backed, for tests and throwaway runs
- SqliteExecutionStore: durable store surviving process restarts

The SQLite adapter opens a short-lived connection per operation and runs
the blocking calls in a worker thread, so it is safe to use from asyncio.
"""

import asyncio
import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from autoqa.core.domain.events import HistoryEntry
from autoqa.core.domain.models import (
    AgentResult,
    AgentStatus,
    ExecutionRecord,
    utcnow,
)

logger = structlog.get_logger()


class InMemoryExecutionStore:
    """Dict-backed execution store."""

    def __init__(self):
        self._records: dict[str, ExecutionRecord] = {}
        self._history: dict[str, dict[int, HistoryEntry]] = {}

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        if record.execution_id in self._records:
            raise ValueError(f"Execution already exists: {record.execution_id}")
        self._records[record.execution_id] = record
        self._history[record.execution_id] = {}
        return record

    async def update_execution(
        self, execution_id: str, iteration: int, status: AgentStatus
    ) -> ExecutionRecord | None:
        record = self._records.get(execution_id)
        if record is None:
            return None
        now = utcnow()
        record.current_iteration = iteration
        record.status = status
        record.updated_at = now
        if status.is_terminal and record.completed_at is None:
            record.completed_at = now
        return record

    async def record_result(self, execution_id: str, result: AgentResult) -> None:
        record = self._records.get(execution_id)
        if record is None:
            return
        record.status = result.status
        record.current_iteration = result.iterations_completed
        record.total_cost = result.total_cost
        record.error_message = result.error_message
        record.result_summary = result.summary
        record.completed_at = result.completed_at
        record.updated_at = utcnow()

    async def record_error(self, execution_id: str, message: str) -> None:
        record = self._records.get(execution_id)
        if record is None:
            return
        now = utcnow()
        record.status = AgentStatus.FAILED
        record.error_message = message
        record.completed_at = record.completed_at or now
        record.updated_at = now

    async def save_action(self, execution_id: str, entry: HistoryEntry) -> None:
        entries = self._history.setdefault(execution_id, {})
        if entry.iteration in entries:
            raise ValueError(
                f"History entry already exists: {execution_id} iteration {entry.iteration}"
            )
        entries[entry.iteration] = entry

    async def save(self, record: ExecutionRecord) -> None:
        if record.execution_id not in self._records:
            raise ValueError(f"Execution not found: {record.execution_id}")
        record.updated_at = utcnow()
        self._records[record.execution_id] = record

    async def find_by_id(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    async def find_all_in_status(self, *statuses: AgentStatus) -> list[ExecutionRecord]:
        return [r for r in self._records.values() if r.status in statuses]

    async def list_executions(self, limit: int = 50) -> list[ExecutionRecord]:
        records = sorted(self._records.values(), key=lambda r: r.started_at, reverse=True)
        return records[:limit]

    async def get_history(self, execution_id: str) -> list[HistoryEntry]:
        entries = self._history.get(execution_id, {})
        return [entries[i] for i in sorted(entries)]


@contextmanager
def _connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a short-lived connection, committing on success."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_path: str) -> None:
    """Initialize database schema if it does not exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    with _connect(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                agent_type TEXT NOT NULL,
                status TEXT NOT NULL,
                current_iteration INTEGER NOT NULL DEFAULT 0,
                goal_type TEXT,
                goal_parameters TEXT,
                triggered_by TEXT,
                total_cost REAL NOT NULL DEFAULT 0,
                error_message TEXT,
                result_summary TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_executions_status ON executions(status);

            CREATE TABLE IF NOT EXISTS execution_history (
                execution_id TEXT NOT NULL,
                iteration INTEGER NOT NULL,
                action_type TEXT NOT NULL,
                action_input TEXT,
                action_output TEXT,
                success INTEGER NOT NULL,
                error_message TEXT,
                duration_ms INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                required_approval INTEGER NOT NULL DEFAULT 0,
                timestamp TEXT NOT NULL,
                PRIMARY KEY (execution_id, iteration),
                FOREIGN KEY(execution_id) REFERENCES executions(execution_id) ON DELETE CASCADE
            );
            """
        )


def _row_to_record(row: sqlite3.Row) -> ExecutionRecord:
    data: dict[str, Any] = dict(row)
    data["goal_parameters"] = json.loads(data["goal_parameters"] or "{}")
    return ExecutionRecord.from_dict(data)


def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry.from_dict(
        {
            "iteration": row["iteration"],
            "action_type": row["action_type"],
            "action_input": json.loads(row["action_input"] or "{}"),
            "action_output": json.loads(row["action_output"] or "{}"),
            "success": bool(row["success"]),
            "error_message": row["error_message"],
            "duration_ms": row["duration_ms"],
            "cost": row["cost"],
            "required_approval": bool(row["required_approval"]),
            "timestamp": row["timestamp"],
        }
    )


class SqliteExecutionStore:
    """
    SQLite-backed execution store.

    Two tables: ``executions`` holds one row per execution record and
    ``execution_history`` holds one row per (execution_id, iteration).

    Args:
        db_path: Path of the database file (parent directories are created)
    """

    def __init__(self, db_path: str = ".autoqa/executions.db"):
        self.db_path = db_path
        init_db(db_path)
        self.logger = logger.bind(component="sqlite_execution_store", db_path=db_path)

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _insert(self, record: ExecutionRecord) -> None:
        data = record.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO executions(
                        execution_id, agent_type, status, current_iteration,
                        goal_type, goal_parameters, triggered_by, total_cost,
                        error_message, result_summary, started_at, completed_at,
                        updated_at
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        data["execution_id"],
                        data["agent_type"],
                        data["status"],
                        data["current_iteration"],
                        data["goal_type"],
                        json.dumps(data["goal_parameters"], default=str),
                        data["triggered_by"],
                        data["total_cost"],
                        data["error_message"],
                        data["result_summary"],
                        data["started_at"],
                        data["completed_at"],
                        data["updated_at"],
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Execution already exists: {record.execution_id}") from e

    def _replace(self, record: ExecutionRecord) -> None:
        # UPDATE in place; a delete-and-insert would cascade to the history rows.
        data = record.to_dict()
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE executions
                SET agent_type = ?, status = ?, current_iteration = ?,
                    goal_type = ?, goal_parameters = ?, triggered_by = ?,
                    total_cost = ?, error_message = ?, result_summary = ?,
                    started_at = ?, completed_at = ?, updated_at = ?
                WHERE execution_id = ?
                """,
                (
                    data["agent_type"],
                    data["status"],
                    data["current_iteration"],
                    data["goal_type"],
                    json.dumps(data["goal_parameters"], default=str),
                    data["triggered_by"],
                    data["total_cost"],
                    data["error_message"],
                    data["result_summary"],
                    data["started_at"],
                    data["completed_at"],
                    data["updated_at"],
                    data["execution_id"],
                ),
            )
            if cur.rowcount == 0:
                raise ValueError(f"Execution not found: {record.execution_id}")

    def _select_one(self, execution_id: str) -> ExecutionRecord | None:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM executions WHERE execution_id = ? LIMIT 1",
                (execution_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def _update(self, execution_id: str, iteration: int, status: AgentStatus) -> ExecutionRecord | None:
        now = utcnow().isoformat()
        completed_at = now if status.is_terminal else None
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                """
                UPDATE executions
                SET current_iteration = ?, status = ?, updated_at = ?,
                    completed_at = COALESCE(completed_at, ?)
                WHERE execution_id = ?
                """,
                (iteration, status.value, now, completed_at, execution_id),
            )
            if cur.rowcount == 0:
                return None
        return self._select_one(execution_id)

    def _result(self, execution_id: str, result: AgentResult) -> None:
        with _connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE executions
                SET status = ?, current_iteration = ?, total_cost = ?,
                    error_message = ?, result_summary = ?, completed_at = ?,
                    updated_at = ?
                WHERE execution_id = ?
                """,
                (
                    result.status.value,
                    result.iterations_completed,
                    result.total_cost,
                    result.error_message,
                    result.summary,
                    result.completed_at.isoformat(),
                    utcnow().isoformat(),
                    execution_id,
                ),
            )

    def _error(self, execution_id: str, message: str) -> None:
        now = utcnow().isoformat()
        with _connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE executions
                SET status = ?, error_message = ?, updated_at = ?,
                    completed_at = COALESCE(completed_at, ?)
                WHERE execution_id = ?
                """,
                (AgentStatus.FAILED.value, message, now, now, execution_id),
            )

    def _insert_action(self, execution_id: str, entry: HistoryEntry) -> None:
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO execution_history(
                        execution_id, iteration, action_type, action_input,
                        action_output, success, error_message, duration_ms, cost,
                        required_approval, timestamp
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        execution_id,
                        entry.iteration,
                        entry.action_type.value,
                        json.dumps(entry.action_input, default=str),
                        json.dumps(entry.action_output, default=str),
                        int(entry.success),
                        entry.error_message,
                        entry.duration_ms,
                        entry.cost,
                        int(entry.required_approval),
                        entry.timestamp.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(
                f"History entry already exists: {execution_id} iteration {entry.iteration}"
            ) from e

    def _select_status(self, statuses: tuple[AgentStatus, ...]) -> list[ExecutionRecord]:
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM executions WHERE status IN ({placeholders}) ORDER BY started_at",
                tuple(s.value for s in statuses),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def _select_recent(self, limit: int) -> list[ExecutionRecord]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM executions ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def _select_history(self, execution_id: str) -> list[HistoryEntry]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM execution_history WHERE execution_id = ? ORDER BY iteration ASC",
                (execution_id,),
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        await asyncio.to_thread(self._insert, record)
        self.logger.debug(
            "execution_created",
            execution_id=record.execution_id,
            agent_type=record.agent_type.value,
        )
        return record

    async def update_execution(
        self, execution_id: str, iteration: int, status: AgentStatus
    ) -> ExecutionRecord | None:
        record = await asyncio.to_thread(self._update, execution_id, iteration, status)
        if record is None:
            self.logger.warning("execution_not_found", execution_id=execution_id)
        return record

    async def record_result(self, execution_id: str, result: AgentResult) -> None:
        await asyncio.to_thread(self._result, execution_id, result)

    async def record_error(self, execution_id: str, message: str) -> None:
        await asyncio.to_thread(self._error, execution_id, message)

    async def save_action(self, execution_id: str, entry: HistoryEntry) -> None:
        await asyncio.to_thread(self._insert_action, execution_id, entry)

    async def save(self, record: ExecutionRecord) -> None:
        record.updated_at = utcnow()
        await asyncio.to_thread(self._replace, record)

    async def find_by_id(self, execution_id: str) -> ExecutionRecord | None:
        return await asyncio.to_thread(self._select_one, execution_id)

    async def find_all_in_status(self, *statuses: AgentStatus) -> list[ExecutionRecord]:
        return await asyncio.to_thread(self._select_status, statuses)

    async def list_executions(self, limit: int = 50) -> list[ExecutionRecord]:
        return await asyncio.to_thread(self._select_recent, limit)

    async def get_history(self, execution_id: str) -> list[HistoryEntry]:
        return await asyncio.to_thread(self._select_history, execution_id)


