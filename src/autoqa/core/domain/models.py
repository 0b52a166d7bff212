"""
Core Domain Models

This module defines the data models shared by the execution loop, the
planning state machines, the orchestrator and the persistence adapters:
goals, per-execution configuration, the mutable working context, the
durable execution record and the final result.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from autoqa.core.domain.events import ActionType, HistoryEntry


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class AgentStatus(str, Enum):
    """Lifecycle status of one execution."""

    RUNNING = "RUNNING"
    WAITING_FOR_APPROVAL = "WAITING_FOR_APPROVAL"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self not in (AgentStatus.RUNNING, AgentStatus.WAITING_FOR_APPROVAL)


ACTIVE_STATUSES = (AgentStatus.RUNNING, AgentStatus.WAITING_FOR_APPROVAL)


class AgentType(str, Enum):
    """Concrete agent implementations known to the orchestrator."""

    PLAYWRIGHT_TEST_GENERATOR = "PLAYWRIGHT_TEST_GENERATOR"
    SELF_HEALING_TEST_FIXER = "SELF_HEALING_TEST_FIXER"
    FLAKY_TEST_FIXER = "FLAKY_TEST_FIXER"


@dataclass(frozen=True)
class Goal:
    """
    What an execution is trying to accomplish.

    Created once by the caller and never mutated.

    Attributes:
        goal_type: Kind of goal (e.g. GENERATE_TEST, FIX_BROKEN_LOCATOR)
        parameters: Free-form inputs such as a story key or target test id
        success_criteria: Human-readable description of "done"
        triggered_by: Who or what started the execution
        goal_id: Optional caller-supplied identifier
    """

    goal_type: str
    parameters: dict[str, Any] = field(default_factory=dict)
    success_criteria: str | None = None
    triggered_by: str | None = None
    goal_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal_type": self.goal_type,
            "parameters": self.parameters,
            "success_criteria": self.success_criteria,
            "triggered_by": self.triggered_by,
            "goal_id": self.goal_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Goal":
        return cls(
            goal_type=data["goal_type"],
            parameters=dict(data.get("parameters") or {}),
            success_criteria=data.get("success_criteria"),
            triggered_by=data.get("triggered_by"),
            goal_id=data.get("goal_id"),
        )


DEFAULT_ALWAYS_APPROVE = frozenset(
    {
        ActionType.COMMIT_CHANGES,
        ActionType.CREATE_PULL_REQUEST,
        ActionType.DELETE_FILE,
        ActionType.MERGE_PR,
    }
)

DEFAULT_NEVER_APPROVE = frozenset(
    {
        ActionType.FETCH_JIRA_STORY,
        ActionType.QUERY_ELEMENT_REGISTRY,
        ActionType.READ_FILE,
    }
)


@dataclass(frozen=True)
class AgentConfig:
    """
    Immutable per-execution limits and approval policy.

    Attributes:
        max_iterations: Upper bound on loop passes before TIMEOUT
        max_cost: Maximum cumulative cost before BUDGET_EXCEEDED
        always_approve: Actions that always pass through the approval gate
        never_approve: Actions that never need approval (wins over always_approve)
        approval_timeout_seconds: How long a gated action may wait for a decision
        custom: Agent-specific tuning values
    """

    max_iterations: int = 5
    max_cost: float = 1.0
    always_approve: frozenset[ActionType] = DEFAULT_ALWAYS_APPROVE
    never_approve: frozenset[ActionType] = DEFAULT_NEVER_APPROVE
    approval_timeout_seconds: float = 3600
    custom: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AgentConfig":
        """Build a config from a YAML/CLI mapping, keeping defaults for absent keys."""
        data = data or {}
        kwargs: dict[str, Any] = {}
        if "max_iterations" in data:
            kwargs["max_iterations"] = int(data["max_iterations"])
        if "max_cost" in data:
            kwargs["max_cost"] = float(data["max_cost"])
        if "always_approve" in data:
            kwargs["always_approve"] = frozenset(
                ActionType(a) for a in data["always_approve"] or []
            )
        if "never_approve" in data:
            kwargs["never_approve"] = frozenset(
                ActionType(a) for a in data["never_approve"] or []
            )
        if "approval_timeout_seconds" in data:
            kwargs["approval_timeout_seconds"] = float(data["approval_timeout_seconds"])
        if "custom" in data:
            kwargs["custom"] = dict(data["custom"] or {})
        return cls(**kwargs)


@dataclass
class AgentContext:
    """
    Mutable working state of one execution.

    Owned by the single loop iteration currently running. A JSON snapshot
    is written to the memory store as a resume aid; it is rebuilt from the
    goal and config at execution start.

    Attributes:
        goal: The goal being pursued
        max_iterations: Copied from the config
        current_iteration: Number of completed loop passes
        history: Ordered, append-only action history
        work_products: Named outputs of successful actions
        state: Agent-local scratch state (cursors, markers, counters)
        total_cost: Cumulative cost charged so far
        started_at: When the context was created
        last_updated_at: When the context last changed
    """

    goal: Goal
    max_iterations: int
    current_iteration: int = 0
    history: list[HistoryEntry] = field(default_factory=list)
    work_products: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    total_cost: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)

    def add_history(self, entry: HistoryEntry) -> None:
        self.history.append(entry)
        self.touch()

    def put_work_product(self, key: str, value: Any) -> None:
        self.work_products[key] = value
        self.touch()

    def add_cost(self, cost: float) -> None:
        self.total_cost += cost
        self.touch()

    def increment_iteration(self) -> None:
        self.current_iteration += 1
        self.touch()

    def touch(self) -> None:
        self.last_updated_at = utcnow()

    @property
    def max_iterations_reached(self) -> bool:
        return self.current_iteration >= self.max_iterations

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal": self.goal.to_dict(),
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "history": [entry.to_dict() for entry in self.history],
            "work_products": self.work_products,
            "state": self.state,
            "total_cost": self.total_cost,
            "started_at": self.started_at.isoformat(),
            "last_updated_at": self.last_updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentContext":
        return cls(
            goal=Goal.from_dict(data["goal"]),
            max_iterations=int(data["max_iterations"]),
            current_iteration=int(data.get("current_iteration", 0)),
            history=[HistoryEntry.from_dict(e) for e in data.get("history", [])],
            work_products=dict(data.get("work_products") or {}),
            state=dict(data.get("state") or {}),
            total_cost=float(data.get("total_cost") or 0.0),
            started_at=_parse_datetime(data.get("started_at")) or utcnow(),
            last_updated_at=_parse_datetime(data.get("last_updated_at")) or utcnow(),
        )


@dataclass
class AgentResult:
    """
    Final outcome of one execution.

    Attributes:
        execution_id: Execution this result belongs to
        status: Terminal status
        goal: Goal that was pursued
        iterations_completed: Loop passes completed before stopping
        outputs: Work products accumulated during the run
        error_message: Reason for a non-successful outcome
        total_cost: Cumulative cost charged
        started_at: When the execution started
        completed_at: When the execution ended
        summary: Human-readable one-line summary
    """

    execution_id: str
    status: AgentStatus
    goal: Goal
    iterations_completed: int
    outputs: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    total_cost: float = 0.0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime = field(default_factory=utcnow)
    summary: str = ""

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class ExecutionRecord:
    """
    Durable, crash-surviving status record of one execution.

    This is the single source of truth for whether an execution is still
    alive across process restarts.

    Attributes:
        execution_id: Unique execution identifier
        agent_type: Agent running the execution
        status: Current lifecycle status
        current_iteration: Iteration count, kept in sync with the context
        goal_type: Goal type, for listing and filtering
        goal_parameters: Goal parameters, for operator diagnosis
        triggered_by: Who or what started the execution
        total_cost: Cumulative cost recorded with the final result
        error_message: Error captured on failure, stop or interruption
        result_summary: Summary recorded with the final result
        started_at: When the record was created
        completed_at: Set once the status becomes terminal
        updated_at: When the record last changed
    """

    execution_id: str
    agent_type: AgentType
    status: AgentStatus = AgentStatus.RUNNING
    current_iteration: int = 0
    goal_type: str | None = None
    goal_parameters: dict[str, Any] = field(default_factory=dict)
    triggered_by: str | None = None
    total_cost: float = 0.0
    error_message: str | None = None
    result_summary: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "agent_type": self.agent_type.value,
            "status": self.status.value,
            "current_iteration": self.current_iteration,
            "goal_type": self.goal_type,
            "goal_parameters": self.goal_parameters,
            "triggered_by": self.triggered_by,
            "total_cost": self.total_cost,
            "error_message": self.error_message,
            "result_summary": self.result_summary,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionRecord":
        return cls(
            execution_id=data["execution_id"],
            agent_type=AgentType(data["agent_type"]),
            status=AgentStatus(data["status"]),
            current_iteration=int(data.get("current_iteration") or 0),
            goal_type=data.get("goal_type"),
            goal_parameters=dict(data.get("goal_parameters") or {}),
            triggered_by=data.get("triggered_by"),
            total_cost=float(data.get("total_cost") or 0.0),
            error_message=data.get("error_message"),
            result_summary=data.get("result_summary"),
            started_at=_parse_datetime(data.get("started_at")) or utcnow(),
            completed_at=_parse_datetime(data.get("completed_at")),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
        )
