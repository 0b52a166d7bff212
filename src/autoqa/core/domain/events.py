"""
Domain Events for Agent Execution

This module defines the immutable facts that occur during one agent
iteration:
- Plan: the next action chosen by a planning state machine
- ActionResult: the outcome of invoking one action
- HistoryEntry: the append-only record of an attempted action

Planning logic scans history entries in order, so their ordering is
significant and they are never edited after being appended.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    """Type of action an agent can plan and execute."""

    # JIRA
    FETCH_JIRA_STORY = "FETCH_JIRA_STORY"
    UPDATE_JIRA_STATUS = "UPDATE_JIRA_STATUS"
    ADD_JIRA_COMMENT = "ADD_JIRA_COMMENT"

    # AI
    GENERATE_TEST_CODE = "GENERATE_TEST_CODE"
    ANALYZE_FAILURE = "ANALYZE_FAILURE"
    SUGGEST_FIX = "SUGGEST_FIX"
    PLAN_NEXT_STEP = "PLAN_NEXT_STEP"
    DISCOVER_LOCATOR = "DISCOVER_LOCATOR"
    EXTRACT_BROKEN_LOCATOR = "EXTRACT_BROKEN_LOCATOR"

    # Test execution
    EXECUTE_TEST = "EXECUTE_TEST"
    VALIDATE_TEST = "VALIDATE_TEST"
    ANALYZE_TEST_STABILITY = "ANALYZE_TEST_STABILITY"

    # Files
    READ_FILE = "READ_FILE"
    WRITE_FILE = "WRITE_FILE"
    DELETE_FILE = "DELETE_FILE"
    MODIFY_FILE = "MODIFY_FILE"

    # Git
    CREATE_BRANCH = "CREATE_BRANCH"
    COMMIT_CHANGES = "COMMIT_CHANGES"
    CREATE_PULL_REQUEST = "CREATE_PULL_REQUEST"
    MERGE_PR = "MERGE_PR"

    # Registries
    QUERY_ELEMENT_REGISTRY = "QUERY_ELEMENT_REGISTRY"
    QUERY_PAGE_OBJECT_REGISTRY = "QUERY_PAGE_OBJECT_REGISTRY"
    UPDATE_ELEMENT_REGISTRY = "UPDATE_ELEMENT_REGISTRY"

    # Approval
    REQUEST_APPROVAL = "REQUEST_APPROVAL"
    WAIT_FOR_APPROVAL = "WAIT_FOR_APPROVAL"

    # Analytics
    QUERY_TEST_ANALYTICS = "QUERY_TEST_ANALYTICS"
    GENERATE_REPORT = "GENERATE_REPORT"

    # Control flow
    INITIALIZE = "INITIALIZE"
    FINALIZE = "FINALIZE"
    ABORT = "ABORT"
    COMPLETE = "COMPLETE"
    RETRY_ACTION = "RETRY_ACTION"
    DELEGATE = "DELEGATE"

    @property
    def category(self) -> str:
        """Coarse grouping used by the tool catalog."""
        return _CATEGORIES.get(self, "meta")

    @property
    def is_meta(self) -> bool:
        """Meta actions are resolved by the agent itself, never by a tool."""
        return self in META_ACTIONS


_CATEGORIES: dict[ActionType, str] = {
    ActionType.FETCH_JIRA_STORY: "jira",
    ActionType.UPDATE_JIRA_STATUS: "jira",
    ActionType.ADD_JIRA_COMMENT: "jira",
    ActionType.GENERATE_TEST_CODE: "ai",
    ActionType.ANALYZE_FAILURE: "ai",
    ActionType.SUGGEST_FIX: "ai",
    ActionType.PLAN_NEXT_STEP: "ai",
    ActionType.DISCOVER_LOCATOR: "ai",
    ActionType.EXTRACT_BROKEN_LOCATOR: "ai",
    ActionType.EXECUTE_TEST: "testing",
    ActionType.VALIDATE_TEST: "testing",
    ActionType.ANALYZE_TEST_STABILITY: "testing",
    ActionType.READ_FILE: "file",
    ActionType.WRITE_FILE: "file",
    ActionType.DELETE_FILE: "file",
    ActionType.MODIFY_FILE: "file",
    ActionType.CREATE_BRANCH: "git",
    ActionType.COMMIT_CHANGES: "git",
    ActionType.CREATE_PULL_REQUEST: "git",
    ActionType.MERGE_PR: "git",
    ActionType.QUERY_ELEMENT_REGISTRY: "registry",
    ActionType.QUERY_PAGE_OBJECT_REGISTRY: "registry",
    ActionType.UPDATE_ELEMENT_REGISTRY: "registry",
    ActionType.REQUEST_APPROVAL: "approval",
    ActionType.WAIT_FOR_APPROVAL: "approval",
    ActionType.QUERY_TEST_ANALYTICS: "analytics",
    ActionType.GENERATE_REPORT: "analytics",
}

META_ACTIONS = frozenset(
    {
        ActionType.COMPLETE,
        ActionType.INITIALIZE,
        ActionType.FINALIZE,
        ActionType.ABORT,
        ActionType.DELEGATE,
    }
)


@dataclass(frozen=True)
class Plan:
    """
    The next action proposed by a planning state machine.

    Plans are produced fresh every iteration and never persisted on their
    own; they leave a trace only through the HistoryEntry written after the
    action runs. Two plans built from the same inputs compare equal, which
    is what makes planning replayable.

    Attributes:
        action: Action type to execute next
        parameters: Input parameters for the action
        reasoning: Short explanation of why this action was chosen
        confidence: Planner confidence in this decision (0.0-1.0)
        requires_approval: Whether the planner explicitly asks for sign-off
    """

    action: ActionType
    parameters: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    confidence: float = 1.0
    requires_approval: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "parameters": self.parameters,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "requires_approval": self.requires_approval,
        }


@dataclass
class ActionResult:
    """
    Result of invoking one action.

    Attributes:
        action_type: Action that was executed
        success: Whether the action succeeded
        output: Output map returned by the tool (work products)
        error_message: Error message if the action failed
        duration_ms: Wall time spent in the action
        cost: Cost incurred, charged even when the action failed
    """

    action_type: ActionType
    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    duration_ms: int = 0
    cost: float = 0.0

    @classmethod
    def failure(cls, action_type: ActionType, error_message: str) -> "ActionResult":
        return cls(action_type=action_type, success=False, error_message=error_message)


@dataclass(frozen=True)
class HistoryEntry:
    """
    Immutable record of one attempted action and its outcome.

    Attributes:
        iteration: Loop iteration in which the action ran
        action_type: Action that was attempted
        action_input: Parameters the action was invoked with
        action_output: Output returned by the action
        success: Whether the action succeeded
        error_message: Error message if the action failed
        duration_ms: Wall time spent in the action
        cost: Cost charged for the action
        timestamp: When the entry was recorded (UTC)
        required_approval: Whether the action passed through the approval gate
    """

    iteration: int
    action_type: ActionType
    action_input: dict[str, Any] = field(default_factory=dict)
    action_output: dict[str, Any] = field(default_factory=dict)
    success: bool = False
    error_message: str | None = None
    duration_ms: int = 0
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    required_approval: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "action_type": self.action_type.value,
            "action_input": self.action_input,
            "action_output": self.action_output,
            "success": self.success,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "cost": self.cost,
            "timestamp": self.timestamp.isoformat(),
            "required_approval": self.required_approval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        timestamp = data.get("timestamp")
        return cls(
            iteration=int(data["iteration"]),
            action_type=ActionType(data["action_type"]),
            action_input=data.get("action_input") or {},
            action_output=data.get("action_output") or {},
            success=bool(data.get("success", False)),
            error_message=data.get("error_message"),
            duration_ms=int(data.get("duration_ms") or 0),
            cost=float(data.get("cost") or 0.0),
            timestamp=(
                datetime.fromisoformat(timestamp)
                if timestamp
                else datetime.now(timezone.utc)
            ),
            required_approval=bool(data.get("required_approval", False)),
        )
