"""
Planning Helpers

Pure functions over an AgentContext used by the planning state machines to
decide what has already been done. None of these mutate the context, so a
planner built on them returns the same Plan when called twice on unchanged
history.
"""

from typing import Any

from autoqa.core.domain.events import ActionType, HistoryEntry, Plan
from autoqa.core.domain.models import AgentContext

# Scratch-state markers holding the first iteration of the current sub-task.
TEST_START_MARKER = "currentTestStartIteration"
FIX_PHASE_MARKER = "fixPhaseStartIteration"

CONSECUTIVE_FAILURE_LIMIT = 3


def entries_since(context: AgentContext, marker: str | None = None) -> list[HistoryEntry]:
    """Return history entries recorded since the iteration stored under ``marker``."""
    if marker is None:
        return list(context.history)
    start = context.state.get(marker) or 0
    return [entry for entry in context.history if entry.iteration >= start]


def has_completed(
    context: AgentContext, action: ActionType, since: str | None = None
) -> bool:
    """True if ``action`` has a successful entry in the scoped history."""
    return any(
        entry.action_type == action and entry.success
        for entry in entries_since(context, since)
    )


def last_entry(context: AgentContext) -> HistoryEntry | None:
    return context.history[-1] if context.history else None


def last_action_type(context: AgentContext) -> ActionType | None:
    entry = last_entry(context)
    return entry.action_type if entry else None


def count_consecutive_failures(
    context: AgentContext, action: ActionType | None = None
) -> int:
    """
    Count trailing failed entries of the same action type.

    Counting stops at the first success or at an entry of a different
    action type.

    Args:
        context: Context whose history is scanned
        action: Action type to count; defaults to the last recorded type

    Returns:
        Number of trailing consecutive failures
    """
    action = action or last_action_type(context)
    if action is None:
        return 0

    count = 0
    for entry in reversed(context.history):
        if entry.action_type != action or entry.success:
            break
        count += 1
    return count


def manual_review_plan(
    reasoning: str, requested_by: str, **parameters: Any
) -> Plan:
    """Build a REQUEST_APPROVAL plan that flags the current work item for a human."""
    params = {"requestedBy": requested_by, "manualReview": True}
    params.update(parameters)
    return Plan(
        action=ActionType.REQUEST_APPROVAL,
        parameters=params,
        reasoning=reasoning,
        confidence=1.0,
    )


def repeated_failure_guard(context: AgentContext, requested_by: str) -> Plan | None:
    """
    Return a manual-review plan when the last action keeps failing.

    A trailing REQUEST_APPROVAL is exempt so that a failing review request
    cannot trigger another review request.
    """
    action = last_action_type(context)
    if action is None or action == ActionType.REQUEST_APPROVAL:
        return None

    failures = count_consecutive_failures(context, action)
    if failures < CONSECUTIVE_FAILURE_LIMIT:
        return None

    return manual_review_plan(
        reasoning="Multiple consecutive failures - flagging for manual review",
        requested_by=requested_by,
        testName="[FAILED - NEEDS MANUAL FIX]",
        reason=f"Action {action.value} failed {failures} times",
        failedAction=action.value,
    )

