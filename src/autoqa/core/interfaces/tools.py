"""
Tool Protocols

Tools perform the concrete side effects an agent plans (fetching a story,
running a test, creating a branch). Each tool serves exactly one action
type; the registry maps action types to tools.
"""

from typing import Any, Protocol

from autoqa.core.domain.events import ActionType


class ToolProtocol(Protocol):
    """
    Protocol for a single action implementation.

    Tools return a result dict with at least a ``success`` flag. Failures
    carry an ``error`` message; any incurred cost is reported under
    ``cost`` (``aiCost`` is accepted as an alias).
    """

    @property
    def name(self) -> str:
        ...

    @property
    def action_type(self) -> ActionType:
        ...

    @property
    def description(self) -> str:
        ...

    @property
    def required_parameters(self) -> list[str]:
        ...

    async def execute(self, **params: Any) -> dict[str, Any]:
        ...


class ToolRegistryProtocol(Protocol):
    """Protocol for action lookup and invocation with bounded retry."""

    def has_tool(self, action_type: ActionType) -> bool:
        ...

    async def execute(
        self, action_type: ActionType, params: dict[str, Any]
    ) -> dict[str, Any]:
        """Invoke the tool once. Never raises; failures are reported in the dict."""
        ...

    async def execute_with_retry(
        self, action_type: ActionType, params: dict[str, Any], max_attempts: int = 3
    ) -> dict[str, Any]:
        """Invoke the tool up to ``max_attempts`` times until it succeeds."""
        ...

    def tool_catalog(self) -> list[dict[str, Any]]:
        ...
