"""
Tool Registry

Maps action types to tool implementations and invokes them with parameter
validation, bounded retry and a per-tool circuit breaker. The registry
never raises from ``execute``; every failure comes back as a result dict
with ``success: False`` and an ``error`` message.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

from autoqa.core.domain.events import ActionType
from autoqa.core.interfaces.tools import ToolProtocol

FAILURE_THRESHOLD = 5
RECOVERY_TIMEOUT_SECONDS = 60.0


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for one tool.

    Opens after ``failure_threshold`` consecutive failures. Once
    ``recovery_timeout`` seconds have passed it lets one trial call through
    (HALF_OPEN); a success closes it again, a failure re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        recovery_timeout: float = RECOVERY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        self.failures = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()


class BaseTool(ABC):
    """Base class for tools serving one action type."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def action_type(self) -> ActionType:
        pass

    @property
    def description(self) -> str:
        return ""

    @property
    def required_parameters(self) -> list[str]:
        return []

    @abstractmethod
    async def execute(self, **params: Any) -> dict[str, Any]:
        pass


class StaticTool(BaseTool):
    """
    Tool returning a canned result.

    Used for dry runs and demos where no real integration is wired. The
    configured output is merged into every result; ``success`` and
    ``cost`` are reported as configured.

    Args:
        action_type: Action served by this tool
        output: Fields returned on every call
        success: Whether calls succeed
        cost: Cost reported per call
        error: Error message reported when ``success`` is False
        required_parameters: Parameters that must be present
        description: Catalog description
    """

    def __init__(
        self,
        action_type: ActionType,
        output: dict[str, Any] | None = None,
        success: bool = True,
        cost: float = 0.0,
        error: str | None = None,
        required_parameters: list[str] | None = None,
        description: str = "",
    ):
        self._action_type = action_type
        self.output = dict(output or {})
        self.success = success
        self.cost = cost
        self.error = error
        self._required = list(required_parameters or [])
        self._description = description or f"Static result for {action_type.value}"
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return f"static_{self._action_type.value.lower()}"

    @property
    def action_type(self) -> ActionType:
        return self._action_type

    @property
    def description(self) -> str:
        return self._description

    @property
    def required_parameters(self) -> list[str]:
        return self._required

    async def execute(self, **params: Any) -> dict[str, Any]:
        self.calls.append(params)
        result: dict[str, Any] = {**self.output, "success": self.success}
        if self.cost:
            result["cost"] = self.cost
        if not self.success:
            result["error"] = self.error or f"{self.name} failed"
        return result


class ToolRegistry:
    """
    Registry of tools keyed by action type.

    Args:
        failure_threshold: Consecutive failures before a tool's breaker opens
        recovery_timeout: Seconds before an open breaker allows a trial call
        base_delay: Initial retry delay; doubles per attempt
        clock: Time source for the breakers, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        recovery_timeout: float = RECOVERY_TIMEOUT_SECONDS,
        base_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.base_delay = base_delay
        self._clock = clock
        self._tools: dict[ActionType, ToolProtocol] = {}
        self._breakers: dict[ActionType, CircuitBreaker] = {}
        self.logger = structlog.get_logger().bind(component="tool_registry")

    def register_tool(self, tool: ToolProtocol) -> None:
        if tool.action_type in self._tools:
            self.logger.warning(
                "tool_overwritten",
                action=tool.action_type.value,
                previous=self._tools[tool.action_type].name,
                tool=tool.name,
            )
        self._tools[tool.action_type] = tool
        self._breakers[tool.action_type] = CircuitBreaker(
            self.failure_threshold, self.recovery_timeout, self._clock
        )
        self.logger.debug("tool_registered", action=tool.action_type.value, tool=tool.name)

    def has_tool(self, action_type: ActionType) -> bool:
        return action_type in self._tools

    def get_tool(self, action_type: ActionType) -> ToolProtocol | None:
        return self._tools.get(action_type)

    def circuit_state(self, action_type: ActionType) -> CircuitState | None:
        breaker = self._breakers.get(action_type)
        return breaker.state if breaker else None

    def tool_catalog(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "action_type": action.value,
                "category": action.category,
                "description": tool.description,
                "required_parameters": list(tool.required_parameters),
                "circuit_state": self._breakers[action].state.value,
            }
            for action, tool in self._tools.items()
        ]

    def _validate(
        self, action_type: ActionType, params: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Return a failure result for calls that can never succeed, else None."""
        tool = self._tools.get(action_type)
        if tool is None:
            return {
                "success": False,
                "error": f"No tool registered for action: {action_type.value}",
            }
        missing = [p for p in tool.required_parameters if params.get(p) is None]
        if missing:
            return {
                "success": False,
                "error": f"Missing required parameters: {', '.join(missing)}",
            }
        return None

    async def execute(
        self, action_type: ActionType, params: dict[str, Any]
    ) -> dict[str, Any]:
        invalid = self._validate(action_type, params)
        if invalid is not None:
            return invalid

        tool = self._tools[action_type]
        breaker = self._breakers[action_type]
        if not breaker.allow_request():
            return {
                "success": False,
                "error": f"Circuit open for tool: {tool.name}",
                "circuitOpen": True,
            }

        try:
            result = await tool.execute(**params)
        except Exception as e:
            self.logger.error(
                "tool_execution_failed",
                tool=tool.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            breaker.record_failure()
            return {"success": False, "error": str(e)}

        if not isinstance(result, dict):
            breaker.record_failure()
            return {
                "success": False,
                "error": f"Tool returned invalid type: {type(result).__name__}",
            }

        if result.get("success"):
            breaker.record_success()
        else:
            breaker.record_failure()
            if breaker.state == CircuitState.OPEN:
                self.logger.warning(
                    "circuit_opened", tool=tool.name, failures=breaker.failures
                )
        return result

    async def execute_with_retry(
        self, action_type: ActionType, params: dict[str, Any], max_attempts: int = 3
    ) -> dict[str, Any]:
        """
        Execute with exponential backoff between failed attempts.

        Stops early once the tool's circuit opens. The returned result
        carries the summed ``cost`` of every attempt, since a failed AI
        call can still have consumed tokens.
        """
        invalid = self._validate(action_type, params)
        if invalid is not None:
            return invalid

        result: dict[str, Any] = {}
        total_cost = 0.0
        for attempt in range(max_attempts):
            result = await self.execute(action_type, params)
            total_cost += float(result.get("cost", result.get("aiCost")) or 0.0)
            if result.get("success"):
                break
            if self.circuit_state(action_type) == CircuitState.OPEN:
                break
            if attempt < max_attempts - 1:
                delay = self.base_delay * 2**attempt
                self.logger.info(
                    "tool_retry",
                    action=action_type.value,
                    attempt=attempt + 1,
                    delay=delay,
                    error=result.get("error"),
                )
                await asyncio.sleep(delay)

        if total_cost:
            result = {**result, "cost": total_cost}
            result.pop("aiCost", None)
        return result
