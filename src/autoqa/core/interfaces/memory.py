"""
Memory Store Protocol

Key/value store with per-key expiry holding the serialized working context
of one execution. The memory store is a resume aid for a live process, not
a source of truth: the durable execution record decides whether an
execution is alive.
"""

from typing import Protocol

from autoqa.core.domain.models import AgentContext

CONTEXT_KEY_PREFIX = "agent:context:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


def context_key(execution_id: str) -> str:
    """Return the storage key for an execution's context snapshot."""
    return f"{CONTEXT_KEY_PREFIX}{execution_id}"


class MemoryStoreProtocol(Protocol):
    """
    Protocol for context snapshot storage.

    Implementations must never raise from ``load`` on a missing or expired
    key, and ``clear`` must be idempotent.
    """

    async def save(
        self, execution_id: str, context: AgentContext, ttl: float | None = None
    ) -> bool:
        """
        Store a snapshot, overwriting any prior one for the same id.

        Args:
            execution_id: Execution the snapshot belongs to
            context: Context to serialize
            ttl: Time-to-live in seconds (defaults to 24h)

        Returns:
            True if the snapshot was stored, False if the write failed
        """
        ...

    async def load(self, execution_id: str) -> AgentContext | None:
        """Return the snapshot, or None if absent, expired or unreadable."""
        ...

    async def clear(self, execution_id: str) -> None:
        """Remove the snapshot. Removing an absent key is not an error."""
        ...

    async def exists(self, execution_id: str) -> bool:
        """Return True if a live snapshot exists."""
        ...

    async def extend_ttl(self, execution_id: str, seconds: float) -> bool:
        """Push the expiry of a live snapshot forward. False if absent."""
        ...

    async def remaining_ttl(self, execution_id: str) -> float | None:
        """Seconds until expiry, or None if absent."""
        ...

    async def list_active(self) -> list[str]:
        """Execution ids of all live snapshots."""
        ...
