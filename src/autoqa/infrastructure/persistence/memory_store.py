"""
Context Memory Stores

Adapters implementing MemoryStoreProtocol. Both store the JSON snapshot of
an AgentContext under ``agent:context:{execution_id}`` with an expiry
timestamp. Expired entries are treated as absent and removed lazily.

- InMemoryMemoryStore: process-local dict, used for tests and single-process runs
- FileMemoryStore: one JSON file per execution, written atomically with aiofiles
"""

import asyncio
import json
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from autoqa.core.domain.models import AgentContext
from autoqa.core.interfaces.memory import (
    CONTEXT_KEY_PREFIX,
    DEFAULT_TTL_SECONDS,
    context_key,
)

logger = structlog.get_logger()


class InMemoryMemoryStore:
    """
    Dict-backed memory store with per-key expiry.

    Args:
        default_ttl: Time-to-live applied when ``save`` gets no ttl
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, tuple[dict[str, Any], float]] = {}
        self.logger = logger.bind(component="in_memory_memory_store")

    def _live(self, key: str) -> tuple[dict[str, Any], float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def save(
        self, execution_id: str, context: AgentContext, ttl: float | None = None
    ) -> bool:
        try:
            snapshot = json.loads(json.dumps(context.to_dict(), default=str))
        except (TypeError, ValueError) as e:
            self.logger.error("context_serialize_failed", execution_id=execution_id, error=str(e))
            return False
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        self._entries[context_key(execution_id)] = (snapshot, expires_at)
        return True

    async def load(self, execution_id: str) -> AgentContext | None:
        entry = self._live(context_key(execution_id))
        if entry is None:
            return None
        try:
            return AgentContext.from_dict(entry[0])
        except (KeyError, TypeError, ValueError) as e:
            self.logger.error("context_load_failed", execution_id=execution_id, error=str(e))
            return None

    async def clear(self, execution_id: str) -> None:
        self._entries.pop(context_key(execution_id), None)

    async def exists(self, execution_id: str) -> bool:
        return self._live(context_key(execution_id)) is not None

    async def extend_ttl(self, execution_id: str, seconds: float) -> bool:
        key = context_key(execution_id)
        entry = self._live(key)
        if entry is None:
            return False
        self._entries[key] = (entry[0], entry[1] + seconds)
        return True

    async def remaining_ttl(self, execution_id: str) -> float | None:
        entry = self._live(context_key(execution_id))
        if entry is None:
            return None
        return entry[1] - self._clock()

    async def list_active(self) -> list[str]:
        return [
            key[len(CONTEXT_KEY_PREFIX) :]
            for key in list(self._entries)
            if self._live(key) is not None
        ]


class FileMemoryStore:
    """
    File-backed memory store.

    Each snapshot lives in ``{work_dir}/contexts/{execution_id}.json`` as an
    envelope ``{"key", "expires_at", "context"}``. Writes go to a temp file
    that is then renamed over the target, so readers never see a partial
    file. Writes for the same execution are serialized with a per-id lock.

    Args:
        work_dir: Root directory for snapshot files
        default_ttl: Time-to-live applied when ``save`` gets no ttl
        clock: Wall-clock time source (epoch seconds), injectable for tests
    """

    def __init__(
        self,
        work_dir: str = ".autoqa",
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.work_dir = Path(work_dir)
        self.contexts_dir = self.work_dir / "contexts"
        self.contexts_dir.mkdir(parents=True, exist_ok=True)
        self.default_ttl = default_ttl
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="file_memory_store")

    def _get_lock(self, execution_id: str) -> asyncio.Lock:
        if execution_id not in self._locks:
            self._locks[execution_id] = asyncio.Lock()
        return self._locks[execution_id]

    def _path(self, execution_id: str) -> Path:
        return self.contexts_dir / f"{execution_id}.json"

    async def _write_envelope(self, execution_id: str, envelope: dict[str, Any]) -> None:
        payload = json.dumps(envelope, default=str)
        fd, tmp_path = tempfile.mkstemp(dir=self.contexts_dir, suffix=".tmp")
        os.close(fd)
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            os.replace(tmp_path, self._path(execution_id))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _read_envelope(self, execution_id: str) -> dict[str, Any] | None:
        path = self._path(execution_id)
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        try:
            envelope = json.loads(raw)
        except ValueError:
            envelope = None
        if not (
            isinstance(envelope, dict)
            and isinstance(envelope.get("expires_at"), (int, float))
            and isinstance(envelope.get("context"), dict)
        ):
            self.logger.warning("corrupt_snapshot_discarded", execution_id=execution_id)
            path.unlink(missing_ok=True)
            return None
        if envelope["expires_at"] <= self._clock():
            path.unlink(missing_ok=True)
            return None
        return envelope

    async def save(
        self, execution_id: str, context: AgentContext, ttl: float | None = None
    ) -> bool:
        async with self._get_lock(execution_id):
            try:
                envelope = {
                    "key": context_key(execution_id),
                    "expires_at": self._clock()
                    + (ttl if ttl is not None else self.default_ttl),
                    "context": context.to_dict(),
                }
                await self._write_envelope(execution_id, envelope)
                self.logger.debug(
                    "context_saved",
                    execution_id=execution_id,
                    iteration=context.current_iteration,
                )
                return True
            except (OSError, TypeError, ValueError) as e:
                self.logger.error("context_save_failed", execution_id=execution_id, error=str(e))
                return False

    async def load(self, execution_id: str) -> AgentContext | None:
        try:
            envelope = await self._read_envelope(execution_id)
            if envelope is None:
                return None
            return AgentContext.from_dict(envelope["context"])
        except (OSError, KeyError, TypeError, ValueError) as e:
            self.logger.error("context_load_failed", execution_id=execution_id, error=str(e))
            return None

    async def clear(self, execution_id: str) -> None:
        async with self._get_lock(execution_id):
            self._path(execution_id).unlink(missing_ok=True)
        self._locks.pop(execution_id, None)

    async def exists(self, execution_id: str) -> bool:
        try:
            return await self._read_envelope(execution_id) is not None
        except (OSError, ValueError):
            return False

    async def extend_ttl(self, execution_id: str, seconds: float) -> bool:
        async with self._get_lock(execution_id):
            try:
                envelope = await self._read_envelope(execution_id)
                if envelope is None:
                    return False
                envelope["expires_at"] += seconds
                await self._write_envelope(execution_id, envelope)
                return True
            except (OSError, ValueError) as e:
                self.logger.error("context_ttl_extend_failed", execution_id=execution_id, error=str(e))
                return False

    async def remaining_ttl(self, execution_id: str) -> float | None:
        try:
            envelope = await self._read_envelope(execution_id)
        except (OSError, ValueError):
            return None
        if envelope is None:
            return None
        return envelope["expires_at"] - self._clock()

    async def list_active(self) -> list[str]:
        active = []
        for path in sorted(self.contexts_dir.glob("*.json")):
            if await self.exists(path.stem):
                active.append(path.stem)
        return active
