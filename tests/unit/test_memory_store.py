"""
Unit Tests for Context Memory Stores

Both adapters run through the same behaviour checks with a manually
advanced clock; file-specific checks cover the on-disk envelope.
"""

import json

import pytest

from autoqa.core.domain.events import ActionType, HistoryEntry
from autoqa.core.domain.models import AgentContext, Goal
from autoqa.infrastructure.persistence.memory_store import FileMemoryStore, InMemoryMemoryStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        return InMemoryMemoryStore(default_ttl=100, clock=clock)
    return FileMemoryStore(work_dir=str(tmp_path), default_ttl=100, clock=clock)


@pytest.fixture
def context():
    context = AgentContext(goal=Goal(goal_type="GENERATE_TEST", parameters={"jiraKey": "PROJ-1"}), max_iterations=10)
    context.add_history(HistoryEntry(iteration=0, action_type=ActionType.FETCH_JIRA_STORY, success=True))
    context.put_work_product("storyTitle", "Login")
    context.state["cursor"] = 2
    context.add_cost(0.25)
    context.increment_iteration()
    return context


@pytest.mark.asyncio
async def test_save_and_load(store, context):
    """A saved snapshot loads back with history, products, state and cost."""
    assert await store.save("exec-1", context) is True

    loaded = await store.load("exec-1")

    assert loaded.goal == context.goal
    assert loaded.current_iteration == 1
    assert loaded.history[0].action_type == ActionType.FETCH_JIRA_STORY
    assert loaded.work_products == {"storyTitle": "Login"}
    assert loaded.state == {"cursor": 2}
    assert loaded.total_cost == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_missing_key_loads_none(store):
    """Loading an unknown id returns None instead of raising."""
    assert await store.load("nope") is None
    assert await store.exists("nope") is False
    assert await store.remaining_ttl("nope") is None


@pytest.mark.asyncio
async def test_save_overwrites(store, context):
    """A second save replaces the previous snapshot."""
    await store.save("exec-1", context)
    context.increment_iteration()
    await store.save("exec-1", context)

    assert (await store.load("exec-1")).current_iteration == 2


@pytest.mark.asyncio
async def test_expired_snapshot_is_absent(store, context, clock):
    """Past its ttl a snapshot is treated as absent."""
    await store.save("exec-1", context, ttl=10)
    clock.advance(9)
    assert await store.exists("exec-1") is True

    clock.advance(1)

    assert await store.exists("exec-1") is False
    assert await store.load("exec-1") is None
    assert await store.list_active() == []


@pytest.mark.asyncio
async def test_clear_is_idempotent(store, context):
    """Clearing removes the snapshot and clearing again is harmless."""
    await store.save("exec-1", context)

    await store.clear("exec-1")
    await store.clear("exec-1")

    assert await store.exists("exec-1") is False


@pytest.mark.asyncio
async def test_extend_and_remaining_ttl(store, context, clock):
    """Extending pushes expiry forward; absent snapshots cannot be extended."""
    await store.save("exec-1", context)
    clock.advance(40)
    assert await store.remaining_ttl("exec-1") == pytest.approx(60)

    assert await store.extend_ttl("exec-1", 50) is True
    assert await store.remaining_ttl("exec-1") == pytest.approx(110)
    assert await store.extend_ttl("nope", 50) is False


@pytest.mark.asyncio
async def test_list_active(store, context):
    """Only live snapshot ids are listed."""
    await store.save("exec-1", context)
    await store.save("exec-2", context)
    await store.clear("exec-1")

    assert await store.list_active() == ["exec-2"]


@pytest.mark.asyncio
async def test_file_envelope_on_disk(tmp_path, clock, context):
    """The file store writes a keyed envelope and leaves no temp files."""
    store = FileMemoryStore(work_dir=str(tmp_path), default_ttl=100, clock=clock)

    await store.save("exec-1", context)

    files = list((tmp_path / "contexts").iterdir())
    assert [f.name for f in files] == ["exec-1.json"]
    envelope = json.loads(files[0].read_text())
    assert envelope["key"] == "agent:context:exec-1"
    assert envelope["expires_at"] == pytest.approx(clock() + 100)
    assert envelope["context"]["current_iteration"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    ["{not json", "[]", '"text"', '{"expires_at": "soon", "context": {}}', '{"expires_at": 9999999999}'],
)
async def test_file_corrupt_snapshot_discarded(tmp_path, clock, payload):
    """A file that is not a valid envelope reads as absent and is removed."""
    store = FileMemoryStore(work_dir=str(tmp_path), clock=clock)
    path = tmp_path / "contexts" / "exec-1.json"
    path.write_text(payload)

    assert await store.load("exec-1") is None
    assert not path.exists()

    path.write_text(payload)
    assert await store.exists("exec-1") is False
    assert await store.remaining_ttl("exec-1") is None

    path.write_text(payload)
    assert await store.list_active() == []
    assert await store.extend_ttl("exec-1", 10) is False


@pytest.mark.asyncio
async def test_in_memory_rejects_unserializable_state(clock, context):
    """A snapshot that cannot round-trip through JSON is refused."""
    store = InMemoryMemoryStore(clock=clock)
    context.state["loop"] = context.state

    assert await store.save("exec-1", context) is False
