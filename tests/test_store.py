"""Tests for TaskStore — key/value persistence over libsql."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from chime.scheduler.models import DelayTiming, Task, TaskEvent
from chime.scheduler.store import INDEX_KEY, TaskStore, task_key

pytestmark = pytest.mark.usefixtures("_no_turso")

T = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> TaskStore:
    """Create a TaskStore backed by a temp database."""
    return TaskStore(domain="test", db_path=tmp_path / "test.db")


def _make_task(task_id: str = "task1", title: str = "Test Task", **kwargs) -> Task:
    defaults = {"timing": DelayTiming(seconds=60), "created_at": T, "next_run": T}
    defaults.update(kwargs)
    return Task(id=task_id, title=title, **defaults)


def _event(event_id: str, at: datetime) -> TaskEvent:
    return TaskEvent(
        id=event_id, task_id="task1", title="Test Task", kind="fired", occurred_at=at, note=""
    )


# -- insert / get ----------------------------------------------------------------


async def test_insert_and_get(store: TaskStore) -> None:
    await store.insert(_make_task())

    fetched = await store.get("task1")
    assert fetched is not None
    assert fetched.title == "Test Task"
    assert fetched.next_run == T


async def test_get_not_found(store: TaskStore) -> None:
    assert await store.get("nonexistent") is None


async def test_insert_appends_to_index_in_order(store: TaskStore) -> None:
    for task_id in ("t1", "t2", "t3"):
        await store.insert(_make_task(task_id))
    assert [t.id for t in await store.list_all()] == ["t1", "t2", "t3"]


async def test_insert_same_id_does_not_duplicate_index(store: TaskStore) -> None:
    await store.insert(_make_task("t1"))
    await store.insert(_make_task("t1", title="Renamed"))
    assert [t.id for t in await store.list_all()] == ["t1"]


async def test_put_overwrites(store: TaskStore) -> None:
    task = _make_task()
    await store.insert(task)
    task.enabled = False
    task.next_run = None
    await store.put(task)

    fetched = await store.get("task1")
    assert fetched is not None
    assert fetched.enabled is False
    assert fetched.next_run is None


# -- list_all ------------------------------------------------------------------


async def test_list_all_in_insertion_order(store: TaskStore) -> None:
    await store.insert(_make_task("b", "B"))
    await store.insert(_make_task("a", "A"))
    assert [t.id for t in await store.list_all()] == ["b", "a"]


async def test_list_all_empty(store: TaskStore) -> None:
    assert await store.list_all() == []


async def test_list_all_skips_missing_records(store: TaskStore) -> None:
    await store.insert(_make_task("t1"))
    await store.put_value(INDEX_KEY, ["ghost", "t1"])

    tasks = await store.list_all()
    assert [t.id for t in tasks] == ["t1"]


async def test_unindexed_record_is_invisible(store: TaskStore) -> None:
    await store.put_value(task_key("orphan"), _make_task("orphan").to_dict())
    assert await store.list_all() == []
    assert await store.get("orphan") is not None


# -- Domains -------------------------------------------------------------------


async def test_domains_are_isolated(tmp_path: Path) -> None:
    first = TaskStore(domain="one", db_path=tmp_path / "test.db")
    second = TaskStore(domain="two", db_path=tmp_path / "test.db")
    await first.insert(_make_task("t1"))

    assert await second.list_all() == []
    assert await second.get("t1") is None


# -- Last-run markers ----------------------------------------------------------


async def test_last_run_marker(store: TaskStore) -> None:
    assert await store.get_last_run("task1") is None
    await store.set_last_run("task1", T)
    assert await store.get_last_run("task1") == T


# -- Raw values ----------------------------------------------------------------


async def test_delete_value(store: TaskStore) -> None:
    await store.put_value("k", {"a": 1})
    assert await store.get_value("k") == {"a": 1}
    await store.delete_value("k")
    assert await store.get_value("k") is None


# -- Events --------------------------------------------------------------------


async def test_append_and_get_events(store: TaskStore) -> None:
    await store.append_events([_event("e1", T)], limit=10)
    await store.append_events([_event("e2", T + timedelta(seconds=1))], limit=10)

    events = await store.get_events()
    assert [e.id for e in events] == ["e1", "e2"]


async def test_append_events_caps_oldest_first(store: TaskStore) -> None:
    batch = [_event(f"e{i}", T + timedelta(seconds=i)) for i in range(5)]
    dropped = await store.append_events(batch, limit=3)

    assert dropped == 2
    assert [e.id for e in await store.get_events()] == ["e2", "e3", "e4"]


async def test_append_no_events_is_noop(store: TaskStore) -> None:
    assert await store.append_events([], limit=3) == 0
    assert await store.get_events() == []


async def test_get_events_since_is_strict(store: TaskStore) -> None:
    batch = [_event(f"e{i}", T + timedelta(seconds=i)) for i in range(3)]
    await store.append_events(batch, limit=10)

    newer = await store.get_events(T + timedelta(seconds=1))
    assert [e.id for e in newer] == ["e2"]
