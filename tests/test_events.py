"""Tests for EventLog — capped history with a polling cursor."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from chime.scheduler.events import EventLog
from chime.scheduler.models import TaskEvent, format_ts
from chime.scheduler.store import TaskStore

pytestmark = pytest.mark.usefixtures("_no_turso")

T = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> TaskStore:
    return TaskStore(domain="test", db_path=tmp_path / "test.db")


def _event(n: int) -> TaskEvent:
    return TaskEvent(
        id=f"e{n}",
        task_id="t1",
        title="Tea",
        kind="fired",
        occurred_at=T + timedelta(seconds=n),
        note="Task completed",
    )


async def test_never_exceeds_cap(store: TaskStore) -> None:
    log = EventLog(store, limit=4)
    for n in range(10):
        await log.append([_event(n)])

    page = await log.since()
    assert len(page.events) == 4
    assert [e.id for e in page.events] == ["e6", "e7", "e8", "e9"]


async def test_batch_larger_than_cap_keeps_newest(store: TaskStore) -> None:
    log = EventLog(store, limit=2)
    await log.append([_event(n) for n in range(5)])

    page = await log.since()
    assert [e.id for e in page.events] == ["e3", "e4"]


async def test_default_cap_from_settings(store: TaskStore) -> None:
    assert EventLog(store).limit == 120


async def test_since_returns_strictly_newer_in_order(store: TaskStore) -> None:
    log = EventLog(store)
    await log.append([_event(n) for n in range(4)])

    page = await log.since(format_ts(T + timedelta(seconds=1)))
    assert [e.id for e in page.events] == ["e2", "e3"]
    assert page.latest == format_ts(T + timedelta(seconds=3))


async def test_since_latest_cursor_returns_nothing(store: TaskStore) -> None:
    log = EventLog(store)
    await log.append([_event(0), _event(1)])
    first = await log.since()

    page = await log.since(first.latest)
    assert page.events == []
    assert page.latest is None


async def test_unparsable_cursor_returns_everything(store: TaskStore) -> None:
    log = EventLog(store)
    await log.append([_event(0), _event(1)])

    page = await log.since("yesterday-ish")
    assert len(page.events) == 2


async def test_empty_log(store: TaskStore) -> None:
    page = await EventLog(store).since()
    assert page.to_dict() == {"events": [], "latest": None}


async def test_page_to_dict(store: TaskStore) -> None:
    log = EventLog(store)
    await log.append([_event(0)])

    data = (await log.since()).to_dict()
    assert data["latest"] == "2025-06-01T09:00:00Z"
    assert data["events"][0]["taskId"] == "t1"
    assert data["events"][0]["note"] == "Task completed"
