"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from chime.scheduler.wake import ArmResult


class FakeClock:
    """Manually advanced UTC clock, callable like ``utcnow``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingWake:
    """Wake facility that records every arm request instead of scheduling it."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.armed: list[datetime] = []

    async def arm(self, when: datetime) -> ArmResult:
        self.armed.append(when)
        if self.ok:
            return ArmResult(ok=True)
        return ArmResult(ok=False, reason="unavailable")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_wake() -> RecordingWake:
    return RecordingWake()


@pytest.fixture
def failing_wake() -> RecordingWake:
    return RecordingWake(ok=False)


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("chime.config.settings.turso_database_url", "")
