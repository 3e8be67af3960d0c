"""DurableWake — restart-surviving wake-ups via APScheduler and a persisted alarm."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from chime.config import settings
from chime.scheduler.models import format_ts, parse_ts
from chime.scheduler.store import ALARM_KEY

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from chime.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArmResult:
    """Outcome of asking a wake facility to arm. ``reason`` explains a failure."""

    ok: bool
    reason: str = ""


class WakeFacility(Protocol):
    async def arm(self, when: datetime) -> ArmResult: ...


class DurableWake:
    """Arms a single wake job and records its time under ``__alarm``.

    The record is re-armed by :meth:`start` after a restart, so a wake armed
    before shutdown still fires (immediately, if its time has passed).

    Args:
        store: TaskStore holding the alarm record.
        on_wake: Async callable invoked when the wake fires.
        enabled: Override ``settings.durable_wake_enabled``.
    """

    JOB_ID = "chime-wake"

    def __init__(
        self,
        store: TaskStore,
        on_wake: Callable[[], Awaitable[None]],
        enabled: bool | None = None,
    ) -> None:
        self._store = store
        self._on_wake = on_wake
        self._enabled = settings.durable_wake_enabled if enabled is None else enabled
        self._scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> datetime | None:
        """Start the job scheduler and restore a persisted wake. Returns its time."""
        if not self._enabled:
            logger.info("Durable wake disabled; wake-ups will use in-memory timers")
            return None
        if not self._scheduler.running:
            self._scheduler.start()
        restored = parse_ts(await self._store.get_value(ALARM_KEY))
        if restored is not None:
            self._add_job(restored)
            logger.info("Restored durable wake for %s", format_ts(restored))
        return restored

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Durable wake stopped")

    # -- Arming ----------------------------------------------------------------

    async def arm(self, when: datetime) -> ArmResult:
        """Persist *when* and replace the wake job. Never raises."""
        if not self._enabled:
            return ArmResult(ok=False, reason="durable wake disabled")
        if not self._scheduler.running:
            return ArmResult(ok=False, reason="job scheduler not running")
        try:
            await self._store.put_value(ALARM_KEY, format_ts(when))
            self._add_job(when)
        except Exception as exc:
            return ArmResult(ok=False, reason=f"{type(exc).__name__}: {exc}")
        return ArmResult(ok=True)

    def _add_job(self, when: datetime) -> None:
        self._scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=when, timezone="UTC"),
            id=self.JOB_ID,
            args=[format_ts(when)],
            misfire_grace_time=None,
            replace_existing=True,
        )

    async def _fire(self, armed_for: str) -> None:
        """Job callback. Clears the alarm record unless the wake re-armed it."""
        logger.info("Durable wake firing for %s", armed_for)
        try:
            await self._on_wake()
        except Exception:
            logger.exception("Wake handler failed (armed for %s)", armed_for)
            return
        if await self._store.get_value(ALARM_KEY) == armed_for:
            await self._store.delete_value(ALARM_KEY)
