"""TaskSchedulerActor — serialized access to one scheduling domain."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from chime.scheduler.alarm import AlarmScheduler
from chime.scheduler.events import EventLog
from chime.scheduler.lifecycle import LifecycleController
from chime.scheduler.models import utcnow
from chime.scheduler.store import TaskStore
from chime.scheduler.wake import DurableWake

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from pathlib import Path

    from chime.scheduler.events import EventPage
    from chime.scheduler.lifecycle import CycleResult
    from chime.scheduler.models import Task

logger = logging.getLogger(__name__)


class TaskSchedulerActor:
    """One scheduling domain. Every entry point runs under a single lock.

    HTTP requests and wake-ups for the same domain never interleave, so
    nothing below this class takes locks of its own.

    Args:
        name: Domain name; also the storage namespace.
        db_path: Local database override (test isolation).
        clock: Returns the current UTC time.
        durable_wake: Override ``settings.durable_wake_enabled``.
    """

    def __init__(
        self,
        name: str,
        db_path: Path | None = None,
        clock: Callable[[], datetime] = utcnow,
        durable_wake: bool | None = None,
    ) -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self.store = TaskStore(domain=name, db_path=db_path)
        self.events = EventLog(self.store)
        self.wake = DurableWake(self.store, self.alarm, enabled=durable_wake)
        self.alarms = AlarmScheduler(self.alarm, durable=self.wake, clock=clock)
        self.controller = LifecycleController(self.store, self.events, self.alarms, clock=clock)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the durable wake facility and restore a wake armed before a restart."""
        restored = await self.wake.start()
        if restored is not None:
            self.alarms.pending = restored
        logger.info("Scheduler actor '%s' started", self.name)

    async def stop(self) -> None:
        await self.alarms.close()
        await self.wake.stop()
        logger.info("Scheduler actor '%s' stopped", self.name)

    # -- Entry points ----------------------------------------------------------

    async def alarm(self) -> CycleResult:
        """Wake handler, shared by durable wakes, fallback timers and run-due."""
        async with self._lock:
            return await self.controller.run_cycle()

    async def run_due(self) -> CycleResult:
        return await self.alarm()

    async def list_tasks(self) -> list[Task]:
        async with self._lock:
            return await self.controller.list_tasks()

    async def list_due(self) -> list[Task]:
        async with self._lock:
            return await self.controller.list_due()

    async def create_task(self, body: Any) -> Task:
        async with self._lock:
            return await self.controller.create_task(body)

    async def get_events(self, since: str | None = None) -> EventPage:
        async with self._lock:
            return await self.events.since(since)


class ActorDirectory:
    """Maps domain names to their single, started actor instance.

    Args:
        db_path: Local database override passed to every actor.
        clock: Clock shared by every actor.
        durable_wake: Override ``settings.durable_wake_enabled``.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        clock: Callable[[], datetime] = utcnow,
        durable_wake: bool | None = None,
    ) -> None:
        self._db_path = db_path
        self._clock = clock
        self._durable_wake = durable_wake
        self._actors: dict[str, TaskSchedulerActor] = {}
        self._lock = asyncio.Lock()

    async def get(self, name: str) -> TaskSchedulerActor:
        """Return the actor for *name*, creating and starting it on first use."""
        async with self._lock:
            actor = self._actors.get(name)
            if actor is None:
                actor = TaskSchedulerActor(
                    name,
                    db_path=self._db_path,
                    clock=self._clock,
                    durable_wake=self._durable_wake,
                )
                await actor.start()
                self._actors[name] = actor
            return actor

    @property
    def names(self) -> list[str]:
        return list(self._actors)

    async def stop(self) -> None:
        async with self._lock:
            for actor in self._actors.values():
                await actor.stop()
            self._actors.clear()
