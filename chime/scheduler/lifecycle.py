"""LifecycleController — task creation, queries and the wake-time cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from chime.config import settings
from chime.scheduler.models import (
    DatetimeTiming,
    DelayTiming,
    RecurringTiming,
    Task,
    TaskEvent,
    format_ts,
    make_task_id,
    parse_create_params,
    utcnow,
)
from chime.scheduler.notes import build_creation_note
from chime.scheduler.recurrence import NoRecurrence, compute_next

if TYPE_CHECKING:
    from collections.abc import Callable

    from chime.scheduler.alarm import AlarmScheduler
    from chime.scheduler.events import EventLog
    from chime.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

NOTE_COMPLETED = "Task completed"
NOTE_RESCHEDULED = "Recurring task rescheduled"
NOTE_INVALID_CRON = "Recurring task disabled (invalid cron)"

# A re-arm target this close to now is pushed out by the minimum future buffer.
_NEAR_PAST = timedelta(milliseconds=25)


@dataclass
class CycleResult:
    """What one wake cycle did."""

    fired: list[TaskEvent] = field(default_factory=list)
    next_wake: datetime | None = None


class LifecycleController:
    """Owns every task mutation: creation and the wake-time firing cycle.

    Args:
        store: TaskStore for task records and last-run markers.
        events: EventLog receiving ``created`` and ``fired`` entries.
        alarm: AlarmScheduler asked to arm the next wake.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: TaskStore,
        events: EventLog,
        alarm: AlarmScheduler,
        clock: Callable[[], datetime] = utcnow,
        tolerance_ms: int | None = None,
        min_future_buffer_ms: int | None = None,
    ) -> None:
        self._store = store
        self._events = events
        self._alarm = alarm
        self._clock = clock
        self._tolerance = timedelta(
            milliseconds=settings.due_tolerance_ms if tolerance_ms is None else tolerance_ms
        )
        self._min_future = timedelta(
            milliseconds=(
                settings.min_future_buffer_ms
                if min_future_buffer_ms is None
                else min_future_buffer_ms
            )
        )

    # -- Requests --------------------------------------------------------------

    async def create_task(self, body: Any) -> Task:
        """Validate *body*, persist the task and arm a wake for its first run.

        Raises:
            TaskValidationError: the request was rejected; nothing was written.
        """
        params = parse_create_params(body)
        now = self._clock()
        task = Task(
            id=make_task_id(),
            title=params.title or "Untitled",
            timing=params.timing,
            created_at=now,
            description=params.description,
            recurrence=params.recurrence,
            enabled=params.enabled,
            metadata=params.metadata,
        )
        task.next_run = self._first_run(task, now)

        await self._store.insert(task)
        if task.enabled and task.next_run is not None:
            await self._alarm.schedule(task.next_run)
        await self._events.append(
            [TaskEvent.for_task(task, "created", build_creation_note(task), self._clock())]
        )
        return task

    async def list_tasks(self) -> list[Task]:
        return await self._store.list_all()

    async def list_due(self) -> list[Task]:
        """Enabled tasks whose next run is at or before now (no tolerance)."""
        now = self._clock()
        return [task for task in await self._store.list_all() if task.is_due(now)]

    def _first_run(self, task: Task, now: datetime) -> datetime | None:
        timing = task.timing
        if isinstance(timing, DatetimeTiming):
            return timing.when
        if isinstance(timing, DelayTiming):
            return now + timedelta(seconds=timing.seconds)
        if isinstance(timing, RecurringTiming):
            next_run = compute_next(timing.cron, now)
            if next_run is None:
                logger.warning(
                    "Unsupported or invalid cron expression %r; task %s will remain without nextRun",
                    timing.cron,
                    task.id,
                )
            return next_run
        return None

    # -- Wake cycle ------------------------------------------------------------

    async def run_cycle(self) -> CycleResult:
        """Fire every due task, advance or disable it, and re-arm the next wake."""
        now = self._clock()
        effective_now = now + self._tolerance
        self._alarm.begin_cycle(now, due_by=effective_now)
        logger.info("Wake cycle at %s", format_ts(now))

        result = CycleResult()
        earliest: datetime | None = None
        for task in await self._store.list_all():
            if not task.enabled or task.next_run is None:
                continue
            if task.next_run <= effective_now:
                result.fired.append(await self._fire(task))
                if task.next_run is not None and (earliest is None or task.next_run < earliest):
                    earliest = task.next_run
            elif earliest is None or task.next_run < earliest:
                earliest = task.next_run

        await self._events.append(result.fired)

        if earliest is not None:
            target = earliest
            current = self._clock()
            if earliest <= current + _NEAR_PAST:
                target = current + self._min_future
                logger.info(
                    "Adjusted wake from past/near-past %s -> %s",
                    format_ts(earliest),
                    format_ts(target),
                )
            await self._alarm.schedule(target)
            result.next_wake = target

        if result.fired:
            logger.info("Wake cycle fired %d task(s)", len(result.fired))
        return result

    async def _fire(self, task: Task) -> TaskEvent:
        """Record the run and move *task* to its next state. Persists the task."""
        fired_at = self._clock()
        await self._store.set_last_run(task.id, fired_at)

        rule = task.recurrence_rule
        if isinstance(rule, NoRecurrence):
            task.enabled = False
            task.next_run = None
            note = NOTE_COMPLETED
        elif rule is None:
            logger.warning(
                "Could not compute nextRun for recurring task %s (%r); disabling",
                task.id,
                task.cron_expression,
            )
            task.enabled = False
            task.next_run = None
            note = NOTE_INVALID_CRON
        else:
            task.next_run = rule.next_after(fired_at)
            note = NOTE_RESCHEDULED

        await self._store.put(task)
        logger.info("Fired task '%s' (%s): %s", task.title, task.id, note)
        return TaskEvent.for_task(task, "fired", note, fired_at)
