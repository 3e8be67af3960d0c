"""Reminder scheduling — models, persistence, wake-ups and the firing cycle."""

from chime.scheduler.actor import ActorDirectory, TaskSchedulerActor
from chime.scheduler.alarm import AlarmScheduler
from chime.scheduler.events import EventLog, EventPage
from chime.scheduler.lifecycle import CycleResult, LifecycleController
from chime.scheduler.models import Task, TaskEvent, TaskValidationError
from chime.scheduler.recurrence import IntervalMinutes, NoRecurrence, compute_next
from chime.scheduler.store import TaskStore
from chime.scheduler.wake import ArmResult, DurableWake

__all__ = [
    "ActorDirectory",
    "AlarmScheduler",
    "ArmResult",
    "CycleResult",
    "DurableWake",
    "EventLog",
    "EventPage",
    "IntervalMinutes",
    "LifecycleController",
    "NoRecurrence",
    "Task",
    "TaskEvent",
    "TaskSchedulerActor",
    "TaskStore",
    "TaskValidationError",
    "compute_next",
]
