"""Human-readable notes attached to ``created`` events."""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from chime.scheduler.models import DatetimeTiming, DelayTiming, RecurringTiming
from chime.scheduler.recurrence import describe_cron

if TYPE_CHECKING:
    from chime.scheduler.models import Task

logger = logging.getLogger(__name__)

_UNITS = (("day", 86_400), ("hour", 3_600), ("minute", 60), ("second", 1))


def format_when(value: datetime) -> str:
    """``Jun 01, 2025, 09:00:00 AM UTC``"""
    return value.astimezone(UTC).strftime("%b %d, %Y, %I:%M:%S %p") + " UTC"


def format_duration(seconds: float) -> str:
    """Render at most the two largest units, e.g. ``1 hour 30 minutes``."""
    remaining = max(0, round(seconds)) if math.isfinite(seconds) else 0
    parts: list[str] = []
    for label, size in _UNITS:
        if remaining < size:
            continue
        count, remaining = divmod(remaining, size)
        parts.append(f"{count} {label}" + ("" if count == 1 else "s"))
        if len(parts) == 2:
            break
    return " ".join(parts) or "less than a second"


def build_creation_note(task: Task) -> str:
    timing = task.timing
    if isinstance(timing, DatetimeTiming):
        return f"Scheduled for {format_when(task.next_run or timing.when)}"
    if isinstance(timing, DelayTiming):
        duration = format_duration(timing.seconds)
        if task.next_run:
            return f"Runs in {duration} (≈ {format_when(task.next_run)})"
        return f"Runs in {duration}"
    if isinstance(timing, RecurringTiming):
        summary = describe_cron(timing.cron)
        if task.next_run:
            return f"{summary}. Next at {format_when(task.next_run)}"
        return summary
    logger.warning("No creation note for timing %r", timing)
    return "Timing: unknown"
