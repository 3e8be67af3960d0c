"""Interval recurrence — the "every N minutes" subset of cron."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

_EVERY_N_MINUTES = re.compile(r"^\*/(\d+) \* \* \* \*$")


@dataclass(frozen=True)
class NoRecurrence:
    """The task runs once."""

    def next_after(self, from_: datetime) -> datetime | None:
        return None


@dataclass(frozen=True)
class IntervalMinutes:
    """The task repeats every ``minutes`` minutes, counted from each firing."""

    minutes: int

    def next_after(self, from_: datetime) -> datetime | None:
        return from_ + timedelta(minutes=self.minutes)


Recurrence = NoRecurrence | IntervalMinutes


def parse_cron(expr: str) -> IntervalMinutes | None:
    """Parse ``*/N * * * *``. Returns None for any other shape or for N <= 0."""
    match = _EVERY_N_MINUTES.match(expr.strip())
    if not match:
        return None
    minutes = int(match.group(1))
    if minutes <= 0:
        return None
    return IntervalMinutes(minutes)


def compute_next(expr: str, from_: datetime) -> datetime | None:
    """Return the next fire time after *from_*, or None if *expr* is unsupported."""
    rule = parse_cron(expr)
    if rule is None:
        return None
    return rule.next_after(from_)


def describe_cron(expr: str) -> str:
    """Human-readable summary used in event notes."""
    cron = expr.strip()
    if cron == "* * * * *":
        return "Repeats every minute"
    rule = parse_cron(cron)
    if rule is not None:
        unit = "minute" if rule.minutes == 1 else "minutes"
        return f"Repeats every {rule.minutes} {unit}"
    return f'Repeats with cron "{cron}"'
