"""AlarmScheduler — the single outstanding wake request of one actor instance."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from chime.config import settings
from chime.scheduler.models import format_ts, utcnow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from chime.scheduler.wake import WakeFacility

logger = logging.getLogger(__name__)


class AlarmScheduler:
    """Keeps at most one wake armed, always for the earliest known due time.

    ``pending`` and ``last_fired`` live only on this instance and start empty
    after a restart; nothing durable depends on them.

    Args:
        on_wake: Async callable run when the in-memory fallback timer fires.
        durable: Preferred wake facility; None means fallback timers only.
        clock: Returns the current UTC time.
        jitter_ms: Candidates this close to now are treated as already due.
    """

    def __init__(
        self,
        on_wake: Callable[[], Awaitable[None]],
        durable: WakeFacility | None = None,
        clock: Callable[[], datetime] = utcnow,
        jitter_ms: int | None = None,
    ) -> None:
        self._on_wake = on_wake
        self._durable = durable
        self._clock = clock
        self._jitter = timedelta(
            milliseconds=settings.alarm_jitter_ms if jitter_ms is None else jitter_ms
        )
        self.pending: datetime | None = None
        self.last_fired: datetime | None = None
        self._fallback: asyncio.Handle | None = None
        self._immediate: asyncio.Handle | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def has_fallback(self) -> bool:
        return self._fallback is not None

    # -- Arming ----------------------------------------------------------------

    async def schedule(self, candidate: datetime) -> bool:
        """Arm a wake for *candidate* unless an equal or earlier one is pending.

        Returns True when a wake (durable or fallback) was armed.
        """
        iso = format_ts(candidate)
        if candidate <= self._clock() + self._jitter:
            logger.debug("Skip arming near-past timestamp %s; firing on next tick", iso)
            self._queue_immediate(candidate)
            return False
        if self.pending is not None and self.pending <= candidate:
            logger.debug("Skip duplicate wake for %s (pending=%s)", iso, format_ts(self.pending))
            return False
        if candidate == self.last_fired:
            logger.info("Suppress re-arm for just-fired timestamp %s", iso)
            return False

        self.pending = candidate
        if self._durable is not None:
            result = await self._durable.arm(candidate)
            if result.ok:
                self.cancel_fallback()
                logger.info("Durable wake armed for %s", iso)
                return True
            logger.warning("Durable wake unavailable (%s); using in-memory timer", result.reason)
        self._arm_fallback(candidate)
        return True

    def begin_cycle(self, now: datetime, due_by: datetime | None = None) -> datetime:
        """Record the wake being handled as ``last_fired``.

        ``pending`` is consumed only when it has come due (at or before *due_by*,
        default *now*). A manual run ahead of the armed time leaves it in place:
        the facility still holds that wake.
        """
        if self.pending is not None and self.pending <= (due_by or now):
            self.last_fired = self.pending
            self.pending = None
        else:
            self.last_fired = now
        return self.last_fired

    # -- Fallback timer --------------------------------------------------------

    def _arm_fallback(self, when: datetime) -> None:
        self.cancel_fallback()
        loop = asyncio.get_running_loop()
        delay = (when - self._clock()).total_seconds()
        if delay <= 0:
            if when == self.last_fired:
                logger.info("Skip immediate fallback for already-fired %s", format_ts(when))
                return
            self._fallback = loop.call_soon(self._spawn_wake, when)
        else:
            self._fallback = loop.call_later(delay, self._spawn_wake, when)
        logger.warning("Using in-memory fallback timer (non-durable) for %s", format_ts(when))

    def _queue_immediate(self, when: datetime) -> None:
        """Run a cycle on the next loop tick for a candidate that is already due."""
        if when == self.last_fired or self._immediate is not None:
            return
        self._immediate = asyncio.get_running_loop().call_soon(self._spawn_immediate, when)

    def _spawn_immediate(self, when: datetime) -> None:
        self._immediate = None
        self._start_wake(when)

    def _spawn_wake(self, when: datetime) -> None:
        self._fallback = None
        self._start_wake(when)

    def _start_wake(self, when: datetime) -> None:
        task = asyncio.create_task(self._run_wake(when))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_wake(self, when: datetime) -> None:
        logger.info("(fallback) firing for %s", format_ts(when))
        try:
            await self._on_wake()
        except Exception:
            logger.exception("Fallback wake failed for %s", format_ts(when))

    def cancel_fallback(self) -> None:
        if self._fallback is not None:
            self._fallback.cancel()
            self._fallback = None

    async def close(self) -> None:
        """Cancel pending timers and any wake still running from them."""
        self.cancel_fallback()
        if self._immediate is not None:
            self._immediate.cancel()
            self._immediate = None
        for task in list(self._inflight):
            task.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
