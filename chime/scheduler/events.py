"""EventLog — the capped lifecycle history clients poll with a cursor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from chime.config import settings
from chime.scheduler.models import format_ts, parse_ts

if TYPE_CHECKING:
    from chime.scheduler.models import TaskEvent
    from chime.scheduler.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class EventPage:
    """Events newer than a cursor plus the bookmark for the next poll."""

    events: list[TaskEvent]
    latest: str | None

    def to_dict(self) -> dict:
        return {"events": [event.to_dict() for event in self.events], "latest": self.latest}


class EventLog:
    """Append-only, FIFO-capped event history layered on a TaskStore.

    Args:
        store: Backing store; the log lives under a single key.
        limit: Maximum retained entries (default from settings).
    """

    def __init__(self, store: TaskStore, limit: int | None = None) -> None:
        self._store = store
        self.limit = limit or settings.event_history_limit

    async def append(self, events: list[TaskEvent]) -> None:
        """Write *events* as one batch. No-op for an empty list."""
        if not events:
            return
        await self._store.append_events(events, limit=self.limit)
        logger.debug("Appended %d event(s)", len(events))

    async def since(self, cursor: str | None = None) -> EventPage:
        """Return entries strictly newer than *cursor*.

        A missing or unparsable cursor returns the whole log.
        """
        since = parse_ts(cursor) if cursor else None
        if cursor and since is None:
            logger.info("Ignoring unparsable event cursor: %r", cursor)
        events = await self._store.get_events(since)
        latest = format_ts(events[-1].occurred_at) if events else None
        return EventPage(events=events, latest=latest)
