"""Task, timing and event data models."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_serializer, field_validator

from chime.scheduler.recurrence import NoRecurrence, Recurrence, parse_cron

TIMING_TYPES = ("datetime", "delay", "natural", "recurring")

EventKind = Literal["created", "updated", "fired", "disabled", "error"]


class TaskValidationError(ValueError):
    """A create request was rejected before anything was persisted."""


# -- Timestamps ----------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_ts(value: datetime) -> str:
    """Serialize an aware datetime as ISO 8601 UTC with a ``Z`` suffix."""
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO 8601 string into an aware UTC datetime, or None if invalid.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


# -- Timing variants -----------------------------------------------------------


class DatetimeTiming(BaseModel):
    type: Literal["datetime"] = "datetime"
    when: datetime

    @field_validator("when", mode="before")
    @classmethod
    def _parse_when(cls, value: Any) -> datetime:
        parsed = parse_ts(value)
        if parsed is None:
            msg = "Invalid datetime 'when' value"
            raise ValueError(msg)
        return parsed

    @field_serializer("when")
    def _dump_when(self, value: datetime) -> str:
        return format_ts(value)


class DelayTiming(BaseModel):
    type: Literal["delay"] = "delay"
    seconds: float

    @field_validator("seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            msg = "Delay seconds must be a positive number"
            raise ValueError(msg)
        return value


class RecurringTiming(BaseModel):
    type: Literal["recurring"] = "recurring"
    cron: str

    @field_validator("cron")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


Timing = Annotated[
    DatetimeTiming | DelayTiming | RecurringTiming,
    Field(discriminator="type"),
]

_timing_adapter: TypeAdapter[Any] = TypeAdapter(Timing)


def normalize_timing(raw: Any) -> dict[str, Any] | None:
    """Accept both ``{"type": "delay", "seconds": 5}`` and ``{"delay": 5}`` shapes.

    Returns the tagged form, or None when *raw* is not a recognizable object.
    """
    if not isinstance(raw, dict) or not raw:
        return None
    if raw.get("type"):
        return dict(raw)
    if len(raw) != 1:
        return None
    kind, value = next(iter(raw.items()))
    if kind == "datetime":
        return {"type": "datetime", "when": value}
    if kind == "delay":
        return {"type": "delay", "seconds": value}
    if kind == "natural":
        return {"type": "natural", "text": value}
    if kind == "recurring":
        cron = value.get("cron") if isinstance(value, dict) else value
        return {"type": "recurring", "cron": cron}
    return {"type": kind}


class CreateTaskParams(BaseModel):
    """Body of a create-task request, after timing normalization."""

    title: str | None = None
    description: str | None = None
    timing: Timing
    recurrence: str | None = None
    enabled: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


def parse_create_params(body: Any) -> CreateTaskParams:
    """Validate a create request, raising TaskValidationError on any problem."""
    if not isinstance(body, dict):
        msg = "Request body must be a JSON object"
        raise TaskValidationError(msg)

    timing = normalize_timing(body.get("timing"))
    if timing is None:
        msg = "Missing or invalid timing property"
        raise TaskValidationError(msg)

    timing_type = timing["type"]
    if timing_type not in TIMING_TYPES:
        msg = f"Unsupported timing type: {timing_type}"
        raise TaskValidationError(msg)
    if timing_type == "natural":
        msg = "Timing type 'natural' must be converted to 'datetime' before creation"
        raise TaskValidationError(msg)

    try:
        return CreateTaskParams.model_validate({**body, "timing": timing})
    except ValidationError as exc:
        raise TaskValidationError(_describe_validation_error(exc, timing_type)) from exc


def _describe_validation_error(exc: ValidationError, timing_type: str) -> str:
    error = exc.errors()[0]
    loc = error.get("loc", ())
    if loc and loc[0] == "timing":
        if timing_type == "delay":
            return "Delay seconds must be a positive number"
        if timing_type == "datetime":
            return "Invalid datetime 'when' value"
        return "Recurring timing requires a 'cron' string"
    field_name = ".".join(str(part) for part in loc) or "body"
    return f"Invalid {field_name}: {error.get('msg', 'invalid value')}"


# -- Task ----------------------------------------------------------------------


@dataclass
class Task:
    """A reminder persisted by the scheduling actor.

    Attributes:
        id: Unique identifier (UUID hex), immutable.
        title: Human-readable title.
        timing: How the first run was requested.
        created_at: Creation time (UTC).
        description: Optional longer text.
        recurrence: Legacy recurrence string; makes any timing repeat.
        enabled: False once the task can never run again automatically.
        next_run: Next planned execution; None when nothing is pending.
        metadata: Free-form client data, stored as given.
    """

    id: str
    title: str
    timing: DatetimeTiming | DelayTiming | RecurringTiming
    created_at: datetime = field(default_factory=utcnow)
    description: str | None = None
    recurrence: str | None = None
    enabled: bool = True
    next_run: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    # -- Convenience properties ------------------------------------------------

    @property
    def cron_expression(self) -> str | None:
        """The cron text used when the task fires, if it repeats at all."""
        if isinstance(self.timing, RecurringTiming):
            return self.timing.cron
        return self.recurrence or None

    @property
    def is_recurring(self) -> bool:
        return self.cron_expression is not None

    @property
    def recurrence_rule(self) -> Recurrence | None:
        """``NoRecurrence`` for one-shot tasks, None when the cron is unsupported."""
        if not self.is_recurring:
            return NoRecurrence()
        return parse_cron(self.cron_expression or "")

    def is_due(self, at: datetime) -> bool:
        return self.enabled and self.next_run is not None and self.next_run <= at

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "createdAt": format_ts(self.created_at),
            "timing": self.timing.model_dump(mode="json"),
            "recurrence": self.recurrence,
            "enabled": self.enabled,
            "metadata": self.metadata,
        }
        if self.description is not None:
            data["description"] = self.description
        if self.next_run is not None:
            data["nextRun"] = format_ts(self.next_run)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        return cls(
            id=data["id"],
            title=data.get("title") or "Untitled",
            timing=_timing_adapter.validate_python(data["timing"]),
            created_at=parse_ts(data.get("createdAt")) or utcnow(),
            description=data.get("description"),
            recurrence=data.get("recurrence"),
            enabled=bool(data.get("enabled", True)),
            next_run=parse_ts(data.get("nextRun")),
            metadata=data.get("metadata") or {},
        )


# -- TaskEvent -----------------------------------------------------------------


@dataclass(frozen=True)
class TaskEvent:
    """One entry in the event log. Immutable once appended."""

    id: str
    task_id: str
    title: str
    kind: EventKind
    occurred_at: datetime
    next_run: datetime | None = None
    note: str = ""

    @classmethod
    def for_task(
        cls, task: Task, kind: EventKind, note: str, occurred_at: datetime
    ) -> TaskEvent:
        return cls(
            id=make_task_id(),
            task_id=task.id,
            title=task.title or "Untitled task",
            kind=kind,
            occurred_at=occurred_at,
            next_run=task.next_run,
            note=note,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "title": self.title,
            "kind": self.kind,
            "occurredAt": format_ts(self.occurred_at),
            "nextRun": format_ts(self.next_run) if self.next_run else None,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskEvent:
        return cls(
            id=data["id"],
            task_id=data["taskId"],
            title=data.get("title", ""),
            kind=data["kind"],
            occurred_at=parse_ts(data["occurredAt"]) or utcnow(),
            next_run=parse_ts(data.get("nextRun")),
            note=data.get("note") or "",
        )


def make_task_id() -> str:
    """Generate a new task or event ID."""
    return uuid.uuid4().hex
