"""Natural-language time resolution — "tomorrow at 9am" to an ISO timestamp.

Clients call this before creating a task: the scheduler itself only accepts
concrete ``datetime`` / ``delay`` / ``recurring`` timings.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from chime.config import settings
from chime.llm.client import complete_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You convert a user natural-language time expression into JSON ONLY. "
    'Return strictly one JSON object: {"iso":"<UTC ISO or null>","durationSeconds":'
    '<number or null>,"ambiguous":<true|false>} with no extra text. "iso" is an '
    "absolute UTC ISO8601 time if resolvable. If the expression is relative (e.g. "
    '"in 5 minutes") compute durationSeconds and leave iso null. If specific '
    'date/time (e.g. "tomorrow at 9am") compute iso and durationSeconds null. If '
    "ambiguous set ambiguous true and iso null. Never output anything except the JSON."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class TimeParseError(Exception):
    """The model reply could not be turned into a resolution.

    Attributes:
        code: ``EMPTY``, ``NO_JSON`` or ``PARSE_FAIL``.
        raw: The model's reply, when there was one.
    """

    def __init__(self, code: str, raw: str = "") -> None:
        super().__init__(code)
        self.code = code
        self.raw = raw


def extract_resolution(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of *raw* and fill in missing keys."""
    match = _JSON_OBJECT.search(raw)
    if not match:
        raise TimeParseError("NO_JSON", raw)
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise TimeParseError("PARSE_FAIL", raw) from exc
    if not isinstance(parsed, dict):
        raise TimeParseError("PARSE_FAIL", raw)
    parsed.setdefault("iso", None)
    parsed.setdefault("durationSeconds", None)
    parsed.setdefault("ambiguous", False)
    return parsed


async def resolve_time_expression(text: str) -> dict[str, Any]:
    """Ask the model to resolve *text*; returns ``{iso, durationSeconds, ambiguous}``."""
    expr = text.strip()
    if not expr:
        raise TimeParseError("EMPTY")
    raw = await complete_text(
        [{"role": "user", "content": expr}],
        system=SYSTEM_PROMPT,
        model=settings.parse_model,
        max_tokens=256,
        temperature=0,
    )
    resolution = extract_resolution(raw.strip())
    logger.info("Resolved time expression %r -> %s", expr, resolution)
    return resolution
