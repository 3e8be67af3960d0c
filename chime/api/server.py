"""Async HTTP API — task routes, chat and natural-language time parsing.

Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop. Every
``/api/tasks`` route is forwarded to the actor of the configured scheduling
domain (``SCHEDULER_DOMAIN``, default ``shared``).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from aiohttp import web

from chime.config import settings
from chime.llm.client import stream_chat
from chime.llm.time_parser import TimeParseError, resolve_time_expression
from chime.scheduler.actor import ActorDirectory, TaskSchedulerActor
from chime.scheduler.models import TaskValidationError

logger = logging.getLogger(__name__)

DIRECTORY_KEY = web.AppKey("directory", ActorDirectory)

MAX_CHAT_MESSAGES = 40
MAX_CHAT_CHARS = 25_000
_CHAT_ROLES = {"system", "user", "assistant"}


async def _actor(request: web.Request) -> TaskSchedulerActor:
    return await request.app[DIRECTORY_KEY].get(settings.scheduler_domain)


async def _read_json(request: web.Request) -> Any:
    """Return the decoded body, or None when it is not valid JSON."""
    try:
        return await request.json()
    except ValueError:
        return None


# -- Tasks -------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"ok": True})


async def _list_tasks(request: web.Request) -> web.Response:
    actor = await _actor(request)
    tasks = await actor.list_tasks()
    return web.json_response({"tasks": [task.to_dict() for task in tasks]})


async def _list_due(request: web.Request) -> web.Response:
    actor = await _actor(request)
    due = await actor.list_due()
    return web.json_response({"due": [task.to_dict() for task in due]})


async def _create_task(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if body is None:
        return web.json_response({"error": "invalid JSON"}, status=400)

    actor = await _actor(request)
    try:
        task = await actor.create_task(body)
    except TaskValidationError as exc:
        logger.info("Rejected task creation: %s", exc)
        return web.json_response({"error": str(exc)}, status=400)
    return web.json_response({"task": task.to_dict()}, status=201)


async def _run_due(request: web.Request) -> web.Response:
    actor = await _actor(request)
    result = await actor.run_due()
    return web.json_response({"ok": True, "ran": True, "fired": len(result.fired)})


async def _force_run(request: web.Request) -> web.Response:
    """POST /api/tasks/force-run — manual cycle for environments without wake-ups."""
    actor = await _actor(request)
    result = await actor.run_due()
    return web.json_response({"ok": True, "forced": True, "fired": len(result.fired)})


async def _events(request: web.Request) -> web.Response:
    actor = await _actor(request)
    page = await actor.get_events(request.query.get("since"))
    return web.json_response(page.to_dict())


# -- Chat --------------------------------------------------------------------


async def _chat_info(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "model": settings.chat_model})


def _validate_chat(messages: Any) -> tuple[int, str] | None:
    """Return ``(status, error)`` for an unacceptable payload, else None."""
    if not isinstance(messages, list) or len(messages) > MAX_CHAT_MESSAGES:
        return 413, "Too many messages"
    total = 0
    for message in messages:
        if not isinstance(message, dict):
            return 400, "Invalid message content"
        content = message.get("content")
        if not isinstance(content, str) or not content:
            return 400, "Invalid message content"
        if message.get("role", "user") not in _CHAT_ROLES:
            return 400, "Invalid message role"
        total += len(content)
        if total > MAX_CHAT_CHARS:
            return 413, "Message content too large"
    return None


def _sse(data: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(data)}\n\n".encode()


async def _chat(request: web.Request) -> web.StreamResponse:
    """POST /api/chat — stream the assistant reply as server-sent events."""
    body = await _read_json(request)
    if not isinstance(body, dict):
        return web.json_response({"error": "invalid JSON"}, status=400)

    messages = body.get("messages", [])
    problem = _validate_chat(messages)
    if problem is not None:
        status, error = problem
        return web.json_response({"error": error}, status=status)

    system = settings.chat_system_prompt
    conversation: list[dict[str, str]] = []
    for message in messages:
        role = message.get("role", "user")
        if role == "system":
            system = message["content"]
        else:
            conversation.append({"role": role, "content": message["content"]})
    if not conversation:
        return web.json_response({"error": "No messages provided"}, status=400)

    response = web.StreamResponse(
        headers={"Content-Type": "text/event-stream", "Cache-Control": "no-cache"}
    )
    try:
        async with stream_chat(conversation, system=system) as deltas:
            await response.prepare(request)
            async for text in deltas:
                await response.write(_sse({"response": text}))
            await response.write(b"data: [DONE]\n\n")
    except Exception:
        logger.exception("Error processing chat request")
        if not response.prepared:
            return web.json_response({"error": "Failed to process request"}, status=500)
    return response


# -- Time parsing ------------------------------------------------------------


async def _parse_time(request: web.Request) -> web.Response:
    """POST /api/parse-time — ``{"text": ...}`` → ``{iso, durationSeconds, ambiguous}``."""
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Parse time request with malformed body")
        return web.json_response({"error": "SERVER_ERROR"}, status=500)
    text = body.get("text") if isinstance(body, dict) else None
    if not isinstance(text, str) or not text.strip():
        return web.json_response(
            {"error": "EMPTY", "message": "No expression provided"}, status=400
        )

    try:
        resolution = await resolve_time_expression(text)
    except TimeParseError as exc:
        logger.warning("Time parse failed (%s): %r", exc.code, exc.raw[:200])
        return web.json_response({"error": exc.code, "raw": exc.raw}, status=422)
    except Exception:
        logger.exception("Parse time error")
        return web.json_response({"error": "SERVER_ERROR"}, status=500)
    return web.json_response(resolution)


def create_app(directory: ActorDirectory) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[DIRECTORY_KEY] = directory
    app.router.add_get("/health", _health)

    app.router.add_get("/api/tasks", _list_tasks)
    app.router.add_post("/api/tasks", _create_task)
    app.router.add_get("/api/tasks/due", _list_due)
    app.router.add_post("/api/tasks/run-due", _run_due)
    app.router.add_post("/api/tasks/force-run", _force_run)
    app.router.add_get("/api/tasks/events", _events)

    app.router.add_get("/api/chat", _chat_info)
    app.router.add_post("/api/chat", _chat)
    app.router.add_post("/api/parse-time", _parse_time)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        directory: ActorDirectory,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.directory = directory
        self.host = host or settings.http_host
        self.port = port or settings.http_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = create_app(self.directory)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
