"""Tests for the HTTP API."""

from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from chime.api.server import create_app
from chime.llm.time_parser import TimeParseError
from chime.scheduler.actor import ActorDirectory

pytestmark = pytest.mark.usefixtures("_no_turso")


@pytest.fixture
async def directory(tmp_path: Path, clock):
    d = ActorDirectory(db_path=tmp_path / "test.db", clock=clock, durable_wake=False)
    yield d
    await d.stop()


@pytest.fixture
async def client(directory: ActorDirectory):
    server = TestServer(create_app(directory))
    c = TestClient(server)
    await c.start_server()
    yield c
    await c.close()


def _fake_stream(chunks: list[str], calls: list[dict] | None = None):
    """Stand-in for ``stream_chat`` yielding fixed text deltas."""

    @asynccontextmanager
    async def _stream(messages, *, system=None, **kwargs):
        if calls is not None:
            calls.append({"messages": messages, "system": system})

        async def _deltas():
            for chunk in chunks:
                yield chunk

        yield _deltas()

    return _stream


# -- Health --------------------------------------------------------------------


async def test_health_check(client: TestClient) -> None:
    resp = await client.get("/health")
    assert resp.status == 200
    assert await resp.json() == {"ok": True}


# -- Create --------------------------------------------------------------------


async def test_create_delay_task(client: TestClient) -> None:
    resp = await client.post("/api/tasks", json={"title": "Tea", "timing": {"delay": 60}})
    assert resp.status == 201
    task = (await resp.json())["task"]
    assert task["title"] == "Tea"
    assert task["enabled"] is True
    assert task["timing"] == {"type": "delay", "seconds": 60.0}
    assert task["nextRun"] == "2025-06-01T09:01:00Z"

    listing = await (await client.get("/api/tasks")).json()
    assert [t["id"] for t in listing["tasks"]] == [task["id"]]


async def test_create_tagged_datetime_task(client: TestClient) -> None:
    resp = await client.post(
        "/api/tasks",
        json={"title": "Call", "timing": {"type": "datetime", "when": "2025-06-02T10:00:00Z"}},
    )
    assert resp.status == 201
    assert (await resp.json())["task"]["nextRun"] == "2025-06-02T10:00:00Z"


async def test_natural_timing_rejected(client: TestClient) -> None:
    resp = await client.post(
        "/api/tasks", json={"title": "x", "timing": {"type": "natural", "text": "tomorrow"}}
    )
    assert resp.status == 400
    assert "natural" in (await resp.json())["error"]

    listing = await (await client.get("/api/tasks")).json()
    assert listing["tasks"] == []


@pytest.mark.parametrize(
    ("body", "error"),
    [
        ({"title": "x"}, "Missing or invalid timing property"),
        ({"timing": {"type": "weekly"}}, "Unsupported timing type: weekly"),
        ({"timing": {"delay": -1}}, "Delay seconds must be a positive number"),
        ({"timing": {"datetime": "soonish"}}, "Invalid datetime 'when' value"),
    ],
)
async def test_invalid_timing_rejected(client: TestClient, body: dict, error: str) -> None:
    resp = await client.post("/api/tasks", json=body)
    assert resp.status == 400
    assert (await resp.json())["error"] == error


async def test_invalid_json_rejected(client: TestClient) -> None:
    resp = await client.post("/api/tasks", data="{not json")
    assert resp.status == 400


async def test_unparsable_cron_still_created(client: TestClient) -> None:
    resp = await client.post(
        "/api/tasks", json={"title": "Odd", "timing": {"recurring": "0 9 * * *"}}
    )
    assert resp.status == 201
    assert "nextRun" not in (await resp.json())["task"]


async def test_wrong_method_returns_405(client: TestClient) -> None:
    resp = await client.put("/api/tasks", json={})
    assert resp.status == 405


# -- Due / run-due / events ----------------------------------------------------


async def test_stand_up_flow(client: TestClient, clock) -> None:
    resp = await client.post("/api/tasks", json={"title": "Stand-up", "timing": {"delay": 60}})
    task_id = (await resp.json())["task"]["id"]
    clock.advance(60.5)

    due = await (await client.get("/api/tasks/due")).json()
    assert [t["id"] for t in due["due"]] == [task_id]

    run = await client.post("/api/tasks/run-due")
    assert run.status == 200
    assert await run.json() == {"ok": True, "ran": True, "fired": 1}

    due = await (await client.get("/api/tasks/due")).json()
    assert due["due"] == []

    page = await (await client.get("/api/tasks/events")).json()
    fired = [e for e in page["events"] if e["kind"] == "fired"]
    assert len(fired) == 1
    assert fired[0]["note"] == "Task completed"
    assert page["latest"] == page["events"][-1]["occurredAt"]

    tasks = await (await client.get("/api/tasks")).json()
    assert tasks["tasks"][0]["enabled"] is False


async def test_force_run(client: TestClient) -> None:
    resp = await client.post("/api/tasks/force-run")
    assert resp.status == 200
    assert await resp.json() == {"ok": True, "forced": True, "fired": 0}


async def test_events_since_cursor(client: TestClient, clock) -> None:
    await client.post("/api/tasks", json={"title": "A", "timing": {"delay": 60}})
    first = await (await client.get("/api/tasks/events")).json()
    clock.advance(1)
    await client.post("/api/tasks", json={"title": "B", "timing": {"delay": 60}})

    page = await (
        await client.get("/api/tasks/events", params={"since": first["latest"]})
    ).json()
    assert [e["title"] for e in page["events"]] == ["B"]


# -- Chat ----------------------------------------------------------------------


async def test_chat_info(client: TestClient) -> None:
    data = await (await client.get("/api/chat")).json()
    assert data["ok"] is True
    assert data["model"]


async def test_chat_too_many_messages(client: TestClient) -> None:
    messages = [{"role": "user", "content": f"x{i}"} for i in range(41)]
    resp = await client.post("/api/chat", json={"messages": messages})
    assert resp.status == 413


async def test_chat_content_too_large(client: TestClient) -> None:
    messages = [{"role": "user", "content": "x" * 13_000}] * 2
    resp = await client.post("/api/chat", json={"messages": messages})
    assert resp.status == 413


async def test_chat_empty_content_rejected(client: TestClient) -> None:
    resp = await client.post("/api/chat", json={"messages": [{"role": "user", "content": ""}]})
    assert resp.status == 400


async def test_chat_empty_conversation_rejected(client: TestClient) -> None:
    resp = await client.post("/api/chat", json={"messages": []})
    assert resp.status == 400
    assert await resp.json() == {"error": "No messages provided"}


async def test_chat_system_only_rejected(client: TestClient) -> None:
    with patch("chime.api.server.stream_chat") as stream:
        resp = await client.post(
            "/api/chat", json={"messages": [{"role": "system", "content": "Be terse."}]}
        )
    assert resp.status == 400
    stream.assert_not_called()


async def test_chat_streams_reply(client: TestClient) -> None:
    calls: list[dict] = []
    with patch("chime.api.server.stream_chat", _fake_stream(["Hel", "lo"], calls)):
        resp = await client.post(
            "/api/chat", json={"messages": [{"role": "user", "content": "Hello"}]}
        )
        body = await resp.text()

    assert resp.status == 200
    assert resp.headers["Content-Type"].startswith("text/event-stream")
    assert 'data: {"response": "Hel"}' in body
    assert body.rstrip().endswith("data: [DONE]")
    assert calls[0]["messages"] == [{"role": "user", "content": "Hello"}]
    assert calls[0]["system"]


async def test_chat_client_system_prompt_wins(client: TestClient) -> None:
    calls: list[dict] = []
    messages = [
        {"role": "system", "content": "Be terse."},
        {"role": "user", "content": "Hi"},
    ]
    with patch("chime.api.server.stream_chat", _fake_stream(["ok"], calls)):
        resp = await client.post("/api/chat", json={"messages": messages})
        await resp.text()

    assert calls[0]["system"] == "Be terse."
    assert calls[0]["messages"] == [{"role": "user", "content": "Hi"}]


async def test_chat_upstream_failure(client: TestClient) -> None:
    @asynccontextmanager
    async def _broken(messages, **kwargs):
        raise RuntimeError("upstream down")
        yield

    with patch("chime.api.server.stream_chat", _broken):
        resp = await client.post(
            "/api/chat", json={"messages": [{"role": "user", "content": "Hello"}]}
        )

    assert resp.status == 500
    assert await resp.json() == {"error": "Failed to process request"}


# -- Parse time ----------------------------------------------------------------


async def test_parse_time_empty(client: TestClient) -> None:
    resp = await client.post("/api/parse-time", json={"text": "  "})
    assert resp.status == 400
    assert (await resp.json())["error"] == "EMPTY"


async def test_parse_time_malformed_body(client: TestClient) -> None:
    resp = await client.post("/api/parse-time", data="{not json")
    assert resp.status == 500
    assert await resp.json() == {"error": "SERVER_ERROR"}


async def test_parse_time_success(client: TestClient) -> None:
    resolution = {"iso": None, "durationSeconds": 300, "ambiguous": False}
    with patch(
        "chime.api.server.resolve_time_expression", AsyncMock(return_value=resolution)
    ) as resolver:
        resp = await client.post("/api/parse-time", json={"text": "in 5 minutes"})

    assert resp.status == 200
    assert await resp.json() == resolution
    resolver.assert_awaited_once_with("in 5 minutes")


async def test_parse_time_unparsable_reply(client: TestClient) -> None:
    with patch(
        "chime.api.server.resolve_time_expression",
        AsyncMock(side_effect=TimeParseError("NO_JSON", "sorry")),
    ):
        resp = await client.post("/api/parse-time", json={"text": "whenever"})

    assert resp.status == 422
    assert await resp.json() == {"error": "NO_JSON", "raw": "sorry"}


async def test_parse_time_server_error(client: TestClient) -> None:
    with patch(
        "chime.api.server.resolve_time_expression",
        AsyncMock(side_effect=RuntimeError("boom")),
    ):
        resp = await client.post("/api/parse-time", json={"text": "noon"})

    assert resp.status == 500
    assert await resp.json() == {"error": "SERVER_ERROR"}
