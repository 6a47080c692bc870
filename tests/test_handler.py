import asyncio
import json
import logging

import pytest

from conftest import FakeCompletionClient, FakeConnection, SlowConnection
from constants import AI_FALLBACK_TEXT, AI_SENDER
from handler import build_connection_handler


def frame(event, data=None):
    return json.dumps({"event": event, "data": data})


@pytest.mark.asyncio
async def test_create_room_confirms_only_first_request(handler, backend):
    first, second = FakeConnection(), FakeConnection()

    await handler.handle_frame(first, frame("create-room", {"roomId": "R1"}))
    await handler.handle_frame(second, frame("create-room", {"roomId": "R1"}))

    assert first.sent == [("room-created", None)]
    assert second.sent == []
    assert list(backend.rooms) == ["R1"]


@pytest.mark.asyncio
async def test_lowercase_roomid_is_accepted(handler, backend):
    conn = FakeConnection()
    await handler.handle_frame(conn, frame("create-room", {"roomid": "R1"}))
    assert backend.get_room("R1") is not None


@pytest.mark.asyncio
async def test_send_to_missing_room_is_silent(handler, backend):
    conn = FakeConnection()
    await handler.handle_frame(conn, frame("send-message", {"roomId": "nope", "sender": "alice", "text": "@ai hi"}))
    assert conn.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"data": {}}),
        frame("dance", {}),
        frame("join-room", {"roomId": "R1"}),
        frame("send-message", ["R1", "alice", "hi"]),
    ],
)
async def test_bad_frames_get_an_error_reply(handler, raw):
    conn = FakeConnection()
    await handler.handle_frame(conn, raw)
    assert [event for event, _ in conn.sent] == ["error"]


@pytest.mark.asyncio
async def test_disconnecting_unsubscribes_and_starts_grace_period(handler, backend, scheduler):
    conn = FakeConnection()
    await handler.handle_frame(conn, frame("create-room", {"roomId": "R1"}))
    await handler.handle_frame(conn, frame("join-room", {"roomId": "R1", "username": "alice"}))

    await handler.disconnecting(conn)

    assert backend.subscribers == {}
    assert "alice" in backend.get_room("R1").pending_departures
    await scheduler.fire_all()
    assert backend.get_room("R1") is None


async def run_scenario(handler, scheduler):
    alice, bob = FakeConnection(), FakeConnection()
    await handler.handle_frame(alice, frame("create-room", {"roomId": "R1"}))
    await handler.handle_frame(alice, frame("join-room", {"roomId": "R1", "username": "alice"}))
    await handler.handle_frame(bob, frame("join-room", {"roomId": "R1", "username": "bob"}))
    await handler.handle_frame(alice, frame("send-message", {"roomId": "R1", "sender": "alice", "text": "hello"}))

    hello = {"sender": "alice", "text": "hello"}
    assert hello in alice.events("receive-message")
    assert hello in bob.events("receive-message")

    # bob reloads the page
    await handler.disconnecting(bob)
    bob = FakeConnection()
    await handler.handle_frame(bob, frame("join-room", {"roomId": "R1", "username": "bob"}))
    await scheduler.fire_all()
    assert bob.events("room-history") == [[hello]]

    alice.sent.clear()
    await handler.handle_frame(alice, frame("send-message", {"roomId": "R1", "sender": "alice", "text": "@ai summarize"}))
    await handler.augmentor.wait_idle()
    return alice, bob


@pytest.mark.asyncio
async def test_chat_scenario_with_assistant(backend, scheduler):
    client = FakeCompletionClient(reply="alice said hello")
    handler = build_connection_handler(backend, scheduler=scheduler, completion_client=client)

    alice, bob = await run_scenario(handler, scheduler)

    expected = [
        {"sender": "alice", "text": "@ai summarize"},
        {"sender": AI_SENDER, "text": "alice said hello"},
    ]
    assert alice.events("receive-message") == expected
    assert bob.events("receive-message") == expected
    assert client.prompts == ["alice: hello\nalice: @ai summarize\nsummarize"]
    assert [m.sender for m in backend.get_room("R1").history] == ["alice", "alice", AI_SENDER]


@pytest.mark.asyncio
async def test_chat_scenario_with_failing_assistant(backend, scheduler):
    client = FakeCompletionClient(error=TimeoutError("upstream timed out"))
    handler = build_connection_handler(backend, scheduler=scheduler, completion_client=client)

    alice, bob = await run_scenario(handler, scheduler)

    assert alice.texts() == ["@ai summarize", AI_FALLBACK_TEXT]
    assert bob.texts() == ["@ai summarize", AI_FALLBACK_TEXT]


@pytest.mark.asyncio
async def test_prompt_ignores_messages_sent_during_broadcast(backend, scheduler):
    client = FakeCompletionClient(reply="hi alice")
    handler = build_connection_handler(backend, scheduler=scheduler, completion_client=client)
    backend.create_room("R1")
    alice, bob = FakeConnection(), SlowConnection()
    backend.subscribe("R1", alice)
    backend.subscribe("R1", bob)

    await asyncio.gather(
        handler.handle_frame(alice, frame("send-message", {"roomId": "R1", "sender": "alice", "text": "@ai hi"})),
        handler.handle_frame(bob, frame("send-message", {"roomId": "R1", "sender": "bob", "text": "later"})),
    )
    await handler.augmentor.wait_idle()

    assert client.prompts == ["alice: @ai hi\nhi"]
    assert [m.text for m in backend.get_room("R1").history] == ["@ai hi", "later", "hi alice"]


@pytest.mark.asyncio
async def test_trigger_still_answered_when_room_goes_during_broadcast(backend, scheduler):
    client = FakeCompletionClient(reply="hi alice")
    handler = build_connection_handler(backend, scheduler=scheduler, completion_client=client)
    backend.create_room("R1")
    alice, bob = FakeConnection(), SlowConnection()
    backend.subscribe("R1", bob)

    async def delete_room():
        await asyncio.sleep(0)
        backend.delete_room("R1")

    await asyncio.gather(
        handler.handle_frame(alice, frame("send-message", {"roomId": "R1", "sender": "alice", "text": "@ai hi"})),
        delete_room(),
    )
    await handler.augmentor.wait_idle()

    assert client.prompts == ["alice: @ai hi\nhi"]
    assert bob.texts() == ["@ai hi", "hi alice"]
    assert backend.get_room("R1") is None


@pytest.mark.asyncio
async def test_disconnecting_is_logged_with_event_name(handler, caplog):
    conn = FakeConnection()
    with caplog.at_level(logging.INFO, logger="handler"):
        await handler.disconnecting(conn)
    assert f"Handled disconnecting for connection {conn.connection_id}" in caplog.text
