import asyncio
import itertools

import pytest

from backend import RoomBackend
from handler import build_connection_handler

_ids = itertools.count(1)


class FakeConnection:
    def __init__(self, connection_id=None):
        self.connection_id = connection_id or f"conn-{next(_ids)}"
        self.sent = []

    async def send(self, event, data=None):
        self.sent.append((event, data))

    def events(self, name):
        return [data for event, data in self.sent if event == name]

    def texts(self):
        return [data["text"] for event, data in self.sent if event == "receive-message"]


class BrokenConnection(FakeConnection):
    async def send(self, event, data=None):
        raise ConnectionError("socket closed")


class SlowConnection(FakeConnection):
    """A subscriber whose socket takes a moment to accept each frame."""

    async def send(self, event, data=None):
        await asyncio.sleep(0.01)
        await super().send(event, data)


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False


class FakeScheduler:
    """Collects timers so tests decide when the grace period runs out."""

    def __init__(self):
        self.handles = []

    def schedule(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    def cancel(self, handle):
        handle.cancelled = True

    def live(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    async def fire_all(self):
        for handle in self.live():
            handle.fired = True
            await handle.callback()


class FakeCompletionClient:
    def __init__(self, reply="Here is a summary.", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class GatedCompletionClient:
    """Holds each reply until the test opens the gate for its question."""

    def __init__(self):
        self.gates = {}
        self.prompts = []

    def gate(self, question):
        return self.gates.setdefault(question, asyncio.Event())

    async def complete(self, prompt):
        self.prompts.append(prompt)
        question = prompt.rsplit("\n", 1)[-1]
        await self.gate(question).wait()
        return f"answer to {question}"


@pytest.fixture
def backend():
    return RoomBackend()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def handler(backend, scheduler, completion_client):
    return build_connection_handler(backend, scheduler=scheduler, completion_client=completion_client)
