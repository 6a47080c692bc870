import asyncio
from typing import Awaitable, Callable, Set

from backend import Connection, RoomBackend, Session
from constants import GRACE_PERIOD_SECONDS, SYSTEM_SENDER
from events import RECEIVE_MESSAGE, ROOM_HISTORY, ROOM_NOT_FOUND
from logging_config import get_logger
from schemas.rooms import Message

logger = get_logger(__name__)


class AsyncioScheduler:
    """Runs a coroutine function after a delay on the running event loop.

    `schedule` returns the task as the handle; `cancel` stops it if it is still
    waiting.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> asyncio.Task:
        async def run_later():
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.create_task(run_later())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def cancel(self, handle: asyncio.Task):
        handle.cancel()

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Scheduled callback failed: {exc}", exc_info=exc)


def system_message(text: str) -> Message:
    return Message(sender=SYSTEM_SENDER, text=text)


class PresenceTracker:
    def __init__(self, backend: RoomBackend, scheduler=None, grace_period: float = GRACE_PERIOD_SECONDS):
        self.backend = backend
        self.scheduler = scheduler or AsyncioScheduler()
        self.grace_period = grace_period

    async def join(self, room_id: str, username: str, connection: Connection) -> bool:
        room = self.backend.get_room(room_id)
        if room is None:
            logger.info(f"Join rejected: room {room_id} not found (connection {connection.connection_id})")
            await connection.send(ROOM_NOT_FOUND)
            return False

        previous = self.backend.get_session(connection.connection_id)
        if previous and (previous.room_id, previous.username) != (room_id, username):
            # One session per connection: leave the old room the normal way
            self.disconnect(connection.connection_id)
            self.backend.unsubscribe(previous.room_id, connection.connection_id)

        timer = room.pending_departures.pop(username, None)
        if timer is not None:
            self.scheduler.cancel(timer)
            logger.info(f"User {username} rejoined room {room_id} within grace period")
        # A username that is already active is taken over by the newer connection
        rejoin = timer is not None or username in room.users

        self.backend.subscribe(room_id, connection)
        room.users[username] = connection.connection_id
        self.backend.set_session(connection.connection_id, Session(room_id=room_id, username=username))

        await connection.send(ROOM_HISTORY, [m.model_dump() for m in room.history_snapshot()])

        if not rejoin:
            notice = system_message(f"{username} joined the room")
            await self.backend.broadcast(room_id, RECEIVE_MESSAGE, notice.model_dump(), exclude=[connection.connection_id])

        logger.info(f"User {username} joined room {room_id} (connection {connection.connection_id}, rejoin={rejoin})")
        return True

    def disconnect(self, connection_id: str) -> bool:
        """Start the grace period for the user this connection represents.

        Returns True when a departure timer was scheduled.
        """
        session = self.backend.pop_session(connection_id)
        if session is None or not session.room_id or not session.username:
            logger.debug(f"Connection {connection_id} disconnected without a room session")
            return False

        room_id, username = session.room_id, session.username
        room = self.backend.get_room(room_id)
        if room is None:
            return False

        if room.users.get(username) != connection_id:
            logger.debug(f"Connection {connection_id} no longer represents {username} in room {room_id}, ignoring")
            return False

        del room.users[username]
        room.pending_departures[username] = self.scheduler.schedule(
            self.grace_period, lambda: self._finalize_departure(room_id, username)
        )
        logger.info(f"User {username} disconnected from room {room_id}, departing in {self.grace_period}s")
        return True

    async def _finalize_departure(self, room_id: str, username: str):
        room = self.backend.get_room(room_id)
        if room is None or room.pending_departures.pop(username, None) is None:
            return

        # Deleted only once nobody is active and nobody else is inside a grace
        # period; a still-departing user keeps the room for their rejoin.
        if room.is_empty():
            self.backend.delete_room(room_id)

        notice = system_message(f"{username} left the room")
        await self.backend.broadcast(room_id, RECEIVE_MESSAGE, notice.model_dump())
        logger.info(f"User {username} left room {room_id}")

