import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Protocol

from constants import HISTORY_LIMIT
from logging_config import get_logger
from schemas.rooms import Message

logger = get_logger(__name__)


class Connection(Protocol):
    connection_id: str

    async def send(self, event: str, data: Any = None) -> None:
        ...


@dataclass
class Room:
    room_id: str
    # username -> connection id currently representing that user
    users: Dict[str, str] = field(default_factory=dict)
    history: Deque[Message] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))
    # username -> grace-period timer handle
    pending_departures: Dict[str, Any] = field(default_factory=dict)

    def append(self, message: Message) -> Message:
        # deque drops the oldest entry once HISTORY_LIMIT is exceeded
        self.history.append(message)
        return message

    def history_snapshot(self) -> List[Message]:
        return list(self.history)

    def is_empty(self) -> bool:
        return not self.users and not self.pending_departures


@dataclass(frozen=True)
class Session:
    room_id: Optional[str] = None
    username: Optional[str] = None


class RoomBackend:
    """In-process room store.

    Owns three keyed maps, all mutated only from the event loop thread:
    - rooms: room id -> Room (the registry)
    - subscribers: room id -> {connection id: connection} (broadcast targets)
    - sessions: connection id -> Session (identity attached on join)
    """

    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        self.subscribers: Dict[str, Dict[str, Connection]] = {}
        self.sessions: Dict[str, Session] = {}
        logger.info("Initializing in-memory RoomBackend")

    def create_room(self, room_id: str) -> Optional[Room]:
        """Create a room, or return None when the id is already taken."""
        if room_id in self.rooms:
            logger.info(f"Room {room_id} already exists, ignoring create request")
            return None
        room = Room(room_id=room_id)
        self.rooms[room_id] = room
        logger.info(f"Room {room_id} created")
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        room = self.rooms.get(room_id)
        if room is None:
            logger.debug(f"Room {room_id} not found")
        return room

    def delete_room(self, room_id: str):
        if self.rooms.pop(room_id, None) is not None:
            logger.info(f"Room {room_id} deleted")

    def subscribe(self, room_id: str, connection: Connection):
        self.subscribers.setdefault(room_id, {})[connection.connection_id] = connection
        logger.debug(f"Connection {connection.connection_id} subscribed to room {room_id} (subscribers: {len(self.subscribers[room_id])})")

    def unsubscribe(self, room_id: str, connection_id: str):
        connections = self.subscribers.get(room_id)
        if not connections:
            return
        connections.pop(connection_id, None)
        if not connections:
            del self.subscribers[room_id]
        logger.debug(f"Connection {connection_id} unsubscribed from room {room_id}")

    def unsubscribe_all(self, connection_id: str):
        for room_id in [r for r, conns in self.subscribers.items() if connection_id in conns]:
            self.unsubscribe(room_id, connection_id)

    def get_subscribers(self, room_id: str) -> List[Connection]:
        return list(self.subscribers.get(room_id, {}).values())

    def set_session(self, connection_id: str, session: Session):
        self.sessions[connection_id] = session

    def get_session(self, connection_id: str) -> Optional[Session]:
        return self.sessions.get(connection_id)

    def pop_session(self, connection_id: str) -> Optional[Session]:
        return self.sessions.pop(connection_id, None)

    async def broadcast(self, room_id: str, event: str, data: Any = None, exclude: Iterable[str] = ()):
        """Send an event to every connection subscribed to the room."""
        excluded = set(exclude)
        targets = [conn for conn in self.get_subscribers(room_id) if conn.connection_id not in excluded]
        if not targets:
            logger.debug(f"No subscribers to receive {event} in room {room_id}")
            return

        # Snapshot taken above: subscriptions may change while sends are in flight
        results = await asyncio.gather(*(conn.send(event, data) for conn in targets), return_exceptions=True)
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending {event} to connection {conn.connection_id} in room {room_id}: {result}")
        logger.debug(f"Broadcasted {event} to {len(targets)} connections in room {room_id}")

    def reset(self):
        self.rooms.clear()
        self.subscribers.clear()
        self.sessions.clear()


room_backend = RoomBackend()
