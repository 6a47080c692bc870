import json
from typing import Any

from pydantic import ValidationError

from assistant import AIAugmentor
from backend import Connection, RoomBackend
from events import CREATE_ROOM, DISCONNECTING, ERROR, JOIN_ROOM, ROOM_CREATED, SEND_MESSAGE
from logging_config import get_logger
from presence import PresenceTracker
from relay import MessageRelay
from schemas.rooms import CreateRoomPayload, InboundFrame, JoinRoomPayload, SendMessagePayload

logger = get_logger(__name__)


class ConnectionHandler:
    """Routes inbound connection events to the room components."""

    def __init__(self, backend: RoomBackend, presence: PresenceTracker, relay: MessageRelay, augmentor: AIAugmentor):
        self.backend = backend
        self.presence = presence
        self.relay = relay
        self.augmentor = augmentor
        self._routes = {
            CREATE_ROOM: (CreateRoomPayload, self.create_room),
            JOIN_ROOM: (JoinRoomPayload, self.join_room),
            SEND_MESSAGE: (SendMessagePayload, self.send_message),
        }

    async def handle_frame(self, connection: Connection, raw: str):
        try:
            frame = InboundFrame.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Malformed frame from connection {connection.connection_id}: {e}")
            await connection.send(ERROR, {"detail": "Malformed frame"})
            return
        await self.handle_event(connection, frame.event, frame.data)

    async def handle_event(self, connection: Connection, event: str, data: Any = None):
        route = self._routes.get(event)
        if route is None:
            logger.warning(f"Unknown event {event!r} from connection {connection.connection_id}")
            await connection.send(ERROR, {"detail": f"Unknown event: {event}"})
            return

        payload_model, handler = route
        try:
            payload = payload_model.model_validate(data or {})
        except ValidationError as e:
            logger.warning(f"Invalid {event} payload from connection {connection.connection_id}: {e.errors()}")
            await connection.send(ERROR, {"detail": f"Invalid payload for {event}"})
            return

        logger.debug(f"Dispatching {event} from connection {connection.connection_id}")
        await handler(connection, payload)

    async def create_room(self, connection: Connection, payload: CreateRoomPayload):
        # Taken ids are ignored without a reply
        if self.backend.create_room(payload.room_id) is not None:
            await connection.send(ROOM_CREATED)

    async def join_room(self, connection: Connection, payload: JoinRoomPayload):
        await self.presence.join(payload.room_id, payload.username, connection)

    async def send_message(self, connection: Connection, payload: SendMessagePayload):
        message = self.relay.append(payload.room_id, payload.sender, payload.text)
        if message is None:
            return
        # Context is fixed now; the broadcast below can let other events in
        prompt = self.augmentor.capture_prompt(payload.room_id, payload.text)
        await self.relay.publish(payload.room_id, message)
        if prompt is not None:
            self.augmentor.start(payload.room_id, prompt)

    async def disconnecting(self, connection: Connection):
        self.presence.disconnect(connection.connection_id)
        self.backend.unsubscribe_all(connection.connection_id)
        logger.info(f"Handled {DISCONNECTING} for connection {connection.connection_id}")


def build_connection_handler(backend: RoomBackend, scheduler=None, completion_client=None) -> ConnectionHandler:
    relay = MessageRelay(backend)
    return ConnectionHandler(
        backend=backend,
        presence=PresenceTracker(backend, scheduler),
        relay=relay,
        augmentor=AIAugmentor(backend, relay, completion_client),
    )
