from typing import Optional

from backend import RoomBackend
from events import RECEIVE_MESSAGE
from logging_config import get_logger
from schemas.rooms import Message

logger = get_logger(__name__)


class MessageRelay:
    def __init__(self, backend: RoomBackend):
        self.backend = backend

    def append(self, room_id: str, sender: str, text: str) -> Optional[Message]:
        """Record a message in the room history without sending it.

        Messages for unknown rooms are dropped without telling anyone.
        """
        room = self.backend.get_room(room_id)
        if room is None:
            logger.debug(f"Dropping message from {sender}: room {room_id} not found")
            return None

        message = room.append(Message(sender=sender, text=text))
        logger.debug(f"Message from {sender} appended to room {room_id} (history: {len(room.history)})")
        return message

    async def publish(self, room_id: str, message: Message):
        await self.backend.broadcast(room_id, RECEIVE_MESSAGE, message.model_dump())

    async def send(self, room_id: str, sender: str, text: str) -> Optional[Message]:
        message = self.append(room_id, sender, text)
        if message is not None:
            await self.publish(room_id, message)
        return message

    async def inject(self, room_id: str, message: Message) -> Message:
        """Append a synthetic message and broadcast it.

        The room may have been deleted (or recreated) while the message was
        being produced; it is then broadcast to whoever is subscribed to the id.
        """
        room = self.backend.get_room(room_id)
        if room is not None:
            room.append(message)
        else:
            logger.debug(f"Room {room_id} is gone, broadcasting {message.sender} message without history")
        await self.publish(room_id, message)
        return message
