from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Optional


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: str
    text: str


class InboundFrame(BaseModel):
    event: str
    data: Optional[Any] = None


class CreateRoomPayload(BaseModel):
    room_id: str = Field(min_length=1, validation_alias=AliasChoices("roomId", "roomid", "room_id"))


class JoinRoomPayload(BaseModel):
    room_id: str = Field(min_length=1, validation_alias=AliasChoices("roomId", "roomid", "room_id"))
    username: str = Field(min_length=1)


class SendMessagePayload(BaseModel):
    room_id: str = Field(min_length=1, validation_alias=AliasChoices("roomId", "roomid", "room_id"))
    sender: str
    text: str


class RoomDetailsResponse(BaseModel):
    room_id: str
    online_users: list[str]
    online_users_count: int
    departing_users: list[str]
    history_length: int
