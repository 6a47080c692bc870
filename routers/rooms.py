from fastapi import APIRouter, HTTPException
from schemas.rooms import RoomDetailsResponse
from backend import room_backend
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str):
    """
    Get a snapshot of a live room.

    Returns:
    - room_id: Room identifier
    - online_users: Usernames currently connected
    - online_users_count: Number of connected users
    - departing_users: Usernames inside their reconnect grace period
    - history_length: Number of messages held in the history window
    """
    room = room_backend.get_room(room_id)
    if not room:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    online_users = sorted(room.users)
    logger.info(f"Room details retrieved for {room_id}: {len(online_users)} users online")

    return RoomDetailsResponse(
        room_id=room_id,
        online_users=online_users,
        online_users_count=len(online_users),
        departing_users=sorted(room.pending_departures),
        history_length=len(room.history),
    )
