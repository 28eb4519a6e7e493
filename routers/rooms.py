import redis
from fastapi import APIRouter, Depends, Query

import lifecycle
from backend import RedisBackend, get_backend
from constants import MESSAGE_PAGE_SIZE
from exceptions import DependencyError, NotFoundError
from logging_config import get_logger
from schemas.auth import CurrentUser
from schemas.rooms import PostMessageRequest, PostMessageResponse, Room, RoomMessage
from sessions import get_current_user

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("", response_model=list[Room])
def list_public_rooms(backend: RedisBackend = Depends(get_backend)):
    """Public rooms, newest first."""
    try:
        rooms = backend.list_rooms(public_only=True)
    except redis.RedisError as e:
        logger.error(f"Error fetching rooms: {e}", exc_info=True)
        raise DependencyError("Failed to load rooms")
    logger.debug(f"Listing {len(rooms)} public rooms")
    return rooms


@rooms_router.get("/{room_id}", response_model=Room)
def get_room_details(room_id: str, backend: RedisBackend = Depends(get_backend)):
    try:
        room = backend.get_room(room_id)
    except redis.RedisError as e:
        logger.error(f"Error fetching room {room_id}: {e}", exc_info=True)
        raise DependencyError("Failed to load room")
    if room is None:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise NotFoundError("Room not found")
    return room


@rooms_router.get("/{room_id}/messages", response_model=list[RoomMessage])
def list_room_messages(
    room_id: str,
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=500, description="Number of most recent messages"),
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    return lifecycle.list_messages(backend, room_id, user.id, limit)


@rooms_router.post("/{room_id}/messages", status_code=201, response_model=PostMessageResponse)
def post_room_message(
    room_id: str,
    request: PostMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    logger.info(f"New message in room {room_id} from {user.id}")
    message = lifecycle.post_message(backend, room_id, request.content, user.id)
    return PostMessageResponse(message=message)
