"""Room lifecycle handlers.

Each handler is a plain function over a ``RedisBackend`` and the resolved
caller id; nothing is kept between calls. Store failures are logged and
surfaced as ``DependencyError``; retrying is left to the caller.
"""
from datetime import timedelta
from typing import Optional

import redis

from backend import RedisBackend, utcnow
from constants import DEFAULT_MAX_MEMBERS, ROOM_CODE_LENGTH, ROOM_NAME_MAX_LENGTH, ROOM_TTL_SECONDS
from exceptions import AuthError, DependencyError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas.rooms import CleanedRoom, Room, RoomMessage

logger = get_logger(__name__)

ALREADY_JOINED = "Already a member of this room"
JOINED = "Successfully joined room"
LEFT = "Successfully left room"


def create_room(backend: RedisBackend, name: str, is_public: bool, caller_id: Optional[str],
                max_members: int = DEFAULT_MAX_MEMBERS) -> Room:
    if not caller_id:
        raise AuthError("Invalid authentication")
    name = (name or "").strip()
    if not name:
        raise ValidationError("Room name is required")
    if len(name) > ROOM_NAME_MAX_LENGTH:
        raise ValidationError(f"Room name must be at most {ROOM_NAME_MAX_LENGTH} characters")
    try:
        room = backend.create_room(name, is_public, caller_id, max_members)
    except redis.RedisError as e:
        logger.error(f"Room creation error: {e}", exc_info=True)
        raise DependencyError("Failed to create room")

    # The room stands even if the creator's membership cannot be recorded
    try:
        backend.activate_membership(room.id, caller_id, enforce_capacity=False)
    except (redis.RedisError, NotFoundError) as e:
        logger.error(f"Member creation error for room {room.id}: {e}", exc_info=True)

    logger.info(f"Room created successfully: {room.id}")
    return room


def join_room(backend: RedisBackend, code: str, caller_id: Optional[str]) -> tuple[Room, str]:
    """Join the room holding ``code``; returns the room and a status message."""
    if not caller_id:
        raise AuthError("Invalid authentication")
    if not code or len(code) != ROOM_CODE_LENGTH:
        raise ValidationError(f"Valid {ROOM_CODE_LENGTH}-digit room code is required")
    try:
        room = backend.get_room_by_code(code)
        if room is None:
            logger.warning(f"Join room failed: no room with code {code}")
            raise NotFoundError("Room not found or invalid code")
        room, _, joined = backend.activate_membership(room.id, caller_id)
    except redis.RedisError as e:
        logger.error(f"Join room error for code {code}: {e}", exc_info=True)
        raise DependencyError("Failed to join room")

    if not joined:
        logger.info(f"User {caller_id} already active in room {room.id}")
        return room, ALREADY_JOINED
    logger.info(f"User joined room successfully: {room.id} {caller_id}")
    return room, JOINED


def leave_room(backend: RedisBackend, room_id: str, caller_id: Optional[str]) -> str:
    if not caller_id:
        raise AuthError("Invalid authentication")
    if not room_id:
        raise ValidationError("Room ID is required")
    try:
        left, deleted = backend.deactivate_membership(room_id, caller_id)
    except redis.RedisError as e:
        logger.error(f"Leave room error for {room_id}: {e}", exc_info=True)
        raise DependencyError("Failed to leave room")

    if left:
        logger.info(f"User left room successfully: {room_id} {caller_id}")
    else:
        logger.debug(f"User {caller_id} had no active membership in room {room_id}")
    if deleted:
        logger.info(f"Deleted empty room: {room_id}")
    return LEFT


def cleanup_expired_rooms(backend: RedisBackend, ttl_seconds: int = ROOM_TTL_SECONDS) -> list[CleanedRoom]:
    """Delete rooms that have been empty and idle for longer than the TTL.

    Rooms are deleted one at a time; an error part way leaves the rooms
    already deleted gone and the rest for the next run.
    """
    cutoff = utcnow() - timedelta(seconds=ttl_seconds)
    logger.info(f"Starting room cleanup, cutoff time: {cutoff.isoformat()}")
    try:
        candidates = [
            room for room in backend.list_rooms()
            if room.active_members == 0 and room.last_activity < cutoff
        ]
        if not candidates:
            logger.info("No empty rooms to clean up")
            return []
        logger.info(f"Found {len(candidates)} empty rooms to clean up")

        cleaned = []
        for candidate in candidates:
            room = backend.delete_room_if_expired(candidate.id, cutoff)
            if room:
                cleaned.append(CleanedRoom(id=room.id, name=room.name, code=room.code))
    except redis.RedisError as e:
        logger.error(f"Error deleting empty rooms: {e}", exc_info=True)
        raise DependencyError("Failed to delete empty rooms")

    logger.info(f"Successfully cleaned up {len(cleaned)} empty rooms")
    return cleaned


def post_message(backend: RedisBackend, room_id: str, content: str, caller_id: Optional[str]) -> RoomMessage:
    if not caller_id:
        raise AuthError("Invalid authentication")
    try:
        if backend.get_room(room_id) is None:
            raise NotFoundError("Room not found")
        membership = backend.get_membership(room_id, caller_id)
        if membership is None or not membership.is_active:
            logger.warning(f"Post message rejected: {caller_id} is not an active member of room {room_id}")
            raise AuthError("You are not a member of this room")
        return backend.add_message(room_id, caller_id, content)
    except redis.RedisError as e:
        logger.error(f"Post message error for room {room_id}: {e}", exc_info=True)
        raise DependencyError("Failed to send message")


def list_messages(backend: RedisBackend, room_id: str, caller_id: Optional[str], limit: int) -> list[RoomMessage]:
    """Messages of a room; private rooms only show them to active members."""
    if not caller_id:
        raise AuthError("Invalid authentication")
    try:
        room = backend.get_room(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        if not room.is_public:
            membership = backend.get_membership(room_id, caller_id)
            if membership is None or not membership.is_active:
                raise AuthError("You are not a member of this room")
        return backend.list_messages(room_id, limit)
    except redis.RedisError as e:
        logger.error(f"List messages error for room {room_id}: {e}", exc_info=True)
        raise DependencyError("Failed to load messages")
