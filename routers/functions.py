from fastapi import APIRouter, Depends, Response

import lifecycle
from backend import RedisBackend, get_backend
from logging_config import get_logger
from schemas.rooms import (
    CleanupRoomsResponse,
    CreateRoomRequest,
    CreateRoomResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    LeaveRoomRequest,
    LeaveRoomResponse,
)
from sessions import require_token, resolve_token

logger = get_logger(__name__)

functions_router = APIRouter(tags=["lifecycle"])


@functions_router.options("/{function_name}")
async def preflight(function_name: str):
    # Browsers get their CORS headers from the middleware; plain OPTIONS just succeeds
    return Response(status_code=200)


@functions_router.post("/create-room", status_code=201, response_model=CreateRoomResponse)
def create_room(
    request: CreateRoomRequest,
    token: str = Depends(require_token),
    backend: RedisBackend = Depends(get_backend),
):
    # { "name": "Test Room", "isPublic": true }
    # Response 201: { "room": { "id": "...", "code": "482913", ... } }
    user = resolve_token(backend, token)
    logger.info(f"Room creation request from {user.id}, name: {request.name}, public: {request.is_public}")
    room = lifecycle.create_room(backend, request.name, request.is_public, user.id)
    return CreateRoomResponse(room=room)


@functions_router.post("/join-room", response_model=JoinRoomResponse)
def join_room(
    request: JoinRoomRequest,
    token: str = Depends(require_token),
    backend: RedisBackend = Depends(get_backend),
):
    # { "code": "482913" }
    # Response 200: { "message": "Successfully joined room", "room": {...} }
    user = resolve_token(backend, token)
    logger.info(f"Join room request for code {request.code} from {user.id}")
    room, message = lifecycle.join_room(backend, request.code, user.id)
    return JoinRoomResponse(message=message, room=room)


@functions_router.post("/leave-room", response_model=LeaveRoomResponse)
def leave_room(
    request: LeaveRoomRequest,
    token: str = Depends(require_token),
    backend: RedisBackend = Depends(get_backend),
):
    user = resolve_token(backend, token)
    logger.info(f"Leave room request for {request.room_id} from {user.id}")
    message = lifecycle.leave_room(backend, request.room_id, user.id)
    return LeaveRoomResponse(message=message)


@functions_router.post("/cleanup-rooms", response_model=CleanupRoomsResponse)
def cleanup_rooms(backend: RedisBackend = Depends(get_backend)):
    # Invoked by a scheduler, no body and no caller identity
    cleaned = lifecycle.cleanup_expired_rooms(backend)
    if not cleaned:
        return CleanupRoomsResponse(message="No empty rooms to clean up", cleaned_count=0, cleaned_rooms=[])
    return CleanupRoomsResponse(
        message=f"Successfully cleaned up {len(cleaned)} empty rooms",
        cleaned_count=len(cleaned),
        cleaned_rooms=cleaned,
    )
