from fastapi import APIRouter, Depends, Query

import contacts
from backend import RedisBackend, get_backend
from constants import MESSAGE_PAGE_SIZE
from logging_config import get_logger
from schemas.auth import CurrentUser
from schemas.contacts import (
    Connection,
    ConnectionRequest,
    ConnectionResponse,
    Contact,
    DirectMessage,
    DirectMessageResponse,
    SendDirectMessageRequest,
)
from sessions import get_current_user

logger = get_logger(__name__)

contacts_router = APIRouter(tags=["contacts"])


@contacts_router.get("/connections", response_model=list[Contact])
def list_connections(user: CurrentUser = Depends(get_current_user), backend: RedisBackend = Depends(get_backend)):
    return contacts.list_contacts(backend, user.id)


@contacts_router.post("/connections", response_model=ConnectionResponse)
def send_friend_request(
    request: ConnectionRequest,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    # { "friendId": "..." }
    logger.info(f"Friend request from {user.id} to {request.friend_id}")
    connection, message = contacts.request_connection(backend, user.id, request.friend_id)
    return ConnectionResponse(message=message, connection=connection)


@contacts_router.post("/connections/{requester_id}/accept", response_model=Connection)
def accept_friend_request(
    requester_id: str,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    return contacts.respond_connection(backend, user.id, requester_id, accept=True)


@contacts_router.post("/connections/{requester_id}/reject", response_model=Connection)
def reject_friend_request(
    requester_id: str,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    return contacts.respond_connection(backend, user.id, requester_id, accept=False)


@contacts_router.get("/direct-messages/{friend_id}", response_model=list[DirectMessage])
def list_direct_messages(
    friend_id: str,
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=500, description="Number of most recent messages"),
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    return contacts.list_direct_messages(backend, user.id, friend_id, limit)


@contacts_router.post("/direct-messages/{friend_id}", status_code=201, response_model=DirectMessageResponse)
def send_direct_message(
    friend_id: str,
    request: SendDirectMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    message = contacts.send_direct_message(backend, user.id, friend_id, request.content)
    return DirectMessageResponse(message=message)
