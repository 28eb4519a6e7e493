"""Profiles, friend connections and direct messages.

Like the room handlers these are plain functions over a ``RedisBackend`` and
the resolved caller id.
"""
from typing import Optional

import redis

from backend import RedisBackend
from exceptions import AuthError, DependencyError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas.contacts import ACCEPTED, REJECTED, Connection, Contact, DirectMessage
from schemas.profiles import Profile, PublicProfile

logger = get_logger(__name__)

REQUEST_SENT = "Friend request sent"
ALREADY_REQUESTED = "Friend request already sent"
ALREADY_CONNECTED = "Already connected"


def get_profile(backend: RedisBackend, user_id: str) -> Profile:
    try:
        profile = backend.get_profile(user_id)
    except redis.RedisError as e:
        logger.error(f"Profile lookup error for {user_id}: {e}", exc_info=True)
        raise DependencyError("Failed to load profile")
    if profile is None:
        raise NotFoundError("User not found")
    return profile


def find_profile(backend: RedisBackend, username: Optional[str]) -> PublicProfile:
    """Public view of the profile with this username."""
    if not username or not username.strip():
        raise ValidationError("Username is required")
    if "@" in username:
        # Emails are never searchable
        raise NotFoundError("User not found")
    try:
        profile = backend.get_profile_by_login(username)
    except redis.RedisError as e:
        logger.error(f"Profile search error for {username}: {e}", exc_info=True)
        raise DependencyError("Failed to search users")
    if profile is None:
        raise NotFoundError("User not found")
    return profile.public()


def update_display_name(backend: RedisBackend, caller_id: str, display_name: str) -> Profile:
    try:
        profile = backend.update_profile(caller_id, display_name=display_name)
    except redis.RedisError as e:
        logger.error(f"Profile update error for {caller_id}: {e}", exc_info=True)
        raise DependencyError("Failed to update profile")
    logger.info(f"User {caller_id} changed display name")
    return profile


def request_connection(backend: RedisBackend, caller_id: str, friend_id: str) -> tuple[Connection, str]:
    if friend_id == caller_id:
        raise ValidationError("You cannot add yourself as a friend")
    try:
        if backend.get_profile(friend_id) is None:
            raise NotFoundError("User not found")
        connection, created = backend.request_connection(caller_id, friend_id)
    except redis.RedisError as e:
        logger.error(f"Friend request error from {caller_id} to {friend_id}: {e}", exc_info=True)
        raise DependencyError("Failed to send friend request")
    if created:
        return connection, REQUEST_SENT
    if connection.status == ACCEPTED:
        return connection, ALREADY_CONNECTED
    return connection, ALREADY_REQUESTED


def respond_connection(backend: RedisBackend, caller_id: str, requester_id: str, accept: bool) -> Connection:
    status = ACCEPTED if accept else REJECTED
    try:
        return backend.respond_connection(caller_id, requester_id, status)
    except redis.RedisError as e:
        logger.error(f"Friend request response error for {caller_id}: {e}", exc_info=True)
        raise DependencyError("Failed to update friend request")


def list_contacts(backend: RedisBackend, caller_id: str) -> list[Contact]:
    """Every connection of the caller with the other side's public profile, newest first."""
    try:
        contacts = []
        for connection in backend.list_connections(caller_id):
            profile = backend.get_profile(connection.other(caller_id))
            contacts.append(Contact(connection=connection, profile=profile.public() if profile else None))
    except redis.RedisError as e:
        logger.error(f"Contact list error for {caller_id}: {e}", exc_info=True)
        raise DependencyError("Failed to load contacts")
    return contacts


def send_direct_message(backend: RedisBackend, caller_id: str, friend_id: str, content: str) -> DirectMessage:
    if friend_id == caller_id:
        raise ValidationError("You cannot message yourself")
    try:
        message = backend.add_direct_message(caller_id, friend_id, content)
    except redis.RedisError as e:
        logger.error(f"Direct message error from {caller_id} to {friend_id}: {e}", exc_info=True)
        raise DependencyError("Failed to send message")
    logger.debug(f"Direct message {message.id} from {caller_id} to {friend_id}")
    return message


def list_direct_messages(backend: RedisBackend, caller_id: str, friend_id: str, limit: int) -> list[DirectMessage]:
    """The conversation with ``friend_id``; any request between the two, even a rejected one, keeps it readable."""
    try:
        if backend.get_connection(caller_id, friend_id) is None:
            raise AuthError("You are not connected with this user")
        return backend.list_direct_messages(caller_id, friend_id, limit)
    except redis.RedisError as e:
        logger.error(f"Direct message list error for {caller_id}: {e}", exc_info=True)
        raise DependencyError("Failed to load messages")
