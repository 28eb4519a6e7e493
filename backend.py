import random
import string
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis

from constants import (
    DM_PENDING_MESSAGE_LIMIT,
    REDIS_DB,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    ROOM_CODE_ATTEMPTS,
    ROOM_CODE_LENGTH,
    ROOM_CODE_RESERVATION_SECONDS,
    SESSION_TTL_SECONDS,
)
from exceptions import AuthError, CapacityError, DependencyError, NotFoundError, ValidationError
from logging_config import get_logger
from realtime import RealtimeNotifier
from redis_keys import (
    DIRECT_MESSAGES_TOPIC,
    PUBLIC_ROOMS_TOPIC,
    REDIS_CODE_KEY,
    REDIS_CONNECTION_KEY,
    REDIS_DM_KEY,
    REDIS_EMAIL_KEY,
    REDIS_MEMBERS_KEY,
    REDIS_MESSAGES_KEY,
    REDIS_META_KEY,
    REDIS_PROFILE_KEY,
    REDIS_ROOMS_INDEX,
    REDIS_SESSION_KEY,
    REDIS_USER_CONNECTIONS_KEY,
    REDIS_USERNAME_KEY,
    ROOM_MESSAGES_TOPIC,
    user_pair,
)
from schemas.contacts import PENDING, REJECTED, Connection, DirectMessage
from schemas.realtime import DELETE, INSERT, UPDATE
from schemas.profiles import Profile
from schemas.rooms import Membership, Room, RoomMessage

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return ''.join(random.choices(string.digits, k=length))


class RedisBackend:
    """Room, membership, message, session and contact storage on Redis.

    Every mutation of a room is followed by a change event on the realtime
    notifier, the same way a database change feed would report it.
    """

    def __init__(self, redis_client: redis.Redis = None, notifier: RealtimeNotifier = None):
        if redis_client is None:
            redis_client = redis.Redis(
                host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True
            )
        self.redis_client = redis_client
        self.notifier = notifier or RealtimeNotifier(redis_client)

    def ping(self) -> bool:
        self.redis_client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        return True

    # Rooms

    def _encode_room(self, room: Room) -> dict:
        return {
            "id": room.id,
            "name": room.name,
            "code": room.code,
            "is_public": "1" if room.is_public else "0",
            "creator_id": room.creator_id or "",
            "active_members": str(room.active_members),
            "max_members": str(room.max_members),
            "last_activity": room.last_activity.isoformat(),
            "created_at": room.created_at.isoformat(),
            "updated_at": room.updated_at.isoformat(),
        }

    def _decode_room(self, data: dict) -> Room:
        return Room(
            id=data["id"],
            name=data["name"],
            code=data["code"],
            is_public=data.get("is_public") == "1",
            creator_id=data.get("creator_id") or None,
            active_members=int(data.get("active_members", 0)),
            max_members=int(data["max_members"]),
            last_activity=data["last_activity"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )

    def _publish_room_change(self, event_type: str, room: Room, old: Room = None):
        if not room.is_public:
            return
        self.notifier.publish_change(
            PUBLIC_ROOMS_TOPIC,
            "rooms",
            event_type,
            new=room.model_dump(mode="json") if event_type != DELETE else None,
            old=(old or room).model_dump(mode="json") if event_type != INSERT else None,
        )

    def reserve_room_code(self, room_id: str) -> str:
        """Claim a join code not held by any existing room.

        The reservation expires unless ``create_room`` persists it, so a code
        is not lost if the room is never written.
        """
        for attempt in range(ROOM_CODE_ATTEMPTS):
            code = generate_room_code()
            if self.redis_client.set(
                REDIS_CODE_KEY.format(code=code), room_id, nx=True, ex=ROOM_CODE_RESERVATION_SECONDS
            ):
                logger.debug(f"Reserved code {code} for room {room_id} after {attempt + 1} attempt(s)")
                return code
        raise DependencyError("Failed to generate room code")

    def create_room(self, name: str, is_public: bool, creator_id: str, max_members: int) -> Room:
        room_id = str(uuid.uuid4())
        code = self.reserve_room_code(room_id)
        now = utcnow()
        room = Room(
            id=room_id,
            name=name,
            code=code,
            is_public=is_public,
            creator_id=creator_id,
            active_members=0,
            max_members=max_members,
            last_activity=now,
            created_at=now,
            updated_at=now,
        )
        logger.info(f"Creating room {room_id} with code {code}")
        try:
            pipe = self.redis_client.pipeline()
            pipe.hset(REDIS_META_KEY.format(slug=room_id), mapping=self._encode_room(room))
            pipe.zadd(REDIS_ROOMS_INDEX, {room_id: now.timestamp()})
            pipe.persist(REDIS_CODE_KEY.format(code=code))
            pipe.execute()
        except redis.RedisError:
            self.redis_client.delete(REDIS_CODE_KEY.format(code=code))
            raise
        self._publish_room_change(INSERT, room)
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        logger.debug(f"Fetching room {room_id}")
        data = self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return self._decode_room(data)

    def get_room_by_code(self, code: str) -> Optional[Room]:
        room_id = self.redis_client.get(REDIS_CODE_KEY.format(code=code))
        if not room_id:
            return None
        return self.get_room(room_id)

    def list_rooms(self, public_only: bool = False) -> list[Room]:
        """All rooms, newest first."""
        room_ids = self.redis_client.zrevrange(REDIS_ROOMS_INDEX, 0, -1)
        if not room_ids:
            return []
        pipe = self.redis_client.pipeline(transaction=False)
        for room_id in room_ids:
            pipe.hgetall(REDIS_META_KEY.format(slug=room_id))
        rooms = [self._decode_room(data) for data in pipe.execute() if data]
        if public_only:
            rooms = [room for room in rooms if room.is_public]
        return rooms

    def _queue_room_delete(self, pipe, room: Room):
        pipe.delete(
            REDIS_META_KEY.format(slug=room.id),
            REDIS_MEMBERS_KEY.format(slug=room.id),
            REDIS_MESSAGES_KEY.format(slug=room.id),
            REDIS_CODE_KEY.format(code=room.code),
        )
        pipe.zrem(REDIS_ROOMS_INDEX, room.id)

    def delete_room_if_expired(self, room_id: str, cutoff: datetime) -> Optional[Room]:
        """Delete a room, with its members and messages, if it is empty and idle since before cutoff."""
        meta_key = REDIS_META_KEY.format(slug=room_id)

        def delete_expired(pipe):
            data = pipe.hgetall(meta_key)
            if not data:
                return None
            room = self._decode_room(data)
            if room.active_members > 0 or room.last_activity >= cutoff:
                return None
            pipe.multi()
            self._queue_room_delete(pipe, room)
            return room

        room = self.redis_client.transaction(delete_expired, meta_key, value_from_callable=True)
        if room:
            logger.info(f"Deleted expired room {room_id}")
            self._publish_room_change(DELETE, room)
        return room

    # Memberships

    def get_membership(self, room_id: str, user_id: str) -> Optional[Membership]:
        raw = self.redis_client.hget(REDIS_MEMBERS_KEY.format(slug=room_id), user_id)
        return Membership.model_validate_json(raw) if raw else None

    def list_memberships(self, room_id: str) -> list[Membership]:
        values = self.redis_client.hvals(REDIS_MEMBERS_KEY.format(slug=room_id))
        return [Membership.model_validate_json(raw) for raw in values]

    def activate_membership(self, room_id: str, user_id: str, enforce_capacity: bool = True):
        """Make user an active member of the room.

        Returns ``(room, membership, joined)``; ``joined`` is False when the
        membership was already active and nothing changed. A full room raises
        CapacityError even for its own active members. The capacity check and
        the activation commit together, a concurrent change retries.
        """
        meta_key = REDIS_META_KEY.format(slug=room_id)
        members_key = REDIS_MEMBERS_KEY.format(slug=room_id)

        def activate(pipe):
            data = pipe.hgetall(meta_key)
            if not data:
                raise NotFoundError("Room not found or invalid code")
            room = self._decode_room(data)
            if enforce_capacity and room.active_members >= room.max_members:
                raise CapacityError("Room is at maximum capacity")
            raw = pipe.hget(members_key, user_id)
            membership = Membership.model_validate_json(raw) if raw else None
            if membership and membership.is_active:
                return room, membership, False

            now = utcnow()
            if membership:
                membership.is_active = True
            else:
                membership = Membership(
                    id=str(uuid.uuid4()), room_id=room_id, user_id=user_id, is_active=True, joined_at=now
                )
            pipe.multi()
            pipe.hset(members_key, user_id, membership.model_dump_json())
            pipe.hincrby(meta_key, "active_members", 1)
            pipe.hset(meta_key, mapping={"last_activity": now.isoformat(), "updated_at": now.isoformat()})
            room.active_members += 1
            room.last_activity = now
            room.updated_at = now
            return room, membership, True

        room, membership, joined = self.redis_client.transaction(
            activate, meta_key, members_key, value_from_callable=True
        )
        if joined:
            logger.debug(f"User {user_id} is now active in room {room_id} ({room.active_members}/{room.max_members})")
            self._publish_room_change(UPDATE, room)
        return room, membership, joined

    def deactivate_membership(self, room_id: str, user_id: str):
        """Deactivate user's membership and delete the room if nobody active remains.

        Returns ``(left, deleted_room)``. Deactivation, the remaining-member
        count and the cascading delete commit together.
        """
        meta_key = REDIS_META_KEY.format(slug=room_id)
        members_key = REDIS_MEMBERS_KEY.format(slug=room_id)

        def deactivate(pipe):
            data = pipe.hgetall(meta_key)
            room = self._decode_room(data) if data else None
            memberships = [Membership.model_validate_json(raw) for raw in pipe.hvals(members_key)]
            mine = next((m for m in memberships if m.user_id == user_id), None)
            left = mine is not None and mine.is_active
            remaining = sum(1 for m in memberships if m.is_active and m.user_id != user_id)

            pipe.multi()
            if left:
                mine.is_active = False
                pipe.hset(members_key, user_id, mine.model_dump_json())
            if room is None:
                return left, None, None
            if remaining == 0:
                self._queue_room_delete(pipe, room)
                return left, room, None
            if left:
                now = utcnow()
                pipe.hincrby(meta_key, "active_members", -1)
                pipe.hset(meta_key, mapping={"last_activity": now.isoformat(), "updated_at": now.isoformat()})
                updated = room.model_copy(
                    update={"active_members": room.active_members - 1, "last_activity": now, "updated_at": now}
                )
                return left, None, (room, updated)
            return left, None, None

        left, deleted, updated = self.redis_client.transaction(
            deactivate, meta_key, members_key, value_from_callable=True
        )
        if deleted:
            logger.info(f"Deleted empty room {room_id}")
            self._publish_room_change(DELETE, deleted)
        elif updated:
            old, new = updated
            self._publish_room_change(UPDATE, new, old=old)
        return left, deleted

    # Messages

    def add_message(self, room_id: str, user_id: str, content: str) -> RoomMessage:
        meta_key = REDIS_META_KEY.format(slug=room_id)
        messages_key = REDIS_MESSAGES_KEY.format(slug=room_id)
        message = RoomMessage(
            id=str(uuid.uuid4()), room_id=room_id, user_id=user_id, content=content, created_at=utcnow()
        )

        def append(pipe):
            if not pipe.exists(meta_key):
                raise NotFoundError("Room not found")
            stamp = message.created_at.isoformat()
            pipe.multi()
            pipe.rpush(messages_key, message.model_dump_json())
            pipe.hset(meta_key, mapping={"last_activity": stamp, "updated_at": stamp})

        self.redis_client.transaction(append, meta_key)
        self.notifier.publish_change(
            ROOM_MESSAGES_TOPIC.format(slug=room_id), "room_messages", INSERT, new=message.model_dump(mode="json")
        )
        return message

    def list_messages(self, room_id: str, limit: int) -> list[RoomMessage]:
        """The newest ``limit`` messages, oldest first."""
        values = self.redis_client.lrange(REDIS_MESSAGES_KEY.format(slug=room_id), -limit, -1)
        return [RoomMessage.model_validate_json(raw) for raw in values]

    # Sessions

    def create_session(self, user_id: str, display_name: str = None, ttl: int = SESSION_TTL_SECONDS) -> str:
        token = uuid.uuid4().hex
        key = REDIS_SESSION_KEY.format(token=token)
        pipe = self.redis_client.pipeline()
        pipe.hset(key, mapping={"user_id": user_id, "display_name": display_name or ""})
        pipe.expire(key, ttl)
        pipe.execute()
        logger.debug(f"Created session for user {user_id}")
        return token

    def get_session(self, token: str) -> Optional[dict]:
        if not token:
            return None
        data = self.redis_client.hgetall(REDIS_SESSION_KEY.format(token=token))
        return data or None

    def remove_session(self, token: str):
        self.redis_client.delete(REDIS_SESSION_KEY.format(token=token))

    # Profiles

    def _decode_profile(self, data: dict) -> Profile:
        return Profile(
            user_id=data["user_id"],
            username=data["username"],
            email=data.get("email") or None,
            display_name=data.get("display_name") or None,
            created_at=data["created_at"],
            last_active_at=data["last_active_at"],
        )

    def create_profile(self, user_id: str, username: str, password_hash: str, email: str = None,
                       display_name: str = None) -> Profile:
        """Store a new profile; username and email are claimed first so they stay unique."""
        username_key = REDIS_USERNAME_KEY.format(username=username)
        if not self.redis_client.set(username_key, user_id, nx=True):
            raise ValidationError("Username already taken")
        claimed = [username_key]
        if email:
            email_key = REDIS_EMAIL_KEY.format(email=email)
            if not self.redis_client.set(email_key, user_id, nx=True):
                self.redis_client.delete(username_key)
                raise ValidationError("Email already registered")
            claimed.append(email_key)

        now = utcnow()
        profile = Profile(
            user_id=user_id,
            username=username,
            email=email,
            display_name=display_name,
            created_at=now,
            last_active_at=now,
        )
        try:
            self.redis_client.hset(REDIS_PROFILE_KEY.format(user_id=user_id), mapping={
                "user_id": user_id,
                "username": username,
                "email": email or "",
                "display_name": display_name or "",
                "password_hash": password_hash,
                "created_at": now.isoformat(),
                "last_active_at": now.isoformat(),
            })
        except redis.RedisError:
            self.redis_client.delete(*claimed)
            raise
        logger.info(f"Created profile {user_id} for username {username}")
        return profile

    def get_profile(self, user_id: str) -> Optional[Profile]:
        data = self.redis_client.hgetall(REDIS_PROFILE_KEY.format(user_id=user_id))
        return self._decode_profile(data) if data else None

    def get_profile_by_login(self, login: str) -> Optional[Profile]:
        """Look a profile up by username, or by email when ``login`` has an @."""
        login = login.strip().lower()
        if "@" in login:
            user_id = self.redis_client.get(REDIS_EMAIL_KEY.format(email=login))
        else:
            user_id = self.redis_client.get(REDIS_USERNAME_KEY.format(username=login))
        return self.get_profile(user_id) if user_id else None

    def get_password_hash(self, user_id: str) -> Optional[str]:
        return self.redis_client.hget(REDIS_PROFILE_KEY.format(user_id=user_id), "password_hash") or None

    def update_profile(self, user_id: str, **fields) -> Profile:
        key = REDIS_PROFILE_KEY.format(user_id=user_id)

        def update(pipe):
            data = pipe.hgetall(key)
            if not data:
                raise NotFoundError("Profile not found")
            data.update({name: value or "" for name, value in fields.items()})
            pipe.multi()
            pipe.hset(key, mapping={name: value or "" for name, value in fields.items()})
            return self._decode_profile(data)

        return self.redis_client.transaction(update, key, value_from_callable=True)

    # Connections

    def _publish_connection_change(self, event_type: str, connection: Connection, old: Connection = None):
        self.notifier.publish_change(
            DIRECT_MESSAGES_TOPIC.format(pair=user_pair(connection.user_id, connection.friend_id)),
            "user_connections",
            event_type,
            new=connection.model_dump(mode="json"),
            old=old.model_dump(mode="json") if old else None,
        )

    def get_connection(self, first: str, second: str) -> Optional[Connection]:
        raw = self.redis_client.get(REDIS_CONNECTION_KEY.format(pair=user_pair(first, second)))
        return Connection.model_validate_json(raw) if raw else None

    def request_connection(self, user_id: str, friend_id: str):
        """Send a friend request, returning ``(connection, created)``.

        An existing pending or accepted connection is returned unchanged. A
        rejected one is replaced by a new request from ``user_id``.
        """
        key = REDIS_CONNECTION_KEY.format(pair=user_pair(user_id, friend_id))

        def request(pipe):
            raw = pipe.get(key)
            existing = Connection.model_validate_json(raw) if raw else None
            if existing and existing.status != REJECTED:
                return existing, False
            now = utcnow()
            connection = Connection(
                id=str(uuid.uuid4()), user_id=user_id, friend_id=friend_id, status=PENDING,
                created_at=now, updated_at=now,
            )
            pipe.multi()
            pipe.set(key, connection.model_dump_json())
            pipe.zadd(REDIS_USER_CONNECTIONS_KEY.format(user_id=user_id), {friend_id: now.timestamp()})
            pipe.zadd(REDIS_USER_CONNECTIONS_KEY.format(user_id=friend_id), {user_id: now.timestamp()})
            return connection, True

        connection, created = self.redis_client.transaction(request, key, value_from_callable=True)
        if created:
            logger.info(f"Friend request {connection.id} from {user_id} to {friend_id}")
            self._publish_connection_change(INSERT, connection)
        return connection, created

    def respond_connection(self, user_id: str, requester_id: str, status: str) -> Connection:
        """Accept or reject a pending request that ``requester_id`` sent to ``user_id``."""
        key = REDIS_CONNECTION_KEY.format(pair=user_pair(user_id, requester_id))

        def respond(pipe):
            raw = pipe.get(key)
            connection = Connection.model_validate_json(raw) if raw else None
            if connection is None or connection.friend_id != user_id or connection.status != PENDING:
                raise NotFoundError("Friend request not found")
            updated = connection.model_copy(update={"status": status, "updated_at": utcnow()})
            pipe.multi()
            pipe.set(key, updated.model_dump_json())
            return connection, updated

        old, connection = self.redis_client.transaction(respond, key, value_from_callable=True)
        logger.info(f"Friend request {connection.id} {status} by {user_id}")
        self._publish_connection_change(UPDATE, connection, old=old)
        return connection

    def list_connections(self, user_id: str) -> list[Connection]:
        """Connections of a user, newest first."""
        other_ids = self.redis_client.zrevrange(REDIS_USER_CONNECTIONS_KEY.format(user_id=user_id), 0, -1)
        if not other_ids:
            return []
        pipe = self.redis_client.pipeline(transaction=False)
        for other_id in other_ids:
            pipe.get(REDIS_CONNECTION_KEY.format(pair=user_pair(user_id, other_id)))
        return [Connection.model_validate_json(raw) for raw in pipe.execute() if raw]

    # Direct messages

    def add_direct_message(self, sender_id: str, receiver_id: str, content: str,
                           pending_limit: int = DM_PENDING_MESSAGE_LIMIT) -> DirectMessage:
        """Append a message between connected users.

        While the connection is pending each side may send ``pending_limit``
        messages; a rejected or missing connection allows none.
        """
        pair = user_pair(sender_id, receiver_id)
        connection_key = REDIS_CONNECTION_KEY.format(pair=pair)
        messages_key = REDIS_DM_KEY.format(pair=pair)
        message = DirectMessage(
            id=str(uuid.uuid4()), sender_id=sender_id, receiver_id=receiver_id, content=content, created_at=utcnow()
        )

        def append(pipe):
            raw = pipe.get(connection_key)
            connection = Connection.model_validate_json(raw) if raw else None
            if connection is None or connection.status == REJECTED:
                raise AuthError("You are not connected with this user")
            if connection.status == PENDING:
                sent = sum(
                    1 for raw_message in pipe.lrange(messages_key, 0, -1)
                    if DirectMessage.model_validate_json(raw_message).sender_id == sender_id
                )
                if sent >= pending_limit:
                    raise CapacityError("Wait for the friend request to be accepted before sending more messages")
            pipe.multi()
            pipe.rpush(messages_key, message.model_dump_json())

        self.redis_client.transaction(append, connection_key, messages_key)
        self.notifier.publish_change(
            DIRECT_MESSAGES_TOPIC.format(pair=pair), "direct_messages", INSERT, new=message.model_dump(mode="json")
        )
        return message

    def list_direct_messages(self, first: str, second: str, limit: int) -> list[DirectMessage]:
        """The newest ``limit`` messages between two users, oldest first."""
        values = self.redis_client.lrange(REDIS_DM_KEY.format(pair=user_pair(first, second)), -limit, -1)
        return [DirectMessage.model_validate_json(raw) for raw in values]


redis_backend = RedisBackend()


def get_backend() -> RedisBackend:
    return redis_backend
