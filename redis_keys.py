REDIS_META_KEY = "room:meta:{slug}" # room id - room hash
REDIS_CODE_KEY = "room:code:{code}" # join code -> room id
REDIS_MEMBERS_KEY = "room:members:{slug}" # room id - hash of user id -> membership json
REDIS_MESSAGES_KEY = "room:messages:{slug}" # room id - list of message json
REDIS_ROOMS_INDEX = "rooms:index" # sorted set of room ids scored by creation time
REDIS_SESSION_KEY = "session:{token}" # bearer token -> user hash
REDIS_CHANNEL = "realtime:{topic}" # pub/sub channel for a realtime topic

REDIS_PROFILE_KEY = "profile:{user_id}" # user id - profile hash, includes password_hash
REDIS_USERNAME_KEY = "profile:username:{username}" # lowercased username -> user id
REDIS_EMAIL_KEY = "profile:email:{email}" # lowercased email -> user id
REDIS_CONNECTION_KEY = "connection:{pair}" # sorted user id pair - connection json
REDIS_USER_CONNECTIONS_KEY = "user:connections:{user_id}" # sorted set of other user ids scored by creation time
REDIS_DM_KEY = "dm:messages:{pair}" # sorted user id pair - list of direct message json

# Realtime topics
PUBLIC_ROOMS_TOPIC = "public:rooms"
ROOM_MESSAGES_TOPIC = "room_messages:{slug}"
DIRECT_MESSAGES_TOPIC = "dm:{pair}"

# **Example `room:meta:{id}` hash fields**
# - `id`, `name`, `code`, `creator_id`
# - `is_public` = "1" / "0"
# - `active_members`, `max_members` = integers
# - `last_activity`, `created_at`, `updated_at` = ISO timestamps (UTC)

# **Example `profile:{user_id}` hash fields**
# - `user_id`, `username`, `email`, `display_name`
# - `password_hash` = bcrypt hash
# - `created_at`, `last_active_at` = ISO timestamps (UTC)


def user_pair(first: str, second: str) -> str:
    """Order-independent key part for two users."""
    return ":".join(sorted([first, second]))
