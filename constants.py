import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

# Empty rooms older than this are removed by the cleanup job
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", 300))

ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = int(os.getenv("ROOM_CODE_ATTEMPTS", 20))

DEFAULT_MAX_MEMBERS = int(os.getenv("DEFAULT_MAX_MEMBERS", 50))
ROOM_NAME_MAX_LENGTH = int(os.getenv("ROOM_NAME_MAX_LENGTH", 100))
MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", 2000))
MESSAGE_PAGE_SIZE = 50

SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", 7 * 24 * 60 * 60))

# 0 disables the in-process cleanup loop (an external scheduler calls /cleanup-rooms)
CLEANUP_INTERVAL_SECONDS = int(os.getenv("CLEANUP_INTERVAL_SECONDS", 0))

# A reserved code not claimed by a room within this window is released
ROOM_CODE_RESERVATION_SECONDS = int(os.getenv("ROOM_CODE_RESERVATION_SECONDS", 60))

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 6
PASSWORD_HASH_ROUNDS = int(os.getenv("PASSWORD_HASH_ROUNDS", 12))
DISPLAY_NAME_MAX_LENGTH = int(os.getenv("DISPLAY_NAME_MAX_LENGTH", 50))

# Messages each side may send over a friend request that is not accepted yet
DM_PENDING_MESSAGE_LIMIT = int(os.getenv("DM_PENDING_MESSAGE_LIMIT", 1))
