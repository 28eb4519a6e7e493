import uuid
from typing import Optional

import bcrypt
import redis
from fastapi import Depends, Header

from backend import RedisBackend, get_backend, utcnow
from constants import PASSWORD_HASH_ROUNDS
from exceptions import AuthError, DependencyError
from logging_config import get_logger
from schemas.auth import CurrentUser
from schemas.profiles import Profile

logger = get_logger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=PASSWORD_HASH_ROUNDS)).decode("utf-8")


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def sign_up(backend: RedisBackend, username: str, password: str, email: str = None,
            display_name: str = None) -> tuple[Profile, str]:
    """Create an account with a fresh user id and open a session for it."""
    user_id = str(uuid.uuid4())
    try:
        profile = backend.create_profile(
            user_id, username, hash_password(password), email=email, display_name=display_name
        )
        token = backend.create_session(user_id, profile.display_name)
    except redis.RedisError as e:
        logger.error(f"Sign up failed for {username}: {e}", exc_info=True)
        raise DependencyError("Failed to create account")
    logger.info(f"Account created for user {user_id}")
    return profile, token


def log_in(backend: RedisBackend, login: str, password: str) -> tuple[Profile, str]:
    """Open a session for the account named by ``login`` if the password matches."""
    try:
        profile = backend.get_profile_by_login(login)
        if profile is None or not check_password(password, backend.get_password_hash(profile.user_id)):
            logger.warning(f"Failed login attempt for {login}")
            raise AuthError("Invalid username or password")
        profile = backend.update_profile(profile.user_id, last_active_at=utcnow().isoformat())
        token = backend.create_session(profile.user_id, profile.display_name)
    except redis.RedisError as e:
        logger.error(f"Login failed for {login}: {e}", exc_info=True)
        raise DependencyError("Failed to create session")
    logger.info(f"Session created for user {profile.user_id}")
    return profile, token


def resolve_token(backend: RedisBackend, token: Optional[str]) -> CurrentUser:
    """Map a session token to its user, or raise AuthError."""
    if not token:
        raise AuthError("Authorization header required")
    try:
        session = backend.get_session(token)
    except redis.RedisError as e:
        logger.error(f"Session lookup failed: {e}", exc_info=True)
        raise DependencyError("Failed to verify authentication")
    if not session or not session.get("user_id"):
        logger.warning("Rejected request with unknown session token")
        raise AuthError("Invalid authentication")
    return CurrentUser(id=session["user_id"], display_name=session.get("display_name") or None, token=token)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return authorization.strip() or None
    return token.strip() or None


def require_token(authorization: Optional[str] = Header(default=None)) -> str:
    """Only checks that a bearer token was sent; the handler resolves it after the body is validated."""
    token = bearer_token(authorization)
    if not token:
        raise AuthError("Authorization header required")
    return token


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    backend: RedisBackend = Depends(get_backend),
) -> CurrentUser:
    return resolve_token(backend, bearer_token(authorization))
