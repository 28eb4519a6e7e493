import redis
from fastapi import APIRouter, Depends

from backend import RedisBackend, get_backend
from constants import SESSION_TTL_SECONDS
from exceptions import DependencyError
from logging_config import get_logger
from schemas.auth import CreateSessionResponse, CurrentUser, LoginRequest, SignUpRequest
from schemas.profiles import Profile
from sessions import get_current_user, log_in, sign_up

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])


def session_response(profile: Profile, token: str) -> CreateSessionResponse:
    return CreateSessionResponse(
        token=token,
        user_id=profile.user_id,
        username=profile.username,
        display_name=profile.display_name,
        expires_in=SESSION_TTL_SECONDS,
    )


@auth_router.post("/signup", status_code=201, response_model=CreateSessionResponse)
def create_account(request: SignUpRequest, backend: RedisBackend = Depends(get_backend)):
    profile, token = sign_up(
        backend, request.username, request.password, email=request.email, display_name=request.display_name
    )
    return session_response(profile, token)


@auth_router.post("/sessions", status_code=201, response_model=CreateSessionResponse)
def create_session(request: LoginRequest, backend: RedisBackend = Depends(get_backend)):
    profile, token = log_in(backend, request.login, request.password)
    return session_response(profile, token)


@auth_router.delete("/sessions")
def delete_session(user: CurrentUser = Depends(get_current_user), backend: RedisBackend = Depends(get_backend)):
    try:
        backend.remove_session(user.token)
    except redis.RedisError as e:
        logger.error(f"Session removal failed for {user.id}: {e}", exc_info=True)
        raise DependencyError("Failed to sign out")
    logger.info(f"Session removed for user {user.id}")
    return {"message": "Signed out"}
