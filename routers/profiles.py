from fastapi import APIRouter, Depends, Query

import contacts
from backend import RedisBackend, get_backend
from logging_config import get_logger
from schemas.auth import CurrentUser
from schemas.profiles import Profile, PublicProfile, UpdateProfileRequest
from sessions import get_current_user

logger = get_logger(__name__)

profiles_router = APIRouter(prefix="/profiles", tags=["profiles"])


@profiles_router.get("/me", response_model=Profile)
def get_my_profile(user: CurrentUser = Depends(get_current_user), backend: RedisBackend = Depends(get_backend)):
    return contacts.get_profile(backend, user.id)


@profiles_router.patch("/me", response_model=Profile)
def update_my_profile(
    request: UpdateProfileRequest,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    # { "displayName": "Dana" }
    return contacts.update_display_name(backend, user.id, request.display_name)


@profiles_router.get("/search", response_model=PublicProfile)
def search_profile(
    username: str = Query(None, description="Exact username, case-insensitive"),
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    logger.debug(f"User {user.id} searching for {username}")
    return contacts.find_profile(backend, username)


@profiles_router.get("/{user_id}", response_model=PublicProfile)
def get_public_profile(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    backend: RedisBackend = Depends(get_backend),
):
    return contacts.get_profile(backend, user_id).public()
