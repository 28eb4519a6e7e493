from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import os

import redis

import lifecycle
from backend import RedisBackend, get_backend
from constants import CLEANUP_INTERVAL_SECONDS
from exceptions import AuthError, DependencyError, RoomServiceError
from logging_config import get_logger, setup_logging
from redis_keys import DIRECT_MESSAGES_TOPIC, PUBLIC_ROOMS_TOPIC, ROOM_MESSAGES_TOPIC
from routers.auth import auth_router
from routers.contacts import contacts_router
from routers.functions import functions_router
from routers.profiles import profiles_router
from routers.rooms import rooms_router
from schemas.auth import CurrentUser
from sessions import resolve_token

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

ROOM_MESSAGES_PREFIX = ROOM_MESSAGES_TOPIC.format(slug="")
DIRECT_MESSAGES_PREFIX = DIRECT_MESSAGES_TOPIC.format(pair="")


async def run_cleanup_periodically(backend: RedisBackend, interval: int):
    """Background task standing in for the external cleanup scheduler."""
    logger.info(f"Starting scheduled room cleanup every {interval} seconds")
    loop = asyncio.get_running_loop()
    while True:
        await asyncio.sleep(interval)
        try:
            cleaned = await loop.run_in_executor(None, lifecycle.cleanup_expired_rooms, backend)
            if cleaned:
                logger.info(f"Scheduled cleanup removed {len(cleaned)} rooms")
        except DependencyError as e:
            logger.warning(f"Scheduled cleanup failed, retrying next run: {e.message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    backend = app.dependency_overrides.get(get_backend, get_backend)()
    try:
        backend.ping()
    except redis.RedisError as e:
        logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
        raise

    cleanup_task = None
    if CLEANUP_INTERVAL_SECONDS > 0:
        cleanup_task = asyncio.create_task(run_cleanup_periodically(backend, CLEANUP_INTERVAL_SECONDS))
    yield
    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped scheduled room cleanup")


app = FastAPI(title="RoomService", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(functions_router)
app.include_router(rooms_router)
app.include_router(auth_router)
app.include_router(profiles_router)
app.include_router(contacts_router)


@app.exception_handler(RoomServiceError)
async def room_service_error_handler(request: Request, exc: RoomServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    message = "Invalid request"
    for error in exc.errors():
        ctx = error.get("ctx") or {}
        if "error" in ctx:
            message = str(ctx["error"])
            break
    logger.warning(f"Rejected request to {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


logger.info("FastAPI application initialized")


def authorize_topic(backend: RedisBackend, topic: str, user_id: str) -> Optional[str]:
    """Return a rejection reason, or None if the user may follow the topic."""
    if topic == PUBLIC_ROOMS_TOPIC:
        return None
    if topic.startswith(ROOM_MESSAGES_PREFIX):
        room_id = topic[len(ROOM_MESSAGES_PREFIX):]
        membership = backend.get_membership(room_id, user_id)
        if membership is None or not membership.is_active:
            return "Not a member of this room"
        return None
    if topic.startswith(DIRECT_MESSAGES_PREFIX):
        participants = topic[len(DIRECT_MESSAGES_PREFIX):].split(":")
        # Topic names carry the two user ids in sorted order
        if len(participants) != 2 or user_id not in participants or participants != sorted(participants):
            return "Not a participant of this conversation"
        return None
    return "Unknown topic"


def open_topic(backend: RedisBackend, topic: str, token: Optional[str]) -> tuple[CurrentUser, Optional[str]]:
    user = resolve_token(backend, token)
    try:
        return user, authorize_topic(backend, topic, user.id)
    except redis.RedisError as e:
        logger.error(f"Topic authorization failed for {topic}: {e}", exc_info=True)
        raise DependencyError("Failed to verify subscription")


@app.websocket("/realtime/{topic}/ws")
async def realtime_endpoint(
    topic: str,
    websocket: WebSocket,
    token: str = None,
    backend: RedisBackend = Depends(get_backend),
):
    """Forward change events of a topic to the client.

    Query parameters:
    - token: session token issued by /auth/signup or /auth/sessions

    The first frame acknowledges the subscription; change events follow.
    """
    logger.info(f"Realtime connection attempt for topic: {topic}")
    loop = asyncio.get_running_loop()
    try:
        user, reason = await loop.run_in_executor(None, open_topic, backend, topic, token)
    except (AuthError, DependencyError) as e:
        logger.info(f"Realtime connection rejected for topic {topic}: {e.message}")
        await websocket.close(code=1008, reason=e.message)
        return
    if reason:
        logger.info(f"Realtime connection rejected for topic {topic}: {reason}")
        await websocket.close(code=1008, reason=reason)
        return

    try:
        subscription = await loop.run_in_executor(None, backend.notifier.open_subscription, topic)
    except redis.RedisError as e:
        logger.error(f"Failed to subscribe to topic {topic}: {e}", exc_info=True)
        await websocket.close(code=1011, reason="Failed to subscribe")
        return

    receive_task = None
    try:
        await websocket.accept()
        logger.info(f"Realtime connection accepted for user {user.id} on topic {topic}")
        # Watches for client disconnect while we wait on Redis
        receive_task = asyncio.create_task(websocket.receive_text())
        await websocket.send_json({"type": "system", "event": "subscribed", "topic": topic})
        while True:
            if receive_task.done():
                if receive_task.exception() is not None:
                    break
                receive_task = asyncio.create_task(websocket.receive_text())

            # Run blocking get() in thread pool with timeout
            event = await loop.run_in_executor(None, subscription.get, 1.0)
            if event is None:
                continue
            await websocket.send_text(event.model_dump_json(by_alias=True))
            logger.debug(f"Forwarded {event.event_type} event on {topic} to user {user.id}")
    except WebSocketDisconnect:
        logger.info(f"Realtime connection closed by user {user.id} on topic {topic}")
    except Exception as e:
        logger.error(f"Realtime error on topic {topic}: {e}", exc_info=True)
    finally:
        if receive_task:
            receive_task.cancel()
            try:
                await receive_task
            except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                pass
        await loop.run_in_executor(None, subscription.close)
        logger.debug(f"Released realtime subscription for user {user.id} on topic {topic}")
