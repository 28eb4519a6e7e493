"""
Shared fixtures for the room service tests.

Redis is replaced by fakeredis; each test gets its own fake server so no
state leaks between tests.
"""
import os

# Cheap bcrypt hashes keep the signup and login tests fast
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

from datetime import datetime, timedelta, timezone  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app import app  # noqa: E402
from backend import RedisBackend, get_backend  # noqa: E402
from redis_keys import REDIS_META_KEY  # noqa: E402


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def other_client(fake_server):
    """A second connection to the same server, standing in for another process."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client)


@pytest.fixture
def client(backend):
    app.dependency_overrides[get_backend] = lambda: backend
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(backend):
    """Create a profile named after the user id, open a session and return the id with request headers."""
    def _make(user_id):
        backend.create_profile(user_id, user_id, password_hash="", display_name=user_id.title())
        token = backend.create_session(user_id, display_name=user_id.title())
        return {"id": user_id, "token": token, "headers": {"Authorization": f"Bearer {token}"}}
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def age_room(redis_client):
    """Push a room's last activity into the past."""
    def _age(room_id, seconds):
        stamp = datetime.now(timezone.utc) - timedelta(seconds=seconds)
        redis_client.hset(REDIS_META_KEY.format(slug=room_id), "last_activity", stamp.isoformat())
    return _age
