"""
Tests for concurrent writers on the same room.

Joins and leaves run as optimistic transactions: a write from another client
between the read and the commit makes the transaction start over with fresh
data. These tests race real threads against one fake server, and also force a
write into the middle of a transaction through a second connection.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

import lifecycle
from backend import utcnow
from exceptions import CapacityError, NotFoundError
from redis_keys import REDIS_MEMBERS_KEY, REDIS_META_KEY
from schemas.rooms import Membership


def active_rows(backend, room_id):
    return [m for m in backend.list_memberships(room_id) if m.is_active]


def add_member_from_elsewhere(client, room_id, user_id):
    """What a join committed by another process leaves behind."""
    membership = Membership(id=f"membership-{user_id}", room_id=room_id, user_id=user_id, joined_at=utcnow())
    client.hset(REDIS_MEMBERS_KEY.format(slug=room_id), user_id, membership.model_dump_json())
    client.hincrby(REDIS_META_KEY.format(slug=room_id), "active_members", 1)


@pytest.fixture
def interfere_once(backend, monkeypatch):
    """Run ``action`` the first time a room is read inside a transaction; returns the read count."""
    def _install(action):
        decode = backend._decode_room
        reads = []

        def decode_and_interfere(data):
            reads.append(data)
            if len(reads) == 1:
                action()
            return decode(data)

        monkeypatch.setattr(backend, "_decode_room", decode_and_interfere)
        return reads
    return _install


# =============================================================================
# Threads
# =============================================================================


class TestConcurrentThreads:
    def test_concurrent_joins_never_exceed_capacity(self, backend):
        room = lifecycle.create_room(backend, "Busy", True, "owner", max_members=3)

        def join(user_id):
            try:
                lifecycle.join_room(backend, room.code, user_id)
                return True
            except CapacityError:
                return False

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(join, [f"user-{i}" for i in range(10)]))

        stored = backend.get_room(room.id)
        assert results.count(True) == 2
        assert stored.active_members <= stored.max_members
        assert stored.active_members == len(active_rows(backend, room.id)) == 3

    def test_leave_racing_join_never_deletes_an_occupied_room(self, backend):
        for _ in range(20):
            room = lifecycle.create_room(backend, "Pair", True, "alice")

            def join():
                try:
                    lifecycle.join_room(backend, room.code, "bob")
                    return True
                except NotFoundError:
                    return False

            with ThreadPoolExecutor(max_workers=2) as pool:
                leaving = pool.submit(lifecycle.leave_room, backend, room.id, "alice")
                joining = pool.submit(join)
                leaving.result()
                joined = joining.result()

            stored = backend.get_room(room.id)
            if joined:
                assert stored is not None
                assert stored.active_members == len(active_rows(backend, room.id)) == 1
            else:
                assert stored is None


# =============================================================================
# Writes inside the transaction window
# =============================================================================


class TestTransactionRetries:
    def test_join_retries_after_concurrent_join(self, backend, other_client, interfere_once):
        room = lifecycle.create_room(backend, "Busy", True, "alice")
        reads = interfere_once(lambda: add_member_from_elsewhere(other_client, room.id, "carol"))

        joined_room, _, joined = backend.activate_membership(room.id, "bob")

        assert len(reads) == 2
        assert joined is True
        assert joined_room.active_members == 3
        assert other_client.hget(REDIS_META_KEY.format(slug=room.id), "active_members") == "3"
        assert len(active_rows(backend, room.id)) == 3

    def test_join_rechecks_capacity_after_retry(self, backend, other_client, interfere_once):
        room = lifecycle.create_room(backend, "Pair", True, "alice", max_members=2)
        reads = interfere_once(lambda: add_member_from_elsewhere(other_client, room.id, "carol"))

        with pytest.raises(CapacityError):
            backend.activate_membership(room.id, "bob")

        assert len(reads) == 2
        assert other_client.hget(REDIS_META_KEY.format(slug=room.id), "active_members") == "2"
        assert other_client.hget(REDIS_MEMBERS_KEY.format(slug=room.id), "bob") is None

    def test_leave_keeps_room_when_someone_joins_meanwhile(self, backend, other_client, interfere_once):
        room = lifecycle.create_room(backend, "Pair", True, "alice")
        reads = interfere_once(lambda: add_member_from_elsewhere(other_client, room.id, "bob"))

        left, deleted = backend.deactivate_membership(room.id, "alice")

        assert len(reads) == 2
        assert left is True
        assert deleted is None
        assert other_client.hget(REDIS_META_KEY.format(slug=room.id), "active_members") == "1"
        assert [m.user_id for m in active_rows(backend, room.id)] == ["bob"]
