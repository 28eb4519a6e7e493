"""
Tests for profiles, friend connections and direct messages.

Users come from the ``alice``/``bob``/``carol`` fixtures, whose usernames
match their ids.
"""
import pytest
import redis

import contacts
from exceptions import AuthError, CapacityError, DependencyError, NotFoundError, ValidationError
from redis_keys import DIRECT_MESSAGES_TOPIC, user_pair
from schemas.contacts import ACCEPTED, PENDING, REJECTED
from schemas.realtime import INSERT, UPDATE


@pytest.fixture
def friends(backend, alice, bob):
    """alice and bob with an accepted connection."""
    backend.request_connection("alice", "bob")
    backend.respond_connection("bob", "alice", ACCEPTED)


# =============================================================================
# Profiles
# =============================================================================


class TestProfiles:
    def test_find_profile_by_username(self, backend, alice):
        profile = contacts.find_profile(backend, " Alice ")

        assert profile.user_id == "alice"
        assert profile.display_name == "Alice"

    def test_find_unknown_username(self, backend):
        with pytest.raises(NotFoundError):
            contacts.find_profile(backend, "nobody")

    def test_emails_are_not_searchable(self, backend):
        backend.create_profile("dana", "dana", password_hash="", email="dana@example.com")

        with pytest.raises(NotFoundError):
            contacts.find_profile(backend, "dana@example.com")

    def test_update_display_name(self, backend, alice):
        profile = contacts.update_display_name(backend, "alice", "Ally")

        assert profile.display_name == "Ally"
        assert backend.get_profile("alice").display_name == "Ally"

    def test_update_missing_profile(self, backend):
        with pytest.raises(NotFoundError):
            contacts.update_display_name(backend, "ghost", "Ghost")

    def test_me_endpoint_includes_email_but_public_view_does_not(self, client, backend, alice, bob):
        backend.update_profile("alice", email="alice@example.com")

        mine = client.get("/profiles/me", headers=alice["headers"])
        public = client.get("/profiles/alice", headers=bob["headers"])

        assert mine.json()["email"] == "alice@example.com"
        assert "email" not in public.json()
        assert public.json()["username"] == "alice"

    def test_patch_display_name(self, client, alice):
        response = client.patch("/profiles/me", json={"displayName": "  Ally "}, headers=alice["headers"])

        assert response.status_code == 200
        assert response.json()["display_name"] == "Ally"

    def test_patch_requires_display_name(self, client, alice):
        response = client.patch("/profiles/me", json={"displayName": " "}, headers=alice["headers"])

        assert response.status_code == 400
        assert response.json() == {"error": "Display name is required"}

    def test_search_endpoint(self, client, alice, bob):
        assert client.get("/profiles/search", params={"username": "bob"}, headers=alice["headers"]).json()["user_id"] == "bob"
        assert client.get("/profiles/search", params={"username": "zed"}, headers=alice["headers"]).status_code == 404
        assert client.get("/profiles/search", headers=alice["headers"]).status_code == 400

    def test_profiles_require_authentication(self, client):
        assert client.get("/profiles/me").status_code == 401


# =============================================================================
# Connections
# =============================================================================


class TestConnections:
    def test_request_creates_pending_connection(self, backend, alice, bob):
        connection, message = contacts.request_connection(backend, "alice", "bob")

        assert message == contacts.REQUEST_SENT
        assert connection.status == PENDING
        assert connection.user_id == "alice"
        assert connection.friend_id == "bob"

    def test_repeated_request_returns_existing(self, backend, alice, bob):
        first, _ = contacts.request_connection(backend, "alice", "bob")

        again, message = contacts.request_connection(backend, "bob", "alice")

        assert message == contacts.ALREADY_REQUESTED
        assert again.id == first.id

    def test_request_to_friend_reports_connected(self, backend, friends):
        _, message = contacts.request_connection(backend, "alice", "bob")

        assert message == contacts.ALREADY_CONNECTED

    def test_rejected_request_can_be_sent_again(self, backend, alice, bob):
        first, _ = contacts.request_connection(backend, "alice", "bob")
        contacts.respond_connection(backend, "bob", "alice", accept=False)

        second, message = contacts.request_connection(backend, "alice", "bob")

        assert message == contacts.REQUEST_SENT
        assert second.id != first.id
        assert second.status == PENDING

    def test_cannot_befriend_yourself(self, backend, alice):
        with pytest.raises(ValidationError):
            contacts.request_connection(backend, "alice", "alice")

    def test_cannot_befriend_unknown_user(self, backend, alice):
        with pytest.raises(NotFoundError):
            contacts.request_connection(backend, "alice", "ghost")

    def test_only_the_receiver_can_accept(self, backend, alice, bob):
        contacts.request_connection(backend, "alice", "bob")

        with pytest.raises(NotFoundError):
            contacts.respond_connection(backend, "alice", "bob", accept=True)

        accepted = contacts.respond_connection(backend, "bob", "alice", accept=True)
        assert accepted.status == ACCEPTED

    def test_answered_request_cannot_be_answered_again(self, backend, friends):
        with pytest.raises(NotFoundError):
            contacts.respond_connection(backend, "bob", "alice", accept=False)

    def test_list_contacts_newest_first(self, backend, alice, bob, carol):
        contacts.request_connection(backend, "alice", "bob")
        contacts.request_connection(backend, "carol", "alice")

        listed = contacts.list_contacts(backend, "alice")

        assert [c.profile.user_id for c in listed] == ["carol", "bob"]
        assert all(c.connection.status == PENDING for c in listed)

    def test_connection_changes_are_published(self, backend, alice, bob):
        topic = DIRECT_MESSAGES_TOPIC.format(pair=user_pair("alice", "bob"))

        with backend.notifier.subscribe(topic) as subscription:
            contacts.request_connection(backend, "alice", "bob")
            contacts.respond_connection(backend, "bob", "alice", accept=True)
            requested = subscription.get(timeout=1.0)
            accepted = subscription.get(timeout=1.0)

        assert (requested.event_type, requested.table) == (INSERT, "user_connections")
        assert accepted.event_type == UPDATE
        assert accepted.old["status"] == PENDING
        assert accepted.new["status"] == ACCEPTED

    def test_store_failure_raises_dependency_error(self, backend, alice, bob, monkeypatch):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("connection lost")

        monkeypatch.setattr(backend, "request_connection", fail)

        with pytest.raises(DependencyError):
            contacts.request_connection(backend, "alice", "bob")

    def test_connection_endpoints(self, client, alice, bob):
        sent = client.post("/connections", json={"friendId": "bob"}, headers=alice["headers"])
        assert sent.status_code == 200
        assert sent.json()["message"] == "Friend request sent"

        accepted = client.post("/connections/alice/accept", headers=bob["headers"])
        assert accepted.json()["status"] == ACCEPTED

        listed = client.get("/connections", headers=bob["headers"]).json()
        assert listed[0]["profile"]["username"] == "alice"
        assert listed[0]["connection"]["status"] == ACCEPTED

    def test_reject_endpoint(self, client, alice, bob):
        client.post("/connections", json={"friendId": "bob"}, headers=alice["headers"])

        rejected = client.post("/connections/alice/reject", headers=bob["headers"])

        assert rejected.json()["status"] == REJECTED

    def test_friend_id_required(self, client, alice):
        response = client.post("/connections", json={}, headers=alice["headers"])

        assert response.status_code == 400
        assert response.json() == {"error": "Friend ID is required"}


# =============================================================================
# Direct messages
# =============================================================================


class TestDirectMessages:
    def test_friends_can_exchange_messages(self, backend, friends):
        contacts.send_direct_message(backend, "alice", "bob", "hi")
        contacts.send_direct_message(backend, "bob", "alice", "hey")
        contacts.send_direct_message(backend, "alice", "bob", "how are you?")

        messages = contacts.list_direct_messages(backend, "bob", "alice", 50)

        assert [m.content for m in messages] == ["hi", "hey", "how are you?"]
        assert messages[1].sender_id == "bob"
        assert messages[1].receiver_id == "alice"

    def test_strangers_cannot_message(self, backend, alice, carol):
        with pytest.raises(AuthError):
            contacts.send_direct_message(backend, "alice", "carol", "hi")

        with pytest.raises(AuthError):
            contacts.list_direct_messages(backend, "alice", "carol", 50)

    def test_pending_request_allows_one_message_each(self, backend, alice, bob):
        contacts.request_connection(backend, "alice", "bob")
        contacts.send_direct_message(backend, "alice", "bob", "hi, it's alice")

        with pytest.raises(CapacityError):
            contacts.send_direct_message(backend, "alice", "bob", "hello?")

        contacts.send_direct_message(backend, "bob", "alice", "who?")
        assert len(contacts.list_direct_messages(backend, "alice", "bob", 50)) == 2

    def test_accepting_lifts_the_pending_limit(self, backend, alice, bob):
        contacts.request_connection(backend, "alice", "bob")
        contacts.send_direct_message(backend, "alice", "bob", "hi")
        contacts.respond_connection(backend, "bob", "alice", accept=True)

        contacts.send_direct_message(backend, "alice", "bob", "thanks for accepting")

        assert len(contacts.list_direct_messages(backend, "alice", "bob", 50)) == 2

    def test_rejected_connection_blocks_messages(self, backend, alice, bob):
        contacts.request_connection(backend, "alice", "bob")
        contacts.send_direct_message(backend, "alice", "bob", "hi")
        contacts.respond_connection(backend, "bob", "alice", accept=False)

        with pytest.raises(AuthError):
            contacts.send_direct_message(backend, "bob", "alice", "no thanks")

        assert [m.content for m in contacts.list_direct_messages(backend, "bob", "alice", 50)] == ["hi"]

    def test_list_returns_most_recent_oldest_first(self, backend, friends):
        for text in ["one", "two", "three"]:
            contacts.send_direct_message(backend, "alice", "bob", text)

        messages = contacts.list_direct_messages(backend, "alice", "bob", 2)

        assert [m.content for m in messages] == ["two", "three"]

    def test_message_is_published_on_conversation_topic(self, backend, friends):
        topic = DIRECT_MESSAGES_TOPIC.format(pair=user_pair("alice", "bob"))

        with backend.notifier.subscribe(topic) as subscription:
            message = contacts.send_direct_message(backend, "bob", "alice", "ping")
            event = subscription.get(timeout=1.0)

        assert event.event_type == INSERT
        assert event.table == "direct_messages"
        assert event.new["id"] == message.id

    def test_direct_message_endpoints(self, client, friends, alice, bob):
        sent = client.post("/direct-messages/bob", json={"content": " hello "}, headers=alice["headers"])
        assert sent.status_code == 201
        assert sent.json()["message"]["content"] == "hello"

        listed = client.get("/direct-messages/alice", headers=bob["headers"])
        assert [m["content"] for m in listed.json()] == ["hello"]

    def test_pending_limit_over_http(self, client, alice, bob):
        client.post("/connections", json={"friendId": "bob"}, headers=alice["headers"])
        client.post("/direct-messages/bob", json={"content": "hi"}, headers=alice["headers"])

        response = client.post("/direct-messages/bob", json={"content": "hi again"}, headers=alice["headers"])

        assert response.status_code == 400
        assert response.json() == {"error": "Wait for the friend request to be accepted before sending more messages"}

    def test_empty_message_rejected(self, client, friends, alice):
        response = client.post("/direct-messages/bob", json={"content": "  "}, headers=alice["headers"])

        assert response.status_code == 400
        assert response.json() == {"error": "Message content is required"}
