"""
Tests for accounts, session issuance and bearer token resolution.
"""
import pytest

from exceptions import AuthError
from sessions import bearer_token, check_password, hash_password, resolve_token


class TestBearerToken:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer abc123", "abc123"),
            ("bearer abc123", "abc123"),
            ("abc123", "abc123"),
            ("Bearer ", None),
            (None, None),
            ("", None),
        ],
    )
    def test_parses_header(self, header, expected):
        assert bearer_token(header) == expected


class TestResolveToken:
    def test_resolves_known_token(self, backend):
        token = backend.create_session("alice", display_name="Alice")

        user = resolve_token(backend, token)

        assert user.id == "alice"
        assert user.display_name == "Alice"
        assert user.token == token

    def test_missing_token(self, backend):
        with pytest.raises(AuthError, match="Authorization header required"):
            resolve_token(backend, None)

    def test_unknown_token(self, backend):
        with pytest.raises(AuthError, match="Invalid authentication"):
            resolve_token(backend, "unknown")

    def test_session_has_ttl(self, backend, redis_client):
        token = backend.create_session("alice")

        assert redis_client.ttl(f"session:{token}") > 0


class TestPasswords:
    def test_hash_is_not_the_password(self):
        hashed = hash_password("secret123")

        assert hashed != "secret123"
        assert check_password("secret123", hashed) is True
        assert check_password("secret124", hashed) is False

    def test_account_without_password_never_matches(self):
        assert check_password("", "") is False
        assert check_password("anything", None) is False


def sign_up(client, username="dana", password="secret123", **extra):
    return client.post("/auth/signup", json={"username": username, "password": password, **extra})


class TestSignUp:
    def test_signup_creates_account_and_session(self, client, backend):
        response = sign_up(client, username="Dana", displayName=" Dana ")

        assert response.status_code == 201
        body = response.json()
        assert body["username"] == "dana"
        assert body["displayName"] == "Dana"
        assert body["expiresIn"] > 0
        assert backend.get_profile(body["userId"]).username == "dana"

        created = client.post("/create-room", json={"name": "Mine"}, headers={"Authorization": f"Bearer {body['token']}"})
        assert created.json()["room"]["creator_id"] == body["userId"]

    def test_password_is_stored_hashed(self, client, backend):
        user_id = sign_up(client).json()["userId"]

        stored = backend.get_password_hash(user_id)
        assert stored and stored != "secret123"

    def test_username_taken_regardless_of_case(self, client):
        sign_up(client, username="dana")

        response = sign_up(client, username="DANA")

        assert response.status_code == 400
        assert response.json() == {"error": "Username already taken"}

    def test_email_taken(self, client):
        sign_up(client, username="dana", email="dana@example.com")

        response = sign_up(client, username="dana2", email="Dana@Example.com")

        assert response.status_code == 400
        assert response.json() == {"error": "Email already registered"}
        # the username of the failed signup is free again
        assert sign_up(client, username="dana2").status_code == 201

    @pytest.mark.parametrize(
        "payload, error",
        [
            ({"password": "secret123"}, "Username is required"),
            ({"username": "a b", "password": "secret123"}, "Username must be 3-30 letters, numbers or underscores"),
            ({"username": "dana", "password": "123"}, "Password must be at least 6 characters"),
            ({"username": "dana", "password": "x" * 73}, "Password must be at most 72 bytes"),
        ],
    )
    def test_invalid_signup(self, client, payload, error):
        response = client.post("/auth/signup", json=payload)

        assert response.status_code == 400
        assert response.json() == {"error": error}


class TestLogin:
    def test_login_with_username_and_password(self, client):
        signed_up = sign_up(client).json()

        response = client.post("/auth/sessions", json={"login": "Dana", "password": "secret123"})

        assert response.status_code == 201
        body = response.json()
        assert body["userId"] == signed_up["userId"]
        assert body["token"] != signed_up["token"]

    def test_login_with_email(self, client):
        signed_up = sign_up(client, email="dana@example.com").json()

        response = client.post("/auth/sessions", json={"login": "dana@example.com", "password": "secret123"})

        assert response.json()["userId"] == signed_up["userId"]

    def test_wrong_password_is_rejected(self, client):
        sign_up(client)

        response = client.post("/auth/sessions", json={"login": "dana", "password": "wrong-password"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid username or password"}

    def test_unknown_user_is_rejected(self, client):
        response = client.post("/auth/sessions", json={"login": "nobody", "password": "secret123"})

        assert response.status_code == 401

    def test_existing_user_cannot_be_claimed_without_password(self, client, alice):
        by_login = client.post("/auth/sessions", json={"login": "alice", "password": "guessed1"})
        by_id = client.post("/auth/sessions", json={"userId": "alice"})

        assert by_login.status_code == 401
        assert "token" not in by_login.json()
        assert by_id.status_code == 400
        assert "token" not in by_id.json()

    def test_signup_cannot_choose_user_id(self, client):
        response = sign_up(client, userId="alice")

        assert response.json()["userId"] != "alice"

    def test_sign_out_revokes_token(self, client, alice):
        response = client.delete("/auth/sessions", headers=alice["headers"])

        assert response.status_code == 200
        after = client.post("/create-room", json={"name": "Lobby"}, headers=alice["headers"])
        assert after.status_code == 401
