"""Tests for tokens, the refresh-token store and the auth endpoints."""

import pytest
import redis

from festchat.auth import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from festchat.core.exceptions import InvalidToken, TokenExpired
from festchat.service import auth_service
from festchat.session import has_refresh_token, list_refresh_tokens
from tests.factories import DEFAULT_PASSWORD, create_test_user


def register(client, name="Dana", email="dana@festival.io", password="secret123"):
    return client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})


def login(client, email, password=DEFAULT_PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestTokens:
    def test_access_token_round_trip(self, alice):
        claims = decode_access_token(create_access_token(alice.id, alice.email))
        assert claims.user_id == alice.id
        assert claims.email == "alice@festival.io"
        assert claims.token_type == "access"

    def test_expired_and_invalid_are_distinguished(self, alice):
        expired = create_access_token(alice.id, alice.email, ttl=-10)
        with pytest.raises(TokenExpired):
            decode_access_token(expired)
        with pytest.raises(InvalidToken):
            decode_access_token("not-a-jwt")

    def test_token_types_are_not_interchangeable(self, alice):
        refresh, _ = create_refresh_token(alice.id, alice.email)
        with pytest.raises(InvalidToken):
            decode_access_token(refresh)
        with pytest.raises(InvalidToken):
            decode_refresh_token(create_access_token(alice.id, alice.email))

    def test_password_hashing(self):
        hashed = hash_password("s3cret!")
        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)
        assert not verify_password("wrong", hashed)


class TestRegisterAndLogin:
    def test_register_returns_token_pair(self, client):
        response = register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == "dana@festival.io"
        assert body["data"]["user"]["role"] == "member"
        assert body["data"]["access_token"]
        assert body["data"]["refresh_token"]

    def test_register_duplicate_email(self, client):
        register(client)
        response = register(client, email="DANA@festival.io")

        assert response.status_code == 409
        assert response.json()["code"] == "EMAIL_EXISTS"

    def test_bootstrap_email_registers_as_admin(self, client):
        response = register(client, name="Boss", email="boss@festival.io")
        user = response.json()["data"]["user"]
        assert user["role"] == "admin"
        assert user["is_admin"] is True

    def test_register_validation_envelope(self, client):
        response = client.post("/api/v1/auth/register", json={"name": "D", "email": "nope", "password": "1"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert {e["field"] for e in body["errors"]} == {"name", "email", "password"}

    def test_login(self, client, alice):
        response = login(client, "alice@festival.io")
        assert response.status_code == 200
        assert response.json()["data"]["user"]["name"] == "Alice"

    def test_login_wrong_password(self, client, alice):
        response = login(client, "alice@festival.io", "nope-nope")
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_CREDENTIALS"

    def test_login_deactivated_account(self, client, db):
        create_test_user(db, name="Gone", email="gone@festival.io", is_active=False)
        response = login(client, "gone@festival.io")
        assert response.status_code == 401
        assert response.json()["code"] == "ACCOUNT_DISABLED"

    def test_token_store_outage_is_503(self, client, alice, monkeypatch):
        def unavailable(*args):
            raise redis.ConnectionError("connection refused")

        monkeypatch.setattr(auth_service, "store_refresh_token", unavailable)
        response = login(client, "alice@festival.io")

        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_ERROR"


class TestRefreshTokens:
    def test_refresh_issues_new_access_token(self, client, alice):
        refresh_token = login(client, "alice@festival.io").json()["data"]["refresh_token"]

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})

        assert response.status_code == 200
        access = response.json()["data"]["access_token"]
        assert decode_access_token(access).user_id == alice.id

    def test_only_five_refresh_tokens_are_kept(self, client, alice):
        tokens = [login(client, "alice@festival.io").json()["data"]["refresh_token"] for _ in range(6)]

        assert len(list_refresh_tokens(str(alice.id))) == 5
        oldest = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens[0]})
        assert oldest.status_code == 401
        assert oldest.json()["code"] == "INVALID_TOKEN"
        newest = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens[-1]})
        assert newest.status_code == 200

    def test_logout_revokes_one_token(self, client, alice, headers):
        first = login(client, "alice@festival.io").json()["data"]["refresh_token"]
        second = login(client, "alice@festival.io").json()["data"]["refresh_token"]

        response = client.post("/api/v1/auth/logout", json={"refresh_token": first}, headers=headers(alice))

        assert response.status_code == 200
        assert not has_refresh_token(str(alice.id), decode_refresh_token(first).jti)
        assert has_refresh_token(str(alice.id), decode_refresh_token(second).jti)

    def test_logout_all_and_password_change_revoke_everything(self, client, alice, headers):
        for _ in range(2):
            login(client, "alice@festival.io")
        client.post("/api/v1/auth/logout-all", headers=headers(alice))
        assert list_refresh_tokens(str(alice.id)) == []

        token = login(client, "alice@festival.io").json()["data"]["refresh_token"]
        response = client.put(
            "/api/v1/auth/change-password",
            json={"current_password": DEFAULT_PASSWORD, "new_password": "brand-new-1"},
            headers=headers(alice),
        )
        assert response.status_code == 200
        assert client.post("/api/v1/auth/refresh", json={"refresh_token": token}).status_code == 401
        assert login(client, "alice@festival.io", "brand-new-1").status_code == 200

    def test_refresh_during_outage_is_503(self, client, alice, monkeypatch):
        refresh_token = login(client, "alice@festival.io").json()["data"]["refresh_token"]

        def unavailable(*args):
            raise redis.TimeoutError("timed out")

        monkeypatch.setattr(auth_service, "has_refresh_token", unavailable)
        response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})

        assert response.status_code == 503


class TestProtectedRoutes:
    def test_missing_token(self, client):
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.json()["code"] == "NO_TOKEN"

    def test_expired_token(self, client, alice):
        token = create_access_token(alice.id, alice.email, ttl=-10)
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_EXPIRED"

    def test_me_and_update_profile(self, client, alice, headers):
        me = client.get("/api/v1/auth/me", headers=headers(alice)).json()["data"]
        assert me["email"] == "alice@festival.io"
        assert me["is_admin"] is False

        updated = client.put("/api/v1/auth/me", json={"name": "Alice B"}, headers=headers(alice))
        assert updated.json()["data"]["name"] == "Alice B"

    def test_deactivated_user_is_rejected(self, client, db, alice, headers):
        auth = headers(alice)
        alice.is_active = False
        db.commit()

        response = client.get("/api/v1/auth/me", headers=auth)
        assert response.status_code == 401
        assert response.json()["code"] == "ACCOUNT_DISABLED"

    def test_verify_returns_the_current_user(self, client, alice, headers):
        response = client.get("/api/v1/auth/verify", headers=headers(alice))

        assert response.status_code == 200
        assert response.json()["data"]["id"] == str(alice.id)
        assert client.get("/api/v1/auth/verify").json()["code"] == "NO_TOKEN"
