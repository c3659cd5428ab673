from datetime import datetime, timedelta

import pytest

from clinic.core.config import settings
from clinic.core.security import Role
from clinic.models.account import Account
from clinic.services.identity_service import IdentityStore

from .conftest import ADMIN_ACTOR, PASSWORD

# Test data
test_account_data = {
    "username": "alice",
    "password": "TestPassword123",
    "role": "patient",
}

test_login_data = {
    "username": "alice",
    "password": "TestPassword123",
}


def register_and_login(client, data=test_account_data):
    client.post("/api/v1/auth/register", json=data)
    response = client.post(
        "/api/v1/auth/login",
        json={"username": data["username"], "password": data["password"]},
    )
    return response.json()


def auth_headers(tokens):
    return {"Authorization": f"Bearer {tokens['access_token']}"}


class TestAuthentication:

    def test_register_account(self, client):
        """Test account registration."""
        response = client.post("/api/v1/auth/register", json=test_account_data)
        assert response.status_code == 201

        data = response.json()
        assert data["username"] == test_account_data["username"]
        assert data["role"] == test_account_data["role"]
        assert data["linked_entity_id"] is None
        assert "password" not in data
        assert "password_hash" not in data

    def test_register_duplicate_username(self, client):
        """Test registration with duplicate username."""
        client.post("/api/v1/auth/register", json=test_account_data)

        response = client.post("/api/v1/auth/register", json=test_account_data)
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"
        assert "already registered" in response.json()["message"]

    def test_register_invalid_password(self, client):
        """Test registration with invalid password."""
        invalid_data = test_account_data.copy()
        invalid_data["password"] = "weak"

        response = client.post("/api/v1/auth/register", json=invalid_data)
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    def test_register_admin_requires_admin(self, client):
        """Self-service registration cannot create admin accounts."""
        admin_data = {**test_account_data, "username": "root", "role": "admin"}

        response = client.post("/api/v1/auth/register", json=admin_data)
        assert response.status_code == 403
        assert response.json()["error"] == "NotOwner"

    def test_admin_can_register_admin(self, client, db):
        IdentityStore(db).register_account("chief", PASSWORD, Role.ADMIN, actor=ADMIN_ACTOR)
        tokens = client.post("/api/v1/auth/login", json={"username": "chief", "password": PASSWORD}).json()

        response = client.post(
            "/api/v1/auth/register",
            json={"username": "deputy", "password": PASSWORD, "role": "admin"},
            headers=auth_headers(tokens),
        )
        assert response.status_code == 201
        assert response.json()["role"] == "admin"

    def test_login_success(self, client):
        """Test successful login."""
        client.post("/api/v1/auth/register", json=test_account_data)

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert "refresh_token" in data
        assert data["token_type"] == "bearer"
        assert data["role"] == "patient"
        assert data["linked_entity_id"] is None

    def test_login_invalid_credentials(self, client):
        """Test login with invalid credentials."""
        invalid_login = {
            "username": "nobody",
            "password": "wrongpassword1"
        }

        response = client.post("/api/v1/auth/login", json=invalid_login)
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredentials"

    def test_login_wrong_password(self, client):
        """Test login with wrong password."""
        client.post("/api/v1/auth/register", json=test_account_data)

        wrong_login = test_login_data.copy()
        wrong_login["password"] = "wrongpassword1"

        response = client.post("/api/v1/auth/login", json=wrong_login)
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredentials"

    def test_account_locked_after_failed_logins(self, client):
        client.post("/api/v1/auth/register", json=test_account_data)
        wrong_login = {**test_login_data, "password": "wrongpassword1"}

        for _ in range(settings.MAX_FAILED_LOGINS):
            assert client.post("/api/v1/auth/login", json=wrong_login).status_code == 401

        # Even the right password is refused while locked
        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 423
        assert response.json()["error"] == "AccountLocked"

    def test_expired_lock_resets_failed_attempts(self, client, db):
        client.post("/api/v1/auth/register", json=test_account_data)
        wrong_login = {**test_login_data, "password": "wrongpassword1"}
        for _ in range(settings.MAX_FAILED_LOGINS):
            client.post("/api/v1/auth/login", json=wrong_login)

        db.query(Account).filter(Account.username == "alice").update(
            {"locked_until": datetime.utcnow() - timedelta(minutes=1)}
        )
        db.commit()

        # One more mistake after the lock lapses counts as the first, not the sixth
        response = client.post("/api/v1/auth/login", json=wrong_login)
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredentials"

        db.expire_all()
        account = db.query(Account).filter(Account.username == "alice").one()
        assert account.failed_login_attempts == 1
        assert account.locked_until is None

        assert client.post("/api/v1/auth/login", json=test_login_data).status_code == 200

    def test_get_current_account(self, client):
        """Test getting current account info."""
        tokens = register_and_login(client)

        response = client.get("/api/v1/auth/me", headers=auth_headers(tokens))
        assert response.status_code == 200
        assert response.json()["username"] == test_account_data["username"]

    def test_get_current_account_invalid_token(self, client):
        """Test get current account with invalid token."""
        headers = {"Authorization": "Bearer invalid_token"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_get_current_account_without_token(self, client):
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"

    def test_refresh_token_cannot_authenticate(self, client):
        tokens = register_and_login(client)
        headers = {"Authorization": f"Bearer {tokens['refresh_token']}"}

        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 401

    def test_refresh_token(self, client):
        """Test token refresh."""
        tokens = register_and_login(client)

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]}
        )
        assert response.status_code == 200

        data = response.json()
        assert "access_token" in data
        assert data["refresh_token"] != tokens["refresh_token"]

        # The old refresh token was rotated out
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]}
        )
        assert response.status_code == 401

    def test_refresh_invalid_token(self, client):
        """Test refresh with invalid token."""
        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": "invalid_token"}
        )
        assert response.status_code == 401

    def test_logout(self, client):
        """Test logout revokes the refresh token."""
        tokens = register_and_login(client)

        response = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": tokens["refresh_token"]}
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Successfully logged out"

        response = client.post(
            "/api/v1/auth/refresh",
            json={"refresh_token": tokens["refresh_token"]}
        )
        assert response.status_code == 401

    def test_verify_token(self, client):
        """Test token verification."""
        tokens = register_and_login(client)

        response = client.post("/api/v1/auth/verify-token", headers=auth_headers(tokens))
        assert response.status_code == 200

        data = response.json()
        assert data["valid"] is True
        assert data["account_id"] == tokens["account_id"]
        assert data["role"] == "patient"
        assert data["linked_entity_id"] is None

    def test_rate_limit(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_HOUR", 2)

        for _ in range(2):
            assert client.post("/api/v1/auth/login", json=test_login_data).status_code == 401

        response = client.post("/api/v1/auth/login", json=test_login_data)
        assert response.status_code == 429
        assert response.json() == {
            "error": "RateLimited",
            "message": "Too many requests. Please try again later.",
        }


class TestAccountAdministration:

    @pytest.fixture
    def admin_tokens(self, client, db):
        IdentityStore(db).register_account("chief", PASSWORD, Role.ADMIN, actor=ADMIN_ACTOR)
        return client.post("/api/v1/auth/login", json={"username": "chief", "password": PASSWORD}).json()

    def test_list_accounts(self, client, admin_tokens):
        client.post("/api/v1/auth/register", json=test_account_data)

        response = client.get("/api/v1/auth/accounts", headers=auth_headers(admin_tokens))
        assert response.status_code == 200
        usernames = [a["username"] for a in response.json()]
        assert usernames == ["chief", "alice"]

    def test_list_accounts_requires_admin(self, client):
        tokens = register_and_login(client)

        response = client.get("/api/v1/auth/accounts", headers=auth_headers(tokens))
        assert response.status_code == 403
        assert response.json()["error"] == "NotOwner"

    def test_deactivate_account(self, client, admin_tokens):
        tokens = register_and_login(client)

        response = client.patch(
            f"/api/v1/auth/accounts/{tokens['account_id']}/status",
            json={"is_active": False},
            headers=auth_headers(admin_tokens),
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        # Existing access tokens stop working
        assert client.get("/api/v1/auth/me", headers=auth_headers(tokens)).status_code == 401
        assert client.post("/api/v1/auth/login", json=test_login_data).status_code == 401

    def test_admin_cannot_deactivate_self(self, client, admin_tokens):
        response = client.patch(
            f"/api/v1/auth/accounts/{admin_tokens['account_id']}/status",
            json={"is_active": False},
            headers=auth_headers(admin_tokens),
        )
        assert response.status_code == 422


if __name__ == "__main__":
    pytest.main([__file__])
