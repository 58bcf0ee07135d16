"""
Tests for the dashboard API key and balance endpoints.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

from fastapi.testclient import TestClient

from jeesi_gateway.models.domain import SessionUser
from jeesi_gateway.services.api_key import hash_api_key
from tests.factories import create_mock_api_key, create_mock_balance, make_result

AUTH = {"Authorization": "Bearer valid-session"}


class TestSessionRequired:
    """Tests for session authentication on dashboard routes."""

    def test_missing_token(self, client: TestClient):
        """No bearer token: 401."""
        response = client.get("/v1/api-keys")

        assert response.status_code == 401
        assert response.json() == {"error": "Missing authorization header"}

    def test_rejected_token(self, client: TestClient):
        """A token the identity provider rejects: 401."""
        response = client.get("/v1/api-keys", headers={"Authorization": "Bearer expired"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired session"}


class TestUnexpectedErrors:
    """Tests for failures outside the mapped error types."""

    def test_database_failure_rendered_as_error_json(
        self, client: TestClient, db_session: AsyncMock
    ):
        """A database error is a JSON 500 with CORS headers, not a plain-text page."""
        db_session.execute = AsyncMock(side_effect=RuntimeError("db down"))
        failing_client = TestClient(client.app, raise_server_exceptions=False)

        response = failing_client.get("/v1/api-keys", headers=AUTH)

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"error": "Internal server error"}
        assert response.headers["access-control-allow-origin"] == "*"


class TestCreateAPIKey:
    """Tests for POST /v1/api-keys."""

    def test_created(self, client: TestClient, db_session: AsyncMock, session_user: SessionUser):
        """The plaintext key is returned once; only its digest is stored."""
        response = client.post("/v1/api-keys", json={"keyName": "  Website widget "}, headers=AUTH)

        assert response.status_code == 201
        body = response.json()
        plaintext = body["apiKey"]
        assert plaintext.startswith("jeesi_")
        assert len(plaintext) == len("jeesi_") + 32
        assert body["keyData"]["key_name"] == "Website widget"
        assert body["keyData"]["key_prefix"] == plaintext[:12]
        assert "key_hash" not in body["keyData"]

        stored = db_session.add.call_args[0][0]
        assert stored.user_id == session_user.user_id
        assert stored.key_hash == hash_api_key(plaintext)

    def test_blank_name(self, client: TestClient, db_session: AsyncMock):
        """A whitespace-only name is rejected."""
        response = client.post("/v1/api-keys", json={"keyName": "   "}, headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "Key name is required"}
        db_session.add.assert_not_called()


class TestListAPIKeys:
    """Tests for GET /v1/api-keys."""

    def test_lists_active_keys(self, client: TestClient, db_session: AsyncMock):
        """Active keys are listed without secrets."""
        rows = [create_mock_api_key(key_name="Prod"), create_mock_api_key(key_name="Staging")]
        db_session.execute = AsyncMock(return_value=make_result(scalars=rows))

        response = client.get("/v1/api-keys", headers=AUTH)

        assert response.status_code == 200
        assert [k["key_name"] for k in response.json()] == ["Prod", "Staging"]
        assert all("key_hash" not in k for k in response.json())


class TestRevokeAPIKey:
    """Tests for DELETE /v1/api-keys/{key_id}."""

    def test_revoked(self, client: TestClient, db_session: AsyncMock):
        """Revocation deactivates the key."""
        row = create_mock_api_key()
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))

        response = client.delete(f"/v1/api-keys/{row.id}", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"id": str(row.id), "is_active": False}
        db_session.commit.assert_awaited_once()

    def test_not_found(self, client: TestClient):
        """Unknown or foreign keys: 404."""
        response = client.delete(f"/v1/api-keys/{uuid4()}", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"error": "API key not found"}


class TestCreditBalance:
    """Tests for GET /v1/credits/balance."""

    def test_existing_balance(self, client: TestClient, db_session: AsyncMock):
        """An existing balance is returned."""
        db_session.execute = AsyncMock(
            return_value=make_result(
                scalar=create_mock_balance(credits_remaining=42, credits_used_this_month=8, plan_type="pro")
            )
        )

        response = client.get("/v1/credits/balance", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {
            "credits_remaining": 42,
            "credits_used_this_month": 8,
            "plan_type": "pro",
        }

    def test_first_access_grants_default(self, client: TestClient):
        """No row yet: the default free grant is created and returned."""
        response = client.get("/v1/credits/balance", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["credits_remaining"] == 5
        assert response.json()["plan_type"] == "free"
