"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> TokenService/RecordStore -> response model serialization -> cookies.

Coverage:
  - Login: 200 with token + organizations + refresh cookie; 400 missing fields; 401 bad credentials
  - /me: 401 without or with a bad token; 200 with live organizations
  - Refresh: 401 without cookie; rotation on success; 401 + cleared cookie on expired token
  - Logout: clears the cookie
  - Register: plain, with organization and herd, duplicate email/herd (409),
    preserveCurrentSession, addToOrganizationId authorization

Fixtures used (from conftest.py):
  - api_client: (client, seed) -- seeded clinic with one member per role,
    all with password conftest.PASSWORD.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.testclient import TestClient

from auth.store import RecordStore
from auth.tokens import REFRESH_COOKIE_NAME, TokenService
from core.config import get_settings

if TYPE_CHECKING:
    from tests.conftest import Seed

ApiClient = tuple[TestClient, "Seed"]

# Every seeded persona shares this password (conftest.seed_organization).
PASSWORD = "password123"


def _login(client: TestClient, email: str, password: str = PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestLogin:
    """POST /api/v1/auth/login."""

    def test_login_success(self, api_client: ApiClient) -> None:
        """Valid credentials return the user without password, organizations with role, and a token."""
        client, seed = api_client
        resp = _login(client, "olga.owner@example.com")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["token"]
        assert data["user"]["email"] == "olga.owner@example.com"
        assert "password" not in data["user"] and "hashed_password" not in data["user"]
        assert data["organizations"] == [
            {
                "id": seed.org_id,
                "name": "Green Valley Vets",
                "street": None,
                "house_number": None,
                "city": "Lublin",
                "postal_code": None,
                "tax_id": None,
                "role": "owner",
            }
        ]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_sets_refresh_cookie_only(self, api_client: ApiClient) -> None:
        """The refresh token travels as an httpOnly SameSite=strict cookie, never in the body."""
        client, _seed = api_client
        resp = _login(client, "olga.owner@example.com")
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"{REFRESH_COOKIE_NAME}=")
        assert "HttpOnly" in cookie
        assert "SameSite=strict" in cookie
        assert resp.cookies.get(REFRESH_COOKIE_NAME) not in resp.text

    def test_login_token_authenticates(self, api_client: ApiClient) -> None:
        client, seed = api_client
        token = _login(client, "wiktor.vet@example.com").json()["token"]
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == seed.ids["vet"]

    def test_login_missing_password(self, api_client: ApiClient) -> None:
        """A missing field is a 400, not a schema-level 422."""
        client, _seed = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "olga.owner@example.com"})
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}"
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_wrong_password(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = _login(client, "olga.owner@example.com", "wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_unknown_email_same_error(self, api_client: ApiClient) -> None:
        """Unknown email and wrong password must be indistinguishable."""
        client, _seed = api_client
        resp = _login(client, "ghost@example.com")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestMe:
    """GET /api/v1/auth/me."""

    def test_me_unauthenticated(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_bad_token(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_expired_token(self, api_client: ApiClient) -> None:
        client, seed = api_client
        expired = TokenService(get_settings().model_copy(update={"access_token_expire_seconds": -60}))
        token = expired.issue(seed.ids["owner"], []).access_token
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"

    def test_me_returns_profile_and_organizations(self, api_client: ApiClient) -> None:
        client, seed = api_client
        resp = client.get("/api/v1/auth/me", headers=seed.headers("farmer"))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["first_name"] == "Józef"
        assert [(o["id"], o["role"]) for o in data["organizations"]] == [(seed.org_id, "farmer")]


class TestRefreshAndLogout:
    """POST /api/v1/auth/refresh-token and /logout."""

    def test_refresh_without_cookie(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_refresh_rotates_pair(self, api_client: ApiClient) -> None:
        """A valid refresh cookie yields a new access token and a new refresh cookie."""
        client, seed = api_client
        client.cookies.clear()
        login = _login(client, "oskar.office@example.com")
        old_refresh = login.cookies.get(REFRESH_COOKIE_NAME)
        client.cookies.set(REFRESH_COOKIE_NAME, old_refresh)

        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 200, resp.text
        token = resp.json()["token"]
        assert set(resp.json()) == {"token"}
        assert resp.cookies.get(REFRESH_COOKIE_NAME) not in (None, old_refresh)
        assert resp.headers["Cache-Control"] == "no-store"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["user"]["id"] == seed.ids["officestaff"]

    def test_refresh_expired_token_clears_cookie(self, api_client: ApiClient) -> None:
        client, seed = api_client
        client.cookies.clear()
        expired = TokenService(get_settings().model_copy(update={"refresh_token_expire_seconds": -60}))
        client.cookies.set(REFRESH_COOKIE_NAME, expired.issue(seed.ids["owner"], []).refresh_token)

        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_refresh_token"
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"{REFRESH_COOKIE_NAME}=")
        assert "Max-Age=0" in set_cookie

    def test_refresh_with_access_token_rejected(self, api_client: ApiClient) -> None:
        client, seed = api_client
        client.cookies.clear()
        client.cookies.set(REFRESH_COOKIE_NAME, seed.tokens["owner"])
        resp = client.post("/api/v1/auth/refresh-token")
        assert resp.status_code == 401

    def test_logout_clears_cookie(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert "Max-Age=0" in resp.headers["set-cookie"]


class TestRegister:
    """POST /api/v1/auth/register."""

    def test_register_plain(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "new.farmer@example.com", "password": "longenough", "first_name": "Nowy"},
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user"]["email"] == "new.farmer@example.com"
        assert data["token"]
        assert data["organization"] is None and data["herd"] is None
        assert resp.cookies.get(REFRESH_COOKIE_NAME)

    def test_register_duplicate_email(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.post(
            "/api/v1/auth/register", json={"email": "JAN.KOWALSKI@example.com", "password": "longenough"}
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_register_with_organization_and_herd(self, api_client: ApiClient) -> None:
        """The registrant owns the new organization; the herd belongs to the user."""
        client, _seed = api_client
        body = {
            "email": "hodowca@example.com",
            "password": "longenough",
            "organization": {"name": "Hodowla Pod Lasem", "city": "Biłgoraj"},
            "herd": {"registration_number": "PL0001", "name": "Obora"},
        }
        resp = client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["organization"]["role"] == "owner"
        assert data["herd"]["registration_number"] == "PL0001"
        assert data["herd"]["owner_id"] == data["user"]["id"]
        assert data["herd"]["owner_type"] == "user"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.json()["organizations"][0]["name"] == "Hodowla Pod Lasem"

    def test_register_duplicate_herd(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        client.post(
            "/api/v1/auth/register",
            json={"email": "herd.a@example.com", "password": "longenough", "herd": {"registration_number": "PL0777"}},
        )
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "herd.b@example.com", "password": "longenough", "herd": {"registration_number": "PL0777"}},
        )
        assert resp.status_code == 409
        login = _login(client, "herd.b@example.com", "longenough")
        assert login.status_code == 401, "No user may be created when the herd conflicts"

    def test_register_herd_race_leaves_no_user(self, api_client: ApiClient, monkeypatch) -> None:
        """A herd number taken between the pre-check and the insert still rolls the sign-up back."""
        client, _seed = api_client
        client.post(
            "/api/v1/auth/register",
            json={"email": "herd.d@example.com", "password": "longenough", "herd": {"registration_number": "PL0888"}},
        )
        monkeypatch.setattr(RecordStore, "herd_registration_exists", lambda self, number: False)
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "herd.c@example.com",
                "password": "longenough",
                "organization": {"name": "Race Farm"},
                "herd": {"registration_number": "PL0888"},
            },
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["message"] == "Herd registration number already exists."
        assert _login(client, "herd.c@example.com", "longenough").status_code == 401

    def test_register_into_organization_requires_auth(self, api_client: ApiClient) -> None:
        client, seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "sneaky@example.com", "password": "longenough", "addToOrganizationId": seed.org_id},
        )
        assert resp.status_code == 403
        assert _login(client, "sneaky@example.com", "longenough").status_code == 401

    def test_staff_registers_client_preserving_session(self, api_client: ApiClient) -> None:
        """Office staff add a client: no token, no cookie, membership created."""
        client, seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "walk.in@example.com",
                "password": "longenough",
                "last_name": "Nowicki",
                "addToOrganizationId": seed.org_id,
                "role": "Client",
                "preserveCurrentSession": True,
            },
            headers=seed.headers("officestaff"),
        )
        assert resp.status_code == 201, resp.text
        assert "token" not in resp.json()
        assert "set-cookie" not in resp.headers

        found = client.get(
            "/api/v1/users/clients", params={"query": "nowicki"}, headers=seed.headers("officestaff")
        ).json()
        assert [c["email"] for c in found["clients"]] == ["walk.in@example.com"]

    def test_staff_cannot_register_staff(self, api_client: ApiClient) -> None:
        client, seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "fake.vet@example.com",
                "password": "longenough",
                "addToOrganizationId": seed.org_id,
                "role": "vet",
            },
            headers=seed.headers("officestaff"),
        )
        assert resp.status_code == 403

    def test_owner_registers_staff(self, api_client: ApiClient) -> None:
        client, seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "email": "new.vettech@example.com",
                "password": "longenough",
                "addToOrganizationId": seed.org_id,
                "role": "vet_tech",
                "preserveCurrentSession": True,
            },
            headers=seed.headers("owner"),
        )
        assert resp.status_code == 201, resp.text

    def test_register_unknown_role_is_rejected(self, api_client: ApiClient) -> None:
        client, _seed = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "x@example.com", "password": "longenough", "role": "janitor"},
        )
        assert resp.status_code == 422
