"""
tests/conftest.py -- Shared test fixtures for farmvet integration tests.

This module provides:
  - make_test_store(): isolated in-memory record store
  - seed_organization(): one clinic with a member for every role, plus a
    second organization whose client must stay invisible
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: (TestClient, Seed) with ready-made access tokens per role

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be prepared before any farmvet import so get_settings()
auto-generates signing secrets (DEBUG), accepts the TestClient host, and does
not rate-limit the suite.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set before any auth/core import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, install_services
from auth.models import Organization, RoleClaim, User
from auth.store import RecordStore
from auth.tokens import TokenService, hash_password
from core.config import get_settings
from core.roles import Role

PASSWORD = "password123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> RecordStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return RecordStore(db_url=f"sqlite:///file:test_farmvet_{db_suffix}?mode=memory&cache=shared&uri=true")


@dataclass
class Seed:
    """Ids and tokens for the seeded organizations.

    ids/tokens are keyed by persona: owner, superadmin, officestaff, employee,
    vet, client, client2, farmer, outsider (a client of the other organization).
    """

    org_id: int
    other_org_id: int
    ids: dict[str, int] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)

    def headers(self, persona: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[persona]}"}


_PEOPLE = {
    # persona: (email, first, last, city, role in the clinic)
    "owner": ("olga.owner@example.com", "Olga", "Nowak", "Lublin", Role.owner),
    "superadmin": ("root@example.com", "Sam", "Admin", None, Role.superadmin),
    "officestaff": ("oskar.office@example.com", "Oskar", "Biuro", "Lublin", Role.officestaff),
    "employee": ("ewa.employee@example.com", "Ewa", "Pracownik", "Lublin", Role.employee),
    "vet": ("wiktor.vet@example.com", "Wiktor", "Weterynarz", "Lublin", Role.vet),
    "client": ("jan.kowalski@example.com", "Jan", "Kowalski", "Kraków", Role.client),
    "client2": ("anna.kowalska@example.com", "Anna", "Kowalska", "Zamość", Role.client),
    "farmer": ("jozef.rolnik@example.com", "Józef", "Rolnik", "Łódź", Role.farmer),
}


def seed_organization(store: RecordStore) -> Seed:
    """Create the clinic, its members and a second organization with one client."""
    org_id = store.create_organization(Organization(name="Green Valley Vets", city="Lublin"))
    other_org_id = store.create_organization(Organization(name="Other Clinic", city="Gdańsk"))
    seed = Seed(org_id=org_id, other_org_id=other_org_id)
    hashed = hash_password(PASSWORD)

    for persona, (email, first, last, city, role) in _PEOPLE.items():
        uid = store.create_user(
            User(email=email, hashed_password=hashed, first_name=first, last_name=last, city=city)
        )
        store.add_membership(org_id, uid, role)
        seed.ids[persona] = uid

    outsider = store.create_user(
        User(email="piotr.kowalczyk@example.com", hashed_password=hashed, first_name="Piotr", last_name="Kowalczyk")
    )
    store.add_membership(other_org_id, outsider, Role.client)
    seed.ids["outsider"] = outsider

    tokens = TokenService(get_settings())
    for persona, uid in seed.ids.items():
        org = other_org_id if persona == "outsider" else org_id
        role = store.get_membership_role(org, uid)
        seed.tokens[persona] = tokens.issue(uid, [RoleClaim(organization_id=org, role=role)]).access_token
    return seed


def _patch_lifespan(store: RecordStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state through the same
    install_services() the real lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, store)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, Seed], None, None]:
    """Yield (client, seed) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    """
    store = make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    seed = seed_organization(store)

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, seed

    store.close()


@pytest.fixture
def store() -> Generator[RecordStore, None, None]:
    """Function-scoped plain in-memory store for unit tests."""
    s = RecordStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def seeded_store(store: RecordStore) -> tuple[RecordStore, Seed]:
    """The plain store with the clinic and its members loaded."""
    return store, seed_organization(store)
