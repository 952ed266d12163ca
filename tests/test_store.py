"""Unit tests for auth/store.py -- record store operations.

Covers:
- user CRUD: unique email (case-insensitive lookup), profile update never
  touches the password column, deactivation
- membership upsert, removal, role lookup, owner counting
- organizations listed with the user's role, ordered by name
- herd registration uniqueness
- register(): one transaction, nothing left behind on a duplicate herd
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from auth.models import Herd, Organization, User
from auth.store import organizations
from core.roles import Role


@pytest.fixture
def uid(store) -> int:
    return store.create_user(User(email="Marta@Example.com", hashed_password="hash", first_name="Marta"))


def test_create_and_get_user(store, uid):
    user = store.get_by_id(uid)
    assert user.email == "Marta@Example.com"
    assert user.is_active
    assert user.created_at


def test_get_by_email_is_case_insensitive(store, uid):
    assert store.get_by_email("marta@example.COM").id == uid
    assert store.get_by_email("other@example.com") is None


def test_duplicate_email_raises(store, uid):
    with pytest.raises(IntegrityError):
        store.create_user(User(email="Marta@Example.com"))


def test_update_user_ignores_password(store, uid):
    assert store.update_user(uid, city="Poznań", password="plain", hashed_password="evil")
    user = store.get_by_id(uid)
    assert user.city == "Poznań"
    assert user.hashed_password == "hash"


def test_update_password_and_deactivate(store, uid):
    store.update_password(uid, "new-hash")
    store.deactivate_user(uid)
    user = store.get_by_id(uid)
    assert user.hashed_password == "new-hash"
    assert not user.is_active


def test_membership_upsert_and_remove(store, uid):
    org_id = store.create_organization(Organization(name="Clinic"))
    store.add_membership(org_id, uid, Role.client)
    store.add_membership(org_id, uid, Role.vet)
    assert store.get_membership_role(org_id, uid) is Role.vet
    assert store.is_member(org_id, uid)

    assert store.remove_membership(org_id, uid)
    assert store.get_membership_role(org_id, uid) is None
    assert not store.remove_membership(org_id, uid)


def test_list_user_organizations_orders_by_name(store, uid):
    zeta = store.create_organization(Organization(name="Zeta Farm"))
    alpha = store.create_organization(Organization(name="Alpha Vets", city="Lublin"))
    store.add_membership(zeta, uid, Role.owner)
    store.add_membership(alpha, uid, Role.farmer)

    orgs = store.list_user_organizations(uid)
    assert [(o.organization.name, o.role) for o in orgs] == [("Alpha Vets", Role.farmer), ("Zeta Farm", Role.owner)]
    assert orgs[0].organization.city == "Lublin"


def test_count_owners(store, uid):
    org_id = store.create_organization(Organization(name="Clinic"))
    other = store.create_user(User(email="second@example.com"))
    store.add_membership(org_id, uid, Role.owner)
    store.add_membership(org_id, other, Role.client)
    assert store.count_owners(org_id) == 1
    store.add_membership(org_id, other, Role.owner)
    assert store.count_owners(org_id) == 2


def test_herd_registration_uniqueness(store):
    assert not store.herd_registration_exists("PL123")
    result = store.register(
        User(email="herd@example.com"), herd=Herd(registration_number=" PL123 ", owner_id=0, name="North field")
    )
    assert store.herd_registration_exists("PL123")
    herd = store.get_herd(result.herd_id)
    assert (herd.registration_number, herd.owner_id) == ("PL123", result.user_id)


def test_register_writes_all_rows(store):
    clinic = store.create_organization(Organization(name="Clinic"))
    result = store.register(
        User(email="new@example.com", hashed_password="hash"),
        organization=Organization(name="Farm Co"),
        herd=Herd(registration_number="PL777", owner_id=0),
        membership=(clinic, Role.farmer),
    )
    assert store.get_herd(result.herd_id).owner_id == result.user_id
    assert store.get_membership_role(result.organization_id, result.user_id) is Role.owner
    assert store.get_membership_role(clinic, result.user_id) is Role.farmer


def test_register_rolls_back_on_duplicate_herd(store):
    store.register(User(email="first@example.com"), herd=Herd(registration_number="PL123", owner_id=0))
    with pytest.raises(IntegrityError):
        store.register(
            User(email="late@example.com", hashed_password="hash"),
            organization=Organization(name="Late Farm"),
            herd=Herd(registration_number="PL123", owner_id=0),
        )
    assert store.get_by_email("late@example.com") is None
    with store.engine.connect() as conn:
        names = conn.execute(select(organizations.c.name)).scalars().all()
    assert "Late Farm" not in names


def test_register_rolls_back_on_duplicate_email(store, uid):
    with pytest.raises(IntegrityError):
        store.register(User(email="Marta@Example.com"), herd=Herd(registration_number="PL999", owner_id=0))
    assert not store.herd_registration_exists("PL999")


def test_ping(store):
    assert store.ping()
