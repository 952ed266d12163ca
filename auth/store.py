"""
auth/store.py -- SQLAlchemy Core record store for users, organizations,
memberships and herds.

Pattern: Repository + Data Mapper. RecordStore is the repository;
row_to_user and the _row_to_* functions are the mappers. Route and service
code never touches SQL
directly -- the search engine is the one exception, and it builds its
statements from the Table objects exported here, never from strings.

Security:
  All queries use bound parameters. No f-strings in SQL.

Dialects:
  SQLite for development and tests, PostgreSQL in production. Nothing in this
  module is dialect-specific; the optional PostgreSQL operators used by search
  are probed separately (cache/capabilities.py).

Layer rule: no imports from api/, cache/, or search/.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import Herd, Membership, Organization, OrganizationWithRole, Registration, User
from core.config import get_settings
from core.roles import Role, parse_role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text),  # bcrypt hash
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone", String(50)),
    Column("street", String(255)),
    Column("house_number", String(30)),
    Column("city", String(100)),
    Column("postal_code", String(20)),
    Column("tax_id", String(30)),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

organizations = Table(
    "organizations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("street", String(255)),
    Column("house_number", String(30)),
    Column("city", String(100)),
    Column("postal_code", String(20)),
    Column("tax_id", String(30)),
    Column("created_at", String(32), nullable=False),
)

organization_user = Table(
    "organization_user",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("organization_id", Integer, ForeignKey("organizations.id"), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role", String(30), nullable=False, server_default="client"),
    UniqueConstraint("organization_id", "user_id", name="uq_organization_user"),
)

herds = Table(
    "herds",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("herd_id", String(50), nullable=False, unique=True),  # registration number
    Column("name", String(255)),
    Column("owner_id", Integer, nullable=False),
    Column("owner_type", String(20), nullable=False, server_default="user"),
    Column("eval_herd_no", String(50)),
    Column("street", String(255)),
    Column("house_number", String(30)),
    Column("city", String(100)),
    Column("postal_code", String(20)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (SQLite only)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordStore:
    """Repository for users, organizations, memberships and herds.

    Usage:
        store = RecordStore()                                  # DATABASE_URL
        store = RecordStore("postgresql://user:pw@host/farmvet")
        uid = store.create_user(User(email="a@b.pl", hashed_password=hash_password("secret")))
        store.add_membership(org_id, uid, Role.client)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.begin() as conn:
            return _insert_user(conn, user)

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Comparison is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(func.lower(users.c.email) == email.strip().lower())).fetchone()
        return row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update profile fields. Returns True if a row was updated.

        The password column is not reachable from here; use update_password().
        """
        fields.pop("password", None)
        fields.pop("hashed_password", None)
        if not fields:
            return False
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update().where(users.c.id == user_id).values(password=hashed_password, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_user(self, user_id: int) -> bool:
        """Set status to inactive. Users are never hard-deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update().where(users.c.id == user_id).values(status="inactive", updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    def create_organization(self, org: Organization) -> int:
        with self.engine.begin() as conn:
            return _insert_organization(conn, org)

    def get_organization(self, organization_id: int) -> Organization | None:
        with self.engine.connect() as conn:
            row = conn.execute(organizations.select().where(organizations.c.id == organization_id)).fetchone()
        return _row_to_organization(row) if row is not None else None

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def add_membership(self, organization_id: int, user_id: int, role: Role) -> Membership:
        """Attach a user to an organization, or change the role if already attached."""
        with self.engine.begin() as conn:
            _upsert_membership(conn, organization_id, user_id, role)
        return Membership(organization_id=organization_id, user_id=user_id, role=role)

    def remove_membership(self, organization_id: int, user_id: int) -> bool:
        """Delete a membership. Invariant checks are the caller's job."""
        with self.engine.connect() as conn:
            result = conn.execute(
                organization_user.delete().where(
                    (organization_user.c.organization_id == organization_id) & (organization_user.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def get_membership_role(self, organization_id: int, user_id: int) -> Role | None:
        """Return the user's role in the organization, or None if not a member."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(organization_user.c.role).where(
                    (organization_user.c.organization_id == organization_id) & (organization_user.c.user_id == user_id)
                )
            ).fetchone()
        return parse_role(row.role) if row is not None else None

    def is_member(self, organization_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(organization_user.c.id).where(
                    (organization_user.c.organization_id == organization_id) & (organization_user.c.user_id == user_id)
                )
            ).fetchone()
        return row is not None

    def list_user_organizations(self, user_id: int) -> list[OrganizationWithRole]:
        """Return the user's organizations with the user's role in each, ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(organizations, organization_user.c.role.label("member_role"))
                .join(organization_user, organization_user.c.organization_id == organizations.c.id)
                .where(organization_user.c.user_id == user_id)
                .order_by(organizations.c.name, organizations.c.id)
            ).fetchall()
        return [OrganizationWithRole(_row_to_organization(r), parse_role(r.member_role)) for r in rows]

    def count_owners(self, organization_id: int) -> int:
        """Return the number of owner memberships in the organization.

        Used to enforce the "at least one owner" invariant before detaching.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(organization_user)
                .where(
                    (organization_user.c.organization_id == organization_id)
                    & (func.lower(organization_user.c.role) == Role.owner.value)
                )
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Herds
    # ------------------------------------------------------------------

    def herd_registration_exists(self, registration_number: str) -> bool:
        if not registration_number or not registration_number.strip():
            return False
        with self.engine.connect() as conn:
            row = conn.execute(select(herds.c.id).where(herds.c.herd_id == registration_number.strip())).fetchone()
        return row is not None

    def get_herd(self, herd_id: int) -> Herd | None:
        with self.engine.connect() as conn:
            row = conn.execute(herds.select().where(herds.c.id == herd_id)).fetchone()
        return _row_to_herd(row) if row is not None else None

    # ------------------------------------------------------------------
    # Sign-up
    # ------------------------------------------------------------------

    def register(
        self,
        user: User,
        organization: Organization | None = None,
        herd: Herd | None = None,
        membership: tuple[int, Role] | None = None,
    ) -> Registration:
        """Write a new user plus their optional organization, herd and membership.

        All rows go in one transaction: an IntegrityError (duplicate email or
        herd registration number) leaves nothing behind. The new user owns the
        organization; membership is an extra (organization_id, role) to join.
        """
        with self.engine.begin() as conn:
            user_id = _insert_user(conn, user)
            organization_id = None
            if organization is not None:
                organization_id = _insert_organization(conn, organization)
                _upsert_membership(conn, organization_id, user_id, Role.owner)
            herd_id = None
            if herd is not None:
                herd_id = _insert_herd(conn, replace(herd, owner_id=user_id))
            if membership is not None:
                _upsert_membership(conn, membership[0], user_id, membership[1])
        return Registration(user_id=user_id, organization_id=organization_id, herd_id=herd_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Insert helpers -- shared by the single-row methods and register()
# ---------------------------------------------------------------------------


def _insert_user(conn, user: User) -> int:
    now = _now_iso()
    result = conn.execute(
        users.insert().values(
            email=user.email,
            password=user.hashed_password,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            street=user.street,
            house_number=user.house_number,
            city=user.city,
            postal_code=user.postal_code,
            tax_id=user.tax_id,
            status=user.status,
            created_at=now,
            updated_at=now,
        )
    )
    return result.inserted_primary_key[0]


def _insert_organization(conn, org: Organization) -> int:
    result = conn.execute(
        organizations.insert().values(
            name=org.name,
            street=org.street,
            house_number=org.house_number,
            city=org.city,
            postal_code=org.postal_code,
            tax_id=org.tax_id,
            created_at=_now_iso(),
        )
    )
    return result.inserted_primary_key[0]


def _insert_herd(conn, herd: Herd) -> int:
    result = conn.execute(
        herds.insert().values(
            herd_id=herd.registration_number.strip(),
            name=herd.name,
            owner_id=herd.owner_id,
            owner_type=herd.owner_type,
            eval_herd_no=herd.eval_herd_no,
            street=herd.street,
            house_number=herd.house_number,
            city=herd.city,
            postal_code=herd.postal_code,
            created_at=_now_iso(),
        )
    )
    return result.inserted_primary_key[0]


def _upsert_membership(conn, organization_id: int, user_id: int, role: Role) -> None:
    existing = conn.execute(
        select(organization_user.c.id).where(
            (organization_user.c.organization_id == organization_id) & (organization_user.c.user_id == user_id)
        )
    ).fetchone()
    if existing is None:
        conn.execute(
            organization_user.insert().values(
                organization_id=organization_id, user_id=user_id, role=role.value
            )
        )
    else:
        conn.execute(
            organization_user.update().where(organization_user.c.id == existing.id).values(role=role.value)
        )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        street=row.street,
        house_number=row.house_number,
        city=row.city,
        postal_code=row.postal_code,
        tax_id=row.tax_id,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_organization(row) -> Organization:
    return Organization(
        id=row.id,
        name=row.name,
        street=row.street,
        house_number=row.house_number,
        city=row.city,
        postal_code=row.postal_code,
        tax_id=row.tax_id,
        created_at=row.created_at,
    )


def _row_to_herd(row) -> Herd:
    return Herd(
        id=row.id,
        registration_number=row.herd_id,
        name=row.name,
        owner_id=row.owner_id,
        owner_type=row.owner_type,
        eval_herd_no=row.eval_herd_no,
        street=row.street,
        house_number=row.house_number,
        city=row.city,
        postal_code=row.postal_code,
        created_at=row.created_at,
    )
