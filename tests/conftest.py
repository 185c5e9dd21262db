"""
Pytest fixtures for the test suite.

Data-layer tests use an in-memory SQLite engine and a session that rolls back
after each test, so tests do not affect each other.

Engine tests use FakePermissionStore: an in-memory PermissionStore that counts
every lookup, so tests can assert that a cached decision made no store call.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orgauthz.authz.cache import DecisionCache, InMemoryCacheBackend
from orgauthz.authz.errors import DataStoreUnavailableError
from orgauthz.authz.types import Actor, OverrideRecord, OwnershipInfo


TEST_DB_URL = "sqlite:///:memory:"


@pytest.fixture
def engine():
    """
    Create a fresh in-memory SQLite engine for each test.

    StaticPool keeps one connection, so threadpool writes see the same database.
    """
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    import orgauthz.models  # noqa: F401  (register mappers on Base.metadata)
    from orgauthz.db.base import Base

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    Use this in tests that need a database (e.g. data layer tests). The
    transaction is rolled back so the next test gets a clean state.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()


# ---- Engine fakes ----------------------------------------------------------------------


@dataclass
class FakePermissionStore:
    overrides: dict[tuple[str, str, str], OverrideRecord] = field(default_factory=dict)
    direct_grants: set[tuple[str, str, str]] = field(default_factory=set)
    role_grants: dict[tuple[str, str, str], list[str | None]] = field(default_factory=dict)
    level0: set[str] = field(default_factory=set)
    ownership: dict[tuple[str, str], OwnershipInfo] = field(default_factory=dict)

    # Set to an exception instance to make every lookup raise it.
    fail_with: Exception | None = None
    calls: Counter = field(default_factory=Counter)

    def _hit(self, name: str) -> None:
        self.calls[name] += 1
        if self.fail_with is not None:
            raise self.fail_with

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    # Seed helpers

    def grant_role(self, actor_id: str, resource: str, action: str, scope: str | None) -> None:
        self.role_grants.setdefault((actor_id, resource, action), []).append(scope)

    def grant_direct(self, actor_id: str, resource: str, action: str) -> None:
        self.direct_grants.add((actor_id, resource, action))

    def set_override(
        self,
        actor_id: str,
        resource: str,
        action: str,
        is_granted: bool,
        valid_until: datetime | None = None,
    ) -> None:
        self.overrides[(actor_id, resource, action)] = OverrideRecord(is_granted=is_granted, valid_until=valid_until)

    # PermissionStore

    async def find_override(self, actor_id: str, resource: str, action: str) -> OverrideRecord | None:
        self._hit("find_override")
        return self.overrides.get((actor_id, resource, action))

    async def find_direct_grant(self, actor_id: str, resource: str, action: str) -> bool:
        self._hit("find_direct_grant")
        return (actor_id, resource, action) in self.direct_grants

    async def find_role_grants(self, actor_id: str, resource: str, action: str) -> list[str | None]:
        self._hit("find_role_grants")
        return list(self.role_grants.get((actor_id, resource, action), []))

    async def find_hierarchy_level0_role(self, actor_id: str) -> bool:
        self._hit("find_hierarchy_level0_role")
        return actor_id in self.level0

    async def resolve_ownership(self, kind: str, resource_id: str) -> OwnershipInfo | None:
        self._hit("resolve_ownership")
        return self.ownership.get((kind, resource_id))


class BrokenCacheBackend:
    """Backend whose every call fails, as if the cache host were down."""

    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")

    async def delete(self, key):
        raise ConnectionError("cache down")

    async def delete_prefix(self, prefix):
        raise ConnectionError("cache down")


@pytest.fixture
def broken_cache():
    return DecisionCache(BrokenCacheBackend())


@pytest.fixture
def store():
    return FakePermissionStore()


@pytest.fixture
def cache():
    return DecisionCache(InMemoryCacheBackend())


@pytest.fixture
def actor():
    return Actor(id="7", school_id="1", department_id="10", position_id="100", roles=frozenset({"staff"}))


@pytest.fixture
def unavailable():
    return DataStoreUnavailableError("circuit breaker is OPEN - database unavailable")


# ---- Seeded organization -----------------------------------------------------------------


@pytest.fixture
def org(db_session):
    """
    Small organization for data-layer tests:

        school North -> departments SCI, MATH
        ada   (SCI)  holds `head`  (level 3): department UPDATE SCHOOL
        ben   (MATH) holds `staff` (level 5): user READ OWN
        root  (none) holds `root`  (level 0)
    """
    from types import SimpleNamespace

    from orgauthz.models import Department, Permission, Role, RolePermission, School, UserProfile, UserRole

    north = School(name="North", code="N")
    db_session.add(north)
    db_session.flush()

    sci = Department(name="Science", code="SCI", school_id=north.id)
    math = Department(name="Maths", code="MATH", school_id=north.id)
    db_session.add_all([sci, math])
    db_session.flush()

    update_dept = Permission(resource="department", action="UPDATE", scope="SCHOOL")
    read_own = Permission(resource="user", action="READ", scope="OWN")
    audit = Permission(resource="audit", action="READ", scope="ALL")
    db_session.add_all([update_dept, read_own, audit])
    db_session.flush()

    head = Role(name="head", hierarchy_level=3)
    staff = Role(name="staff", hierarchy_level=5)
    root_role = Role(name="root", hierarchy_level=0)
    db_session.add_all([head, staff, root_role])
    db_session.flush()

    db_session.add_all(
        [
            RolePermission(role_id=head.id, permission_id=update_dept.id),
            RolePermission(role_id=staff.id, permission_id=read_own.id),
        ]
    )

    ada = UserProfile(username="ada", email="ada@example.edu", school_id=north.id, department_id=sci.id)
    ben = UserProfile(username="ben", email="ben@example.edu", department_id=math.id)
    root = UserProfile(username="root", email="root@example.edu")
    db_session.add_all([ada, ben, root])
    db_session.flush()

    db_session.add_all(
        [
            UserRole(user_id=ada.id, role_id=head.id),
            UserRole(user_id=ben.id, role_id=staff.id),
            UserRole(user_id=root.id, role_id=root_role.id),
        ]
    )
    db_session.commit()

    return SimpleNamespace(
        school=north,
        sci=sci,
        math=math,
        update_dept=update_dept,
        read_own=read_own,
        audit=audit,
        head=head,
        staff=staff,
        root_role=root_role,
        ada=ada,
        ben=ben,
        root=root,
    )
