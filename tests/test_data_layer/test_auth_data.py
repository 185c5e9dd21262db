"""
Tests for user-loading data access (ORM).

Uses db_session fixture: in-memory SQLite, rolled back after each test.
"""
from __future__ import annotations

import pytest
from fastapi import HTTPException

from orgauthz.models import Department, Role, School, UserProfile, UserRole
from orgauthz.security.auth import load_actor, load_user, to_actor


def test_load_user_returns_user_with_department_and_roles(db_session):
    # Arrange: create school, department, role, user (like init_db does)
    school = School(name="North", code="N")
    db_session.add(school)
    db_session.flush()

    dept = Department(name="IT", code="IT", description="IT Dept", school_id=school.id)
    db_session.add(dept)
    db_session.flush()

    role = Role(name="admin", description="Admin role", hierarchy_level=1)
    db_session.add(role)
    db_session.flush()

    user = UserProfile(
        username="testuser",
        email="test@example.com",
        department_id=dept.id,
        is_active=True,
    )
    db_session.add(user)
    db_session.flush()
    db_session.add(UserRole(user_id=user.id, role_id=role.id))
    db_session.commit()

    # Act
    loaded = load_user(db_session, user.id)

    # Assert
    assert loaded.id == user.id
    assert loaded.username == "testuser"
    assert loaded.department is not None
    assert loaded.department.code == "IT"
    assert len(loaded.user_roles) == 1
    assert loaded.user_roles[0].role.name == "admin"


def test_load_user_raises_when_not_found(db_session):
    with pytest.raises(HTTPException) as exc_info:
        load_user(db_session, 99999)
    assert exc_info.value.status_code == 401


def test_load_user_raises_when_inactive(db_session):
    user = UserProfile(username="inactive", email="inactive@example.com", is_active=False)
    db_session.add(user)
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        load_user(db_session, user.id)
    assert exc_info.value.status_code == 401


def test_actor_snapshot_uses_string_ids_and_active_roles(db_session, org):
    org.staff.is_active = False
    db_session.add(UserRole(user_id=org.ada.id, role_id=org.staff.id))
    db_session.commit()

    user, actor = load_actor(db_session, org.ada.id)

    assert user.id == org.ada.id
    assert actor.id == str(org.ada.id)
    assert actor.department_id == str(org.sci.id)
    assert actor.school_id == str(org.school.id)
    assert actor.roles == frozenset({"head"})


def test_actor_school_falls_back_to_department(db_session, org):
    actor = to_actor(load_user(db_session, org.ben.id))

    assert actor.school_id == str(org.school.id)
    assert actor.position_id is None


def test_actor_without_affiliation(db_session, org):
    actor = to_actor(load_user(db_session, org.root.id))

    assert (actor.school_id, actor.department_id) == (None, None)
    assert actor.roles == frozenset({"root"})
