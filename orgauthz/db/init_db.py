from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from orgauthz.db.base import Base
from orgauthz.db.session import SessionLocal, engine
from orgauthz.models.organization import Department, Position, School, UserProfile
from orgauthz.models.permissions import Permission, Role, RolePermission, UserOverride, UserPermission, UserRole


def init_db() -> None:
    """
    Create tables + seed a small organization.

    Deliberately small and deterministic so the decision engine can be tried
    without additional setup.
    """

    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        if _has_seed_data(db):
            return
        _seed(db)


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(School.id).limit(1)).first() is not None


def _seed(db: Session) -> None:
    # Schools
    north = School(name="North Campus", code="NORTH")
    south = School(name="South Campus", code="SOUTH")
    db.add_all([north, south])
    db.flush()

    # Departments
    admin_dept = Department(name="Administration", code="ADM", school_id=north.id, description="Campus administration")
    science = Department(name="Science", code="SCI", school_id=north.id, description="Science faculty")
    humanities = Department(name="Humanities", code="HUM", school_id=south.id, description="Humanities faculty")
    db.add_all([admin_dept, science, humanities])
    db.flush()

    # Positions
    principal = Position(name="Principal", code="PRN", department_id=admin_dept.id)
    head_sci = Position(name="Head of Science", code="HOS", department_id=science.id)
    lecturer = Position(name="Lecturer", code="LEC", department_id=humanities.id)
    db.add_all([principal, head_sci, lecturer])
    db.flush()

    # Permissions
    perms = {
        key: Permission(resource=key[0], action=key[1], scope=key[2])
        for key in [
            ("user", "READ", "OWN"),
            ("user", "READ", "SCHOOL"),
            ("user", "UPDATE", "OWN"),
            ("department", "READ", "SCHOOL"),
            ("department", "UPDATE", "SCHOOL"),
            ("department", "UPDATE", "DEPARTMENT"),
            ("role", "READ", "ALL"),
            ("role", "UPDATE", "ALL"),
            ("role", "DELETE", "ALL"),
            ("permission", "UPDATE", "ALL"),
            ("audit", "READ", "ALL"),
        ]
    }
    db.add_all(perms.values())
    db.flush()

    # Roles
    superadmin = Role(name="superadmin", hierarchy_level=0, description="Top administrative tier (bypass)")
    school_admin = Role(name="school_admin", hierarchy_level=1, description="School administrator")
    head = Role(name="department_head", hierarchy_level=3, description="Head of department")
    staff = Role(name="staff", hierarchy_level=5, description="Regular staff member")
    db.add_all([superadmin, school_admin, head, staff])
    db.flush()

    grants = {
        school_admin: [
            ("user", "READ", "SCHOOL"),
            ("department", "READ", "SCHOOL"),
            ("department", "UPDATE", "SCHOOL"),
            ("role", "READ", "ALL"),
            ("role", "DELETE", "ALL"),
        ],
        head: [("department", "READ", "SCHOOL"), ("department", "UPDATE", "DEPARTMENT")],
        staff: [("user", "READ", "OWN"), ("user", "UPDATE", "OWN")],
    }
    for role, keys in grants.items():
        db.add_all([RolePermission(role_id=role.id, permission_id=perms[key].id, is_granted=True) for key in keys])

    # Users
    alice = UserProfile(username="alice_root", email="alice@example.edu")
    sam = UserProfile(
        username="sam_school_admin",
        email="sam@example.edu",
        school_id=north.id,
        department_id=admin_dept.id,
        position_id=principal.id,
    )
    hana = UserProfile(
        username="hana_head",
        email="hana@example.edu",
        school_id=north.id,
        department_id=science.id,
        position_id=head_sci.id,
    )
    leo = UserProfile(
        username="leo_lecturer",
        email="leo@example.edu",
        school_id=south.id,
        department_id=humanities.id,
        position_id=lecturer.id,
    )
    db.add_all([alice, sam, hana, leo])
    db.flush()

    db.add_all(
        [
            UserRole(user_id=alice.id, role_id=superadmin.id),
            UserRole(user_id=sam.id, role_id=school_admin.id),
            UserRole(user_id=hana.id, role_id=head.id),
            UserRole(user_id=hana.id, role_id=staff.id),
            UserRole(user_id=leo.id, role_id=staff.id),
            UserPermission(user_id=leo.id, permission_id=perms[("audit", "READ", "ALL")].id, is_granted=True),
            UserOverride(
                user_id=sam.id,
                resource="role",
                action="DELETE",
                is_granted=False,
                reason="Role deletion frozen pending review",
            ),
        ]
    )

    db.commit()
