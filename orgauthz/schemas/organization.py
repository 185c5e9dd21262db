from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class DepartmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    description: str | None
    school_id: int | None
    is_active: bool


class DepartmentUpdate(BaseModel):
    name: str | None = None
    description: str | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    is_active: bool
    school_id: int | None
    department_id: int | None
    position_id: int | None


class MeOut(BaseModel):
    user: UserOut
    roles: list[str]
    decisions: dict[str, str]
