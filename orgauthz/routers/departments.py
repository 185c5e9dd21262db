from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from orgauthz.db.session import get_db
from orgauthz.models.organization import Department
from orgauthz.schemas.organization import DepartmentOut, DepartmentUpdate

router = APIRouter(prefix="/departments", tags=["departments"])


def _get_or_404(db: Session, id: int) -> Department:
    department = db.get(Department, id)
    if department is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found")
    return department


@router.get("/{id}", response_model=DepartmentOut)
def get_department(id: int, db: Session = Depends(get_db)) -> Department:
    # Access (department READ, DEPARTMENT scope) is enforced by the global dependency.
    return _get_or_404(db, id)


@router.patch("/{id}", response_model=DepartmentOut)
def update_department(id: int, payload: DepartmentUpdate, db: Session = Depends(get_db)) -> Department:
    department = _get_or_404(db, id)
    for field, value in payload.model_dump(exclude_none=True).items():
        setattr(department, field, value)
    db.commit()
    db.refresh(department)
    return department
