from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from orgauthz.db.session import get_db
from orgauthz.models.organization import UserProfile
from orgauthz.schemas.organization import MeOut, UserOut
from orgauthz.security.dependencies import get_current_user

router = APIRouter(tags=["users"])


@router.get("/me", response_model=MeOut)
def me(request: Request, user: UserProfile = Depends(get_current_user)) -> MeOut:
    actor = request.state.actor
    authz = getattr(request.state, "authz", None)
    return MeOut(
        user=UserOut.model_validate(user),
        roles=sorted(actor.roles),
        decisions=authz.reasons() if authz is not None else {},
    )


@router.get("/users/{id}", response_model=UserOut)
def get_user(id: int, db: Session = Depends(get_db)) -> UserProfile:
    user = db.get(UserProfile, id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user
