from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamefeed.api.deps import get_current_profile, get_db
from gamefeed.core.errors import Conflict, ValidationError
from gamefeed.models.profile import Profile
from gamefeed.schemas.profiles import ProfileOut, ProfileUpdateIn

router = APIRouter()


@router.get("/profiles/me", response_model=ProfileOut)
def get_me(me: Profile = Depends(get_current_profile)):
    return me


@router.patch("/profiles/me", response_model=ProfileOut)
def update_me(
    payload: ProfileUpdateIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    if payload.username is not None:
        v = payload.username.strip()
        if len(v) > 64:
            raise ValidationError("username too long (max 64)")
        me.username = v or None

    if payload.avatar_url is not None:
        me.avatar_url = payload.avatar_url.strip() or None

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("username already in use")

    db.refresh(me)
    return me