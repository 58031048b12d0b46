from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from gamefeed.api.deps import get_current_profile, get_db
from gamefeed.models.profile import Profile
from gamefeed.schemas.interactions import CommentIn, CommentOut, ReactionIn, ReactionOut
from gamefeed.schemas.profiles import ProfileBrief
from gamefeed.services import interactions

router = APIRouter()


@router.post("/events/{event_id}/reactions", response_model=ReactionOut)
def add_reaction(
    event_id: int,
    payload: ReactionIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    # 200 whether or not the reaction already existed.
    return interactions.add_reaction(db, me, event_id, payload.kind)


@router.delete("/events/{event_id}/reactions", status_code=204)
def remove_reaction(
    event_id: int,
    payload: ReactionIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    interactions.remove_reaction(db, me, event_id, payload.kind)
    return Response(status_code=204)


@router.get("/events/{event_id}/comments", response_model=list[CommentOut])
def list_comments(
    event_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    out: list[CommentOut] = []
    for c, author in interactions.list_comments(db, me, event_id):
        item = CommentOut.model_validate(c)
        item.author = ProfileBrief.model_validate(author)
        out.append(item)
    return out


@router.post("/events/{event_id}/comments", response_model=CommentOut, status_code=201)
def add_comment(
    event_id: int,
    payload: CommentIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    c = interactions.add_comment(db, me, event_id, payload.content)
    out = CommentOut.model_validate(c)
    out.author = ProfileBrief.model_validate(me)
    return out


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    interactions.delete_comment(db, me, comment_id)
    return Response(status_code=204)
