from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from gamefeed.api.deps import get_current_profile, get_db
from gamefeed.models.friend_edge import EdgeStatus
from gamefeed.models.profile import Profile
from gamefeed.schemas.friends import EdgeOut, EdgeUpdateIn, FriendOut, FriendRequestIn
from gamefeed.schemas.profiles import ProfileBrief
from gamefeed.services import friend_edges
from gamefeed.services.friend_edges import FriendView

router = APIRouter()


def _friend_out(f: FriendView) -> FriendOut:
    return FriendOut(
        edge_id=f.edge_id,
        status=f.status,
        direction=f.direction,
        since=f.since,
        profile=ProfileBrief.model_validate(f.profile),
    )


@router.get("/friends", response_model=list[FriendOut])
def list_friends(
    status: EdgeStatus | None = Query(default=None),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    return [_friend_out(f) for f in friend_edges.list_friends(db, me, status)]


@router.get("/friends/requests", response_model=list[FriendOut])
def list_incoming_requests(
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    return [_friend_out(f) for f in friend_edges.list_incoming_requests(db, me)]


@router.post("/friends/requests", response_model=EdgeOut, status_code=201)
def send_friend_request(
    payload: FriendRequestIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    other = friend_edges.resolve_profile_ref(db, payload.recipient_id)
    return friend_edges.request_friend(db, me, other)


@router.patch("/friends/edges/{edge_id}", response_model=EdgeOut)
def update_friend_edge(
    edge_id: int,
    payload: EdgeUpdateIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    if payload.status == EdgeStatus.ACCEPTED.value:
        return friend_edges.accept(db, me, edge_id)
    return friend_edges.decline(db, me, edge_id)


@router.delete("/friends/edges/{edge_id}", status_code=204)
def remove_friend_edge(
    edge_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    friend_edges.remove(db, me, edge_id)
    return Response(status_code=204)
