"""Friend edge store: request/accept/decline/remove and symmetric friend lists.

Every relationship is one directed row (requester -> recipient). The pair is
unique regardless of direction: the OR lookup below catches the common case and
the ``pair_key`` unique constraint catches concurrent duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamefeed.core.errors import DuplicateEdge, Forbidden, NotFound, NotRecipient, ValidationError
from gamefeed.models.friend_edge import EdgeStatus, FriendEdge, edge_pair_key
from gamefeed.models.profile import Profile

logger = logging.getLogger(__name__)


@dataclass
class FriendView:
    edge_id: int
    status: EdgeStatus
    direction: str
    since: datetime
    profile: Profile


def resolve_profile_ref(db: Session, ref: int | str) -> Profile:
    """Find a profile by id, external id or username."""
    if isinstance(ref, int):
        p = db.get(Profile, ref)
        if not p:
            raise NotFound("User not found")
        return p

    ref = (ref or "").strip()
    if not ref:
        raise ValidationError("Empty user reference")

    p = db.execute(select(Profile).where(Profile.external_id == ref)).scalars().one_or_none()
    if not p:
        p = db.execute(select(Profile).where(Profile.username == ref)).scalars().one_or_none()
    if not p:
        raise NotFound("User not found")
    return p


def _edge_between(db: Session, a_id: int, b_id: int) -> FriendEdge | None:
    return db.execute(
        select(FriendEdge).where(
            or_(
                (FriendEdge.requester_id == a_id) & (FriendEdge.recipient_id == b_id),
                (FriendEdge.requester_id == b_id) & (FriendEdge.recipient_id == a_id),
            )
        )
    ).scalars().first()


def _get_edge(db: Session, edge_id: int) -> FriendEdge:
    edge = db.get(FriendEdge, edge_id)
    if not edge:
        raise NotFound("Friend edge not found")
    return edge


def request_friend(db: Session, requester: Profile, recipient: Profile) -> FriendEdge:
    if requester.id == recipient.id:
        raise ValidationError("Cannot send a friend request to yourself")

    existing = _edge_between(db, requester.id, recipient.id)
    if existing is not None:
        if existing.status != EdgeStatus.DECLINED.value:
            raise DuplicateEdge()
        # Declined rows are never reused: drop it and start a fresh request.
        logger.info("Replacing declined edge %s for pair %s", existing.id, existing.pair_key)
        db.delete(existing)
        db.flush()

    edge = FriendEdge(
        requester_id=requester.id,
        recipient_id=recipient.id,
        status=EdgeStatus.PENDING.value,
        pair_key=edge_pair_key(requester.id, recipient.id),
    )
    db.add(edge)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateEdge()

    db.refresh(edge)
    logger.debug("Friend request %s: %s -> %s", edge.id, requester.id, recipient.id)
    return edge


def accept(db: Session, actor: Profile, edge_id: int) -> FriendEdge:
    edge = _get_edge(db, edge_id)
    if edge.recipient_id != actor.id:
        if edge.requester_id == actor.id:
            raise NotRecipient()
        raise Forbidden()

    if edge.status == EdgeStatus.ACCEPTED.value:
        return edge
    if edge.status != EdgeStatus.PENDING.value:
        raise ValidationError("Friend request is no longer pending")

    edge.status = EdgeStatus.ACCEPTED.value
    db.commit()
    db.refresh(edge)
    return edge


def decline(db: Session, actor: Profile, edge_id: int) -> FriendEdge:
    edge = _get_edge(db, edge_id)
    if not edge.involves(actor.id):
        raise Forbidden()
    if edge.status != EdgeStatus.PENDING.value:
        raise ValidationError("Friend request is no longer pending")

    edge.status = EdgeStatus.DECLINED.value
    db.commit()
    db.refresh(edge)
    return edge


def remove(db: Session, actor: Profile, edge_id: int) -> None:
    edge = _get_edge(db, edge_id)
    if not edge.involves(actor.id):
        raise Forbidden()

    db.delete(edge)
    db.commit()


def list_friends(db: Session, user: Profile, status: EdgeStatus | None = None) -> list[FriendView]:
    q = select(FriendEdge).where(
        or_(FriendEdge.requester_id == user.id, FriendEdge.recipient_id == user.id)
    )
    if status is not None:
        q = q.where(FriendEdge.status == status.value)
    edges = db.execute(q.order_by(FriendEdge.created_at.desc(), FriendEdge.id.desc())).scalars().all()
    if not edges:
        return []

    # One batched profile lookup instead of a join per edge.
    counterpart_ids = {e.counterpart_of(user.id) for e in edges}
    profiles = {
        p.id: p
        for p in db.execute(select(Profile).where(Profile.id.in_(counterpart_ids))).scalars().all()
    }

    out: list[FriendView] = []
    for e in edges:
        p = profiles.get(e.counterpart_of(user.id))
        if p is None:
            continue
        out.append(
            FriendView(
                edge_id=e.id,
                status=EdgeStatus(e.status),
                direction="outgoing" if e.requester_id == user.id else "incoming",
                since=e.created_at,
                profile=p,
            )
        )
    return out


def list_incoming_requests(db: Session, user: Profile) -> list[FriendView]:
    return [
        f
        for f in list_friends(db, user, EdgeStatus.PENDING)
        if f.direction == "incoming"
    ]


def accepted_friend_ids(db: Session, user_id: int) -> set[int]:
    rows = db.execute(
        select(FriendEdge.requester_id, FriendEdge.recipient_id).where(
            FriendEdge.status == EdgeStatus.ACCEPTED.value,
            or_(FriendEdge.requester_id == user_id, FriendEdge.recipient_id == user_id),
        )
    ).all()
    return {b if a == user_id else a for a, b in rows}


def are_friends(db: Session, a_id: int, b_id: int) -> bool:
    edge = _edge_between(db, a_id, b_id)
    return edge is not None and edge.status == EdgeStatus.ACCEPTED.value
