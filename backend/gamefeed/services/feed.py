"""Feed composition: friends' public events, newest first, with display data.

Query count per page is fixed: friend ids, events, actor/friend profiles,
games, and the grouped interaction counts. Nothing is fetched per event.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gamefeed.core.settings import settings
from gamefeed.models.activity_event import ActivityEvent
from gamefeed.models.game import Game
from gamefeed.models.profile import Profile
from gamefeed.schemas.activity import FeedEventOut, GameBrief
from gamefeed.schemas.profiles import ProfileBrief
from gamefeed.services import aggregation, friend_edges


@dataclass
class FeedPage:
    events: list[FeedEventOut]
    has_more: bool
    snapshot_id: int | None = None


def compose(db: Session, viewer_id: int, events: Sequence[ActivityEvent]) -> list[FeedEventOut]:
    if not events:
        return []

    profile_ids = {e.actor_id for e in events} | {
        e.subject_friend_id for e in events if e.subject_friend_id is not None
    }
    profiles = {
        p.id: p for p in db.execute(select(Profile).where(Profile.id.in_(profile_ids))).scalars().all()
    }

    game_ids = {e.subject_game_id for e in events if e.subject_game_id}
    games: dict[str, Game] = {}
    if game_ids:
        games = {g.id: g for g in db.execute(select(Game).where(Game.id.in_(game_ids))).scalars().all()}

    counts = aggregation.interaction_counts(db, [e.id for e in events], viewer_id)

    out: list[FeedEventOut] = []
    for e in events:
        actor = profiles.get(e.actor_id)
        game = games.get(e.subject_game_id) if e.subject_game_id else None
        friend = profiles.get(e.subject_friend_id) if e.subject_friend_id is not None else None
        c = counts[e.id]
        out.append(
            FeedEventOut(
                id=e.id,
                type=e.type,
                actor=ProfileBrief.model_validate(actor)
                if actor
                else ProfileBrief(id=e.actor_id, username=None, avatar_url=None),
                subject_game_id=e.subject_game_id,
                # Deleted catalog rows degrade to no subject rather than failing the page.
                subject_game=GameBrief.model_validate(game) if game else None,
                subject_friend=ProfileBrief.model_validate(friend) if friend else None,
                payload=e.payload or {},
                is_public=e.is_public,
                created_at=e.created_at,
                reactions_count=c.reactions_count,
                comments_count=c.comments_count,
                reaction_counts=c.reaction_counts,
                viewer_reactions=c.viewer_reactions,
            )
        )
    return out


def feed_for(
    db: Session,
    viewer: Profile,
    offset: int = 0,
    limit: int | None = None,
    snapshot_id: int | None = None,
) -> FeedPage:
    limit = limit or settings.FEED_PAGE_SIZE

    friend_ids = friend_edges.accepted_friend_ids(db, viewer.id)
    if not friend_ids:
        return FeedPage(events=[], has_more=False, snapshot_id=snapshot_id)

    visible = (ActivityEvent.actor_id.in_(friend_ids), ActivityEvent.is_public.is_(True))

    if snapshot_id is None:
        snapshot_id = db.execute(select(func.max(ActivityEvent.id)).where(*visible)).scalar_one_or_none()
        if snapshot_id is None:
            return FeedPage(events=[], has_more=False)

    rows = db.execute(
        select(ActivityEvent)
        .where(*visible, ActivityEvent.id <= snapshot_id)
        .order_by(ActivityEvent.created_at.desc(), ActivityEvent.id.desc())
        .offset(offset)
        .limit(limit + 1)
    ).scalars().all()

    page = list(rows[:limit])
    return FeedPage(
        events=compose(db, viewer.id, page),
        has_more=len(rows) > limit,
        snapshot_id=snapshot_id,
    )


def event_view(db: Session, viewer: Profile, ev: ActivityEvent) -> FeedEventOut:
    return compose(db, viewer.id, [ev])[0]
