"""Derived state computed from the source rows.

Nothing here is a stored counter: reaction/comment counts are grouped at read
time, so a fresh fetch is always correct even if a client cache drifted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gamefeed.models.comment import Comment
from gamefeed.models.library_entry import LibraryEntry, LibraryStatus
from gamefeed.models.progress_history import ProgressHistoryPoint
from gamefeed.models.reaction import Reaction


@dataclass
class InteractionCounts:
    reactions_count: int = 0
    comments_count: int = 0
    reaction_counts: dict[str, int] = field(default_factory=dict)
    viewer_reactions: list[str] = field(default_factory=list)


def interaction_counts(
    db: Session, event_ids: Iterable[int], viewer_id: int | None = None
) -> dict[int, InteractionCounts]:
    ids = list(set(event_ids))
    out = {eid: InteractionCounts() for eid in ids}
    if not ids:
        return out

    for event_id, kind, n in db.execute(
        select(Reaction.event_id, Reaction.kind, func.count(Reaction.id))
        .where(Reaction.event_id.in_(ids))
        .group_by(Reaction.event_id, Reaction.kind)
    ).all():
        c = out[event_id]
        c.reaction_counts[kind] = int(n)
        c.reactions_count += int(n)

    for event_id, n in db.execute(
        select(Comment.event_id, func.count(Comment.id))
        .where(Comment.event_id.in_(ids))
        .group_by(Comment.event_id)
    ).all():
        out[event_id].comments_count = int(n)

    if viewer_id is not None:
        for event_id, kind in db.execute(
            select(Reaction.event_id, Reaction.kind)
            .where(Reaction.event_id.in_(ids), Reaction.user_id == viewer_id)
            .order_by(Reaction.id)
        ).all():
            out[event_id].viewer_reactions.append(kind)

    return out


def library_entries(
    db: Session, user_id: int, status: LibraryStatus | None = None
) -> list[LibraryEntry]:
    q = select(LibraryEntry).where(LibraryEntry.user_id == user_id)
    if status is not None:
        q = q.where(LibraryEntry.status == status.value)
    return list(
        db.execute(q.order_by(LibraryEntry.updated_at.desc(), LibraryEntry.id.desc())).scalars().all()
    )


def library_entry(db: Session, user_id: int, game_id: str) -> LibraryEntry | None:
    return db.execute(
        select(LibraryEntry).where(LibraryEntry.user_id == user_id, LibraryEntry.game_id == game_id)
    ).scalars().one_or_none()


def progress_timeline(db: Session, user_id: int, game_id: str) -> list[ProgressHistoryPoint]:
    return list(
        db.execute(
            select(ProgressHistoryPoint)
            .where(ProgressHistoryPoint.user_id == user_id, ProgressHistoryPoint.game_id == game_id)
            .order_by(ProgressHistoryPoint.created_at.asc(), ProgressHistoryPoint.id.asc())
        ).scalars().all()
    )
