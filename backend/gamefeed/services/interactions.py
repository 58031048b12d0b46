"""Reactions and comments on activity events."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamefeed.core.errors import Forbidden, NotFound, ValidationError
from gamefeed.core.settings import settings
from gamefeed.models.comment import Comment
from gamefeed.models.profile import Profile
from gamefeed.models.reaction import Reaction
from gamefeed.services import activity_log

logger = logging.getLogger(__name__)


def _clean_kind(kind: str) -> str:
    kind = (kind or "").strip()
    if not kind:
        raise ValidationError("Reaction kind required")
    if len(kind) > settings.REACTION_KIND_MAX_LENGTH:
        raise ValidationError(f"Reaction kind too long (max {settings.REACTION_KIND_MAX_LENGTH})")
    return kind


def _find_reaction(db: Session, event_id: int, user_id: int, kind: str) -> Reaction | None:
    return db.execute(
        select(Reaction).where(
            Reaction.event_id == event_id,
            Reaction.user_id == user_id,
            Reaction.kind == kind,
        )
    ).scalars().one_or_none()


def add_reaction(db: Session, user: Profile, event_id: int, kind: str) -> Reaction:
    """Idempotent: reacting twice with the same kind leaves one row."""
    kind = _clean_kind(kind)
    activity_log.get_visible_event(db, user, event_id)

    existing = _find_reaction(db, event_id, user.id, kind)
    if existing:
        return existing

    reaction = Reaction(event_id=event_id, user_id=user.id, kind=kind)
    db.add(reaction)
    try:
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent identical reaction; theirs counts.
        db.rollback()
        logger.debug("Duplicate reaction %s on event %s by %s", kind, event_id, user.id)
        existing = _find_reaction(db, event_id, user.id, kind)
        if existing is None:
            raise
        return existing

    db.refresh(reaction)
    return reaction


def remove_reaction(db: Session, user: Profile, event_id: int, kind: str) -> None:
    kind = _clean_kind(kind)
    # Only the caller's own row; absent rows are a no-op.
    reaction = _find_reaction(db, event_id, user.id, kind)
    if reaction is None:
        return
    db.delete(reaction)
    db.commit()


def add_comment(db: Session, user: Profile, event_id: int, content: str) -> Comment:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Comment content is required")
    if len(content) > settings.COMMENT_MAX_LENGTH:
        raise ValidationError(f"Comment too long (max {settings.COMMENT_MAX_LENGTH} characters)")

    activity_log.get_visible_event(db, user, event_id)

    comment = Comment(event_id=event_id, user_id=user.id, content=content)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def delete_comment(db: Session, user: Profile, comment_id: int) -> None:
    comment = db.get(Comment, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    if comment.user_id != user.id:
        raise Forbidden("Only the author can delete a comment")
    db.delete(comment)
    db.commit()


def list_comments(db: Session, viewer: Profile, event_id: int) -> list[tuple[Comment, Profile]]:
    activity_log.get_visible_event(db, viewer, event_id)
    return [
        (c, p)
        for c, p in db.execute(
            select(Comment, Profile)
            .join(Profile, Profile.id == Comment.user_id)
            .where(Comment.event_id == event_id)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        ).all()
    ]
