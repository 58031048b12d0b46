"""Append-only activity event log.

Events are immutable once recorded; the only mutation is deletion by the actor.
Callers that change library state record their event *after* their own write
(see `library_pipeline`), so a missing event for a library change is a known,
tolerated gap rather than an error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gamefeed.core.errors import CooldownActive, Forbidden, NotFound, ValidationError
from gamefeed.core.settings import settings
from gamefeed.models.activity_event import ActivityEvent, ActivityType
from gamefeed.models.library_entry import LibraryStatus
from gamefeed.models.profile import Profile
from gamefeed.services import friend_edges

logger = logging.getLogger(__name__)


# Seconds between two events of the same type for the same actor and game.
COOLDOWN_SECONDS: dict[ActivityType, int] = {
    ActivityType.STARTED_PLAYING: 24 * 60 * 60,
    ActivityType.WANT_TO_PLAY: 60 * 60,
    ActivityType.PROGRESS: 30 * 60,
    ActivityType.ACHIEVEMENT_UNLOCKED: 5 * 60,
}

GAME_SUBJECT_TYPES = {
    ActivityType.WANT_TO_PLAY,
    ActivityType.STARTED_PLAYING,
    ActivityType.GAME_COMPLETED,
    ActivityType.GAME_STATUS_UPDATED,
    ActivityType.PROGRESS,
    ActivityType.ACHIEVEMENT_UNLOCKED,
    ActivityType.REVIEW_ADDED,
}


class _StatusPayload(BaseModel):
    status: LibraryStatus
    previous_status: LibraryStatus | None = None


class _ProgressPayload(BaseModel):
    play_time: float | None = Field(default=None, ge=0)
    completion_percentage: float | None = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _at_least_one(self):
        if self.play_time is None and self.completion_percentage is None:
            raise ValueError("play_time or completion_percentage required")
        return self


class _AchievementPayload(BaseModel):
    achievement: str = Field(min_length=1, max_length=settings.TITLE_MAX_LENGTH)


class _ReviewPayload(BaseModel):
    rating: float | None = Field(default=None, ge=0, le=10)
    content: str | None = Field(default=None, max_length=settings.COMMENT_MAX_LENGTH)


class _CollectionPayload(BaseModel):
    name: str = Field(min_length=1, max_length=settings.TITLE_MAX_LENGTH)


_PAYLOAD_SHAPES: dict[ActivityType, type[BaseModel]] = {
    ActivityType.GAME_STATUS_UPDATED: _StatusPayload,
    ActivityType.PROGRESS: _ProgressPayload,
    ActivityType.ACHIEVEMENT_UNLOCKED: _AchievementPayload,
    ActivityType.REVIEW_ADDED: _ReviewPayload,
    ActivityType.COLLECTION_CREATED: _CollectionPayload,
}


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive timestamps (stored as UTC).
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def validate_payload(type_: ActivityType, payload: dict[str, Any] | None) -> dict[str, Any]:
    payload = dict(payload or {})
    shape = _PAYLOAD_SHAPES.get(type_)
    if shape is None:
        return payload
    try:
        parsed = shape.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ())) or "payload"
        raise ValidationError(f"Invalid {type_.value} payload ({where}): {first.get('msg')}")
    # Keep unknown keys the caller sent; normalize the known ones.
    payload.update(parsed.model_dump(mode="json", exclude_none=True))
    return payload


def _check_cooldown(db: Session, actor_id: int, type_: ActivityType, subject_game_id: str | None) -> None:
    window = COOLDOWN_SECONDS.get(type_, 0)
    if not window or not settings.ACTIVITY_COOLDOWNS_ENABLED:
        return

    q = select(ActivityEvent.created_at).where(
        ActivityEvent.actor_id == actor_id,
        ActivityEvent.type == type_.value,
    )
    if subject_game_id is None:
        q = q.where(ActivityEvent.subject_game_id.is_(None))
    else:
        q = q.where(ActivityEvent.subject_game_id == subject_game_id)
    last = db.execute(q.order_by(ActivityEvent.created_at.desc()).limit(1)).scalar_one_or_none()
    if last is None:
        return

    elapsed = (datetime.now(timezone.utc) - _as_utc(last)).total_seconds()
    if elapsed < window:
        remaining = int(window - elapsed) + 1
        minutes = max(1, (remaining + 59) // 60)
        raise CooldownActive(
            f"Please wait {minutes} minutes before posting another "
            f"{type_.value.replace('_', ' ')} activity for this game.",
            retry_after=remaining,
        )


def record(
    db: Session,
    actor: Profile,
    type_: ActivityType,
    *,
    subject_game_id: str | None = None,
    subject_friend_id: int | None = None,
    payload: dict[str, Any] | None = None,
    is_public: bool = True,
    commit: bool = True,
) -> ActivityEvent:
    """Append one event for ``actor`` and return it.

    With ``commit=False`` the row is only flushed so the caller can make it part
    of a larger transaction.
    """
    subject_game_id = (subject_game_id or "").strip() or None
    if type_ in GAME_SUBJECT_TYPES and not subject_game_id:
        raise ValidationError(f"{type_.value} requires subject_game_id")
    if type_ == ActivityType.FRIEND_ADDED:
        if subject_friend_id is None:
            raise ValidationError("friend_added requires subject_friend_id")
        if not db.get(Profile, subject_friend_id):
            raise NotFound("Friend not found")

    clean = validate_payload(type_, payload)
    _check_cooldown(db, actor.id, type_, subject_game_id)

    ev = ActivityEvent(
        actor_id=actor.id,
        type=type_.value,
        subject_game_id=subject_game_id,
        subject_friend_id=subject_friend_id,
        payload=clean,
        is_public=is_public,
    )
    db.add(ev)
    if commit:
        db.commit()
        db.refresh(ev)
    else:
        db.flush()
    logger.debug("Recorded %s event %s for actor %s", type_.value, ev.id, actor.id)
    return ev


def delete_event(db: Session, actor: Profile, event_id: int) -> None:
    ev = db.get(ActivityEvent, event_id)
    if not ev:
        raise NotFound("Activity not found")
    if ev.actor_id != actor.id:
        raise Forbidden("Only the author can delete an activity")
    db.delete(ev)
    db.commit()


def can_view(db: Session, viewer_id: int, ev: ActivityEvent) -> bool:
    if ev.actor_id == viewer_id:
        return True
    return ev.is_public and friend_edges.are_friends(db, viewer_id, ev.actor_id)


def get_visible_event(db: Session, viewer: Profile, event_id: int) -> ActivityEvent:
    ev = db.get(ActivityEvent, event_id)
    # Hidden and missing look the same to the caller.
    if not ev or not can_view(db, viewer.id, ev):
        raise NotFound("Activity not found")
    return ev


def _page(db: Session, q, offset: int, limit: int) -> tuple[list[ActivityEvent], bool]:
    rows = db.execute(
        q.order_by(ActivityEvent.created_at.desc(), ActivityEvent.id.desc())
        .offset(offset)
        .limit(limit + 1)
    ).scalars().all()
    return list(rows[:limit]), len(rows) > limit


def user_activity(
    db: Session, viewer: Profile, user_id: int, offset: int, limit: int
) -> tuple[list[ActivityEvent], bool]:
    if not db.get(Profile, user_id):
        raise NotFound("User not found")

    q = select(ActivityEvent).where(ActivityEvent.actor_id == user_id)
    if viewer.id != user_id:
        if not friend_edges.are_friends(db, viewer.id, user_id):
            return [], False
        q = q.where(ActivityEvent.is_public.is_(True))
    return _page(db, q, offset, limit)


def game_activity(
    db: Session, viewer: Profile, game_id: str, offset: int, limit: int
) -> tuple[list[ActivityEvent], bool]:
    friend_ids = friend_edges.accepted_friend_ids(db, viewer.id)
    visible = (ActivityEvent.actor_id == viewer.id)
    if friend_ids:
        visible = visible | (ActivityEvent.actor_id.in_(friend_ids) & ActivityEvent.is_public.is_(True))
    q = select(ActivityEvent).where(ActivityEvent.subject_game_id == game_id, visible)
    return _page(db, q, offset, limit)


def activity_stats(db: Session, user: Profile) -> dict[str, Any]:
    rows = db.execute(
        select(ActivityEvent.type, func.count(ActivityEvent.id))
        .where(ActivityEvent.actor_id == user.id)
        .group_by(ActivityEvent.type)
    ).all()
    by_type = {t: int(n) for t, n in rows}
    return {"total_activities": sum(by_type.values()), "activities_by_type": by_type}
