from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from gamefeed.core.errors import Forbidden, ValidationError
from gamefeed.models.activity_event import ActivityEvent
from gamefeed.models.profile import Profile
from gamefeed.realtime.capture import TRACKED_TABLES
from gamefeed.realtime.notifier import Topic
from gamefeed.services import activity_log, friend_edges

# Tables whose rows belong to one user (filter key -> owner column).
_USER_SCOPED = {
    "library_entries": "user_id",
    "progress_history": "user_id",
    "activity_events": "actor_id",
}


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer id")


def authorize_topic(db: Session, viewer: Profile, table: str, filters: dict[str, Any]) -> Topic:
    """Build a topic the viewer is allowed to watch, or raise."""
    if table not in TRACKED_TABLES:
        raise ValidationError(f"Unknown table: {table}")
    filters = dict(filters or {})

    if table == "friend_edges":
        # Always the caller's own edges.
        filters["user_id"] = viewer.id
        return Topic.of(table, **filters)

    if table in _USER_SCOPED:
        owner_key = _USER_SCOPED[table]
        if owner_key not in filters:
            raise ValidationError(f"{table} subscriptions need a {owner_key} filter")
        owner_id = _as_int(filters[owner_key], owner_key)
        if owner_id != viewer.id and owner_id not in friend_edges.accepted_friend_ids(db, viewer.id):
            raise Forbidden("Not allowed to watch this user")
        filters[owner_key] = owner_id
        if table == "activity_events" and owner_id != viewer.id:
            # Friends only see public events.
            filters["is_public"] = True
        return Topic.of(table, **filters)

    # Reactions and comments: scoped to one visible event.
    if "event_id" not in filters:
        raise ValidationError(f"{table} subscriptions need an event_id filter")
    event_id = _as_int(filters["event_id"], "event_id")
    ev = db.get(ActivityEvent, event_id)
    if not ev or not activity_log.can_view(db, viewer.id, ev):
        raise Forbidden("Not allowed to watch this activity")
    filters["event_id"] = event_id
    return Topic.of(table, **filters)
