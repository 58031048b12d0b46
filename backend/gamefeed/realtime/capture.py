"""Turn committed ORM writes into `Change` signals.

Changes are collected on flush and published only after the transaction
commits; a rollback discards them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

from gamefeed.models.activity_event import ActivityEvent
from gamefeed.models.comment import Comment
from gamefeed.models.friend_edge import FriendEdge
from gamefeed.models.library_entry import LibraryEntry
from gamefeed.models.progress_history import ProgressHistoryPoint
from gamefeed.models.reaction import Reaction
from gamefeed.realtime import notifier as notifier_module
from gamefeed.realtime.notifier import Change

_PENDING_KEY = "gamefeed.pending_changes"

# Filterable columns exposed per table. Friend edges list both parties under user_id.
_FIELDS: dict[type, Callable[[Any], dict[str, Any]]] = {
    FriendEdge: lambda o: {
        "user_id": frozenset({o.requester_id, o.recipient_id}),
        "status": o.status,
    },
    ActivityEvent: lambda o: {
        "actor_id": o.actor_id,
        "subject_game_id": o.subject_game_id,
        "is_public": o.is_public,
    },
    Reaction: lambda o: {"event_id": o.event_id, "user_id": o.user_id, "kind": o.kind},
    Comment: lambda o: {"event_id": o.event_id, "user_id": o.user_id},
    LibraryEntry: lambda o: {"user_id": o.user_id, "game_id": o.game_id},
    ProgressHistoryPoint: lambda o: {"user_id": o.user_id, "game_id": o.game_id},
}

TRACKED_TABLES = {cls.__tablename__ for cls in _FIELDS}


def _change(obj: Any, op: str) -> Change | None:
    extract = _FIELDS.get(type(obj))
    if extract is None:
        return None
    return Change(table=type(obj).__tablename__, op=op, key={"id": obj.id}, fields=extract(obj))


@event.listens_for(Session, "after_flush")
def _collect(session: Session, _flush_context) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        ch = _change(obj, "insert")
        if ch:
            pending.append(ch)
    for obj in session.dirty:
        if session.is_modified(obj, include_collections=False):
            ch = _change(obj, "update")
            if ch:
                pending.append(ch)
    for obj in session.deleted:
        ch = _change(obj, "delete")
        if ch:
            pending.append(ch)


@event.listens_for(Session, "after_commit")
def _publish(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        notifier_module.notifier.publish(pending)


@event.listens_for(Session, "after_rollback")
def _discard(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
