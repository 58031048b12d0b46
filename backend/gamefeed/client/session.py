"""Session-scoped feed and friends store with optimistic writes.

One `FeedSession` per signed-in user; `close()` on logout. Local patches are
applied before the request and reverted if it fails. Server data always wins
on the next fetch, and realtime changes are merged by re-fetching the affected
slice and upserting it by id.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

from gamefeed.client.api import FeedApiClient
from gamefeed.client.reconciliation import (
    IDLE,
    ActionState,
    Confirmed,
    EntityLocks,
    Pending,
    RolledBack,
)
from gamefeed.core.errors import DuplicateEdge, EngineError, NotFound, TransientStoreError

logger = logging.getLogger(__name__)

FRIENDS_KEY = ("friends",)


def event_key(event_id: int) -> tuple[str, int]:
    return ("event", event_id)


def _sort_key(ev: dict) -> tuple[str, int]:
    return (ev.get("created_at") or "", ev["id"])


@dataclass
class _EventPatch:
    event_id: int
    event: dict | None
    comments: list[dict] | None


@dataclass
class _FriendsPatch:
    friends: list[dict]


class FeedSession:
    def __init__(self, api: FeedApiClient, user_id: int, *, page_size: int | None = None):
        self.api = api
        self.user_id = user_id
        self.page_size = page_size

        self.events: list[dict] = []
        self.has_more = False
        self.snapshot_id: int | None = None
        self.friends: list[dict] = []
        self.comments: dict[int, list[dict]] = {}

        self.errors: list[EngineError] = []
        self.notices: list[str] = []
        self.load_error: EngineError | None = None
        self.states: dict[Hashable, ActionState] = {}
        self.closed = False

        self._locks = EntityLocks()
        self._temp_ids = itertools.count(-1, -1)

    def state(self, key: Hashable) -> ActionState:
        return self.states.get(key, IDLE)

    def close(self) -> None:
        self.closed = True
        self.events = []
        self.friends = []
        self.comments = {}
        self.states = {}

    # Local store helpers

    def event(self, event_id: int) -> dict | None:
        return next((e for e in self.events if e["id"] == event_id), None)

    def _upsert_events(self, events: list[dict]) -> None:
        by_id = {e["id"]: e for e in self.events}
        for ev in events:
            by_id[ev["id"]] = ev
        self.events = sorted(by_id.values(), key=_sort_key, reverse=True)

    def _snapshot_offset(self) -> int:
        # Events pushed after the first page sit above the snapshot and are not paged by the server.
        if self.snapshot_id is None:
            return len(self.events)
        return sum(1 for e in self.events if e["id"] <= self.snapshot_id)

    def _drop_event(self, event_id: int) -> None:
        self.events = [e for e in self.events if e["id"] != event_id]
        self.comments.pop(event_id, None)

    def _replace_event(self, event_id: int, ev: dict | None) -> None:
        if ev is None:
            return
        self.events = [ev if e["id"] == event_id else e for e in self.events]

    def _surface(self, err: EngineError) -> None:
        self.errors.append(err)

    def _snapshot_event(self, event_id: int) -> _EventPatch:
        comments = self.comments.get(event_id)
        return _EventPatch(
            event_id=event_id,
            event=copy.deepcopy(self.event(event_id)),
            comments=copy.deepcopy(comments) if comments is not None else None,
        )

    def _restore_event(self, patch: _EventPatch) -> None:
        self._replace_event(patch.event_id, patch.event)
        if patch.comments is None:
            self.comments.pop(patch.event_id, None)
        else:
            self.comments[patch.event_id] = patch.comments

    async def _optimistic(
        self,
        key: Hashable,
        apply: Callable[[], Any],
        revert: Callable[[Any], None],
        call: Callable[[], Awaitable[Any]],
        confirm: Callable[[Any, Any], None] | None = None,
        recover: Callable[[Any, EngineError], Awaitable[bool]] | None = None,
    ) -> Any:
        async with self._locks.hold(key):
            if self.closed:
                return None
            patch = apply()
            self.states[key] = Pending(patch)
            try:
                result = await call()
            except EngineError as e:
                if self.closed:
                    return None
                revert(patch)
                if recover is not None and await recover(patch, e):
                    self.states[key] = Confirmed(None)
                    return None
                logger.warning("Rolled back %s: %s", key, e.detail)
                self.states[key] = RolledBack(e)
                self._surface(e)
                return None

            if self.closed:
                # Confirmation for a torn-down session.
                return result
            if confirm is not None:
                confirm(patch, result)
            self.states[key] = Confirmed(result)
            return result

    # Reads

    async def _read(self, call: Callable[[], Awaitable[Any]]) -> Any:
        try:
            result = await call()
        except TransientStoreError as e:
            if not self.closed:
                self.load_error = e
            return None
        except EngineError as e:
            if not self.closed:
                self._surface(e)
            return None
        if self.closed:
            return None
        self.load_error = None
        return result

    async def refresh_feed(self) -> None:
        page = await self._read(lambda: self.api.feed(offset=0, limit=self.page_size))
        if page is None:
            return
        self.events = sorted(page["events"], key=_sort_key, reverse=True)
        self.has_more = bool(page.get("hasMore", page.get("has_more")))
        self.snapshot_id = page.get("snapshot_id")

    async def load_more(self) -> None:
        if not self.has_more:
            return
        offset = self._snapshot_offset()
        page = await self._read(
            lambda: self.api.feed(offset=offset, limit=self.page_size, snapshot_id=self.snapshot_id)
        )
        if page is None:
            return
        self._upsert_events(page["events"])
        self.has_more = bool(page.get("hasMore", page.get("has_more")))

    async def refresh_friends(self) -> None:
        friends = await self._read(self.api.list_friends)
        if friends is not None:
            self.friends = friends

    async def load_comments(self, event_id: int) -> None:
        comments = await self._read(lambda: self.api.list_comments(event_id))
        if comments is not None:
            self.comments[event_id] = comments

    # Reactions and comments

    async def add_reaction(self, event_id: int, kind: str) -> Any:
        def apply() -> _EventPatch:
            patch = self._snapshot_event(event_id)
            ev = self.event(event_id)
            if ev is not None and kind not in ev.get("viewer_reactions", []):
                ev = copy.deepcopy(ev)
                counts = ev.setdefault("reaction_counts", {})
                counts[kind] = counts.get(kind, 0) + 1
                ev["reactions_count"] = ev.get("reactions_count", 0) + 1
                ev.setdefault("viewer_reactions", []).append(kind)
                self._replace_event(event_id, ev)
            return patch

        return await self._optimistic(
            event_key(event_id), apply, self._restore_event, lambda: self.api.add_reaction(event_id, kind)
        )

    async def remove_reaction(self, event_id: int, kind: str) -> None:
        def apply() -> _EventPatch:
            patch = self._snapshot_event(event_id)
            ev = self.event(event_id)
            if ev is not None and kind in ev.get("viewer_reactions", []):
                ev = copy.deepcopy(ev)
                counts = ev.setdefault("reaction_counts", {})
                counts[kind] = counts.get(kind, 1) - 1
                if counts[kind] <= 0:
                    del counts[kind]
                ev["reactions_count"] = max(0, ev.get("reactions_count", 1) - 1)
                ev["viewer_reactions"].remove(kind)
                self._replace_event(event_id, ev)
            return patch

        await self._optimistic(
            event_key(event_id), apply, self._restore_event, lambda: self.api.remove_reaction(event_id, kind)
        )

    async def add_comment(self, event_id: int, content: str) -> Any:
        temp_id = next(self._temp_ids)

        def apply() -> _EventPatch:
            patch = self._snapshot_event(event_id)
            temp = {
                "id": temp_id,
                "event_id": event_id,
                "user_id": self.user_id,
                "content": content,
                "created_at": None,
                "pending": True,
            }
            self.comments[event_id] = [*self.comments.get(event_id, []), temp]
            ev = self.event(event_id)
            if ev is not None:
                ev = copy.deepcopy(ev)
                ev["comments_count"] = ev.get("comments_count", 0) + 1
                self._replace_event(event_id, ev)
            return patch

        def confirm(_patch: _EventPatch, comment: dict) -> None:
            self.comments[event_id] = [
                comment if c["id"] == temp_id else c for c in self.comments.get(event_id, [])
            ]

        return await self._optimistic(
            event_key(event_id),
            apply,
            self._restore_event,
            lambda: self.api.add_comment(event_id, content),
            confirm,
        )

    async def delete_comment(self, event_id: int, comment_id: int) -> None:
        def apply() -> _EventPatch:
            patch = self._snapshot_event(event_id)
            before = self.comments.get(event_id, [])
            after = [c for c in before if c["id"] != comment_id]
            if event_id in self.comments:
                self.comments[event_id] = after
            ev = self.event(event_id)
            if ev is not None and len(after) < len(before):
                ev = copy.deepcopy(ev)
                ev["comments_count"] = max(0, ev.get("comments_count", 1) - 1)
                self._replace_event(event_id, ev)
            return patch

        await self._optimistic(
            event_key(event_id), apply, self._restore_event, lambda: self.api.delete_comment(comment_id)
        )

    # Friends

    def _snapshot_friends(self) -> _FriendsPatch:
        return _FriendsPatch(friends=copy.deepcopy(self.friends))

    def _restore_friends(self, patch: _FriendsPatch) -> None:
        self.friends = patch.friends

    async def _reload_friends(self) -> None:
        try:
            friends = await self.api.list_friends()
        except EngineError as e:
            logger.info("Friend list refresh failed: %s", e.detail)
            return
        if not self.closed:
            self.friends = friends

    async def send_friend_request(self, recipient: int | str) -> Any:
        def apply() -> _FriendsPatch:
            patch = self._snapshot_friends()
            profile = {"id": recipient, "username": None, "avatar_url": None}
            if isinstance(recipient, str):
                profile = {"id": None, "username": recipient, "avatar_url": None}
            self.friends = [
                *self.friends,
                {
                    "edge_id": next(self._temp_ids),
                    "status": "pending",
                    "direction": "outgoing",
                    "since": None,
                    "profile": profile,
                    "pending": True,
                },
            ]
            return patch

        async def recover(_patch: _FriendsPatch, err: EngineError) -> bool:
            if not isinstance(err, DuplicateEdge):
                return False
            self.notices.append(err.detail)
            await self._reload_friends()
            return True

        async def call() -> Any:
            edge = await self.api.send_friend_request(recipient)
            await self._reload_friends()
            return edge

        return await self._optimistic(FRIENDS_KEY, apply, self._restore_friends, call, recover=recover)

    async def respond_to_request(self, edge_id: int, accept: bool) -> Any:
        status = "accepted" if accept else "declined"

        def apply() -> _FriendsPatch:
            patch = self._snapshot_friends()
            updated = []
            for f in self.friends:
                if f["edge_id"] != edge_id:
                    updated.append(f)
                elif accept:
                    updated.append({**f, "status": "accepted"})
            self.friends = updated
            return patch

        return await self._optimistic(
            FRIENDS_KEY,
            apply,
            self._restore_friends,
            lambda: self.api.respond_to_request(edge_id, status),
        )

    async def remove_friend(self, edge_id: int) -> None:
        def apply() -> _FriendsPatch:
            patch = self._snapshot_friends()
            self.friends = [f for f in self.friends if f["edge_id"] != edge_id]
            return patch

        await self._optimistic(
            FRIENDS_KEY, apply, self._restore_friends, lambda: self.api.remove_friend(edge_id)
        )

    # Realtime merge

    async def _refetch_event(self, event_id: int) -> None:
        try:
            ev = await self.api.get_event(event_id)
        except NotFound:
            if not self.closed:
                self._drop_event(event_id)
            return
        except EngineError as e:
            logger.info("Could not refresh event %s: %s", event_id, e.detail)
            return
        if not self.closed:
            self._upsert_events([ev])

    async def apply_change(self, change: dict) -> None:
        """Merge one realtime change signal into the local store."""
        if self.closed:
            return
        table = change.get("table")
        fields = change.get("fields") or {}
        key = change.get("key") or {}

        if table == "friend_edges":
            async with self._locks.hold(FRIENDS_KEY):
                if not self.closed:
                    await self._reload_friends()
            return

        if table == "activity_events":
            event_id = key.get("id")
            if event_id is None:
                return
            async with self._locks.hold(event_key(event_id)):
                if self.closed:
                    return
                if change.get("op") == "delete":
                    self._drop_event(event_id)
                else:
                    await self._refetch_event(event_id)
            return

        if table in ("activity_reactions", "activity_comments"):
            event_id = fields.get("event_id")
            if event_id is None or self.event(event_id) is None:
                return
            async with self._locks.hold(event_key(event_id)):
                if self.closed:
                    return
                await self._refetch_event(event_id)
                if table == "activity_comments" and event_id in self.comments:
                    try:
                        comments = await self.api.list_comments(event_id)
                    except EngineError as e:
                        logger.info("Could not refresh comments for %s: %s", event_id, e.detail)
                        return
                    if not self.closed:
                        self.comments[event_id] = comments
