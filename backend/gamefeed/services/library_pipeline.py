"""Library writes and the rows that follow them.

A status or progress change touches three tables, always in this order:

    library -> progress_history -> activity_event

In atomic mode (``LIBRARY_PIPELINE_ATOMIC``) the three steps share one
transaction: either all rows land or none do.

In sequential mode every step commits on its own. A failed library step
propagates and nothing else runs. A failed later step is *not* an error for the
caller: the library change stands, the failed and remaining steps are reported
in ``incomplete_steps`` and handed to the outbox hook. Readers must tolerate a
library change without its history point or event.

An activity cooldown on the event step only suppresses the event.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamefeed.core.errors import CooldownActive, NotFound
from gamefeed.core.settings import settings
from gamefeed.models.activity_event import ActivityEvent, ActivityType
from gamefeed.models.game import Game
from gamefeed.models.library_entry import LibraryEntry, LibraryStatus
from gamefeed.models.profile import Profile
from gamefeed.models.progress_history import ProgressHistoryPoint
from gamefeed.services import activity_log, aggregation

logger = logging.getLogger(__name__)


class PipelineStep(str, enum.Enum):
    LIBRARY = "library"
    PROGRESS_HISTORY = "progress_history"
    ACTIVITY_EVENT = "activity_event"


STEP_ORDER = (PipelineStep.LIBRARY, PipelineStep.PROGRESS_HISTORY, PipelineStep.ACTIVITY_EVENT)

STATUS_EVENT_TYPES: dict[LibraryStatus, ActivityType] = {
    LibraryStatus.WANT_TO_PLAY: ActivityType.WANT_TO_PLAY,
    LibraryStatus.PLAYING: ActivityType.STARTED_PLAYING,
    LibraryStatus.COMPLETED: ActivityType.GAME_COMPLETED,
    LibraryStatus.DROPPED: ActivityType.GAME_STATUS_UPDATED,
}


class OutboxHook(Protocol):
    def enqueue(self, step: PipelineStep, user_id: int, game_id: str, data: dict[str, Any]) -> None: ...


class LoggingOutbox:
    """Default hook: nothing is retried, the gap is only logged."""

    def enqueue(self, step: PipelineStep, user_id: int, game_id: str, data: dict[str, Any]) -> None:
        logger.warning(
            "Pipeline step %s not applied for user=%s game=%s: %s", step.value, user_id, game_id, data
        )


@dataclass
class EventSpec:
    type: ActivityType
    payload: dict[str, Any]
    is_public: bool = True


@dataclass
class PipelineResult:
    entry: LibraryEntry
    history_point: ProgressHistoryPoint | None = None
    event: ActivityEvent | None = None
    completed_steps: list[PipelineStep] = field(default_factory=list)
    incomplete_steps: list[PipelineStep] = field(default_factory=list)
    suppressed_steps: list[PipelineStep] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_game(db: Session, game_id: str, game_data: dict[str, Any] | None) -> Game:
    game = db.get(Game, game_id)
    if game is None:
        # Minimal row until the catalog fills it in.
        game = Game(id=game_id, name=f"Game {game_id}")
        db.add(game)
    if game_data:
        game.name = game_data.get("name") or game.name
        if "cover_url" in game_data:
            game.cover_url = game_data["cover_url"]
    return game


class LibraryPipeline:
    def __init__(
        self,
        db: Session,
        user: Profile,
        game_id: str,
        *,
        atomic: bool | None = None,
        outbox: OutboxHook | None = None,
    ):
        self.db = db
        self.user = user
        self.game_id = game_id
        self.atomic = settings.LIBRARY_PIPELINE_ATOMIC if atomic is None else atomic
        self.outbox = outbox if outbox is not None else LoggingOutbox()

    def _save(self) -> None:
        if self.atomic:
            self.db.flush()
        else:
            self.db.commit()

    def _library_step(self, mutate: Callable[[LibraryEntry], None], game_data: dict[str, Any] | None) -> LibraryEntry:
        attempts = 2
        while True:
            _ensure_game(self.db, self.game_id, game_data)
            entry = aggregation.library_entry(self.db, self.user.id, self.game_id)
            if entry is None:
                entry = LibraryEntry(user_id=self.user.id, game_id=self.game_id)
                self.db.add(entry)
            mutate(entry)
            try:
                self._save()
                return entry
            except IntegrityError:
                # A concurrent first write created the row (or the game); apply on top of it.
                self.db.rollback()
                attempts -= 1
                if not attempts:
                    raise

    def _history_step(self, entry: LibraryEntry) -> ProgressHistoryPoint:
        point = ProgressHistoryPoint(
            user_id=self.user.id,
            game_id=self.game_id,
            play_time=entry.play_time,
            completion_percentage=entry.completion_percentage,
            achievements_completed=entry.achievements_completed,
        )
        self.db.add(point)
        self._save()
        return point

    def _event_step(self, planned: EventSpec) -> ActivityEvent:
        return activity_log.record(
            self.db,
            self.user,
            planned.type,
            subject_game_id=self.game_id,
            payload=planned.payload,
            is_public=planned.is_public,
            commit=not self.atomic,
        )

    def _give_up(
        self, result: PipelineResult, failed: PipelineStep, wanted: set[PipelineStep], data: dict[str, Any]
    ) -> None:
        for step in STEP_ORDER[STEP_ORDER.index(failed):]:
            if step not in wanted or step in result.completed_steps or step in result.suppressed_steps:
                continue
            result.incomplete_steps.append(step)
            self.outbox.enqueue(step, self.user.id, self.game_id, data)

    def run(
        self,
        mutate: Callable[[LibraryEntry], None],
        *,
        game_data: dict[str, Any] | None = None,
        record_history: Callable[[LibraryEntry], bool] = lambda entry: False,
        event: Callable[[LibraryEntry], EventSpec | None] = lambda entry: None,
    ) -> PipelineResult:
        try:
            entry = self._library_step(mutate, game_data)
        except Exception:
            self.db.rollback()
            raise
        result = PipelineResult(entry=entry, completed_steps=[PipelineStep.LIBRARY])

        planned = event(entry)
        wanted = {PipelineStep.LIBRARY}
        if record_history(entry):
            wanted.add(PipelineStep.PROGRESS_HISTORY)
        if planned is not None:
            wanted.add(PipelineStep.ACTIVITY_EVENT)
        outbox_data = {"status": entry.status}
        if planned is not None:
            outbox_data.update(type=planned.type.value, payload=planned.payload)

        step = PipelineStep.PROGRESS_HISTORY
        try:
            if step in wanted:
                result.history_point = self._history_step(entry)
                result.completed_steps.append(step)

            step = PipelineStep.ACTIVITY_EVENT
            if step in wanted:
                try:
                    result.event = self._event_step(planned)
                    result.completed_steps.append(step)
                except CooldownActive as e:
                    logger.info("Suppressed %s event for user=%s: %s", planned.type.value, self.user.id, e.detail)
                    result.suppressed_steps.append(step)

            if self.atomic:
                self.db.commit()
        except Exception:
            self.db.rollback()
            if self.atomic:
                raise
            logger.warning(
                "Library pipeline stopped at %s for user=%s game=%s", step.value, self.user.id, self.game_id,
                exc_info=True,
            )
            self._give_up(result, step, wanted, outbox_data)

        self.db.refresh(result.entry)
        for row in (result.history_point, result.event):
            if row is not None:
                self.db.refresh(row)
        return result


def set_status(
    db: Session,
    user: Profile,
    game_id: str,
    status: LibraryStatus,
    *,
    game_data: dict[str, Any] | None = None,
    is_public: bool = True,
    atomic: bool | None = None,
    outbox: OutboxHook | None = None,
) -> PipelineResult:
    previous: dict[str, str | None] = {}

    def mutate(entry: LibraryEntry) -> None:
        previous["status"] = entry.status
        entry.status = status.value
        if status == LibraryStatus.COMPLETED:
            entry.completion_percentage = 100.0
        if status == LibraryStatus.PLAYING:
            entry.last_played_at = _now()

    def changed(entry: LibraryEntry) -> bool:
        return previous.get("status") != status.value

    def history(entry: LibraryEntry) -> bool:
        return changed(entry) and (entry.play_time is not None or entry.completion_percentage is not None)

    def event(entry: LibraryEntry) -> EventSpec | None:
        if not changed(entry):
            return None
        payload: dict[str, Any] = {"status": status.value}
        if previous.get("status"):
            payload["previous_status"] = previous["status"]
        return EventSpec(type=STATUS_EVENT_TYPES[status], payload=payload, is_public=is_public)

    return LibraryPipeline(db, user, game_id, atomic=atomic, outbox=outbox).run(
        mutate, game_data=game_data, record_history=history, event=event
    )


def update_progress(
    db: Session,
    user: Profile,
    game_id: str,
    *,
    play_time: float | None = None,
    completion_percentage: float | None = None,
    achievements_completed: int | None = None,
    notes: str | None = None,
    is_public: bool = True,
    atomic: bool | None = None,
    outbox: OutboxHook | None = None,
) -> PipelineResult:
    tracked = play_time is not None or completion_percentage is not None

    def mutate(entry: LibraryEntry) -> None:
        if entry.status is None:
            entry.status = LibraryStatus.PLAYING.value
        if play_time is not None:
            entry.play_time = play_time
            entry.last_played_at = _now()
        if completion_percentage is not None:
            entry.completion_percentage = completion_percentage
        if achievements_completed is not None:
            entry.achievements_completed = achievements_completed
        if notes is not None:
            entry.notes = notes.strip() or None

    def event(entry: LibraryEntry) -> EventSpec | None:
        if not tracked:
            return None
        payload: dict[str, Any] = {}
        if play_time is not None:
            payload["play_time"] = play_time
        if completion_percentage is not None:
            payload["completion_percentage"] = completion_percentage
        return EventSpec(type=ActivityType.PROGRESS, payload=payload, is_public=is_public)

    return LibraryPipeline(db, user, game_id, atomic=atomic, outbox=outbox).run(
        mutate, record_history=lambda entry: tracked, event=event
    )


def remove_entry(db: Session, user: Profile, game_id: str) -> None:
    entry = aggregation.library_entry(db, user.id, game_id)
    if entry is None:
        raise NotFound("Game not in library")
    # Progress history is kept for the trend charts.
    db.delete(entry)
    db.commit()
