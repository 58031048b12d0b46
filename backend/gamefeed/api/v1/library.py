from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from gamefeed.api.deps import get_current_profile, get_db, get_outbox
from gamefeed.models.library_entry import LibraryStatus
from gamefeed.models.profile import Profile
from gamefeed.schemas.activity import ActivityEventOut
from gamefeed.schemas.library import (
    LibraryDetailOut,
    LibraryEntryOut,
    LibraryStatusIn,
    PipelineResultOut,
    ProgressIn,
    ProgressPointOut,
)
from gamefeed.services import aggregation, library_pipeline
from gamefeed.services.library_pipeline import OutboxHook, PipelineResult

router = APIRouter()


def _result_out(result: PipelineResult) -> PipelineResultOut:
    return PipelineResultOut(
        entry=LibraryEntryOut.model_validate(result.entry),
        history_point=ProgressPointOut.model_validate(result.history_point) if result.history_point else None,
        event=ActivityEventOut.model_validate(result.event) if result.event else None,
        completed_steps=[s.value for s in result.completed_steps],
        incomplete_steps=[s.value for s in result.incomplete_steps],
        suppressed_steps=[s.value for s in result.suppressed_steps],
    )


@router.get("/library", response_model=list[LibraryEntryOut])
def list_library(
    status: LibraryStatus | None = Query(default=None),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    return aggregation.library_entries(db, me.id, status)


@router.get("/library/{game_id}", response_model=LibraryDetailOut)
def get_library_entry(
    game_id: str,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    entry = aggregation.library_entry(db, me.id, game_id)
    history = aggregation.progress_timeline(db, me.id, game_id)
    return LibraryDetailOut(
        entry=LibraryEntryOut.model_validate(entry) if entry else None,
        history=[ProgressPointOut.model_validate(p) for p in history],
    )


@router.put("/library/{game_id}", response_model=PipelineResultOut)
def set_library_status(
    game_id: str,
    payload: LibraryStatusIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
    outbox: OutboxHook = Depends(get_outbox),
):
    result = library_pipeline.set_status(
        db,
        me,
        game_id,
        payload.status,
        game_data=payload.game.model_dump() if payload.game else None,
        is_public=payload.is_public,
        outbox=outbox,
    )
    return _result_out(result)


@router.patch("/library/{game_id}/progress", response_model=PipelineResultOut)
def update_library_progress(
    game_id: str,
    payload: ProgressIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
    outbox: OutboxHook = Depends(get_outbox),
):
    result = library_pipeline.update_progress(
        db,
        me,
        game_id,
        play_time=payload.play_time,
        completion_percentage=payload.completion_percentage,
        achievements_completed=payload.achievements_completed,
        notes=payload.notes,
        is_public=payload.is_public,
        outbox=outbox,
    )
    return _result_out(result)


@router.delete("/library/{game_id}", status_code=204)
def remove_library_entry(
    game_id: str,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    library_pipeline.remove_entry(db, me, game_id)
    return Response(status_code=204)
