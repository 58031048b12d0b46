from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from gamefeed.api.deps import get_current_profile, get_db
from gamefeed.core.settings import settings
from gamefeed.models.activity_event import ActivityType
from gamefeed.models.profile import Profile
from gamefeed.schemas.activity import (
    ActivityEventOut,
    ActivityIn,
    ActivityStatsOut,
    FeedEventOut,
    FeedPageOut,
)
from gamefeed.services import activity_log, feed

router = APIRouter()


@router.post("/activity", response_model=ActivityEventOut, status_code=201)
def create_activity(
    payload: ActivityIn,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    return activity_log.record(
        db,
        me,
        ActivityType(payload.type),
        subject_game_id=payload.subject_game_id,
        subject_friend_id=payload.subject_friend_id,
        payload=payload.payload,
        is_public=payload.is_public,
    )


@router.get("/activity/stats/me", response_model=ActivityStatsOut)
def my_activity_stats(
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    return activity_log.activity_stats(db, me)


@router.get("/activity/{event_id}", response_model=FeedEventOut)
def get_activity(
    event_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    ev = activity_log.get_visible_event(db, me, event_id)
    return feed.event_view(db, me, ev)


@router.delete("/activity/{event_id}", status_code=204)
def delete_activity(
    event_id: int,
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    activity_log.delete_event(db, me, event_id)
    return Response(status_code=204)


@router.get("/feed", response_model=FeedPageOut)
def get_feed(
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.FEED_PAGE_SIZE, ge=1, le=settings.FEED_MAX_PAGE_SIZE),
    snapshot_id: int | None = Query(default=None, ge=0),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    page = feed.feed_for(db, me, offset=offset, limit=limit, snapshot_id=snapshot_id)
    return FeedPageOut(events=page.events, has_more=page.has_more, snapshot_id=page.snapshot_id)


@router.get("/users/{user_id}/activity", response_model=FeedPageOut)
def list_user_activity(
    user_id: int,
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.FEED_PAGE_SIZE, ge=1, le=settings.FEED_MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    events, has_more = activity_log.user_activity(db, me, user_id, offset, limit)
    return FeedPageOut(events=feed.compose(db, me.id, events), has_more=has_more)


@router.get("/games/{game_id}/activity", response_model=FeedPageOut)
def list_game_activity(
    game_id: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(settings.FEED_PAGE_SIZE, ge=1, le=settings.FEED_MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    me: Profile = Depends(get_current_profile),
):
    events, has_more = activity_log.game_activity(db, me, game_id, offset, limit)
    return FeedPageOut(events=feed.compose(db, me.id, events), has_more=has_more)
