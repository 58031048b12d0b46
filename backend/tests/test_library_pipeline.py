import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gamefeed.api.deps import ensure_profile, get_db, get_outbox
from gamefeed.core.settings import settings
from gamefeed.db.base import Base
from gamefeed.models.activity_event import ActivityEvent
from gamefeed.models.library_entry import LibraryStatus
from gamefeed.models.progress_history import ProgressHistoryPoint
from gamefeed.main import app
from gamefeed.services import aggregation, library_pipeline
from gamefeed.services.library_pipeline import LibraryPipeline, PipelineStep


def _engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def client():
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine())

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def db():
    session = sessionmaker(autocommit=False, autoflush=False, bind=_engine())()
    try:
        yield session
    finally:
        session.close()


class RecordingOutbox:
    def __init__(self):
        self.items = []

    def enqueue(self, step, user_id, game_id, data):
        self.items.append((step, user_id, game_id, data))


@pytest.fixture()
def outbox():
    return RecordingOutbox()


def _h(uid: str) -> dict:
    return {"X-User-Id": uid}


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_status_changes_record_events(client):
    r = client.put("/api/v1/library/G1", json={"status": "playing", "game": {"name": "Hades"}}, headers=_h("u1"))
    assert r.status_code == 200
    res = r.json()
    assert res["entry"]["status"] == "playing"
    assert res["entry"]["last_played_at"] is not None
    assert res["completed_steps"] == ["library", "activity_event"]
    assert res["event"]["type"] == "started_playing"
    assert res["history_point"] is None

    # Same status again: library write only.
    again = client.put("/api/v1/library/G1", json={"status": "playing"}, headers=_h("u1")).json()
    assert again["completed_steps"] == ["library"]
    assert again["event"] is None

    done = client.put("/api/v1/library/G1", json={"status": "completed"}, headers=_h("u1")).json()
    assert done["entry"]["completion_percentage"] == 100.0
    assert done["completed_steps"] == ["library", "progress_history", "activity_event"]
    assert done["event"]["type"] == "game_completed"
    assert done["event"]["payload"] == {"status": "completed", "previous_status": "playing"}

    lib = client.get("/api/v1/library", headers=_h("u1")).json()
    assert [e["game_id"] for e in lib] == ["G1"]
    assert client.get("/api/v1/library?status=want_to_play", headers=_h("u1")).json() == []


def test_progress_updates_history_and_cooldown(client):
    body = {"play_time": 12.5, "completion_percentage": 40}
    first = client.patch("/api/v1/library/G2/progress", json=body, headers=_h("u1")).json()
    assert first["entry"]["status"] == "playing"
    assert first["completed_steps"] == ["library", "progress_history", "activity_event"]
    assert first["event"]["type"] == "progress"
    assert first["event"]["payload"] == body

    # Inside the progress cooldown the event is suppressed, the rest still lands.
    second = client.patch(
        "/api/v1/library/G2/progress", json={"play_time": 14, "completion_percentage": 45}, headers=_h("u1")
    ).json()
    assert second["completed_steps"] == ["library", "progress_history"]
    assert second["suppressed_steps"] == ["activity_event"]
    assert second["incomplete_steps"] == []
    assert second["event"] is None

    notes_only = client.patch("/api/v1/library/G2/progress", json={"notes": "boss 3"}, headers=_h("u1")).json()
    assert notes_only["completed_steps"] == ["library"]
    assert notes_only["entry"]["notes"] == "boss 3"

    detail = client.get("/api/v1/library/G2", headers=_h("u1")).json()
    assert detail["entry"]["play_time"] == 14
    assert [p["completion_percentage"] for p in detail["history"]] == [40, 45]


def test_progress_bounds(client):
    r = client.patch("/api/v1/library/G1/progress", json={"completion_percentage": 101}, headers=_h("u1"))
    assert r.status_code == 422
    r = client.patch("/api/v1/library/G1/progress", json={"play_time": -1}, headers=_h("u1"))
    assert r.status_code == 422
    r = client.patch("/api/v1/library/G1/progress", json={"notes": "x" * 5001}, headers=_h("u1"))
    assert r.status_code == 422


def test_remove_entry_keeps_history(client):
    client.patch("/api/v1/library/G3/progress", json={"play_time": 3}, headers=_h("u1"))

    assert client.delete("/api/v1/library/G3", headers=_h("u1")).status_code == 204
    detail = client.get("/api/v1/library/G3", headers=_h("u1")).json()
    assert detail["entry"] is None
    assert len(detail["history"]) == 1

    r = client.delete("/api/v1/library/G3", headers=_h("u1"))
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_atomic_failure_leaves_nothing_behind(db, monkeypatch, outbox):
    user = ensure_profile(db, "u1")

    def boom(self, planned):
        raise RuntimeError("event store down")

    monkeypatch.setattr(LibraryPipeline, "_event_step", boom)

    with pytest.raises(RuntimeError):
        library_pipeline.update_progress(db, user, "G1", play_time=5, atomic=True, outbox=outbox)

    assert aggregation.library_entry(db, user.id, "G1") is None
    assert _count(db, ProgressHistoryPoint) == 0
    assert _count(db, ActivityEvent) == 0
    assert outbox.items == []


def test_sequential_failure_reports_incomplete_steps(db, monkeypatch, outbox):
    user = ensure_profile(db, "u1")

    def boom(self, entry):
        raise RuntimeError("history store down")

    monkeypatch.setattr(LibraryPipeline, "_history_step", boom)

    result = library_pipeline.set_status(db, user, "G1", LibraryStatus.COMPLETED, atomic=False, outbox=outbox)

    assert result.completed_steps == [PipelineStep.LIBRARY]
    assert result.incomplete_steps == [PipelineStep.PROGRESS_HISTORY, PipelineStep.ACTIVITY_EVENT]
    assert [item[0] for item in outbox.items] == result.incomplete_steps
    assert outbox.items[0][2] == "G1"

    # The library change stands without its history point or event.
    entry = aggregation.library_entry(db, user.id, "G1")
    assert entry is not None
    assert entry.status == "completed"
    assert _count(db, ProgressHistoryPoint) == 0
    assert _count(db, ActivityEvent) == 0


def test_sequential_event_failure_keeps_history(db, monkeypatch, outbox):
    user = ensure_profile(db, "u1")

    def boom(self, planned):
        raise RuntimeError("event store down")

    monkeypatch.setattr(LibraryPipeline, "_event_step", boom)

    result = library_pipeline.update_progress(db, user, "G1", completion_percentage=50, atomic=False, outbox=outbox)

    assert result.completed_steps == [PipelineStep.LIBRARY, PipelineStep.PROGRESS_HISTORY]
    assert result.incomplete_steps == [PipelineStep.ACTIVITY_EVENT]
    assert result.history_point is not None
    assert _count(db, ProgressHistoryPoint) == 1
    assert _count(db, ActivityEvent) == 0
    assert outbox.items[0][3]["type"] == "progress"


def test_atomic_success_commits_all_steps(db):
    user = ensure_profile(db, "u1")

    result = library_pipeline.update_progress(db, user, "G9", play_time=1.5, atomic=True)

    assert result.incomplete_steps == []
    assert result.event.subject_game_id == "G9"
    assert _count(db, ProgressHistoryPoint) == 1
    assert _count(db, ActivityEvent) == 1


def _befriend(client, a: str, b: str) -> None:
    other = client.get("/api/v1/profiles/me", headers=_h(b)).json()
    client.get("/api/v1/profiles/me", headers=_h(a))
    edge = client.post("/api/v1/friends/requests", json={"recipient_id": other["id"]}, headers=_h(a)).json()
    client.patch(f"/api/v1/friends/edges/{edge['id']}", json={"status": "accepted"}, headers=_h(b))


def test_sequential_private_events_stay_out_of_friend_feeds(client, monkeypatch):
    monkeypatch.setattr(settings, "LIBRARY_PIPELINE_ATOMIC", False)
    _befriend(client, "u1", "u2")

    hidden = client.put(
        "/api/v1/library/G1", json={"status": "completed", "isPublic": False}, headers=_h("u1")
    ).json()
    assert hidden["completed_steps"] == ["library", "progress_history", "activity_event"]
    assert hidden["event"]["is_public"] is False

    shown = client.patch("/api/v1/library/G2/progress", json={"play_time": 2}, headers=_h("u1")).json()
    assert shown["event"]["is_public"] is True

    feed = client.get("/api/v1/feed", headers=_h("u2")).json()
    assert [e["id"] for e in feed["events"]] == [shown["event"]["id"]]
    assert client.get(f"/api/v1/activity/{hidden['event']['id']}", headers=_h("u2")).status_code == 404
    assert client.get(f"/api/v1/activity/{hidden['event']['id']}", headers=_h("u1")).status_code == 200


def test_outbox_dependency_receives_route_gaps(client, monkeypatch, outbox):
    monkeypatch.setattr(settings, "LIBRARY_PIPELINE_ATOMIC", False)
    app.dependency_overrides[get_outbox] = lambda: outbox

    def boom(self, planned):
        raise RuntimeError("event store down")

    monkeypatch.setattr(LibraryPipeline, "_event_step", boom)

    r = client.put("/api/v1/library/G1", json={"status": "want_to_play"}, headers=_h("u1"))
    assert r.status_code == 200
    assert r.json()["incomplete_steps"] == ["activity_event"]
    assert r.json()["event"] is None
    assert [(item[0], item[2]) for item in outbox.items] == [(PipelineStep.ACTIVITY_EVENT, "G1")]
    assert outbox.items[0][3]["type"] == "want_to_play"
