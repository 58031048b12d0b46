import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gamefeed.api.deps import get_db
from gamefeed.core.settings import settings
from gamefeed.db.base import Base
import gamefeed.models  # noqa: F401
from gamefeed.main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

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


def _h(uid: str) -> dict:
    return {"X-User-Id": uid}


def _me(client, uid: str) -> dict:
    return client.get("/api/v1/profiles/me", headers=_h(uid)).json()


def _befriend(client, a: str, b: str) -> None:
    edge = client.post("/api/v1/friends/requests", json={"ref": b}, headers=_h(a)).json()
    r = client.patch(f"/api/v1/friends/edges/{edge['id']}", json={"status": "accepted"}, headers=_h(b))
    assert r.status_code == 200


def _post(client, uid: str, **body):
    return client.post("/api/v1/activity", json=body, headers=_h(uid))


def test_record_activity(client):
    me = _me(client, "u1")

    r = _post(client, "u1", type="game_completed", subjectGameId="G42", payload={"hours": 31})
    assert r.status_code == 201
    ev = r.json()
    assert ev["actor_id"] == me["id"]
    assert ev["type"] == "game_completed"
    assert ev["subject_game_id"] == "G42"
    assert ev["payload"] == {"hours": 31}
    assert ev["is_public"] is True


def test_payload_validation(client):
    _me(client, "u1")

    assert _post(client, "u1", type="game_completed").status_code == 400
    assert _post(client, "u1", type="progress", subject_game_id="G1", payload={}).status_code == 400

    over = _post(client, "u1", type="progress", subject_game_id="G1", payload={"completion_percentage": 150})
    assert over.status_code == 400
    assert over.json()["code"] == "validation_error"

    no_name = _post(client, "u1", type="collection_created", payload={"name": ""})
    assert no_name.status_code == 400

    no_friend = _post(client, "u1", type="friend_added")
    assert no_friend.status_code == 400

    bad_status = _post(
        client, "u1", type="game_status_updated", subject_game_id="G1", payload={"status": "sleeping"}
    )
    assert bad_status.status_code == 400

    ok = _post(client, "u1", type="collection_created", payload={"name": "Cozy games"})
    assert ok.status_code == 201


def test_cooldown_per_game_and_type(client):
    _me(client, "u1")

    assert _post(client, "u1", type="want_to_play", subject_game_id="G1").status_code == 201

    r = _post(client, "u1", type="want_to_play", subject_game_id="G1")
    assert r.status_code == 429
    assert r.json()["code"] == "cooldown_active"
    assert int(r.headers["Retry-After"]) > 0

    # Other games and other types are unaffected.
    assert _post(client, "u1", type="want_to_play", subject_game_id="G2").status_code == 201
    assert _post(client, "u1", type="game_completed", subject_game_id="G1").status_code == 201
    assert _post(client, "u1", type="game_completed", subject_game_id="G1").status_code == 201


def test_cooldown_can_be_disabled(client, monkeypatch):
    _me(client, "u1")
    monkeypatch.setattr(settings, "ACTIVITY_COOLDOWNS_ENABLED", False)

    for _ in range(3):
        r = _post(client, "u1", type="achievement_unlocked", subject_game_id="G1", payload={"achievement": "Win"})
        assert r.status_code == 201


def test_event_visibility(client):
    _me(client, "u1")
    _me(client, "u2")
    _me(client, "u3")
    _befriend(client, "u1", "u2")

    public = _post(client, "u1", type="game_completed", subject_game_id="G1").json()
    private = _post(client, "u1", type="game_completed", subject_game_id="G2", isPublic=False).json()

    assert client.get(f"/api/v1/activity/{public['id']}", headers=_h("u2")).status_code == 200
    assert client.get(f"/api/v1/activity/{private['id']}", headers=_h("u2")).status_code == 404
    assert client.get(f"/api/v1/activity/{public['id']}", headers=_h("u3")).status_code == 404

    own = client.get(f"/api/v1/activity/{private['id']}", headers=_h("u1"))
    assert own.status_code == 200
    assert own.json()["is_public"] is False


def test_delete_event_by_actor_only(client):
    _me(client, "u1")
    _me(client, "u2")
    _befriend(client, "u1", "u2")
    ev = _post(client, "u1", type="game_completed", subject_game_id="G1").json()
    client.post(f"/api/v1/events/{ev['id']}/reactions", json={"kind": "like"}, headers=_h("u2"))
    client.post(f"/api/v1/events/{ev['id']}/comments", json={"content": "gg"}, headers=_h("u2"))

    assert client.delete(f"/api/v1/activity/{ev['id']}", headers=_h("u2")).status_code == 403
    assert client.delete(f"/api/v1/activity/{ev['id']}", headers=_h("u1")).status_code == 204
    assert client.get(f"/api/v1/activity/{ev['id']}", headers=_h("u1")).status_code == 404
    assert client.delete(f"/api/v1/activity/{ev['id']}", headers=_h("u1")).status_code == 404


def test_user_and_game_activity(client):
    u1 = _me(client, "u1")
    _me(client, "u2")
    _me(client, "u3")
    _befriend(client, "u1", "u2")

    _post(client, "u1", type="game_completed", subject_game_id="G1")
    _post(client, "u1", type="game_completed", subject_game_id="G2", is_public=False)
    _post(client, "u2", type="game_completed", subject_game_id="G1")
    _post(client, "u3", type="game_completed", subject_game_id="G1")

    own = client.get(f"/api/v1/users/{u1['id']}/activity", headers=_h("u1")).json()
    assert len(own["events"]) == 2

    friend_view = client.get(f"/api/v1/users/{u1['id']}/activity", headers=_h("u2")).json()
    assert [e["subject_game_id"] for e in friend_view["events"]] == ["G1"]
    assert friend_view["hasMore"] is False

    stranger_view = client.get(f"/api/v1/users/{u1['id']}/activity", headers=_h("u3")).json()
    assert stranger_view["events"] == []

    assert client.get("/api/v1/users/999/activity", headers=_h("u1")).status_code == 404

    game = client.get("/api/v1/games/G1/activity", headers=_h("u2")).json()
    actors = sorted(e["actor"]["id"] for e in game["events"])
    assert len(actors) == 2
    assert u1["id"] in actors


def test_activity_stats(client):
    _me(client, "u1")
    _post(client, "u1", type="game_completed", subject_game_id="G1")
    _post(client, "u1", type="game_completed", subject_game_id="G2")
    _post(client, "u1", type="want_to_play", subject_game_id="G3")

    stats = client.get("/api/v1/activity/stats/me", headers=_h("u1")).json()
    assert stats["total_activities"] == 3
    assert stats["activities_by_type"] == {"game_completed": 2, "want_to_play": 1}
