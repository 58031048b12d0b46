import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

from gamefeed.api.deps import ensure_profile, get_db
from gamefeed.core.errors import Forbidden, ValidationError
from gamefeed.db.base import Base
from gamefeed.main import app
from gamefeed.models.activity_event import ActivityType
from gamefeed.models.friend_edge import FriendEdge, edge_pair_key
from gamefeed.realtime import capture  # noqa: F401
from gamefeed.realtime.notifier import Change, Notifier, Topic
from gamefeed.realtime.topics import authorize_topic
from gamefeed.services import activity_log, friend_edges


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


def _h(uid: str) -> dict:
    return {"X-User-Id": uid}


def _change(table="library_entries", **fields) -> Change:
    return Change(table=table, op="insert", key={"id": 1}, fields=fields)


def test_topic_matching():
    topic = Topic.of("library_entries", user_id=7)
    assert topic.matches(_change(user_id=7, game_id="G1"))
    assert not topic.matches(_change(user_id=8, game_id="G1"))
    assert not topic.matches(_change(table="progress_history", user_id=7))
    assert not topic.matches(_change(game_id="G1"))

    # Friend edges carry both parties.
    edge_topic = Topic.of("friend_edges", user_id=2)
    assert edge_topic.matches(_change(table="friend_edges", user_id=frozenset({1, 2})))
    assert not edge_topic.matches(_change(table="friend_edges", user_id=frozenset({1, 3})))


def test_change_message_is_json_friendly():
    msg = _change(table="friend_edges", user_id=frozenset({3, 1}), status="pending").to_message()
    assert msg == {
        "type": "change",
        "table": "friend_edges",
        "op": "insert",
        "key": {"id": 1},
        "fields": {"user_id": [1, 3], "status": "pending"},
    }


@pytest.mark.asyncio
async def test_notifier_delivers_only_matching_changes():
    notifier = Notifier(queue_size=8)
    sub = notifier.subscribe(Topic.of("library_entries", user_id=1))

    notifier.publish([_change(user_id=2), _change(user_id=1)])
    got = await sub.get(timeout=1)
    assert got.fields["user_id"] == 1

    with pytest.raises(asyncio.TimeoutError):
        await sub.get(timeout=0.05)

    sub.close()
    assert await sub.get(timeout=1) is None
    assert notifier.subscriber_count() == 0


@pytest.mark.asyncio
async def test_notifier_publish_from_worker_thread():
    notifier = Notifier(queue_size=8)
    sub = notifier.subscribe(Topic.of("library_entries", user_id=1))

    await asyncio.to_thread(notifier.publish, [_change(user_id=1)])

    got = await sub.get(timeout=1)
    assert got.table == "library_entries"


@pytest.mark.asyncio
async def test_slow_subscriber_is_dropped():
    notifier = Notifier(queue_size=2)
    sub = notifier.subscribe(Topic.of("library_entries", user_id=1))

    notifier.publish([_change(user_id=1) for _ in range(3)])

    assert notifier.subscriber_count() == 0
    assert await sub.get(timeout=1) is not None
    assert await sub.get(timeout=1) is not None
    assert await sub.get(timeout=1) is None


@pytest.mark.asyncio
async def test_changes_publish_after_commit_only(db, monkeypatch):
    notifier = Notifier(queue_size=8)
    monkeypatch.setattr("gamefeed.realtime.notifier.notifier", notifier)

    u1 = ensure_profile(db, "u1")
    u2 = ensure_profile(db, "u2")
    sub = notifier.subscribe(Topic.of("friend_edges", user_id=u2.id))

    # Rolled back writes are never announced.
    db.add(FriendEdge(requester_id=u1.id, recipient_id=u2.id, pair_key=edge_pair_key(u1.id, u2.id)))
    db.flush()
    db.rollback()
    with pytest.raises(asyncio.TimeoutError):
        await sub.get(timeout=0.05)

    edge = friend_edges.request_friend(db, u1, u2)
    change = await sub.get(timeout=1)
    assert change.op == "insert"
    assert change.key == {"id": edge.id}
    assert change.fields["user_id"] == frozenset({u1.id, u2.id})

    friend_edges.accept(db, u2, edge.id)
    change = await sub.get(timeout=1)
    assert change.op == "update"
    assert change.fields["status"] == "accepted"


def test_topic_authorization(db):
    u1 = ensure_profile(db, "u1")
    u2 = ensure_profile(db, "u2")
    u3 = ensure_profile(db, "u3")
    edge = friend_edges.request_friend(db, u1, u2)
    friend_edges.accept(db, u2, edge.id)
    ev = activity_log.record(db, u1, ActivityType.GAME_COMPLETED, subject_game_id="G1")

    assert authorize_topic(db, u2, "library_entries", {"user_id": u1.id}) == Topic.of(
        "library_entries", user_id=u1.id
    )
    assert authorize_topic(db, u1, "activity_events", {"actor_id": str(u1.id)}).filters == (
        ("actor_id", str(u1.id)),
    )
    friend_topic = authorize_topic(db, u2, "activity_events", {"actor_id": u1.id, "is_public": False})
    assert friend_topic == Topic.of("activity_events", actor_id=u1.id, is_public=True)
    assert not friend_topic.matches(
        Change("activity_events", "insert", {"id": 9}, {"actor_id": u1.id, "is_public": False})
    )

    with pytest.raises(Forbidden):
        authorize_topic(db, u3, "library_entries", {"user_id": u1.id})
    with pytest.raises(ValidationError):
        authorize_topic(db, u2, "library_entries", {})
    with pytest.raises(ValidationError):
        authorize_topic(db, u2, "profiles", {})

    # Someone else's edges are never watchable.
    topic = authorize_topic(db, u3, "friend_edges", {"user_id": u1.id})
    assert topic == Topic.of("friend_edges", user_id=u3.id)

    assert authorize_topic(db, u2, "activity_reactions", {"event_id": ev.id}).table == "activity_reactions"
    with pytest.raises(Forbidden):
        authorize_topic(db, u3, "activity_comments", {"event_id": ev.id})


def test_websocket_requires_identity(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/realtime/ws"):
            pass
    assert exc.value.code == 4401


def test_websocket_resolves_identity_off_the_event_loop(client, monkeypatch):
    seen = []

    def fake_user_id(authorization=None, x_user_id=None):
        try:
            asyncio.get_running_loop()
            seen.append("loop")
        except RuntimeError:
            seen.append("worker")
        return x_user_id

    monkeypatch.setattr("gamefeed.api.v1.realtime.get_current_user_id", fake_user_id)

    with client.websocket_connect("/api/v1/realtime/ws", headers=_h("u1")) as ws:
        ws.send_json({"action": "subscribe", "table": "friend_edges", "filter": {}})
        assert ws.receive_json()["type"] == "subscribed"

    assert seen == ["worker"]


def test_websocket_pushes_committed_changes(client):
    me = client.get("/api/v1/profiles/me", headers=_h("u1")).json()

    with client.websocket_connect("/api/v1/realtime/ws", headers=_h("u1")) as ws:
        ws.send_json({"action": "subscribe", "table": "library_entries", "filter": {"user_id": me["id"]}})
        ack = ws.receive_json()
        assert ack == {"type": "subscribed", "table": "library_entries", "filter": {"user_id": str(me["id"])}}

        r = client.put("/api/v1/library/G1", json={"status": "want_to_play"}, headers=_h("u1"))
        assert r.status_code == 200

        msg = ws.receive_json()
        assert msg["type"] == "change"
        assert msg["table"] == "library_entries"
        assert msg["op"] == "insert"
        assert msg["fields"]["game_id"] == "G1"


def test_websocket_hides_private_events_from_friends(client):
    u1 = client.get("/api/v1/profiles/me", headers=_h("u1")).json()
    u2 = client.get("/api/v1/profiles/me", headers=_h("u2")).json()
    edge = client.post("/api/v1/friends/requests", json={"recipient_id": u2["id"]}, headers=_h("u1")).json()
    client.patch(f"/api/v1/friends/edges/{edge['id']}", json={"status": "accepted"}, headers=_h("u2"))

    with client.websocket_connect("/api/v1/realtime/ws", headers=_h("u2")) as ws:
        ws.send_json({"action": "subscribe", "table": "activity_events", "filter": {"actor_id": u1["id"]}})
        ack = ws.receive_json()
        assert ack["filter"] == {"actor_id": str(u1["id"]), "is_public": "True"}

        hidden = client.post(
            "/api/v1/activity",
            json={"type": "game_completed", "subject_game_id": "SECRET", "is_public": False},
            headers=_h("u1"),
        )
        assert hidden.status_code == 201
        shown = client.post(
            "/api/v1/activity", json={"type": "game_completed", "subject_game_id": "G2"}, headers=_h("u1")
        )
        assert shown.status_code == 201

        # The private insert never reaches the friend; the next message is the public one.
        msg = ws.receive_json()
        assert msg["key"] == {"id": shown.json()["id"]}
        assert msg["fields"]["subject_game_id"] == "G2"


def test_websocket_rejects_unauthorized_topics(client):
    client.get("/api/v1/profiles/me", headers=_h("u1"))
    other = client.get("/api/v1/profiles/me", headers=_h("u2")).json()

    with client.websocket_connect("/api/v1/realtime/ws", headers=_h("u1")) as ws:
        ws.send_json({"action": "subscribe", "table": "library_entries", "filter": {"user_id": other["id"]}})
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["code"] == "forbidden"

        ws.send_json({"action": "watch", "table": "library_entries"})
        assert ws.receive_json()["code"] == "validation_error"
