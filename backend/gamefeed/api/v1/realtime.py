import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from gamefeed.api.deps import ensure_profile, get_current_user_id, get_db
from gamefeed.core.errors import EngineError, Unauthorized
from gamefeed.realtime.notifier import Subscription, Topic, notifier
from gamefeed.realtime.topics import authorize_topic
from gamefeed.schemas.realtime import ChangeOut, SubscribeIn

logger = logging.getLogger(__name__)

router = APIRouter()

# Close code for a missing or invalid identity (4000-4999 are application codes).
WS_UNAUTHORIZED = 4401


class _Connection:
    """One socket: its subscriptions and the tasks forwarding their changes."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.subs: dict[Topic, Subscription] = {}
        self.tasks: dict[Topic, asyncio.Task] = {}
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def _forward(self, sub: Subscription) -> None:
        while True:
            change = await sub.get()
            if change is None:
                return
            msg = ChangeOut.model_validate(change.to_message())
            try:
                await self.send(msg.model_dump(mode="json"))
            except (WebSocketDisconnect, RuntimeError):
                return

    def subscribe(self, topic: Topic) -> None:
        if topic in self.subs:
            return
        sub = notifier.subscribe(topic)
        self.subs[topic] = sub
        self.tasks[topic] = asyncio.create_task(self._forward(sub))

    def unsubscribe(self, topic: Topic) -> None:
        sub = self.subs.pop(topic, None)
        if sub:
            sub.close()
        task = self.tasks.pop(topic, None)
        if task:
            task.cancel()

    def close(self) -> None:
        for topic in list(self.subs):
            self.unsubscribe(topic)


@router.websocket("/realtime/ws")
async def realtime_socket(websocket: WebSocket, db: Session = Depends(get_db)):
    try:
        # JWKS fetches block; keep them off the event loop.
        user_id = await run_in_threadpool(
            get_current_user_id,
            authorization=websocket.headers.get("authorization"),
            x_user_id=websocket.headers.get("x-user-id"),
        )
        me = await run_in_threadpool(ensure_profile, db, user_id)
    except Unauthorized as e:
        logger.info("Rejecting realtime connection: %s", e.detail)
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    conn = _Connection(websocket)
    logger.info("Realtime connection opened for profile %s", me.id)

    try:
        while True:
            data = await websocket.receive_json()
            try:
                req = SubscribeIn.model_validate(data)
                topic = await run_in_threadpool(authorize_topic, db, me, req.table, req.filter)
            except PydanticValidationError as e:
                await conn.send({"type": "error", "code": "validation_error", "detail": str(e)})
                continue
            except EngineError as e:
                await conn.send({"type": "error", "code": e.code, "detail": e.detail})
                continue

            if req.action == "subscribe":
                conn.subscribe(topic)
                await conn.send({"type": "subscribed", "table": req.table, "filter": dict(topic.filters)})
            else:
                conn.unsubscribe(topic)
                await conn.send({"type": "unsubscribed", "table": req.table, "filter": dict(topic.filters)})
    except WebSocketDisconnect:
        logger.info("Realtime connection closed for profile %s", me.id)
    finally:
        conn.close()
