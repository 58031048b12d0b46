"""Async HTTP wrapper around the `/api/v1` endpoints.

Every call returns decoded JSON or raises the matching `gamefeed.core.errors`
exception, so callers handle the same error classes as the services.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gamefeed.core.errors import EngineError, TransientStoreError, error_for

logger = logging.getLogger(__name__)


class FeedApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        user_id: str | None = None,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif user_id:
            headers["X-User-Id"] = user_id
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransientStoreError(str(e) or "Network error")

        if resp.status_code >= 400:
            raise self._error(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    @staticmethod
    def _error(resp: httpx.Response) -> EngineError:
        code = None
        detail = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            detail = body.get("detail") if isinstance(body.get("detail"), str) else None
        return error_for(resp.status_code, code, detail)

    # Feed / activity

    async def feed(self, offset: int = 0, limit: int | None = None, snapshot_id: int | None = None) -> dict:
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        if snapshot_id is not None:
            params["snapshot_id"] = snapshot_id
        return await self._request("GET", "/api/v1/feed", params=params)

    async def get_event(self, event_id: int) -> dict:
        return await self._request("GET", f"/api/v1/activity/{event_id}")

    async def record_activity(
        self,
        type_: str,
        *,
        subject_game_id: str | None = None,
        subject_friend_id: int | None = None,
        payload: dict[str, Any] | None = None,
        is_public: bool = True,
    ) -> dict:
        body = {
            "type": type_,
            "subject_game_id": subject_game_id,
            "subject_friend_id": subject_friend_id,
            "payload": payload or {},
            "is_public": is_public,
        }
        return await self._request("POST", "/api/v1/activity", json=body)

    # Interactions

    async def add_reaction(self, event_id: int, kind: str) -> dict:
        return await self._request("POST", f"/api/v1/events/{event_id}/reactions", json={"kind": kind})

    async def remove_reaction(self, event_id: int, kind: str) -> None:
        await self._request("DELETE", f"/api/v1/events/{event_id}/reactions", json={"kind": kind})

    async def list_comments(self, event_id: int) -> list[dict]:
        return await self._request("GET", f"/api/v1/events/{event_id}/comments")

    async def add_comment(self, event_id: int, content: str) -> dict:
        return await self._request("POST", f"/api/v1/events/{event_id}/comments", json={"content": content})

    async def delete_comment(self, comment_id: int) -> None:
        await self._request("DELETE", f"/api/v1/comments/{comment_id}")

    # Friends

    async def list_friends(self, status: str | None = None) -> list[dict]:
        params = {"status": status} if status else None
        return await self._request("GET", "/api/v1/friends", params=params)

    async def send_friend_request(self, recipient: int | str) -> dict:
        return await self._request("POST", "/api/v1/friends/requests", json={"recipient_id": recipient})

    async def respond_to_request(self, edge_id: int, status: str) -> dict:
        return await self._request("PATCH", f"/api/v1/friends/edges/{edge_id}", json={"status": status})

    async def remove_friend(self, edge_id: int) -> None:
        await self._request("DELETE", f"/api/v1/friends/edges/{edge_id}")
