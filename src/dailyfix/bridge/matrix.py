# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
DailyFix Bridge -- Matrix Transport (v1.0.0)

Matrix client-server API over httpx. Implements the three calls the
bridge flow needs plus a long-poll /sync loop that feeds timeline and
membership events into the shared EventFeed.

Usage:
    transport = MatrixTransport("https://matrix.example.org", token, "@me:example.org")
    await transport.start()
    room_id = await transport.create_room(invite=["@whatsappbot:example.org"])
    ...
    await transport.stop()
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Any
from urllib.parse import quote

import httpx

from dailyfix.bridge.errors import TransportError
from dailyfix.bridge.transport import (
    EVENT_TYPE_MESSAGE,
    EventFeed,
    MembershipEvent,
    RoomEvent,
    Transport,
)

logger = logging.getLogger("dailyfix.bridge.matrix")

CLIENT_API = "/_matrix/client/v3"
SYNC_BACKOFF_BASE = 1.0
SYNC_BACKOFF_MAX = 30.0


def backoff_delay(attempt: int, base: float = SYNC_BACKOFF_BASE, cap: float = SYNC_BACKOFF_MAX) -> float:
    """Exponential backoff with 10% jitter."""
    delay = min(base * (2**attempt), cap)
    return delay + random.random() * 0.1 * delay


class MatrixTransport(Transport):
    """Transport backed by a Matrix homeserver."""

    def __init__(
        self,
        homeserver: str,
        access_token: str,
        user_id: str,
        feed: EventFeed | None = None,
        sync_timeout_ms: int = 30_000,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(feed)
        self.homeserver = homeserver.rstrip("/")
        self.user_id = user_id
        self._sync_timeout_ms = sync_timeout_ms
        self._client = client or httpx.AsyncClient(
            base_url=self.homeserver,
            timeout=httpx.Timeout(sync_timeout_ms / 1000 + 10),
        )
        self._client.headers["Authorization"] = f"Bearer {access_token}"
        self._since: str | None = None
        self._sync_task: asyncio.Task | None = None
        self._running = False

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, CLIENT_API + path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            errcode = None
            message = resp.text[:200]
            try:
                data = resp.json()
                errcode = data.get("errcode")
                message = data.get("error", message)
            except ValueError:
                pass
            raise TransportError(
                f"{method} {path} -> {resp.status_code}: {message}",
                status_code=resp.status_code,
                errcode=errcode,
            )
        try:
            return resp.json()
        except ValueError:
            return {}

    # =========================================================================
    # TRANSPORT API
    # =========================================================================

    async def create_room(
        self, invite: list[str], name: str | None = None, topic: str | None = None
    ) -> str:
        body: dict[str, Any] = {
            "visibility": "private",
            "preset": "private_chat",
            "invite": list(invite),
            "initial_state": [
                {
                    "type": "m.room.guest_access",
                    "state_key": "",
                    "content": {"guest_access": "forbidden"},
                }
            ],
        }
        if name:
            body["name"] = name
        if topic:
            body["topic"] = topic
        data = await self._request("POST", "/createRoom", json=body)
        room_id = data.get("room_id")
        if not room_id:
            raise TransportError("createRoom returned no room_id")
        logger.debug("Created room %s inviting %s", room_id, invite)
        return room_id

    async def send_text(self, room_id: str, body: str) -> str:
        txn_id = uuid.uuid4().hex
        path = f"/rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}"
        data = await self._request("PUT", path, json={"msgtype": "m.text", "body": body})
        return data.get("event_id", "")

    async def leave_room(self, room_id: str) -> None:
        await self._request("POST", f"/rooms/{quote(room_id, safe='')}/leave", json={})

    async def whoami(self) -> str:
        data = await self._request("GET", "/account/whoami")
        return data.get("user_id", "")

    # =========================================================================
    # SYNC LOOP
    # =========================================================================

    async def start(self) -> None:
        """Begin the background /sync loop."""
        if self._running:
            return
        self._running = True
        self._sync_task = asyncio.create_task(self._sync_loop())
        logger.info("Matrix sync started for %s on %s", self.user_id, self.homeserver)

    async def stop(self) -> None:
        self._running = False
        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        await self._client.aclose()
        logger.info("Matrix sync stopped for %s", self.user_id)

    async def sync_once(self, timeout_ms: int | None = None) -> int:
        """Run one /sync round and dispatch its events. Returns the event count."""
        params: dict[str, Any] = {
            "timeout": self._sync_timeout_ms if timeout_ms is None else timeout_ms
        }
        if self._since:
            params["since"] = self._since
        data = await self._request("GET", "/sync", params=params)
        first_sync = self._since is None
        self._since = data.get("next_batch", self._since)

        events = self.parse_sync(data)
        # The first sync replays history; only live events matter
        if first_sync:
            events = [e for e in events if isinstance(e, MembershipEvent)]
        for event in events:
            self.feed.dispatch(event)
        return len(events)

    async def _sync_loop(self) -> None:
        failures = 0
        while self._running:
            try:
                await self.sync_once()
                failures = 0
            except asyncio.CancelledError:
                raise
            except TransportError as e:
                delay = backoff_delay(failures)
                failures += 1
                logger.warning("Matrix sync failed (%s); retrying in %.1fs", e, delay)
                await asyncio.sleep(delay)
            except Exception:
                delay = backoff_delay(failures)
                failures += 1
                logger.exception("Unexpected /sync failure; retrying in %.1fs", delay)
                await asyncio.sleep(delay)

    @staticmethod
    def parse_sync(data: dict[str, Any]) -> list[RoomEvent | MembershipEvent]:
        """Convert a /sync response into feed events, in timeline order."""
        events: list[RoomEvent | MembershipEvent] = []
        joined = (data.get("rooms") or {}).get("join") or {}
        for room_id, room in joined.items():
            for raw in (room.get("timeline") or {}).get("events") or []:
                etype = raw.get("type")
                content = raw.get("content") or {}
                if etype == "m.room.message":
                    events.append(
                        RoomEvent(
                            room_id=room_id,
                            event_type=EVENT_TYPE_MESSAGE,
                            body=content.get("body") or "",
                            sender=raw.get("sender", ""),
                            event_id=raw.get("event_id", ""),
                            content=content,
                        )
                    )
                elif etype == "m.room.member":
                    events.append(
                        MembershipEvent(
                            room_id=room_id,
                            member_id=raw.get("state_key", ""),
                            membership=content.get("membership", ""),
                        )
                    )
                elif etype:
                    events.append(
                        RoomEvent(
                            room_id=room_id,
                            event_type=etype,
                            sender=raw.get("sender", ""),
                            event_id=raw.get("event_id", ""),
                            content=content,
                        )
                    )
        return events
