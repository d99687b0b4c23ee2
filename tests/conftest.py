# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Pytest configuration and shared fixtures for dailyfix tests."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Ensure src/dailyfix is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from dailyfix.bridge.errors import TransportError  # noqa: E402
from dailyfix.bridge.events import EventBus  # noqa: E402
from dailyfix.bridge.orchestrator import BridgeOrchestrator  # noqa: E402
from dailyfix.bridge.platforms import DEFAULT_PLATFORMS, PlatformRegistry  # noqa: E402
from dailyfix.bridge.state_store import BridgeStateStore  # noqa: E402
from dailyfix.bridge.storage import InMemoryRecordStore  # noqa: E402
from dailyfix.bridge.transport import MembershipEvent, RoomEvent, Transport  # noqa: E402

HUB_USER = "@dailyfix:hub.test"
WA_BOT = DEFAULT_PLATFORMS["whatsapp"].bridge_bot_id
TG_BOT = DEFAULT_PLATFORMS["telegram"].bridge_bot_id


class FakeTransport(Transport):
    """In-process hub. Bots join on invite and answer login commands from a script.

    ``script`` is a list consumed one entry per login command sent; each
    entry is the list of bot replies for that attempt (empty = silence).
    """

    def __init__(self, script: list[list[str]] | None = None):
        super().__init__()
        self.script = list(script or [])
        self.rooms: list[str] = []
        self.room_bots: dict[str, str] = {}
        self.sent: list[tuple[str, str]] = []
        self.left: list[str] = []
        self.bots_join = True
        self.fail_create = False
        self.fail_send = False
        self.fail_leave = False
        self.reply_delay = 0.0

    async def create_room(self, invite, name=None, topic=None) -> str:
        if self.fail_create:
            raise TransportError("M_FORBIDDEN: room creation disabled", status_code=403)
        room_id = f"!room{len(self.rooms) + 1}:hub.test"
        self.rooms.append(room_id)
        self.room_bots[room_id] = invite[0]
        if self.bots_join:
            loop = asyncio.get_running_loop()
            for bot in invite:
                loop.call_soon(self.feed.dispatch, MembershipEvent(room_id, bot, "join"))
        return room_id

    async def send_text(self, room_id: str, body: str) -> str:
        if self.fail_send:
            raise TransportError("M_UNKNOWN: send failed", status_code=500)
        self.sent.append((room_id, body))
        loop = asyncio.get_running_loop()
        # The hub echoes our own message back into the room
        loop.call_soon(self.feed.dispatch, RoomEvent(room_id, "message", body, sender=HUB_USER))
        if body.split()[-1] != "logout" and self.script:
            replies = self.script.pop(0)
            for i, reply in enumerate(replies):
                loop.call_later(
                    self.reply_delay * (i + 1), self.reply, room_id, reply
                )
        return f"$evt{len(self.sent)}"

    async def leave_room(self, room_id: str) -> None:
        if self.fail_leave:
            raise TransportError("M_UNKNOWN: leave failed", status_code=500)
        self.left.append(room_id)

    def reply(self, room_id: str, body: str, sender: str | None = None) -> None:
        """Deliver a bot message into ``room_id`` right now."""
        self.feed.dispatch(
            RoomEvent(room_id, "message", body, sender=sender or self.room_bots.get(room_id, ""))
        )

    @property
    def login_commands(self) -> list[tuple[str, str]]:
        return [(room, body) for room, body in self.sent if "login" in body]


def fast_registry(connect_timeout_ms: int = 200, bot_join_timeout_ms: int = 200) -> PlatformRegistry:
    """Built-in platforms with millisecond timeouts."""
    return PlatformRegistry(
        {
            key: replace(
                cfg,
                connect_timeout_ms=connect_timeout_ms,
                bot_join_timeout_ms=bot_join_timeout_ms,
            )
            for key, cfg in DEFAULT_PLATFORMS.items()
        }
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def state_store(records, bus) -> BridgeStateStore:
    return BridgeStateStore(records, bus)


@pytest.fixture
def registry() -> PlatformRegistry:
    return fast_registry()


@pytest.fixture
def orchestrator(transport, state_store, registry) -> BridgeOrchestrator:
    return BridgeOrchestrator(transport, state_store, registry)


@pytest.fixture
def published(bus) -> list:
    """Every event published on the bus, in order."""
    events: list = []
    bus.subscribe(events.append)
    return events
