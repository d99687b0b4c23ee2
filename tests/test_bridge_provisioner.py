# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for control room provisioning."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from conftest import TG_BOT, FakeTransport
from dailyfix.bridge.errors import BotJoinTimeout, RoomCreationFailure
from dailyfix.bridge.platforms import DEFAULT_PLATFORMS
from dailyfix.bridge.provisioner import provision_room
from dailyfix.bridge.transport import MembershipEvent

TG = replace(DEFAULT_PLATFORMS["telegram"], bot_join_timeout_ms=100)


class EagerBotTransport(FakeTransport):
    """The bot joins before createRoom has even returned."""

    async def create_room(self, invite, name=None, topic=None) -> str:
        room_id = f"!room{len(self.rooms) + 1}:hub.test"
        self.rooms.append(room_id)
        self.feed.dispatch(MembershipEvent(room_id, invite[0], "join"))
        return room_id


class TestProvisionRoom:
    @pytest.mark.asyncio
    async def test_bot_joins(self):
        transport = FakeTransport()
        room = await provision_room(transport, TG, "@alice:hub.test")
        assert room.room_id == transport.rooms[0]
        assert room.bridge_bot_id == TG_BOT
        assert transport.feed.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_join_before_create_returns(self):
        transport = EagerBotTransport()
        room = await provision_room(transport, TG)
        assert room.room_id == "!room1:hub.test"

    @pytest.mark.asyncio
    async def test_fresh_room_every_call(self):
        transport = FakeTransport()
        first = await provision_room(transport, TG)
        second = await provision_room(transport, TG)
        assert first.room_id != second.room_id

    @pytest.mark.asyncio
    async def test_bot_join_timeout(self):
        transport = FakeTransport()
        transport.bots_join = False
        with pytest.raises(BotJoinTimeout) as exc_info:
            await provision_room(transport, TG)
        assert exc_info.value.room_id == "!room1:hub.test"
        assert exc_info.value.platform == "telegram"
        assert transport.feed.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_other_member_join_does_not_count(self):
        transport = FakeTransport()
        transport.bots_join = False

        async def stranger_joins():
            while not transport.rooms:
                await asyncio.sleep(0.001)
            transport.feed.dispatch(MembershipEvent(transport.rooms[0], "@eve:hub.test", "join"))

        helper = asyncio.create_task(stranger_joins())
        with pytest.raises(BotJoinTimeout):
            await provision_room(transport, TG)
        await helper

    @pytest.mark.asyncio
    async def test_creation_failure(self):
        transport = FakeTransport()
        transport.fail_create = True
        with pytest.raises(RoomCreationFailure, match="M_FORBIDDEN"):
            await provision_room(transport, TG)
        assert transport.feed.subscriber_count() == 0
