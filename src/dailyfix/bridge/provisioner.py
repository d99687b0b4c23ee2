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
"""Bridge Room Provisioner -- one fresh private control room per call.

The membership listener is registered before the room is created: a fast
bridge bot can join while createRoom is still in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from dailyfix.bridge.errors import BotJoinTimeout, RoomCreationFailure
from dailyfix.bridge.platforms import PlatformBridgeConfig
from dailyfix.bridge.transport import MembershipEvent, Transport

logger = logging.getLogger("dailyfix.bridge.provisioner")


@dataclass
class ControlRoom:
    """A provisioned control room with the bridge bot joined."""

    room_id: str
    platform: str
    bridge_bot_id: str
    created_at: float = field(default_factory=time.time)


async def provision_room(
    transport: Transport, config: PlatformBridgeConfig, user_id: str = ""
) -> ControlRoom:
    """Create a private room, invite the bridge bot and wait for it to join.

    Raises RoomCreationFailure if the hub refuses the room, BotJoinTimeout
    (carrying the orphaned room id) if the bot does not join within
    ``config.bot_join_timeout``.
    """
    loop = asyncio.get_running_loop()
    joined: asyncio.Future = loop.create_future()
    bot_rooms: set[str] = set()
    target: dict[str, str | None] = {"room_id": None}

    def on_membership(event: MembershipEvent) -> None:
        if event.member_id != config.bridge_bot_id or not event.joined:
            return
        bot_rooms.add(event.room_id)
        if event.room_id == target["room_id"] and not joined.done():
            joined.set_result(event.room_id)

    sub = transport.feed.subscribe_membership(None, on_membership)
    try:
        try:
            room_id = await transport.create_room(
                invite=[config.bridge_bot_id],
                name=f"{config.display_name or config.platform.title()} Bridge - {user_id}".rstrip(" -"),
                topic=f"{config.platform} bridge connection room",
            )
        except Exception as e:
            raise RoomCreationFailure(
                f"Failed to create {config.platform} bridge room: {e}",
                platform=config.platform,
            ) from e

        target["room_id"] = room_id
        logger.info("Created %s control room %s, waiting for %s", config.platform, room_id, config.bridge_bot_id)

        if room_id not in bot_rooms:
            try:
                await asyncio.wait_for(joined, timeout=config.bot_join_timeout)
            except asyncio.TimeoutError:
                raise BotJoinTimeout(
                    f"{config.bridge_bot_id} did not join within {config.bot_join_timeout:g}s",
                    platform=config.platform,
                    room_id=room_id,
                ) from None

        return ControlRoom(room_id=room_id, platform=config.platform, bridge_bot_id=config.bridge_bot_id)
    finally:
        sub.dispose()
