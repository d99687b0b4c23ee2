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
DailyFix Bridge -- Transport Interface (v1.0.0)

The messaging hub as the bridge flow sees it: create a room, send a
text, leave a room, and a single shared event feed.

The feed is shared by every live session. Handlers are registered per
room id and disposed explicitly, so a session only ever sees events for
its own control room.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Union

logger = logging.getLogger("dailyfix.bridge.transport")

EVENT_TYPE_MESSAGE = "message"
JOINED_MEMBERSHIPS = frozenset({"join", "joined"})


@dataclass
class RoomEvent:
    """A timeline event in a room."""

    room_id: str
    event_type: str
    body: str = ""
    sender: str = ""
    event_id: str = ""
    content: dict[str, Any] = field(default_factory=dict)


@dataclass
class MembershipEvent:
    """A membership change for one member of a room."""

    room_id: str
    member_id: str
    membership: str  # "invite", "join", "leave", "ban"

    @property
    def joined(self) -> bool:
        return self.membership in JOINED_MEMBERSHIPS


FeedEvent = Union[RoomEvent, MembershipEvent]
RoomHandler = Callable[[RoomEvent], None]
MembershipHandler = Callable[[MembershipEvent], None]


class Subscription:
    """Handle for one registered feed handler. ``dispose()`` is idempotent."""

    def __init__(self, feed: EventFeed, bucket: dict, key: str | None, handler: Callable):
        self._feed = feed
        self._bucket = bucket
        self.key = key
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        subs = self._bucket.get(self.key)
        if subs is not None:
            try:
                subs.remove(self)
            except ValueError:
                pass
            if not subs:
                del self._bucket[self.key]

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()


class EventFeed:
    """Fan-out of hub events to per-room subscribers."""

    def __init__(self):
        self._room_subs: dict[str, list[Subscription]] = {}
        self._member_subs: dict[str | None, list[Subscription]] = {}

    def subscribe(self, room_id: str, handler: RoomHandler) -> Subscription:
        """Register ``handler`` for timeline events of ``room_id`` only."""
        sub = Subscription(self, self._room_subs, room_id, handler)
        self._room_subs.setdefault(room_id, []).append(sub)
        return sub

    def subscribe_membership(
        self, room_id: str | None, handler: MembershipHandler
    ) -> Subscription:
        """Register ``handler`` for membership events; room_id None means every room."""
        sub = Subscription(self, self._member_subs, room_id, handler)
        self._member_subs.setdefault(room_id, []).append(sub)
        return sub

    def dispatch(self, event: FeedEvent) -> None:
        if isinstance(event, MembershipEvent):
            targets = list(self._member_subs.get(event.room_id, []))
            targets += list(self._member_subs.get(None, []))
        else:
            targets = list(self._room_subs.get(event.room_id, []))

        for sub in targets:
            # A handler earlier in this loop may have disposed a later one
            if not sub.active:
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.exception("Feed handler failed for room %s", event.room_id)

    def subscriber_count(self, room_id: str | None = None) -> int:
        if room_id is not None:
            return len(self._room_subs.get(room_id, [])) + len(
                self._member_subs.get(room_id, [])
            )
        return sum(len(v) for v in self._room_subs.values()) + sum(
            len(v) for v in self._member_subs.values()
        )


class Transport(ABC):
    """A ready-made connection to the messaging hub."""

    def __init__(self, feed: EventFeed | None = None):
        self.feed = feed or EventFeed()

    @abstractmethod
    async def create_room(
        self, invite: list[str], name: str | None = None, topic: str | None = None
    ) -> str:
        """Create a private room inviting ``invite``. Returns the room id."""
        ...

    @abstractmethod
    async def send_text(self, room_id: str, body: str) -> str:
        """Send a plain text message. Returns the event id."""
        ...

    @abstractmethod
    async def leave_room(self, room_id: str) -> None:
        """Leave a room we created."""
        ...
