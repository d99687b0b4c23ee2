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
"""Fire-and-forget publication of bridge events to external subscribers.

Published events:
    bridge.state_changed  {user_id, platform, state, error}
    bridge.qr_received    {user_id, platform, qr_payload}
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger("dailyfix.bridge.events")

STATE_CHANGED = "bridge.state_changed"
QR_RECEIVED = "bridge.qr_received"


@dataclass
class BridgeEvent:
    """One published bridge event."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.payload.get("user_id")

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, **self.payload}


EventHandler = Callable[[BridgeEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process pub/sub. Publishing never blocks on or fails because of a subscriber."""

    def __init__(self):
        self._handlers: list[tuple[EventHandler, str | None]] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler, user_id: str | None = None) -> Callable[[], None]:
        """Register a handler, optionally for one user's events. Returns an unsubscribe callable."""
        entry = (handler, user_id)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(entry)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, name: str, payload: dict[str, Any]) -> BridgeEvent:
        event = BridgeEvent(name=name, payload=dict(payload))
        for handler, user_id in list(self._handlers):
            if user_id is not None and user_id != event.user_id:
                continue
            try:
                if inspect.iscoroutinefunction(handler):
                    task = asyncio.get_running_loop().create_task(handler(event))
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
                else:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        task = asyncio.ensure_future(result)
                        self._pending.add(task)
                        task.add_done_callback(self._task_done)
            except Exception:
                logger.exception("Event handler failed for %s", name)
        return event

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async event handler failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for in-flight async handlers. Used at shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
