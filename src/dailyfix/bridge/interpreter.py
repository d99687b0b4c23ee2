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
"""Bridge Response Interpreter -- turns bridge bot replies into signals.

One interpreter per live attempt, subscribed to its own control room
only. Signals are queued; the orchestrator is the single consumer, so
a QR frame, a success and a timer can never be handled concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from dailyfix.bridge.platforms import PlatformBridgeConfig
from dailyfix.bridge.transport import EVENT_TYPE_MESSAGE, EventFeed, RoomEvent, Subscription

logger = logging.getLogger("dailyfix.bridge.interpreter")


class SignalKind(str, Enum):
    QR_RECEIVED = "qr_received"
    CONNECTED = "connected"
    REJECTED = "rejected"


@dataclass(frozen=True)
class BridgeSignal:
    kind: SignalKind
    payload: str = ""  # QR payload, or the raw reply for REJECTED


def classify(config: PlatformBridgeConfig, event: RoomEvent) -> BridgeSignal | None:
    """Match one room event against the platform grammar. None means ignore it."""
    if event.event_type != EVENT_TYPE_MESSAGE:
        return None
    # Our own login command echoes back into the room
    if event.sender and event.sender != config.bridge_bot_id:
        return None

    body = event.body or ""
    qr = config.match_qr(body)
    if qr is not None:
        return BridgeSignal(SignalKind.QR_RECEIVED, qr)
    if config.is_success(body):
        return BridgeSignal(SignalKind.CONNECTED)
    if config.is_failure(body):
        return BridgeSignal(SignalKind.REJECTED, body)
    return None


class ResponseInterpreter:
    """Listens to one control room and queues classified signals."""

    def __init__(self, feed: EventFeed, config: PlatformBridgeConfig, room_id: str):
        self._feed = feed
        self._config = config
        self.room_id = room_id
        self._queue: asyncio.Queue[BridgeSignal] = asyncio.Queue()
        self._sub: Subscription | None = None

    @property
    def active(self) -> bool:
        return self._sub is not None and self._sub.active

    def start(self) -> ResponseInterpreter:
        if self._sub is None:
            self._sub = self._feed.subscribe(self.room_id, self._on_event)
        return self

    def dispose(self) -> None:
        if self._sub is not None:
            self._sub.dispose()

    def __enter__(self) -> ResponseInterpreter:
        return self.start()

    def __exit__(self, *exc) -> None:
        self.dispose()

    def _on_event(self, event: RoomEvent) -> None:
        if event.room_id != self.room_id or not self.active:
            return
        signal = classify(self._config, event)
        if signal is None:
            return
        logger.debug("Room %s: %s", self.room_id, signal.kind.value)
        self._queue.put_nowait(signal)

    async def next_signal(self, timeout: float | None = None) -> BridgeSignal:
        """Wait for the next signal. Raises asyncio.TimeoutError when ``timeout`` elapses."""
        if timeout is not None and timeout <= 0:
            if self._queue.empty():
                raise asyncio.TimeoutError()
            return self._queue.get_nowait()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    @property
    def pending(self) -> int:
        return self._queue.qsize()
