# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the bridge event bus."""

from __future__ import annotations

import pytest

from dailyfix.bridge.events import QR_RECEIVED, STATE_CHANGED, EventBus


class TestEventBus:
    def test_sync_handler(self):
        bus = EventBus()
        got = []
        bus.subscribe(got.append)
        event = bus.publish(STATE_CHANGED, {"user_id": "@a", "state": "connected"})
        assert got == [event]
        assert event.to_dict() == {"event": STATE_CHANGED, "user_id": "@a", "state": "connected"}

    def test_user_filter(self):
        bus = EventBus()
        alice, everyone = [], []
        bus.subscribe(alice.append, user_id="@alice")
        bus.subscribe(everyone.append)
        bus.publish(QR_RECEIVED, {"user_id": "@bob", "qr_payload": "x"})
        bus.publish(QR_RECEIVED, {"user_id": "@alice", "qr_payload": "y"})
        assert [e.payload["qr_payload"] for e in alice] == ["y"]
        assert len(everyone) == 2

    def test_unsubscribe(self):
        bus = EventBus()
        got = []
        unsubscribe = bus.subscribe(got.append)
        unsubscribe()
        unsubscribe()
        bus.publish(STATE_CHANGED, {"user_id": "@a"})
        assert got == []
        assert bus.subscriber_count == 0

    def test_failing_handler_isolated(self):
        bus = EventBus()
        got = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe(broken)
        bus.subscribe(got.append)
        bus.publish(STATE_CHANGED, {"user_id": "@a"})
        assert len(got) == 1

    def test_payload_is_copied(self):
        bus = EventBus()
        payload = {"user_id": "@a"}
        event = bus.publish(STATE_CHANGED, payload)
        payload["user_id"] = "@b"
        assert event.user_id == "@a"

    @pytest.mark.asyncio
    async def test_async_handler(self):
        bus = EventBus()
        got = []

        async def handler(event):
            got.append(event.name)

        bus.subscribe(handler)
        bus.publish(STATE_CHANGED, {"user_id": "@a"})
        assert got == []
        await bus.drain()
        assert got == [STATE_CHANGED]

    @pytest.mark.asyncio
    async def test_async_handler_failure_logged(self, caplog):
        bus = EventBus()

        async def broken(event):
            raise RuntimeError("async bug")

        bus.subscribe(broken)
        bus.publish(STATE_CHANGED, {"user_id": "@a"})
        await bus.drain()
        assert "async bug" in caplog.text
