# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the bridge response interpreter."""

from __future__ import annotations

import asyncio

import pytest

from conftest import TG_BOT, WA_BOT
from dailyfix.bridge.interpreter import ResponseInterpreter, SignalKind, classify
from dailyfix.bridge.platforms import DEFAULT_PLATFORMS
from dailyfix.bridge.transport import EventFeed, RoomEvent

WA = DEFAULT_PLATFORMS["whatsapp"]
TG = DEFAULT_PLATFORMS["telegram"]


def bot_says(body: str, room: str = "!r1", sender: str = WA_BOT) -> RoomEvent:
    return RoomEvent(room, "message", body, sender=sender)


class TestClassify:
    def test_qr_frame(self):
        signal = classify(WA, bot_says("Scan me ```ABC123```"))
        assert signal.kind == SignalKind.QR_RECEIVED
        assert signal.payload == "ABC123"

    def test_success(self):
        assert classify(WA, bot_says("Successfully logged in as +1555")).kind == SignalKind.CONNECTED

    def test_failure_keeps_raw_body(self):
        signal = classify(TG, bot_says("Login failed: bad token", sender=TG_BOT))
        assert signal.kind == SignalKind.REJECTED
        assert signal.payload == "Login failed: bad token"

    def test_unrelated_chatter(self):
        assert classify(WA, bot_says("Hello! Use !wa help for commands")) is None

    def test_other_senders_ignored(self):
        assert classify(WA, bot_says("Successfully logged in", sender="@eve:hub.test")) is None

    def test_non_message_events_ignored(self):
        event = RoomEvent("!r1", "m.room.topic", "Successfully logged in", sender=WA_BOT)
        assert classify(WA, event) is None

    def test_missing_sender_is_accepted(self):
        assert classify(WA, RoomEvent("!r1", "message", "Successfully logged in")).kind == SignalKind.CONNECTED


class TestResponseInterpreter:
    @pytest.mark.asyncio
    async def test_signals_in_order(self):
        feed = EventFeed()
        interp = ResponseInterpreter(feed, WA, "!r1").start()
        feed.dispatch(bot_says("```QR```"))
        feed.dispatch(bot_says("Successfully logged in"))

        first = await interp.next_signal(1.0)
        second = await interp.next_signal(1.0)
        assert first.kind == SignalKind.QR_RECEIVED
        assert second.kind == SignalKind.CONNECTED
        interp.dispose()

    @pytest.mark.asyncio
    async def test_only_own_room(self):
        feed = EventFeed()
        interp = ResponseInterpreter(feed, WA, "!r1").start()
        feed.dispatch(bot_says("Successfully logged in", room="!r2"))
        assert interp.pending == 0
        interp.dispose()

    @pytest.mark.asyncio
    async def test_timeout(self):
        interp = ResponseInterpreter(EventFeed(), WA, "!r1").start()
        with pytest.raises(asyncio.TimeoutError):
            await interp.next_signal(0.01)
        with pytest.raises(asyncio.TimeoutError):
            await interp.next_signal(0)
        interp.dispose()

    @pytest.mark.asyncio
    async def test_expired_deadline_still_drains_queue(self):
        feed = EventFeed()
        interp = ResponseInterpreter(feed, WA, "!r1").start()
        feed.dispatch(bot_says("Successfully logged in"))
        signal = await interp.next_signal(-1)
        assert signal.kind == SignalKind.CONNECTED
        interp.dispose()

    @pytest.mark.asyncio
    async def test_disposed_interpreter_hears_nothing(self):
        feed = EventFeed()
        with ResponseInterpreter(feed, WA, "!r1") as interp:
            assert interp.active
        feed.dispatch(bot_says("Successfully logged in"))
        assert interp.pending == 0
        assert interp.active is False
        assert feed.subscriber_count() == 0
