# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the event feed and subscriptions."""

from __future__ import annotations

from dailyfix.bridge.transport import EventFeed, MembershipEvent, RoomEvent


class TestEventFeed:
    def test_room_scoped_delivery(self):
        feed = EventFeed()
        got_a, got_b = [], []
        feed.subscribe("!a", got_a.append)
        feed.subscribe("!b", got_b.append)

        feed.dispatch(RoomEvent("!a", "message", "hi"))

        assert [e.body for e in got_a] == ["hi"]
        assert got_b == []

    def test_membership_wildcard(self):
        feed = EventFeed()
        everywhere, only_a = [], []
        feed.subscribe_membership(None, everywhere.append)
        feed.subscribe_membership("!a", only_a.append)

        feed.dispatch(MembershipEvent("!a", "@bot:x", "join"))
        feed.dispatch(MembershipEvent("!b", "@bot:x", "join"))

        assert len(everywhere) == 2
        assert len(only_a) == 1

    def test_membership_not_sent_to_room_handlers(self):
        feed = EventFeed()
        got = []
        feed.subscribe("!a", got.append)
        feed.dispatch(MembershipEvent("!a", "@bot:x", "join"))
        assert got == []

    def test_dispose_is_idempotent(self):
        feed = EventFeed()
        got = []
        sub = feed.subscribe("!a", got.append)
        sub.dispose()
        sub.dispose()
        feed.dispatch(RoomEvent("!a", "message", "late"))
        assert got == []
        assert feed.subscriber_count() == 0
        assert sub.active is False

    def test_context_manager_disposes(self):
        feed = EventFeed()
        with feed.subscribe("!a", lambda e: None):
            assert feed.subscriber_count("!a") == 1
        assert feed.subscriber_count("!a") == 0

    def test_handler_disposed_mid_dispatch_is_skipped(self):
        feed = EventFeed()
        got = []
        second = None

        def first(event):
            second.dispose()

        feed.subscribe("!a", first)
        second = feed.subscribe("!a", got.append)
        feed.dispatch(RoomEvent("!a", "message", "x"))
        assert got == []

    def test_failing_handler_does_not_stop_others(self):
        feed = EventFeed()
        got = []

        def broken(event):
            raise RuntimeError("boom")

        feed.subscribe("!a", broken)
        feed.subscribe("!a", got.append)
        feed.dispatch(RoomEvent("!a", "message", "x"))
        assert len(got) == 1


class TestMembershipEvent:
    def test_joined_values(self):
        assert MembershipEvent("!a", "@b", "join").joined
        assert MembershipEvent("!a", "@b", "joined").joined
        assert not MembershipEvent("!a", "@b", "invite").joined
        assert not MembershipEvent("!a", "@b", "leave").joined
