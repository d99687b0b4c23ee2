# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for bridge session state."""

from __future__ import annotations

import pytest

from dailyfix.bridge.errors import InvalidTransitionError
from dailyfix.bridge.session import BridgeSession, BridgeState


@pytest.fixture
def session() -> BridgeSession:
    return BridgeSession(user_id="@alice:hub.test", platform="whatsapp")


class TestSessionCreation:
    def test_defaults(self, session):
        assert session.state is None
        assert session.attempt == 0
        assert session.retry_count == 0
        assert session.is_terminal is False
        assert session.is_live is True
        assert len(session.session_id) == 12

    def test_key(self, session):
        assert session.key == ("@alice:hub.test", "whatsapp")

    def test_first_move_is_initializing(self, session):
        assert session.can_transition(BridgeState.INITIALIZING)
        assert not session.can_transition(BridgeState.CONNECTED)
        with pytest.raises(InvalidTransitionError):
            session.transition(BridgeState.CONNECTED)


class TestStateTransitions:
    def test_qr_flow(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.transition(BridgeState.WAITING_FOR_QR)
        session.transition(BridgeState.CONNECTED)
        assert session.is_terminal
        assert session.is_live is False

    def test_retry_cycle_counts_attempts(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.transition(BridgeState.DISCONNECTED, "timeout")
        assert session.last_error == "timeout"
        session.transition(BridgeState.INITIALIZING)
        assert session.attempt == 2
        assert session.last_error is None

    def test_terminal_states_are_final(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.transition(BridgeState.ERROR, "boom")
        for state in BridgeState:
            assert not session.can_transition(state)
        with pytest.raises(InvalidTransitionError):
            session.transition(BridgeState.INITIALIZING)

    def test_no_qr_after_disconnect(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.transition(BridgeState.DISCONNECTED)
        with pytest.raises(InvalidTransitionError):
            session.transition(BridgeState.WAITING_FOR_QR)

    def test_invalid_transition_is_value_error(self, session):
        with pytest.raises(ValueError):
            session.transition(BridgeState.ERROR)

    def test_superseded_is_not_live(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.superseded = True
        assert session.is_live is False


class TestSerialization:
    def test_to_dict(self, session):
        session.transition(BridgeState.INITIALIZING)
        session.attach_room("!r1:hub.test")
        data = session.to_dict()
        assert data["state"] == "initializing"
        assert data["room_id"] == "!r1:hub.test"
        assert data["room_ids"] == ["!r1:hub.test"]
        assert data["attempt"] == 1
