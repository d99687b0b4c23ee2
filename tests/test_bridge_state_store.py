# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the bridge state store."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dailyfix.bridge.errors import InvalidTransitionError, PersistenceFailure
from dailyfix.bridge.events import QR_RECEIVED, STATE_CHANGED
from dailyfix.bridge.session import BridgeSession, BridgeState
from dailyfix.bridge.state_store import BridgeStateStore
from dailyfix.bridge.storage import ACCOUNTS, BRIDGE_STATES, InMemoryRecordStore
from dailyfix.bridge.vault import CredentialCipher


@pytest.fixture
def session() -> BridgeSession:
    return BridgeSession(user_id="@alice:hub.test", platform="whatsapp")


class BrokenStore(InMemoryRecordStore):
    async def upsert(self, kind, record):
        raise OSError("database is locked")


class TestTransitions:
    @pytest.mark.asyncio
    async def test_write_then_publish(self, state_store, records, published, session):
        await state_store.transition(session, BridgeState.INITIALIZING)

        row = await records.get(BRIDGE_STATES, "@alice:hub.test", "whatsapp")
        assert row["state"] == "initializing"
        assert session.state == BridgeState.INITIALIZING
        assert published[-1].name == STATE_CHANGED
        assert published[-1].payload == {
            "user_id": "@alice:hub.test",
            "platform": "whatsapp",
            "state": "initializing",
            "error": None,
        }

    @pytest.mark.asyncio
    async def test_invalid_transition_writes_nothing(self, state_store, records, published, session):
        with pytest.raises(InvalidTransitionError):
            await state_store.transition(session, BridgeState.CONNECTED)
        assert records.write_count[BRIDGE_STATES] == 0
        assert published == []

    @pytest.mark.asyncio
    async def test_failed_write_leaves_session_untouched(self, bus, session):
        store = BridgeStateStore(BrokenStore(), bus)
        published = []
        bus.subscribe(published.append)

        with pytest.raises(PersistenceFailure, match="database is locked"):
            await store.transition(session, BridgeState.INITIALIZING)
        assert session.state is None
        assert published == []

    @pytest.mark.asyncio
    async def test_live_log_receives_transition(self, records, bus, session):
        live_log = MagicMock()
        store = BridgeStateStore(records, bus, live_log=live_log)
        await store.transition(session, BridgeState.INITIALIZING)
        live_log.bridge_transition.assert_called_once()
        args = live_log.bridge_transition.call_args
        assert args.args[:3] == ("@alice:hub.test", "whatsapp", "initializing")

    @pytest.mark.asyncio
    async def test_force_error_from_connected(self, state_store, records, published, session):
        await state_store.transition(session, BridgeState.INITIALIZING)
        await state_store.transition(session, BridgeState.CONNECTED)
        await state_store.force_error(session, "account write failed")

        assert session.state == BridgeState.ERROR
        row = await records.get(BRIDGE_STATES, "@alice:hub.test", "whatsapp")
        assert row["state"] == "error"
        assert published[-1].payload["error"] == "account write failed"
        with pytest.raises(PersistenceFailure):
            await state_store.persist_account("@alice:hub.test", "whatsapp", {})


class TestQr:
    @pytest.mark.asyncio
    async def test_qr_published_not_stored(self, state_store, records, published, session):
        await state_store.record_qr(session, "ABC123")
        assert published[-1].name == QR_RECEIVED
        assert published[-1].payload["qr_payload"] == "ABC123"
        assert records.write_count[BRIDGE_STATES] == 0

    @pytest.mark.asyncio
    async def test_qr_length_only_in_live_log(self, records, bus, session):
        live_log = MagicMock()
        store = BridgeStateStore(records, bus, live_log=live_log)
        await store.record_qr(session, "ABC123")
        live_log.bridge_qr.assert_called_once_with("@alice:hub.test", "whatsapp", payload_len=6)


class TestAccounts:
    @pytest.mark.asyncio
    async def test_account_requires_recorded_connected(self, state_store, records):
        with pytest.raises(PersistenceFailure):
            await state_store.persist_account("@alice:hub.test", "whatsapp", {"room_id": "!r"})
        assert records.write_count[ACCOUNTS] == 0

    @pytest.mark.asyncio
    async def test_account_written_once_per_connected(self, state_store, session):
        await state_store.transition(session, BridgeState.INITIALIZING)
        await state_store.transition(session, BridgeState.CONNECTED)

        row = await state_store.persist_account("@alice:hub.test", "whatsapp", {"room_id": "!r"})
        assert row["status"] == "active"
        assert row["connected_at"]
        with pytest.raises(PersistenceFailure):
            await state_store.persist_account("@alice:hub.test", "whatsapp", {"room_id": "!r"})

    @pytest.mark.asyncio
    async def test_deactivate_and_list(self, state_store, session):
        await state_store.transition(session, BridgeState.INITIALIZING)
        await state_store.transition(session, BridgeState.CONNECTED)
        await state_store.persist_account("@alice:hub.test", "whatsapp", {"room_id": "!r"})

        await state_store.deactivate_account("@alice:hub.test", "whatsapp")
        await state_store.record_disconnected("@alice:hub.test", "whatsapp")

        accounts = await state_store.list_accounts("@alice:hub.test")
        assert accounts[0]["status"] == "inactive"
        assert accounts[0]["credentials"] == {"room_id": "!r"}
        state = await state_store.get_state("@alice:hub.test", "whatsapp")
        assert state["state"] == "disconnected"


class TestEncryptedAccounts:
    @pytest.mark.asyncio
    async def test_token_encrypted_at_rest(self, records, bus):
        store = BridgeStateStore(records, bus, cipher=CredentialCipher.generate())
        session = BridgeSession(user_id="@alice:hub.test", platform="telegram")
        await store.transition(session, BridgeState.INITIALIZING)
        await store.transition(session, BridgeState.CONNECTED)
        await store.persist_account(
            "@alice:hub.test", "telegram", {"token": "123:secret", "room_id": "!r"}
        )

        raw = await records.get(ACCOUNTS, "@alice:hub.test", "telegram")
        assert "123:secret" not in str(raw)
        assert raw["credentials"]["room_id"] == "!r"

        account = await store.get_account("@alice:hub.test", "telegram")
        assert account["credentials"] == {"token": "123:secret", "room_id": "!r"}

    @pytest.mark.asyncio
    async def test_wrong_key_is_a_persistence_failure(self, records, bus):
        writer = BridgeStateStore(records, bus, cipher=CredentialCipher.generate())
        session = BridgeSession(user_id="@alice:hub.test", platform="slack")
        await writer.transition(session, BridgeState.INITIALIZING)
        await writer.transition(session, BridgeState.CONNECTED)
        await writer.persist_account("@alice:hub.test", "slack", {"token": "xoxb-1"})

        reader = BridgeStateStore(records, bus, cipher=CredentialCipher.generate())
        with pytest.raises(PersistenceFailure):
            await reader.get_account("@alice:hub.test", "slack")
