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
"""Bridge State Store -- persists session transitions and linked accounts.

Order of effects for every transition: validate → write the
bridge_states record → update the in-memory session → publish. A failed
write leaves the session untouched and raises PersistenceFailure.

An account record is written only for a key whose CONNECTED state this
store has already written. With a cipher, its secret credential fields
are encrypted before the write and decrypted on read.
"""

from __future__ import annotations

import logging
from typing import Any

from dailyfix.bridge.errors import InvalidTransitionError, PersistenceFailure
from dailyfix.bridge.events import QR_RECEIVED, STATE_CHANGED, EventBus
from dailyfix.bridge.session import BridgeSession, BridgeState, utc_now_iso
from dailyfix.bridge.storage import ACCOUNTS, BRIDGE_STATES, RecordStore
from dailyfix.bridge.vault import CredentialCipher, VaultError

logger = logging.getLogger("dailyfix.bridge.state_store")

ACCOUNT_ACTIVE = "active"
ACCOUNT_INACTIVE = "inactive"


class BridgeStateStore:
    """Durable record of bridge sessions plus event publication."""

    def __init__(
        self,
        records: RecordStore,
        bus: EventBus | None = None,
        live_log: Any = None,
        cipher: CredentialCipher | None = None,
    ):
        self._records = records
        self._cipher = cipher
        self._bus = bus or EventBus()
        self._log = live_log
        self._connected_recorded: set[tuple[str, str]] = set()

    @property
    def bus(self) -> EventBus:
        return self._bus

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self, session: BridgeSession, new_state: BridgeState, error: str | None = None
    ) -> None:
        if not session.can_transition(new_state):
            current = session.state.value if session.state else "none"
            raise InvalidTransitionError(
                f"Cannot transition from {current} to {new_state.value}"
            )

        await self._write_state(session, new_state, error)
        session.transition(new_state, error)

        if new_state == BridgeState.CONNECTED:
            self._connected_recorded.add(session.key)

        if self._log:
            self._log.bridge_transition(
                session.user_id,
                session.platform,
                new_state.value,
                error,
                attempt=session.attempt,
                retry_count=session.retry_count,
            )
        self._bus.publish(
            STATE_CHANGED,
            {
                "user_id": session.user_id,
                "platform": session.platform,
                "state": new_state.value,
                "error": error,
            },
        )

    async def record_qr(self, session: BridgeSession, payload: str) -> None:
        """Publish a QR frame. No record is written; QR codes are short-lived secrets."""
        if self._log:
            self._log.bridge_qr(session.user_id, session.platform, payload_len=len(payload))
        self._bus.publish(
            QR_RECEIVED,
            {
                "user_id": session.user_id,
                "platform": session.platform,
                "qr_payload": payload,
            },
        )

    async def force_error(self, session: BridgeSession, detail: str) -> None:
        """Put a session into ERROR outside the transition table.

        Used when a CONNECTED session's account could not be stored, or when
        the very first INITIALIZING write failed. Best-effort: the store may
        be the thing that is failing.
        """
        self._connected_recorded.discard(session.key)
        session.state = BridgeState.ERROR
        session.last_error = detail
        session.updated_at = utc_now_iso()
        try:
            await self._write_state(session, BridgeState.ERROR, detail)
        except PersistenceFailure as e:
            logger.error(
                "Could not record ERROR for %s/%s: %s", session.user_id, session.platform, e
            )
        if self._log:
            self._log.bridge_transition(session.user_id, session.platform, "error", detail)
        self._bus.publish(
            STATE_CHANGED,
            {
                "user_id": session.user_id,
                "platform": session.platform,
                "state": BridgeState.ERROR.value,
                "error": detail,
            },
        )

    async def _write_state(
        self, session: BridgeSession, state: BridgeState, error: str | None
    ) -> None:
        record = {
            "user_id": session.user_id,
            "platform": session.platform,
            "state": state.value,
            "error": error,
            "updated_at": utc_now_iso(),
        }
        try:
            await self._records.upsert(BRIDGE_STATES, record)
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to record {state.value} state: {e}", platform=session.platform
            ) from e

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def persist_account(
        self, user_id: str, platform: str, credentials: dict[str, Any]
    ) -> dict[str, Any]:
        key = (user_id, platform)
        if key not in self._connected_recorded:
            raise PersistenceFailure(
                "Refusing to write account before CONNECTED state is recorded",
                platform=platform,
            )
        self._connected_recorded.discard(key)
        now = utc_now_iso()
        record = {
            "user_id": user_id,
            "platform": platform,
            "status": ACCOUNT_ACTIVE,
            "credentials": self._seal(credentials),
            "connected_at": now,
            "updated_at": now,
        }
        try:
            stored = await self._records.upsert(ACCOUNTS, record)
        except Exception as e:
            raise PersistenceFailure(f"Failed to store account: {e}", platform=platform) from e
        logger.info("Account stored for %s/%s", user_id, platform)
        return stored

    async def deactivate_account(self, user_id: str, platform: str) -> dict[str, Any]:
        try:
            return await self._records.upsert(
                ACCOUNTS,
                {
                    "user_id": user_id,
                    "platform": platform,
                    "status": ACCOUNT_INACTIVE,
                    "updated_at": utc_now_iso(),
                },
            )
        except Exception as e:
            raise PersistenceFailure(f"Failed to update account: {e}", platform=platform) from e

    async def record_disconnected(self, user_id: str, platform: str) -> None:
        """Record a user-initiated disconnect outside any connect session."""
        record = {
            "user_id": user_id,
            "platform": platform,
            "state": BridgeState.DISCONNECTED.value,
            "error": None,
            "updated_at": utc_now_iso(),
        }
        try:
            await self._records.upsert(BRIDGE_STATES, record)
        except Exception as e:
            raise PersistenceFailure(f"Failed to record disconnect: {e}", platform=platform) from e
        if self._log:
            self._log.bridge_transition(user_id, platform, BridgeState.DISCONNECTED.value)
        self._bus.publish(
            STATE_CHANGED,
            {
                "user_id": user_id,
                "platform": platform,
                "state": BridgeState.DISCONNECTED.value,
                "error": None,
            },
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_state(self, user_id: str, platform: str) -> dict[str, Any] | None:
        return await self._records.get(BRIDGE_STATES, user_id, platform)

    async def get_account(self, user_id: str, platform: str) -> dict[str, Any] | None:
        account = await self._records.get(ACCOUNTS, user_id, platform)
        return self._open(account) if account else None

    async def list_accounts(self, user_id: str) -> list[dict[str, Any]]:
        return [self._open(a) for a in await self._records.query(ACCOUNTS, user_id=user_id)]

    def _seal(self, credentials: dict[str, Any]) -> dict[str, Any]:
        if self._cipher is None:
            return dict(credentials)
        return self._cipher.encrypt_credentials(credentials)

    def _open(self, account: dict[str, Any]) -> dict[str, Any]:
        if self._cipher is None or not account.get("credentials"):
            return account
        try:
            credentials = self._cipher.decrypt_credentials(account["credentials"])
        except VaultError as e:
            raise PersistenceFailure(
                f"Stored credentials unreadable: {e}", platform=account.get("platform")
            ) from e
        return {**account, "credentials": credentials}
