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
DailyFix Bridge -- Bridge Orchestrator (v1.0.0)

One ``connect`` state machine per (user, platform):

    initializing → [waiting_for_qr] → connected
                 ↘ disconnected → initializing   (response timeout, retries left)
                 ↘ error                         (anything else, or retries exhausted)

Per attempt:
  1. Record INITIALIZING
  2. Provision a fresh control room (bot must join)
  3. Start the response interpreter and the attempt deadline
  4. Send the login command
  5. Consume interpreter signals until CONNECTED, REJECTED or the deadline

Retries are a bounded loop over the same BridgeSession. Every exit path
disposes the interpreter; the deadline lives inside ``wait_for`` and dies
with it. A new connect for a live key supersedes the old one: the old
task is cancelled and fully torn down before the new one starts. A
session already recording CONNECTED is left to finish instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from dailyfix.bridge.dispatcher import send_login_command, send_logout_command
from dailyfix.bridge.errors import (
    BotJoinTimeout,
    BridgeBusyError,
    BridgeError,
    CommandSendFailure,
    ConnectionRejected,
    NotConnectedError,
    PersistenceFailure,
    ResponseTimeout,
    SessionSuperseded,
)
from dailyfix.bridge.interpreter import ResponseInterpreter, SignalKind
from dailyfix.bridge.platforms import PlatformBridgeConfig, PlatformRegistry
from dailyfix.bridge.provisioner import ControlRoom, provision_room
from dailyfix.bridge.session import BridgeSession, BridgeState
from dailyfix.bridge.state_store import ACCOUNT_ACTIVE, BridgeStateStore
from dailyfix.bridge.transport import Transport

logger = logging.getLogger("dailyfix.bridge.orchestrator")

SessionKey = tuple[str, str]


@dataclass
class ConnectResult:
    """Successful outcome of one logical connect request."""

    user_id: str
    platform: str
    room_id: str
    attempts: int
    retry_count: int
    account: dict[str, Any] = field(default_factory=dict)
    status: str = "connected"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "user_id": self.user_id,
            "platform": self.platform,
            "room_id": self.room_id,
            "attempts": self.attempts,
            "retry_count": self.retry_count,
        }


@dataclass
class _LiveEntry:
    session: BridgeSession
    task: asyncio.Task


class SessionRegistry:
    """Live connect sessions keyed by (user_id, platform).

    Lifecycle: ``register`` when a connect task starts, ``lookup`` for
    status and conflict checks, ``supersede`` to tear down a live session
    before a new one takes its key, ``dispose`` when its task finishes.
    """

    def __init__(self):
        self._live: dict[SessionKey, _LiveEntry] = {}

    def lookup(self, key: SessionKey) -> BridgeSession | None:
        entry = self._live.get(key)
        return entry.session if entry else None

    def register(self, session: BridgeSession, task: asyncio.Task) -> None:
        if session.key in self._live:
            raise BridgeBusyError(
                f"Session already live for {session.user_id}/{session.platform}",
                platform=session.platform,
            )
        self._live[session.key] = _LiveEntry(session, task)
        task.add_done_callback(lambda t: self._on_done(session, t))

    async def supersede(self, key: SessionKey) -> BridgeSession | None:
        """Retire the live session for ``key`` and wait until it has torn down.

        A session that is recording CONNECTED or its account is not
        cancelled; it runs to completion and its caller gets the real
        outcome. The entry stays registered until the task is done, so a
        later request for the same key waits on the same teardown.
        """
        entry = self._live.get(key)
        if entry is None:
            return None
        session = entry.session
        if session.committing or session.is_terminal:
            logger.info(
                "Waiting for bridge session %s for %s/%s to finish", session.session_id, *key
            )
        elif not session.superseded:
            session.superseded = True
            entry.task.cancel()
            logger.info("Superseded bridge session %s for %s/%s", session.session_id, *key)
        # wait() never cancels the task if this caller is cancelled
        await asyncio.wait({entry.task})
        self.dispose(session)
        return session

    def dispose(self, session: BridgeSession) -> None:
        entry = self._live.get(session.key)
        if entry is not None and entry.session is session:
            del self._live[session.key]

    def _on_done(self, session: BridgeSession, task: asyncio.Task) -> None:
        self.dispose(session)
        # Mark the outcome as retrieved; the awaiting caller may be gone
        if not task.cancelled():
            task.exception()

    def snapshots(self) -> list[dict[str, Any]]:
        return [entry.session.to_dict() for entry in self._live.values()]

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, key: object) -> bool:
        return key in self._live


class BridgeOrchestrator:
    """Composes provisioner, dispatcher, interpreter and state store into ``connect``."""

    def __init__(
        self,
        transport: Transport,
        state_store: BridgeStateStore,
        platforms: PlatformRegistry | None = None,
        live_log: Any = None,
    ):
        self._transport = transport
        self._store = state_store
        self._platforms = platforms or PlatformRegistry()
        self._sessions = SessionRegistry()
        self._log = live_log

    @property
    def platforms(self) -> PlatformRegistry:
        return self._platforms

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def state_store(self) -> BridgeStateStore:
        return self._store

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def connect(
        self, user_id: str, platform: str, credentials: dict[str, Any] | None = None
    ) -> ConnectResult:
        """Link ``user_id`` to ``platform`` through its bridge bot.

        Resolves once with ConnectResult, or raises one BridgeError,
        however many attempts were made internally.
        """
        config = self._platforms.get_config(platform)
        key = (user_id, config.platform)

        while self._sessions.lookup(key) is not None:
            await self._sessions.supersede(key)

        session = BridgeSession(user_id=user_id, platform=config.platform)
        task = asyncio.create_task(self._run(session, config, dict(credentials or {})))
        self._sessions.register(session, task)

        try:
            # Shielded: the state machine finishes even if this caller goes away
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if session.superseded:
                raise SessionSuperseded(
                    f"Connect for {user_id}/{config.platform} was replaced by a newer request",
                    platform=config.platform,
                ) from None
            raise

    async def disconnect(self, user_id: str, platform: str) -> dict[str, Any]:
        """Log out of a linked platform and mark its account inactive."""
        config = self._platforms.get_config(platform)
        if self._sessions.lookup((user_id, config.platform)) is not None:
            raise BridgeBusyError(
                f"A {config.platform} connect is in progress for {user_id}",
                platform=config.platform,
            )

        account = await self._store.get_account(user_id, config.platform)
        if not account or account.get("status") != ACCOUNT_ACTIVE:
            raise NotConnectedError(
                f"No active {config.platform} account for {user_id}", platform=config.platform
            )

        logout_sent = False
        room_id = (account.get("credentials") or {}).get("room_id")
        if room_id:
            try:
                await send_logout_command(self._transport, room_id, config)
                logout_sent = True
            except CommandSendFailure as e:
                logger.warning("Logout command failed for %s/%s: %s", user_id, config.platform, e)

        await self._store.deactivate_account(user_id, config.platform)
        await self._store.record_disconnected(user_id, config.platform)
        return {
            "status": "disconnected",
            "platform": config.platform,
            "room_id": room_id,
            "logout_sent": logout_sent,
        }

    async def get_status(self, user_id: str, platform: str) -> dict[str, Any]:
        """Live session if any, else the last recorded state, else disconnected."""
        config = self._platforms.get_config(platform)
        live = self._sessions.lookup((user_id, config.platform))
        if live is not None:
            return {**live.to_dict(), "live": True}

        record = await self._store.get_state(user_id, config.platform)
        if record:
            return {
                "user_id": user_id,
                "platform": config.platform,
                "state": record.get("state"),
                "last_error": record.get("error"),
                "updated_at": record.get("updated_at"),
                "live": False,
            }
        return {
            "user_id": user_id,
            "platform": config.platform,
            "state": BridgeState.DISCONNECTED.value,
            "live": False,
        }

    def live_sessions(self) -> list[dict[str, Any]]:
        return self._sessions.snapshots()

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    async def _run(
        self, session: BridgeSession, config: PlatformBridgeConfig, credentials: dict[str, Any]
    ) -> ConnectResult:
        try:
            while True:
                try:
                    room = await self._attempt(session, config, credentials)
                    break
                except ResponseTimeout as e:
                    if session.retry_count >= config.max_retries:
                        detail = (
                            f"Max retries exceeded ({config.max_retries}): {e.detail}"
                        )
                        await self._fail(session, detail)
                        raise ResponseTimeout(detail, platform=config.platform) from e
                    session.retry_count += 1
                    if self._log:
                        self._log.bridge_retry(
                            session.user_id,
                            session.platform,
                            session.retry_count,
                            config.max_retries,
                        )
                    await self._store.transition(session, BridgeState.DISCONNECTED, e.detail)

            account_credentials = {**credentials, "room_id": room.room_id}
            try:
                account = await self._store.persist_account(
                    session.user_id, session.platform, account_credentials
                )
            except PersistenceFailure as e:
                await self._store.force_error(session, e.detail)
                raise

            logger.info(
                "Bridge connected: %s/%s room=%s attempts=%d",
                session.user_id,
                session.platform,
                room.room_id,
                session.attempt,
            )
            return ConnectResult(
                user_id=session.user_id,
                platform=session.platform,
                room_id=room.room_id,
                attempts=session.attempt,
                retry_count=session.retry_count,
                account=account,
            )
        except BridgeError as e:
            if not session.is_terminal:
                await self._fail(session, e.detail)
            raise
        except asyncio.CancelledError:
            if session.room_id and not session.is_terminal:
                await self._abandon_room(session.room_id, config.platform)
            raise

    async def _attempt(
        self, session: BridgeSession, config: PlatformBridgeConfig, credentials: dict[str, Any]
    ) -> ControlRoom:
        await self._store.transition(session, BridgeState.INITIALIZING)

        try:
            room = await provision_room(self._transport, config, session.user_id)
        except BotJoinTimeout as e:
            if e.room_id:
                await self._abandon_room(e.room_id, config.platform)
            raise
        session.attach_room(room.room_id)

        loop = asyncio.get_running_loop()
        interpreter = ResponseInterpreter(self._transport.feed, config, room.room_id).start()
        deadline = loop.time() + config.connect_timeout
        try:
            try:
                await send_login_command(self._transport, room.room_id, config, credentials)
            except CommandSendFailure:
                interpreter.dispose()
                await self._abandon_room(room.room_id, config.platform)
                raise

            while True:
                try:
                    signal = await interpreter.next_signal(deadline - loop.time())
                except asyncio.TimeoutError:
                    interpreter.dispose()
                    await self._abandon_room(room.room_id, config.platform)
                    raise ResponseTimeout(
                        f"No reply from {config.bridge_bot_id} within {config.connect_timeout:g}s",
                        platform=config.platform,
                    ) from None

                if signal.kind == SignalKind.QR_RECEIVED:
                    if session.state != BridgeState.WAITING_FOR_QR:
                        await self._store.transition(session, BridgeState.WAITING_FOR_QR)
                    await self._store.record_qr(session, signal.payload)
                    continue

                interpreter.dispose()
                if signal.kind == SignalKind.CONNECTED:
                    session.committing = True
                    await self._store.transition(session, BridgeState.CONNECTED)
                    return room

                raise ConnectionRejected(
                    f"{config.platform} bridge rejected the login: {signal.payload}",
                    platform=config.platform,
                    body=signal.payload,
                )
        finally:
            interpreter.dispose()

    async def _fail(self, session: BridgeSession, detail: str) -> None:
        """Record ERROR for a session that has not reached a terminal state."""
        if session.can_transition(BridgeState.ERROR):
            try:
                await self._store.transition(session, BridgeState.ERROR, detail)
                return
            except PersistenceFailure as e:
                logger.error(
                    "Could not record ERROR for %s/%s: %s", session.user_id, session.platform, e
                )
        await self._store.force_error(session, detail)

    async def _abandon_room(self, room_id: str, platform: str) -> None:
        """Leave an orphaned control room. Best-effort."""
        try:
            await self._transport.leave_room(room_id)
            logger.debug("Left abandoned %s room %s", platform, room_id)
        except Exception as e:
            logger.warning("Failed to leave abandoned %s room %s: %s", platform, room_id, e)
