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
DailyFix Bridge -- Bridge Connections (v1.0.0)

Links a user's WhatsApp, Telegram, Discord or Slack account by talking
to the platform's bridge bot over a Matrix hub:

  1. Provision a private control room and wait for the bot to join
  2. Send the platform's login command
  3. Relay QR codes, wait for success or rejection
  4. Persist every state change, then the linked account

Usage:
    from dailyfix.bridge import BridgeOrchestrator, BridgeStateStore, InMemoryRecordStore
    orchestrator = BridgeOrchestrator(transport, BridgeStateStore(InMemoryRecordStore()))
    result = await orchestrator.connect("@alice:example.org", "telegram", {"token": "..."})
"""

from dailyfix.bridge.errors import (
    BotJoinTimeout,
    BridgeBusyError,
    BridgeError,
    CommandSendFailure,
    ConnectionRejected,
    NotConnectedError,
    PersistenceFailure,
    ResponseTimeout,
    RoomCreationFailure,
    SessionSuperseded,
    UnsupportedPlatformError,
)
from dailyfix.bridge.events import QR_RECEIVED, STATE_CHANGED, BridgeEvent, EventBus
from dailyfix.bridge.orchestrator import BridgeOrchestrator, ConnectResult
from dailyfix.bridge.platforms import DEFAULT_PLATFORMS, PlatformBridgeConfig, PlatformRegistry
from dailyfix.bridge.session import BridgeSession, BridgeState
from dailyfix.bridge.state_store import BridgeStateStore
from dailyfix.bridge.storage import InMemoryRecordStore, SQLiteRecordStore

__all__ = [
    "BotJoinTimeout",
    "BridgeBusyError",
    "BridgeError",
    "BridgeEvent",
    "BridgeOrchestrator",
    "BridgeSession",
    "BridgeState",
    "BridgeStateStore",
    "CommandSendFailure",
    "ConnectResult",
    "ConnectionRejected",
    "DEFAULT_PLATFORMS",
    "EventBus",
    "InMemoryRecordStore",
    "NotConnectedError",
    "PersistenceFailure",
    "PlatformBridgeConfig",
    "PlatformRegistry",
    "QR_RECEIVED",
    "ResponseTimeout",
    "RoomCreationFailure",
    "SQLiteRecordStore",
    "STATE_CHANGED",
    "SessionSuperseded",
    "UnsupportedPlatformError",
]
