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
DailyFix Bridge -- Shared API Utilities

Pydantic request models, the live logger accessor and the process-wide
BridgeOrchestrator shared across route modules.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from dailyfix.bridge.config import BridgeSettings, build_registry, load_settings
from dailyfix.bridge.events import EventBus
from dailyfix.bridge.matrix import MatrixTransport
from dailyfix.bridge.orchestrator import BridgeOrchestrator
from dailyfix.bridge.state_store import BridgeStateStore
from dailyfix.bridge.storage import SQLiteRecordStore
from dailyfix.bridge.vault import load_cipher

logger = logging.getLogger("dailyfix.api.server")


# =============================================================================
# BRIDGE LOGGER
# =============================================================================

_bridge_log = None


def _get_bridge_log():
    """Lazy-init the BridgeLogger."""
    global _bridge_log
    if _bridge_log is None:
        try:
            from dailyfix.core.logging import get_logger
            _bridge_log = get_logger()
        except OSError as e:
            logger.warning("Live log unavailable: %s", e)
    return _bridge_log


# =============================================================================
# ORCHESTRATOR
# =============================================================================

_orchestrator: Optional[BridgeOrchestrator] = None
_transport: Optional[MatrixTransport] = None


def set_orchestrator(orchestrator: Optional[BridgeOrchestrator]) -> None:
    """Install the orchestrator the routes use. Tests install in-memory ones."""
    global _orchestrator
    _orchestrator = orchestrator


def build_orchestrator(settings: BridgeSettings, live_log: Any = None) -> BridgeOrchestrator:
    """Wire a Matrix-backed orchestrator from settings."""
    global _transport
    if not settings.has_transport:
        raise RuntimeError(
            "Bridge transport not configured: set homeserver, user_id and access_token"
        )
    _transport = MatrixTransport(
        homeserver=settings.homeserver,
        access_token=settings.access_token,
        user_id=settings.user_id,
        sync_timeout_ms=settings.sync_timeout_ms,
    )
    cipher = load_cipher(settings.credential_key, Path(settings.db_path).parent)
    store = BridgeStateStore(
        SQLiteRecordStore(settings.db_path), EventBus(), live_log=live_log, cipher=cipher
    )
    return BridgeOrchestrator(_transport, store, build_registry(settings), live_log=live_log)


async def get_orchestrator() -> BridgeOrchestrator:
    """Return the installed orchestrator, building one from settings on first use."""
    global _orchestrator
    if _orchestrator is None:
        try:
            _orchestrator = build_orchestrator(load_settings(), live_log=_get_bridge_log())
        except (RuntimeError, ValueError, OSError) as e:
            raise HTTPException(status_code=503, detail=str(e))
        await _transport.start()
    return _orchestrator


async def close_orchestrator() -> None:
    global _orchestrator, _transport
    if _transport is not None:
        await _transport.stop()
        _transport = None
    if _orchestrator is not None:
        await _orchestrator.state_store.bus.drain()
    _orchestrator = None


# =============================================================================
# REQUEST MODELS
# =============================================================================

class BridgeConnectRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    credentials: Dict[str, Any] = Field(default_factory=dict)


class BridgeDisconnectRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
