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
"""DailyFix Bridge -- Bridge Connection Routes."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect

from dailyfix.api._shared import (
    BridgeConnectRequest,
    BridgeDisconnectRequest,
    _get_bridge_log,
    get_orchestrator,
)
from dailyfix.bridge.errors import (
    BotJoinTimeout,
    BridgeBusyError,
    BridgeError,
    NotConnectedError,
    PersistenceFailure,
    ResponseTimeout,
    SessionSuperseded,
    UnsupportedPlatformError,
)
from dailyfix.bridge.health import check_bridge_health

logger = logging.getLogger("dailyfix.api.routes.bridges")

router = APIRouter()


def _http_error(e: BridgeError) -> HTTPException:
    """Map a bridge failure onto an HTTP status."""
    if isinstance(e, (UnsupportedPlatformError, NotConnectedError)):
        status = 404
    elif isinstance(e, (BridgeBusyError, SessionSuperseded)):
        status = 409
    elif isinstance(e, (BotJoinTimeout, ResponseTimeout)):
        status = 504
    elif isinstance(e, PersistenceFailure):
        status = 500
    else:
        status = 502
    return HTTPException(status_code=status, detail=e.to_dict())


# =============================================================================
# BRIDGES
# =============================================================================

@router.get("/api/bridges/platforms")
async def list_bridge_platforms():
    """List every platform a bridge connection can be made to."""
    orchestrator = await get_orchestrator()
    platforms = orchestrator.platforms.summary()
    return {"platforms": platforms, "total": len(platforms)}


@router.get("/api/bridges/{platform}/health")
async def bridge_health(platform: str):
    """Check the configured bridge appservice's /health endpoint."""
    orchestrator = await get_orchestrator()
    try:
        config = orchestrator.platforms.get_config(platform)
    except BridgeError as e:
        raise _http_error(e)
    if not config.health_url:
        raise HTTPException(
            status_code=404,
            detail={
                "error": "health_check_not_configured",
                "detail": f"No health_url configured for {config.platform}",
                "platform": config.platform,
                "retryable": False,
            },
        )
    result = await check_bridge_health(config.health_url)
    return {"platform": config.platform, **result.to_dict()}


@router.post("/api/bridges/{platform}/connect")
async def connect_bridge(platform: str, request: BridgeConnectRequest):
    """
    Link a user's account on an external platform.

    Blocks until the bridge bot confirms, rejects, or the attempts run
    out. QR codes for WhatsApp arrive over /ws/bridges/{user_id} while
    this request is pending.
    """
    orchestrator = await get_orchestrator()
    try:
        result = await orchestrator.connect(request.user_id, platform, request.credentials)
    except BridgeError as e:
        logger.warning("Connect %s for %s failed: %s", platform, request.user_id, e.detail)
        raise _http_error(e)
    return result.to_dict()


@router.get("/api/bridges/{platform}/status")
async def bridge_status(platform: str, user_id: str = Query(..., min_length=1)):
    orchestrator = await get_orchestrator()
    try:
        return await orchestrator.get_status(user_id, platform)
    except BridgeError as e:
        raise _http_error(e)


@router.post("/api/bridges/{platform}/disconnect")
async def disconnect_bridge(platform: str, request: BridgeDisconnectRequest):
    """Log out of a linked platform."""
    orchestrator = await get_orchestrator()
    try:
        return await orchestrator.disconnect(request.user_id, platform)
    except BridgeError as e:
        raise _http_error(e)


# =============================================================================
# WEBSOCKET -- live bridge events
# =============================================================================

@router.websocket("/ws/bridges/{user_id}")
async def websocket_bridge_events(websocket: WebSocket, user_id: str):
    """Stream one user's state changes and QR codes as JSON."""
    orchestrator = await get_orchestrator()
    await websocket.accept()

    log = _get_bridge_log()
    client_host = websocket.client.host if websocket.client else "unknown"
    if log:
        log.ws_connect(client=client_host, user_id=user_id)

    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = orchestrator.state_store.bus.subscribe(queue.put_nowait, user_id=user_id)

    async def pump():
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_dict())

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            # Inbound messages are ignored; this only detects the close
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
        if log:
            log.ws_disconnect(client=client_host, user_id=user_id)
