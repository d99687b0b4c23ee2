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
"""Bridge Command Dispatcher -- renders and sends bridge bot commands."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from dailyfix.bridge.errors import CommandSendFailure
from dailyfix.bridge.platforms import PlatformBridgeConfig

logger = logging.getLogger("dailyfix.bridge.dispatcher")


def render_login_command(config: PlatformBridgeConfig, credentials: Mapping[str, Any] | None) -> str:
    """Fill the login template from credentials. Missing secrets raise CommandSendFailure."""
    credentials = credentials or {}
    missing = [name for name in config.required_secrets if not credentials.get(name)]
    if missing:
        raise CommandSendFailure(
            f"Missing credential(s) for {config.platform} login: {', '.join(missing)}",
            platform=config.platform,
        )
    values = {name: str(credentials[name]) for name in config.required_secrets}
    return config.login_command.format(**values)


async def _send(transport, room_id: str, body: str, platform: str, what: str) -> str:
    try:
        return await transport.send_text(room_id, body)
    except Exception as e:
        raise CommandSendFailure(
            f"Failed to send {platform} {what} command: {e}", platform=platform
        ) from e


async def send_login_command(
    transport,
    room_id: str,
    config: PlatformBridgeConfig,
    credentials: Mapping[str, Any] | None = None,
) -> str:
    """Send exactly one login command into the control room. Returns the event id."""
    body = render_login_command(config, credentials)
    event_id = await _send(transport, room_id, body, config.platform, "login")
    logger.info("Sent %s login command to %s", config.platform, room_id)
    return event_id


async def send_logout_command(transport, room_id: str, config: PlatformBridgeConfig) -> str:
    if not config.logout_command:
        raise CommandSendFailure(
            f"{config.platform} has no logout command configured", platform=config.platform
        )
    event_id = await _send(transport, room_id, config.logout_command, config.platform, "logout")
    logger.info("Sent %s logout command to %s", config.platform, room_id)
    return event_id
