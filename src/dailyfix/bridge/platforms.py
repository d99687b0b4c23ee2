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
DailyFix Bridge -- Platform Bridge Registry (v1.0.0)

Static, per-platform description of how to talk to a bridge bot:
who the bot is, which command starts a login, how its replies are
recognised, and how long to wait for them.

Adding a platform means adding one ``PlatformBridgeConfig`` entry.
Nothing else in the connect flow switches on platform names.
"""

from __future__ import annotations

import re
import string
from dataclasses import dataclass, replace
from typing import Any, Iterator, Mapping

from dailyfix.bridge.errors import UnsupportedPlatformError

# Fenced payload, e.g. "Scan this QR code ```2@abc,def```"
DEFAULT_QR_FRAME_PATTERN = r"```(.*?)```"
DEFAULT_SUCCESS_PATTERN = r"Successfully logged in|Logged in as"


@dataclass(frozen=True)
class PlatformBridgeConfig:
    """Immutable bridge description for one external platform."""

    platform: str
    bridge_bot_id: str
    login_command: str  # may contain {placeholders} filled from credentials
    logout_command: str
    success_pattern: str = DEFAULT_SUCCESS_PATTERN
    failure_pattern: str = r"Login failed|Failed to log in|Error:"
    qr_frame_pattern: str | None = None  # None = platform has no QR handshake
    connect_timeout_ms: int = 30_000
    bot_join_timeout_ms: int = 30_000
    max_retries: int = 2
    display_name: str = ""
    health_url: str = ""  # bridge appservice base URL; "/health" is appended

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def bot_join_timeout(self) -> float:
        return self.bot_join_timeout_ms / 1000

    @property
    def uses_qr(self) -> bool:
        return self.qr_frame_pattern is not None

    @property
    def required_secrets(self) -> list[str]:
        """Credential keys the login command template needs."""
        return [
            name
            for _, name, _, _ in string.Formatter().parse(self.login_command)
            if name
        ]

    def match_qr(self, body: str) -> str | None:
        """Return the fenced QR payload verbatim, or None."""
        if not self.qr_frame_pattern:
            return None
        match = re.search(self.qr_frame_pattern, body, re.DOTALL)
        if match is None:
            return None
        return match.group(1)

    def is_success(self, body: str) -> bool:
        return re.search(self.success_pattern, body) is not None

    def is_failure(self, body: str) -> bool:
        return re.search(self.failure_pattern, body, re.IGNORECASE) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "name": self.display_name or self.platform.title(),
            "bridge_bot_id": self.bridge_bot_id,
            "uses_qr": self.uses_qr,
            "required_secrets": self.required_secrets,
            "connect_timeout_ms": self.connect_timeout_ms,
            "bot_join_timeout_ms": self.bot_join_timeout_ms,
            "max_retries": self.max_retries,
            "health_check": bool(self.health_url),
        }


DEFAULT_PLATFORMS: dict[str, PlatformBridgeConfig] = {
    "whatsapp": PlatformBridgeConfig(
        platform="whatsapp",
        display_name="WhatsApp",
        bridge_bot_id="@whatsappbot:example-mtbr.duckdns.org",
        login_command="!wa login qr",
        logout_command="!wa logout",
        qr_frame_pattern=DEFAULT_QR_FRAME_PATTERN,
        failure_pattern=r"Login failed|Failed to log in|QR code expired|Error:",
        connect_timeout_ms=300_000,
        bot_join_timeout_ms=30_000,
        max_retries=3,
    ),
    "telegram": PlatformBridgeConfig(
        platform="telegram",
        display_name="Telegram",
        bridge_bot_id="@telegrambot:matrix.org",
        login_command="!tg login {token}",
        logout_command="!tg logout",
        failure_pattern=r"Login failed|Invalid (bot )?token|Unauthorized|Error:",
    ),
    "discord": PlatformBridgeConfig(
        platform="discord",
        display_name="Discord",
        bridge_bot_id="@discordbot:matrix.org",
        login_command="!discord login {token}",
        logout_command="!discord logout",
        failure_pattern=r"Login failed|Invalid token|Error:",
    ),
    "slack": PlatformBridgeConfig(
        platform="slack",
        display_name="Slack",
        bridge_bot_id="@slackbot:matrix.org",
        login_command="!slack login {token}",
        logout_command="!slack logout",
        failure_pattern=r"Login failed|invalid_auth|Error:",
    ),
}

_OVERRIDABLE = {
    "bridge_bot_id",
    "login_command",
    "logout_command",
    "success_pattern",
    "failure_pattern",
    "qr_frame_pattern",
    "connect_timeout_ms",
    "bot_join_timeout_ms",
    "max_retries",
    "display_name",
    "health_url",
}


class PlatformRegistry(Mapping[str, PlatformBridgeConfig]):
    """Read-only lookup of bridge configs by platform key."""

    def __init__(self, configs: Mapping[str, PlatformBridgeConfig] | None = None):
        self._configs: dict[str, PlatformBridgeConfig] = dict(
            configs if configs is not None else DEFAULT_PLATFORMS
        )

    def __getitem__(self, platform: str) -> PlatformBridgeConfig:
        return self.get_config(platform)

    def __iter__(self) -> Iterator[str]:
        return iter(self._configs)

    def __len__(self) -> int:
        return len(self._configs)

    def get_config(self, platform: str) -> PlatformBridgeConfig:
        key = (platform or "").lower().strip()
        config = self._configs.get(key)
        if config is None:
            raise UnsupportedPlatformError(
                f"Unsupported platform: {platform}", platform=platform
            )
        return config

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> PlatformRegistry:
        """Return a new registry with per-platform field overrides applied."""
        merged = dict(self._configs)
        for platform, fields in (overrides or {}).items():
            key = platform.lower().strip()
            unknown = set(fields) - _OVERRIDABLE
            if unknown:
                raise ValueError(
                    f"Unknown bridge setting(s) for {platform}: {', '.join(sorted(unknown))}"
                )
            if key in merged:
                merged[key] = replace(merged[key], **fields)
            else:
                if "bridge_bot_id" not in fields or "login_command" not in fields:
                    raise ValueError(
                        f"New platform '{platform}' needs bridge_bot_id and login_command"
                    )
                merged[key] = PlatformBridgeConfig(
                    platform=key,
                    logout_command=fields.get("logout_command", ""),
                    **{k: v for k, v in fields.items() if k != "logout_command"},
                )
        return PlatformRegistry(merged)

    def summary(self) -> list[dict[str, Any]]:
        return [cfg.to_dict() for cfg in self._configs.values()]
