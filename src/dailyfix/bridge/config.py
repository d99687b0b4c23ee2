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
DailyFix Bridge -- Bridge Configuration (v1.0.0)

Host-side settings for the bridge service: where the Matrix hub lives,
which account drives it, where records are stored, and per-platform
overrides of the built-in bridge table.

Config location: ~/.dailyfix/bridge_config.yaml

Example:
    homeserver: https://matrix.example.org
    user_id: "@dailyfix:example.org"
    access_token: syt_...
    db_path: /var/lib/dailyfix/bridge.db
    sync_timeout_ms: 30000
    credential_key: change-me        # optional; else a key file is generated
    platforms:
      whatsapp:
        bridge_bot_id: "@whatsappbot:example.org"
        connect_timeout_ms: 300000
        health_url: http://localhost:29318
      telegram:
        max_retries: 1

Environment variables DAILYFIX_HOMESERVER, DAILYFIX_ACCESS_TOKEN,
DAILYFIX_USER_ID, DAILYFIX_DB_PATH and DAILYFIX_CREDENTIAL_KEY win over
the file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from dailyfix.bridge.platforms import PlatformRegistry

logger = logging.getLogger("dailyfix.bridge.config")

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_DAILYFIX_HOME = Path(os.environ.get("DAILYFIX_HOME", Path.home() / ".dailyfix"))
DEFAULT_CONFIG_PATH = _DAILYFIX_HOME / "bridge_config.yaml"
DEFAULT_DB_PATH = str(_DAILYFIX_HOME / "bridge.db")

_ENV_OVERRIDES = {
    "DAILYFIX_HOMESERVER": "homeserver",
    "DAILYFIX_ACCESS_TOKEN": "access_token",
    "DAILYFIX_USER_ID": "user_id",
    "DAILYFIX_DB_PATH": "db_path",
    "DAILYFIX_CREDENTIAL_KEY": "credential_key",
}


@dataclass
class BridgeSettings:
    """Bridge service settings."""

    homeserver: str = ""
    access_token: str = ""
    user_id: str = ""
    db_path: str = DEFAULT_DB_PATH
    sync_timeout_ms: int = 30_000
    credential_key: str = ""
    platforms: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def has_transport(self) -> bool:
        """True when enough is configured to talk to a Matrix hub."""
        return bool(self.homeserver and self.access_token and self.user_id)


def load_settings(path: Path | str | None = None, env: dict[str, str] | None = None) -> BridgeSettings:
    """Load bridge settings from YAML, then apply environment overrides.

    A missing file yields defaults. A malformed one is logged and ignored.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    settings = BridgeSettings()

    if not config_path.exists():
        logger.info("No bridge config at %s -- using defaults", config_path)
    else:
        try:
            raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            if raw is None:
                pass
            elif not isinstance(raw, dict):
                logger.warning("Invalid bridge config (not a dict) -- using defaults")
            else:
                settings = _parse_settings(raw)
        except Exception as exc:
            logger.error("Failed to load bridge config: %s -- using defaults", exc)

    return _apply_env(settings, os.environ if env is None else env)


def save_settings(settings: BridgeSettings, path: Path | str | None = None) -> None:
    """Save bridge settings to YAML file."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "homeserver": settings.homeserver,
        "user_id": settings.user_id,
        "access_token": settings.access_token,
        "db_path": settings.db_path,
        "sync_timeout_ms": settings.sync_timeout_ms,
        "platforms": {name: dict(fields) for name, fields in settings.platforms.items()},
    }
    if settings.credential_key:
        data["credential_key"] = settings.credential_key
    config_path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )
    logger.info("Saved bridge config to %s", config_path)


def build_registry(settings: BridgeSettings) -> PlatformRegistry:
    """Built-in platforms with the settings' overrides applied.

    Raises ValueError for unknown override keys.
    """
    return PlatformRegistry().with_overrides(settings.platforms)


def _parse_settings(raw: dict) -> BridgeSettings:
    """Parse raw YAML dict into BridgeSettings."""
    platforms_raw = raw.get("platforms") or {}
    if not isinstance(platforms_raw, dict):
        logger.warning("Ignoring 'platforms' section (not a mapping)")
        platforms_raw = {}

    platforms = {
        str(name).lower().strip(): dict(fields)
        for name, fields in platforms_raw.items()
        if isinstance(fields, dict)
    }

    return BridgeSettings(
        homeserver=str(raw.get("homeserver", "") or ""),
        access_token=str(raw.get("access_token", "") or ""),
        user_id=str(raw.get("user_id", "") or ""),
        db_path=str(raw.get("db_path") or DEFAULT_DB_PATH),
        sync_timeout_ms=int(raw.get("sync_timeout_ms", 30_000)),
        credential_key=str(raw.get("credential_key", "") or ""),
        platforms=platforms,
    )


def _apply_env(settings: BridgeSettings, env) -> BridgeSettings:
    for var, attr in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            setattr(settings, attr, value)
    return settings
