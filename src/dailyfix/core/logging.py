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
DailyFix Bridge -- Live Bridge Logger (v1.0.0)

Every bridge state transition, QR hand-off, retry and API request is
captured to a rotating log file that operators can tail to see exactly
where a user's connect flow is.

LOG LOCATION:
    $DAILYFIX_HOME/logs/bridge.log      (current, default ~/.dailyfix)
    $DAILYFIX_HOME/logs/bridge.log.1    (previous rotation)

RULES:
    - Single log file, max 10 MB before rotation
    - Log folder purges oldest files once it exceeds 1 GB
    - Human-readable format with structured key=value fields
    - QR payloads are never written, only their length

USAGE:
    from dailyfix.core.logging import get_logger
    log = get_logger()
    log.bridge_transition("u-1", "whatsapp", "waiting_for_qr", attempt=1)
    log.error("Matrix", "Sync failed", error=str(e))
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
MAX_LOG_FOLDER_BYTES = 1024 * 1024 * 1024  # 1 GB total
LOG_BACKUP_COUNT = 100


def default_log_dir() -> Path:
    home = Path(os.environ.get("DAILYFIX_HOME", Path.home() / ".dailyfix"))
    return home / "logs"


# =============================================================================
# CUSTOM FORMATTER -- human-readable + structured
# =============================================================================


class BridgeLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

    Example:
    2026-02-09T17:30:45.123Z | STATE | Bridge       | whatsapp -> waiting_for_qr | user_id="u-1" attempt=1
    2026-02-09T17:30:46.501Z | RETRY | Bridge       | Response timeout, retrying | user_id="u-1" retry=1
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "bridge_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


# =============================================================================
# FOLDER PURGE
# =============================================================================


def _purge_old_logs(log_dir: Path, max_bytes: int = MAX_LOG_FOLDER_BYTES) -> int:
    """Delete oldest log files while the folder exceeds max_bytes. Returns files removed."""
    removed = 0
    try:
        log_files = sorted(
            [f for f in log_dir.iterdir() if f.is_file() and f.name.startswith("bridge.log")],
            key=lambda f: f.stat().st_mtime,
        )
        total_size = sum(f.stat().st_size for f in log_files)
        while total_size > max_bytes and len(log_files) > 1:
            oldest = log_files.pop(0)
            total_size -= oldest.stat().st_size
            oldest.unlink()
            removed += 1
    except OSError:
        pass
    return removed


# =============================================================================
# BRIDGE LOGGER
# =============================================================================


class BridgeLogger:
    """
    Component-tagged live logger.

    Writes to $DAILYFIX_HOME/logs/bridge.log with 10 MB rotation and
    mirrors WARNING+ to stderr.
    """

    def __init__(self, log_dir: Path | None = None):
        self._log_dir = Path(log_dir) if log_dir else default_log_dir()
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file = self._log_dir / "bridge.log"

        self._logger = logging.getLogger("dailyfix.live")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            handler.close()
        self._logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            str(self._log_file),
            maxBytes=MAX_LOG_FILE_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(BridgeLogFormatter())
        self._logger.addHandler(file_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(BridgeLogFormatter())
        self._logger.addHandler(stderr_handler)

        self._request_count = 0
        _purge_old_logs(self._log_dir)

        self.info("System", "Logger initialized", log_file=str(self._log_file))

    def _log(self, level: int, bridge_level: str, component: str, message: str, **fields):
        record = self._logger.makeRecord(
            name="dailyfix.live",
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.bridge_level = bridge_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # PUBLIC API -- Standard levels
    # =========================================================================

    def info(self, component: str, message: str, **fields):
        self._log(logging.INFO, "INFO", component, message, **fields)

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def error(self, component: str, message: str, **fields):
        self._log(logging.ERROR, "ERROR", component, message, **fields)

    def debug(self, component: str, message: str, **fields):
        self._log(logging.DEBUG, "DEBUG", component, message, **fields)

    # =========================================================================
    # PUBLIC API -- Bridge events
    # =========================================================================

    def bridge_transition(
        self, user_id: str, platform: str, state: str, error: str | None = None, **fields
    ):
        """Log a persisted session state transition."""
        fields.update(user_id=user_id, platform=platform, state=state)
        if error:
            fields["error"] = error
        level = logging.WARNING if state == "error" else logging.INFO
        self._log(level, "STATE", "Bridge", f"{platform} -> {state}", **fields)

    def bridge_qr(self, user_id: str, platform: str, payload_len: int = 0, **fields):
        """Log a QR hand-off. The payload itself is a login secret."""
        fields.update(user_id=user_id, platform=platform, payload_len=payload_len)
        self._log(logging.INFO, "QR", "Bridge", "QR code received", **fields)

    def bridge_retry(self, user_id: str, platform: str, retry: int, max_retries: int, **fields):
        fields.update(user_id=user_id, platform=platform, retry=retry, max_retries=max_retries)
        self._log(logging.WARNING, "RETRY", "Bridge", "Response timeout, retrying", **fields)

    def server_start(self, host: str = "", port: int = 0, **fields):
        fields.update(host=host, port=port)
        self._log(logging.INFO, "BOOT", "Server", "API server started", **fields)

    def server_stop(self, **fields):
        fields.update(requests_served=self._request_count)
        self._log(logging.INFO, "HALT", "Server", "API server stopped", **fields)

    def http_request(
        self, method: str, path: str, status: int = 200, latency_ms: int = 0, **fields
    ):
        fields.update(method=method, path=path, status=status, latency_ms=latency_ms)
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, "HTTP", "Server", f"{method} {path} -> {status}", **fields)
        self._request_count += 1

    def ws_connect(self, client: str = "", **fields):
        fields.update(client=client)
        self._log(logging.INFO, "WS", "WebSocket", "Client connected", **fields)

    def ws_disconnect(self, client: str = "", **fields):
        fields.update(client=client)
        self._log(logging.INFO, "WS", "WebSocket", "Client disconnected", **fields)

    # =========================================================================
    # UTILITY
    # =========================================================================

    @property
    def log_file(self) -> str:
        return str(self._log_file)

    def get_log_stats(self) -> dict[str, Any]:
        try:
            log_files = [f for f in self._log_dir.iterdir() if f.is_file()]
            total_size = sum(f.stat().st_size for f in log_files)
            return {
                "log_file": str(self._log_file),
                "file_count": len(log_files),
                "total_size_mb": round(total_size / (1024 * 1024), 2),
                "requests_logged": self._request_count,
            }
        except OSError:
            return {"log_file": str(self._log_file), "error": "could not stat"}


# =============================================================================
# SINGLETON
# =============================================================================

_logger_instance: BridgeLogger | None = None


def get_logger(log_dir: Path | None = None) -> BridgeLogger:
    """Get or create the global BridgeLogger singleton."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = BridgeLogger(log_dir=log_dir)
    return _logger_instance


def reset_logger() -> None:
    """Drop the singleton so the next get_logger() rebuilds it."""
    global _logger_instance
    _logger_instance = None
