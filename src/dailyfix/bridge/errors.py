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
"""Bridge error taxonomy.

Every failure of a connect attempt is one of these. Only ``ResponseTimeout``
is retryable; everything else ends the session in ERROR.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge connection failures."""

    retryable: bool = False
    kind: str = "bridge_error"

    def __init__(self, detail: str, platform: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.platform = platform

    def to_dict(self) -> dict[str, str | bool | None]:
        return {
            "error": self.kind,
            "detail": self.detail,
            "platform": self.platform,
            "retryable": self.retryable,
        }


class RoomCreationFailure(BridgeError):
    """The hub refused or failed to create the control room."""

    kind = "room_creation_failure"


class BotJoinTimeout(BridgeError):
    """The bridge bot did not join the control room in time."""

    kind = "bot_join_timeout"

    def __init__(self, detail: str, platform: str | None = None, room_id: str | None = None):
        super().__init__(detail, platform)
        self.room_id = room_id


class CommandSendFailure(BridgeError):
    """The login command could not be sent into the control room."""

    kind = "command_send_failure"


class ResponseTimeout(BridgeError):
    """No terminal reply from the bridge bot within the attempt window."""

    retryable = True
    kind = "response_timeout"


class ConnectionRejected(BridgeError):
    """The bridge bot replied with an explicit failure."""

    kind = "connection_rejected"

    def __init__(self, detail: str, platform: str | None = None, body: str = ""):
        super().__init__(detail, platform)
        self.body = body


class PersistenceFailure(BridgeError):
    """A state or account record could not be written."""

    kind = "persistence_failure"


class UnsupportedPlatformError(BridgeError, KeyError):
    """No bridge configuration exists for the requested platform."""

    kind = "unsupported_platform"

    def __str__(self) -> str:
        return self.detail


class SessionSuperseded(BridgeError):
    """A newer connect request for the same user and platform replaced this one."""

    kind = "session_superseded"


class BridgeBusyError(BridgeError):
    """The operation conflicts with a live connect session."""

    kind = "bridge_busy"


class NotConnectedError(BridgeError):
    """No active account exists for the user on this platform."""

    kind = "not_connected"


class TransportError(Exception):
    """The messaging hub returned an error or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, errcode: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.errcode = errcode


class InvalidTransitionError(ValueError):
    """Raised when an invalid state transition is attempted."""
