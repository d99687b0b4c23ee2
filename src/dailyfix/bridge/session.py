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
"""Bridge Session State -- the connect state machine for one (user, platform).

Lifecycle: initializing → waiting_for_qr → connected | error.
A timed-out attempt passes through disconnected before the next
initializing; connected and error are terminal.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dailyfix.bridge.errors import InvalidTransitionError

logger = logging.getLogger("dailyfix.bridge.session")


class BridgeState(str, Enum):
    """Connect session states."""

    INITIALIZING = "initializing"
    WAITING_FOR_QR = "waiting_for_qr"
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


TERMINAL_STATES = frozenset({BridgeState.CONNECTED, BridgeState.ERROR})

# Valid state transitions
VALID_TRANSITIONS: dict[BridgeState, set[BridgeState]] = {
    BridgeState.INITIALIZING: {
        BridgeState.WAITING_FOR_QR,
        BridgeState.CONNECTED,
        BridgeState.ERROR,
        BridgeState.DISCONNECTED,
    },
    BridgeState.WAITING_FOR_QR: {
        BridgeState.CONNECTED,
        BridgeState.ERROR,
        BridgeState.DISCONNECTED,
    },
    BridgeState.DISCONNECTED: {BridgeState.INITIALIZING, BridgeState.ERROR},
    BridgeState.CONNECTED: set(),
    BridgeState.ERROR: set(),
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class BridgeSession:
    """In-memory state of one connect request.

    ``state`` starts as None so that the first recorded transition is the
    move into INITIALIZING.
    """

    user_id: str
    platform: str
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    room_id: str | None = None
    state: BridgeState | None = None
    retry_count: int = 0
    attempt: int = 0
    last_error: str | None = None
    room_ids: list[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: str = field(default_factory=utc_now_iso)
    superseded: bool = False
    committing: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.platform)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_live(self) -> bool:
        return not self.is_terminal and not self.superseded

    def can_transition(self, new_state: BridgeState) -> bool:
        if self.state is None:
            return new_state == BridgeState.INITIALIZING
        return new_state in VALID_TRANSITIONS.get(self.state, set())

    def transition(self, new_state: BridgeState, error: str | None = None) -> None:
        """Move to a new state. Raises InvalidTransitionError on an illegal move."""
        if not self.can_transition(new_state):
            current = self.state.value if self.state else "none"
            valid = (
                VALID_TRANSITIONS.get(self.state, set())
                if self.state
                else {BridgeState.INITIALIZING}
            )
            raise InvalidTransitionError(
                f"Cannot transition from {current} to {new_state.value}. "
                f"Valid: {', '.join(sorted(s.value for s in valid)) or 'none'}"
            )
        old = self.state
        self.state = new_state
        self.last_error = error
        self.updated_at = utc_now_iso()
        if new_state == BridgeState.INITIALIZING:
            self.attempt += 1

        logger.info(
            "Bridge session %s (%s/%s): %s → %s",
            self.session_id,
            self.user_id,
            self.platform,
            old.value if old else "none",
            new_state.value,
        )

    def attach_room(self, room_id: str) -> None:
        self.room_id = room_id
        self.room_ids.append(room_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "platform": self.platform,
            "room_id": self.room_id,
            "state": self.state.value if self.state else None,
            "retry_count": self.retry_count,
            "attempt": self.attempt,
            "last_error": self.last_error,
            "room_ids": list(self.room_ids),
            "updated_at": self.updated_at,
        }
