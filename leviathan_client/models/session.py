"""Live session state model."""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of the duplex control channel."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# Enforced by LiveSessionBridge.  CLOSED is terminal.
VALID_SESSION_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.OPEN, SessionState.CLOSED},
    SessionState.OPEN: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}
