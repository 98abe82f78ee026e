"""
DMX Type Definitions - connection and send-health records

These are pure data containers with no business logic. Status records are
frozen; owners hand out copies, never the object they mutate.

Classes:
    ConnectionState: connected / disconnected / reconnecting
    ConnectionStatus: snapshot of a ResilientConnection
    DmxSendStatus: outcome of the most recent universe write
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

# Channel (1-512) -> value (0-255)
ChannelMap = Dict[int, int]

MIN_CHANNEL = 1
MAX_CHANNEL = 512
MIN_VALUE = 0
MAX_VALUE = 255


class ConnectionState(str, Enum):
    """Connection states of the DMX output link."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class ConnectionStatus:
    """
    Point-in-time view of a resilient connection.

    Attributes:
        state: Current connection state
        last_connected_at: Epoch seconds of the last successful connect
        last_disconnected_at: Epoch seconds of the last detected disconnect
        reconnect_attempts: Attempts since the last successful connect
        last_error: Message of the most recent connect failure
    """
    state: ConnectionState
    last_connected_at: Optional[float] = None
    last_disconnected_at: Optional[float] = None
    reconnect_attempts: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "lastConnectedAt": self.last_connected_at,
            "lastDisconnectedAt": self.last_disconnected_at,
            "reconnectAttempts": self.reconnect_attempts,
            "lastError": self.last_error,
        }


def create_initial_status(state: ConnectionState, now: float) -> ConnectionStatus:
    """Fresh status for a connection that starts in ``state``."""
    return ConnectionStatus(
        state=state,
        last_connected_at=now if state == ConnectionState.CONNECTED else None,
    )


@dataclass(frozen=True)
class DmxSendStatus:
    """Health of universe writes, polled by the health endpoint."""
    last_send_time: Optional[float] = None
    last_send_error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "lastSendTime": self.last_send_time,
            "lastSendError": self.last_send_error,
        }
