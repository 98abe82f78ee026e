"""
DMXr DMX Output - transports, resilient connection and universe state

Key Components:
- Transport: Raw universe output (null, ENTTEC DMX USB Pro)
- ResilientConnection: Reconnect-with-backoff wrapper that replays state
- UniverseManager: Active channel map, blackout/whiteout, send health

Usage:
    from dmxr.dmx import ResilientConnection, UniverseManager, create_transport

    manager = None
    conn = ResilientConnection(
        lambda: create_transport("null"),
        lambda: manager.get_full_snapshot() if manager else {},
    )
    manager = UniverseManager(conn.universe)
    manager.apply_fixture_update("par-1", {1: 255, 2: 128})
"""

from .types import (
    ChannelMap,
    ConnectionState,
    ConnectionStatus,
    DmxSendStatus,
    create_initial_status,
)
from .transport import (
    Transport,
    NullTransport,
    EnttecUsbDmxProTransport,
    DmxTransportError,
    DmxConnectionError,
    DmxWriteError,
    create_transport,
    transport_factory_from_config,
)
from .connection import ResilientConnection, ProxyUniverse, compute_backoff_delay_ms
from .universe import UniverseManager, build_dmx_update, clamp_value

__all__ = [
    # Types
    "ChannelMap",
    "ConnectionState",
    "ConnectionStatus",
    "DmxSendStatus",
    "create_initial_status",
    # Transport
    "Transport",
    "NullTransport",
    "EnttecUsbDmxProTransport",
    "DmxTransportError",
    "DmxConnectionError",
    "DmxWriteError",
    "create_transport",
    "transport_factory_from_config",
    # Connection
    "ResilientConnection",
    "ProxyUniverse",
    "compute_backoff_delay_ms",
    # Universe
    "UniverseManager",
    "build_dmx_update",
    "clamp_value",
]
