"""
DMXr - RGB lighting intents to DMX-512 fixtures

Sub-packages:
- dmxr.dmx: transports, resilient connection, universe state
- dmxr.fixtures: fixture model, capability analysis, colour mapping,
  address validation

Usage:
    from dmxr.config import load_config
    from dmxr.dmx import ResilientConnection, UniverseManager
    from dmxr.dmx.transport import transport_factory_from_config

    config = load_config()
    manager = None
    conn = ResilientConnection(
        transport_factory_from_config(config),
        lambda: manager.get_full_snapshot() if manager else {},
    )
    manager = UniverseManager(conn.universe)
"""

__version__ = "0.1.0"
