"""
DMXr Fixtures - fixture model, capability analysis and colour mapping

Key Components:
- Fixture / FixtureChannel: patched fixture records
- analyze_fixture: channel list -> capability profile
- map_color: (fixture, r, g, b, brightness) -> DMX address/value map
- validate_fixture_address: range and overlap check for patching
"""

from .types import (
    ChannelColor,
    ChannelType,
    Fixture,
    FixtureChannel,
    KNOWN_CHANNEL_TYPES,
)
from .capabilities import (
    ColorCapabilities,
    FixtureCapabilities,
    StrobeMode,
    analyze_fixture,
    default_value_for_channel,
)
from .mapper import map_color
from .validator import (
    ValidationResult,
    validate_fixture_address,
    validate_fixture_channels,
)

__all__ = [
    # Types
    "ChannelColor",
    "ChannelType",
    "Fixture",
    "FixtureChannel",
    "KNOWN_CHANNEL_TYPES",
    # Capabilities
    "ColorCapabilities",
    "FixtureCapabilities",
    "StrobeMode",
    "analyze_fixture",
    "default_value_for_channel",
    # Mapping
    "map_color",
    # Validation
    "ValidationResult",
    "validate_fixture_address",
    "validate_fixture_channels",
]
