"""
Fixture Type Definitions - patched fixtures and their channels

Pure data containers. Channel roles and colour tags are kept as plain
strings on FixtureChannel so profiles from any library round-trip
unchanged; ChannelType and ChannelColor list the values DMXr understands.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class ChannelType(str, Enum):
    """Semantic role of a fixture channel."""
    COLOR_INTENSITY = "ColorIntensity"
    INTENSITY = "Intensity"
    STROBE = "Strobe"
    SHUTTER_STROBE = "ShutterStrobe"
    PAN = "Pan"
    TILT = "Tilt"
    GOBO = "Gobo"
    FOCUS = "Focus"
    ZOOM = "Zoom"
    IRIS = "Iris"
    PRISM = "Prism"
    COLOR_WHEEL = "ColorWheel"
    GENERIC = "Generic"
    NO_FUNCTION = "NoFunction"


class ChannelColor(str, Enum):
    """Colour tag of a ColorIntensity channel."""
    RED = "Red"
    GREEN = "Green"
    BLUE = "Blue"
    WHITE = "White"
    AMBER = "Amber"
    CYAN = "Cyan"
    MAGENTA = "Magenta"
    YELLOW = "Yellow"
    UV = "UV"


KNOWN_CHANNEL_TYPES = frozenset(t.value for t in ChannelType)
STROBE_TYPES = frozenset({ChannelType.STROBE.value, ChannelType.SHUTTER_STROBE.value})


@dataclass(frozen=True)
class FixtureChannel:
    """
    One DMX channel of a fixture.

    Attributes:
        offset: 0-based position inside the fixture footprint
        name: Label from the fixture profile, e.g. "Pan Fine"
        type: Semantic role (see ChannelType)
        color: Colour tag for ColorIntensity channels
        default_value: Value the profile declares as idle (0-255)
    """
    offset: int
    name: str
    type: str
    color: Optional[str] = None
    default_value: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixtureChannel":
        return cls(
            offset=int(data["offset"]),
            name=data.get("name", ""),
            type=data.get("type", ChannelType.GENERIC.value),
            color=data.get("color"),
            default_value=int(data.get("defaultValue", data.get("default_value", 0))),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "offset": self.offset,
            "name": self.name,
            "type": self.type,
            "defaultValue": self.default_value,
        }
        if self.color is not None:
            result["color"] = self.color
        return result


@dataclass
class Fixture:
    """
    A fixture patched into the universe.

    Occupies dmx_start_address .. dmx_start_address + channel_count - 1.
    Overlap and range checks live in fixtures.validator.
    """
    id: str
    name: str
    dmx_start_address: int
    channel_count: int
    channels: List[FixtureChannel] = field(default_factory=list)
    mode: str = ""
    source: str = "custom"  # ofl, soundswitch, custom
    ofl_key: Optional[str] = None

    @property
    def end_address(self) -> int:
        return self.dmx_start_address + self.channel_count - 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fixture":
        channels = [FixtureChannel.from_dict(ch) for ch in data.get("channels", [])]
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            dmx_start_address=int(data["dmxStartAddress"]),
            channel_count=int(data.get("channelCount", len(channels))),
            channels=channels,
            mode=data.get("mode", ""),
            source=data.get("source", "custom"),
            ofl_key=data.get("oflKey"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        result: Dict[str, Any] = {
            "id": data["id"],
            "name": data["name"],
            "mode": data["mode"],
            "source": data["source"],
            "dmxStartAddress": data["dmx_start_address"],
            "channelCount": data["channel_count"],
            "channels": [ch.to_dict() for ch in self.channels],
        }
        if self.ofl_key is not None:
            result["oflKey"] = self.ofl_key
        return result
