"""
Fixture Capability Analysis

Derives what a fixture can do from its channel list: dimmer presence,
colour emitters, strobe semantics and pan/tilt. Pure functions only; the
profile is recomputed on every call and never cached.

Strobe semantics:
    effect  - strobe sits on top of a real dimmer, so it idles OFF (0)
    shutter - strobe is the only light gate, so it idles fully OPEN (255)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence
import re

from .types import ChannelColor, ChannelType, FixtureChannel, STROBE_TYPES

PAN_TILT_CENTER = 128
SHUTTER_OPEN = 255

_FINE_PATTERN = re.compile(r"fine", re.IGNORECASE)


class StrobeMode(str, Enum):
    NONE = "none"
    EFFECT = "effect"
    SHUTTER = "shutter"


@dataclass(frozen=True)
class ColorCapabilities:
    has_red: bool = False
    has_green: bool = False
    has_blue: bool = False
    has_white: bool = False
    has_amber: bool = False
    has_cyan: bool = False
    has_magenta: bool = False
    has_yellow: bool = False
    has_uv: bool = False


@dataclass(frozen=True)
class FixtureCapabilities:
    """Capability profile of one fixture"""
    has_dimmer: bool
    colors: ColorCapabilities
    strobe_mode: StrobeMode
    has_pan: bool
    has_tilt: bool
    channels_by_type: Dict[str, List[FixtureChannel]] = field(default_factory=dict)


_COLOR_FLAGS = {
    ChannelColor.RED.value: "has_red",
    ChannelColor.GREEN.value: "has_green",
    ChannelColor.BLUE.value: "has_blue",
    ChannelColor.WHITE.value: "has_white",
    ChannelColor.AMBER.value: "has_amber",
    ChannelColor.CYAN.value: "has_cyan",
    ChannelColor.MAGENTA.value: "has_magenta",
    ChannelColor.YELLOW.value: "has_yellow",
    ChannelColor.UV.value: "has_uv",
}


def analyze_fixture(channels: Sequence[FixtureChannel]) -> FixtureCapabilities:
    """Analyze a fixture's channel list. Same channels, same result."""
    has_dimmer = False
    has_strobe = False
    has_pan = False
    has_tilt = False
    color_flags: Dict[str, bool] = {}
    by_type: Dict[str, List[FixtureChannel]] = {}

    for ch in channels:
        by_type.setdefault(ch.type, []).append(ch)

        if ch.type == ChannelType.INTENSITY.value:
            has_dimmer = True
        elif ch.type in STROBE_TYPES:
            has_strobe = True
        elif ch.type == ChannelType.PAN.value:
            has_pan = True
        elif ch.type == ChannelType.TILT.value:
            has_tilt = True
        elif ch.type == ChannelType.COLOR_INTENSITY.value:
            flag = _COLOR_FLAGS.get(ch.color or "")
            if flag:
                color_flags[flag] = True

    if not has_strobe:
        strobe_mode = StrobeMode.NONE
    elif has_dimmer:
        strobe_mode = StrobeMode.EFFECT
    else:
        strobe_mode = StrobeMode.SHUTTER

    return FixtureCapabilities(
        has_dimmer=has_dimmer,
        colors=ColorCapabilities(**color_flags),
        strobe_mode=strobe_mode,
        has_pan=has_pan,
        has_tilt=has_tilt,
        channels_by_type=by_type,
    )


def is_fine_channel(name: Optional[str]) -> bool:
    return bool(name) and _FINE_PATTERN.search(name) is not None


def default_value_for_channel(channel_type: str, strobe_mode: StrobeMode,
                              name: Optional[str] = None) -> int:
    """
    Idle value for a channel role.

    - Strobe/ShutterStrobe: 255 in shutter mode, otherwise 0
    - Pan/Tilt: 128 (mechanical centre); 0 for "fine" sub-channels so the
      16-bit composite stays at coarse * 256
    - Everything else: 0
    """
    if channel_type in STROBE_TYPES:
        return SHUTTER_OPEN if strobe_mode == StrobeMode.SHUTTER else 0
    if channel_type in (ChannelType.PAN.value, ChannelType.TILT.value):
        return 0 if is_fine_channel(name) else PAN_TILT_CENTER
    return 0
