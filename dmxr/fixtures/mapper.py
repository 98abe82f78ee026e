"""
RGB -> DMX channel mapping

map_color() turns an (r, g, b, brightness) intent into absolute DMX
address -> value pairs for one fixture, adapting to how the fixture is
wired:

- No dimmer: brightness is folded into the colour channels
- Dimmer: colours stay unscaled, the dimmer carries brightness
- White emitter: the grey component min(r, g, b) moves to White
- Amber: 0.8 * R + 0.2 * G
- Cyan/Magenta/Yellow: subtractive complements of R/G/B
- UV: always 0
- Strobe: off in effect mode, open (or profile default) otherwise
- Pan/Tilt: profile default, or mechanical centre
"""

from typing import Dict

from .capabilities import PAN_TILT_CENTER, StrobeMode, analyze_fixture, default_value_for_channel
from .types import ChannelColor, ChannelType, Fixture, STROBE_TYPES
from ..dmx.universe import clamp_value, round_half_up


def map_color(fixture: Fixture, r: float, g: float, b: float, brightness: float) -> Dict[int, int]:
    """
    Map an RGB colour and brightness onto a fixture's channels.

    Args:
        fixture: Patched fixture
        r, g, b: Colour components, 0-255
        brightness: 0.0-1.0

    Returns:
        Absolute DMX address -> value (0-255) for every channel of the fixture
    """
    caps = analyze_fixture(fixture.channels)
    brightness = max(0.0, min(1.0, brightness))

    red, green, blue = r, g, b
    if brightness <= 0:
        # Dark means dark, dimmer or not
        red = green = blue = 0
    elif not caps.has_dimmer:
        red = round_half_up(r * brightness)
        green = round_half_up(g * brightness)
        blue = round_half_up(b * brightness)

    white = 0
    if caps.colors.has_white:
        white = min(red, green, blue)
        red -= white
        green -= white
        blue -= white

    color_values = {
        ChannelColor.RED.value: red,
        ChannelColor.GREEN.value: green,
        ChannelColor.BLUE.value: blue,
        ChannelColor.WHITE.value: white,
        ChannelColor.AMBER.value: round_half_up(red * 0.8 + green * 0.2),
        ChannelColor.CYAN.value: 255 - red,
        ChannelColor.MAGENTA.value: 255 - green,
        ChannelColor.YELLOW.value: 255 - blue,
        ChannelColor.UV.value: 0,
    }
    dimmer = round_half_up(brightness * 255)

    result: Dict[int, int] = {}
    for channel in sorted(fixture.channels, key=lambda ch: ch.offset):
        address = fixture.dmx_start_address + channel.offset

        if channel.type == ChannelType.COLOR_INTENSITY.value:
            value = color_values.get(channel.color or "", channel.default_value)
        elif channel.type == ChannelType.INTENSITY.value:
            value = dimmer
        elif channel.type in STROBE_TYPES:
            if caps.strobe_mode == StrobeMode.EFFECT:
                value = 0
            else:
                value = channel.default_value or default_value_for_channel(
                    channel.type, caps.strobe_mode, channel.name)
        elif channel.type in (ChannelType.PAN.value, ChannelType.TILT.value):
            value = channel.default_value or PAN_TILT_CENTER
        else:
            value = channel.default_value

        result[address] = clamp_value(value)

    return result
