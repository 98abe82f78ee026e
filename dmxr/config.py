"""
DMXr configuration - environment variables and logging setup

Environment:
    DMX_DRIVER       null | enttec-usb-dmx-pro   (default: null)
    DMX_DEVICE_PATH  serial device for USB widgets (default: /dev/ttyUSB0)
    DMX_REFRESH_HZ   widget refresh rate, 1-44   (default: 40)
    LOG_LEVEL        debug | info | warning | error | silent (default: info)
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

VALID_DRIVERS = ("null", "enttec-usb-dmx-pro")
VALID_LOG_LEVELS = ("debug", "info", "warning", "warn", "error", "silent")

DEFAULT_DEVICE_PATH = "/dev/ttyUSB0"
DEFAULT_REFRESH_HZ = 40
MAX_REFRESH_HZ = 44  # DMX-512 tops out near 44 full frames per second

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class DmxrConfig:
    """Runtime settings for the DMX output side"""
    dmx_driver: str = "null"
    dmx_device_path: str = DEFAULT_DEVICE_PATH
    refresh_hz: int = DEFAULT_REFRESH_HZ
    log_level: str = "info"


def load_config(environ: Optional[Mapping[str, str]] = None) -> DmxrConfig:
    """Build a DmxrConfig from environment variables.

    Raises:
        ValueError: If any variable holds an unsupported value
    """
    env = os.environ if environ is None else environ

    dmx_driver = env.get("DMX_DRIVER", "null")
    if dmx_driver not in VALID_DRIVERS:
        raise ValueError(
            f'Invalid DMX_DRIVER: "{dmx_driver}". Must be one of: {", ".join(VALID_DRIVERS)}'
        )

    raw_refresh = env.get("DMX_REFRESH_HZ", str(DEFAULT_REFRESH_HZ))
    try:
        refresh_hz = int(raw_refresh)
    except ValueError:
        refresh_hz = 0
    if refresh_hz < 1 or refresh_hz > MAX_REFRESH_HZ:
        raise ValueError(
            f'Invalid DMX_REFRESH_HZ: "{raw_refresh}". Must be a number between 1 and {MAX_REFRESH_HZ}.'
        )

    log_level = env.get("LOG_LEVEL", "info").lower()
    if log_level not in VALID_LOG_LEVELS:
        raise ValueError(
            f'Invalid LOG_LEVEL: "{log_level}". Must be one of: {", ".join(VALID_LOG_LEVELS)}'
        )

    return DmxrConfig(
        dmx_driver=dmx_driver,
        dmx_device_path=env.get("DMX_DEVICE_PATH", DEFAULT_DEVICE_PATH),
        refresh_hz=refresh_hz,
        log_level=log_level,
    )


def configure_logging(level: str = "info") -> None:
    """Configure root logging. "silent" disables all DMXr log output."""
    name = level.lower()
    if name == "silent":
        logging.disable(logging.CRITICAL)
        return
    if name == "warn":
        name = "warning"
    logging.basicConfig(level=getattr(logging, name.upper(), logging.INFO), format=LOG_FORMAT)
