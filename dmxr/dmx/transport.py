"""
DMX Transport Layer - raw universe output drivers

A transport owns one physical (or simulated) DMX universe. The resilient
connection wraps whichever transport the factory produces and swaps it out
after a USB disconnect.

Classes:
    Transport: Abstract base class for universe output
    NullTransport: In-memory transport, never disconnects
    EnttecUsbDmxProTransport: ENTTEC DMX USB Pro widget over pyserial

Disconnect detection:
    Transports that can lose their device expose
    ``subscribe_disconnect(callback)``. Transports without it are assumed
    healthy for their whole life.

Example:
    transport = create_transport("enttec-usb-dmx-pro", device_path="/dev/ttyUSB0")
    transport.subscribe_disconnect(lambda err: print(f"lost: {err}"))
    transport.send({1: 255, 2: 128})
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import functools
import logging
import threading

import serial

from .types import MAX_CHANNEL, MAX_VALUE, MIN_CHANNEL, MIN_VALUE

logger = logging.getLogger(__name__)

DisconnectCallback = Callable[[Optional[Exception]], None]


class DmxTransportError(Exception):
    """Base exception for DMX transport errors."""
    pass


class DmxConnectionError(DmxTransportError):
    """Could not open the DMX device."""
    pass


class DmxWriteError(DmxTransportError):
    """Writing to the DMX device failed."""
    pass


class Transport(ABC):
    """
    Abstract base class for DMX universe output.

    Channel numbers are 1-based, values 0-255. Inputs arrive already
    validated by the universe manager.
    """

    driver = "abstract"

    @abstractmethod
    def send(self, channels: Dict[int, int]) -> None:
        """Update the given channels, leaving the rest untouched."""
        pass

    @abstractmethod
    def send_all(self, value: int) -> None:
        """Set every channel of the universe to ``value``."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the device. Must be safe to call more than once."""
        pass


class _UniverseBuffer:
    """512-slot frame shared by the concrete transports"""

    def __init__(self):
        self.lock = threading.Lock()
        self.slots = bytearray(MAX_CHANNEL)

    def apply(self, channels: Dict[int, int]) -> None:
        with self.lock:
            for channel, value in channels.items():
                if MIN_CHANNEL <= channel <= MAX_CHANNEL:
                    self.slots[channel - 1] = max(MIN_VALUE, min(MAX_VALUE, int(value)))

    def fill(self, value: int) -> None:
        value = max(MIN_VALUE, min(MAX_VALUE, int(value)))
        with self.lock:
            self.slots[:] = bytes([value]) * MAX_CHANNEL

    def copy(self) -> bytes:
        with self.lock:
            return bytes(self.slots)


class NullTransport(Transport):
    """Keeps the universe in memory. Useful without hardware attached."""

    driver = "null"

    def __init__(self):
        self._buffer = _UniverseBuffer()
        self.closed = False

    def send(self, channels: Dict[int, int]) -> None:
        self._buffer.apply(channels)

    def send_all(self, value: int) -> None:
        self._buffer.fill(value)

    def get_frame(self) -> bytes:
        """Current 512-byte frame."""
        return self._buffer.copy()

    def close(self) -> None:
        self.closed = True


class EnttecUsbDmxProTransport(Transport):
    """
    ENTTEC DMX USB Pro output.

    The widget generates the DMX-512 line signal itself; the host only
    ships each frame in a USB API message:

        0x7E | label | len LSB | len MSB | start code + 512 slots | 0xE7

    A daemon thread re-sends the buffer at ``refresh_hz`` so the widget keeps
    a fresh frame even when nobody is writing. A serial error during refresh
    means the device went away: the thread stops and every disconnect
    subscriber is told once.

    Attributes:
        device_path: Serial device, e.g. /dev/ttyUSB0 or COM3
        refresh_hz: Frames per second; None writes a frame on every send instead
    """

    driver = "enttec-usb-dmx-pro"

    START_OF_MESSAGE = 0x7E
    END_OF_MESSAGE = 0xE7
    LABEL_OUTPUT_ONLY_SEND_DMX = 6
    DMX_START_CODE = 0x00
    BAUD_RATE = 57600
    DEFAULT_REFRESH_HZ = 40

    def __init__(
        self,
        device_path: str,
        refresh_hz: Optional[float] = DEFAULT_REFRESH_HZ,
        serial_factory: Callable[..., Any] = serial.Serial
    ):
        """
        Open the widget.

        Args:
            device_path: Serial device path
            refresh_hz: Background refresh rate; None writes a frame on every send
            serial_factory: Builds the serial port (swapped in tests)

        Raises:
            ValueError: If refresh_hz is not positive
            DmxConnectionError: If the port cannot be opened
        """
        if refresh_hz is not None and refresh_hz <= 0:
            raise ValueError(f"refresh_hz must be positive or None, got {refresh_hz}")

        self.device_path = device_path
        self.refresh_hz = refresh_hz
        self._buffer = _UniverseBuffer()
        self._write_lock = threading.Lock()
        self._subscribers: List[DisconnectCallback] = []
        self._stop_event = threading.Event()
        self._dead = False
        self._closed = False
        self._thread: Optional[threading.Thread] = None

        try:
            self._port = serial_factory(device_path, baudrate=self.BAUD_RATE, timeout=0.1)
        except (serial.SerialException, OSError) as e:
            raise DmxConnectionError(f"Opening {device_path}: {e}") from e

        logger.info(f"ENTTEC DMX USB Pro opened on {device_path}")

        if refresh_hz is not None:
            self._thread = threading.Thread(
                target=self._refresh_loop, name="dmxr-enttec-refresh", daemon=True
            )
            self._thread.start()

    @classmethod
    def build_frame(cls, slots: bytes) -> bytes:
        """Wrap 512 DMX slots in a widget "Output Only Send DMX" message."""
        payload = bytes([cls.DMX_START_CODE]) + bytes(slots)
        length = len(payload)
        return (
            bytes([cls.START_OF_MESSAGE, cls.LABEL_OUTPUT_ONLY_SEND_DMX,
                   length & 0xFF, (length >> 8) & 0xFF])
            + payload
            + bytes([cls.END_OF_MESSAGE])
        )

    def subscribe_disconnect(self, callback: DisconnectCallback) -> None:
        self._subscribers.append(callback)

    def send(self, channels: Dict[int, int]) -> None:
        self._ensure_alive()
        self._buffer.apply(channels)
        self._write_through()

    def send_all(self, value: int) -> None:
        self._ensure_alive()
        self._buffer.fill(value)
        self._write_through()

    def _write_through(self) -> None:
        """Without a refresh thread every write goes straight to the widget."""
        if self._thread is None and not self.refresh_once():
            raise DmxWriteError(f"{self.device_path} is disconnected")

    def _ensure_alive(self) -> None:
        if self._dead:
            raise DmxWriteError(f"{self.device_path} is disconnected")
        if self._closed:
            raise DmxWriteError(f"{self.device_path} is closed")

    def _write_frame(self) -> None:
        frame = self.build_frame(self._buffer.copy())
        with self._write_lock:
            self._port.write(frame)

    def refresh_once(self) -> bool:
        """Push the current buffer to the widget. Returns False once the device is gone."""
        if self._dead or self._closed:
            return False
        try:
            self._write_frame()
            return True
        except (serial.SerialException, OSError) as e:
            self._mark_disconnected(e)
            return False

    def _refresh_loop(self):
        interval = 1.0 / self.refresh_hz
        while not self._stop_event.is_set():
            if not self.refresh_once():
                break
            self._stop_event.wait(interval)

    def _mark_disconnected(self, error: Exception) -> None:
        if self._dead or self._closed:
            return
        self._dead = True
        self._stop_event.set()
        logger.error(f"ENTTEC device lost on {self.device_path}: {error}")
        for callback in list(self._subscribers):
            try:
                callback(error)
            except Exception as cb_error:
                logger.error(f"Disconnect subscriber failed: {cb_error}")

    def close(self) -> None:
        """Stop refreshing, flush the final frame and close the port."""
        if self._closed:
            return
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)

        try:
            if not self._dead:
                # Final frame so a blackout issued just before shutdown reaches the fixtures
                self._write_frame()
                self._port.flush()
        except (serial.SerialException, OSError) as e:
            logger.warning(f"Final DMX frame not flushed on {self.device_path}: {e}")
        finally:
            self._closed = True
            try:
                self._port.close()
            except (serial.SerialException, OSError) as e:
                logger.warning(f"Closing {self.device_path} failed: {e}")


# ============================================================
# Factory Functions
# ============================================================

def create_transport(
    driver: str = "null",
    device_path: Optional[str] = None,
    **kwargs: Any
) -> Transport:
    """
    Create a DMX transport instance.

    Args:
        driver: "null" or "enttec-usb-dmx-pro"
        device_path: Serial device for USB widgets
        **kwargs: Transport-specific options

    Returns:
        Transport instance

    Raises:
        ValueError: If the driver is unknown
        DmxConnectionError: If the device cannot be opened
    """
    if driver == "null":
        return NullTransport()

    if driver == "enttec-usb-dmx-pro":
        if not device_path:
            raise ValueError("enttec-usb-dmx-pro requires a device_path")
        return EnttecUsbDmxProTransport(device_path, **kwargs)

    raise ValueError(f'Unknown DMX driver: "{driver}"')


def transport_factory_from_config(config) -> Callable[[], Transport]:
    """Zero-argument factory the resilient connection calls on every (re)connect."""
    if config.dmx_driver == "enttec-usb-dmx-pro":
        return functools.partial(
            create_transport,
            config.dmx_driver,
            device_path=config.dmx_device_path,
            refresh_hz=config.refresh_hz,
        )
    return functools.partial(create_transport, config.dmx_driver)
