"""
DMX Universe Manager - Single Source of Truth for channel values

Owns the active channel map of one 512-channel universe:

- Validates and clamps incoming channel maps (bad entries are dropped one
  by one, never the whole update)
- Blackout / whiteout override: while active, fixture updates are ignored
  until resume_normal()
- Wraps every write so a transport failure is recorded in the send status
  and reported, never raised

Numeric rules: channels 1-512, values rounded half-up then clamped to 0-255.
A channel set to 0 leaves the active map; absence means 0.
"""

from typing import Any, Callable, Dict, Mapping, Optional
import logging
import math
import threading
import time

from .types import DmxSendStatus, MAX_CHANNEL, MAX_VALUE, MIN_CHANNEL, MIN_VALUE


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_value(value: float) -> int:
    """Round half-up and clamp into the DMX value range"""
    return max(MIN_VALUE, min(MAX_VALUE, round_half_up(value)))


def _parse_channel(key: Any) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        channel = key
    elif isinstance(key, float):
        if not key.is_integer():
            return None
        channel = int(key)
    elif isinstance(key, str):
        try:
            channel = int(key.strip(), 10)
        except ValueError:
            return None
    else:
        return None
    if MIN_CHANNEL <= channel <= MAX_CHANNEL:
        return channel
    return None


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def build_dmx_update(channels: Mapping[Any, Any]) -> Dict[int, int]:
    """Filter a raw channel map down to valid channel -> clamped value entries."""
    result: Dict[int, int] = {}
    for key, value in channels.items():
        channel = _parse_channel(key)
        if channel is None or not _is_finite_number(value):
            continue
        result[channel] = clamp_value(value)
    return result


class UniverseManager:
    """
    Active channel state for a single DMX universe.

    ``universe`` is anything with ``update(channels)`` and
    ``update_all(value)``, normally ResilientConnection.universe.
    State update and the matching write happen under one lock, so a snapshot
    taken from another thread sees either the old or the new state.
    """

    def __init__(
        self,
        universe,
        on_dmx_error: Optional[Callable[[BaseException], None]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time
    ):
        self.universe = universe
        self.on_dmx_error = on_dmx_error
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._clock = clock
        self.lock = threading.RLock()
        self._active: Dict[int, int] = {}
        self._override_active = False
        self._last_send_time: Optional[float] = None
        self._last_send_error: Optional[str] = None

    # ============================================================
    # Writes
    # ============================================================

    def _safe_send(self, label: str, fn: Callable[[], None]) -> bool:
        try:
            fn()
        except Exception as e:
            self._last_send_error = str(e) or e.__class__.__name__
            self._log.error(f"DMX send failed ({label}): {self._last_send_error}")
            if self.on_dmx_error is not None:
                try:
                    self.on_dmx_error(e)
                except Exception as cb_error:
                    self._log.error(f"DMX error callback failed: {cb_error}")
            return False
        self._last_send_time = self._clock()
        self._last_send_error = None
        return True

    def _record(self, update: Dict[int, int]) -> None:
        for channel, value in update.items():
            if value > 0:
                self._active[channel] = value
            else:
                self._active.pop(channel, None)

    def _apply(self, label: str, channels: Mapping[Any, Any]) -> int:
        update = build_dmx_update(channels)
        if not update:
            return 0
        self._record(update)
        self._safe_send(f"{label} {len(update)}ch", lambda: self.universe.update(update))
        return len(update)

    def apply_fixture_update(self, fixture_id: str, channels: Mapping[Any, Any]) -> int:
        """
        Apply a fixture's channel map.

        Returns:
            Number of channels applied; 0 while blackout/whiteout is active
        """
        with self.lock:
            if self._override_active:
                return 0
            count = self._apply("fixture-update", channels)
        if count:
            self._log.debug(f"DMX update from {fixture_id}: {count} channels sent")
        return count

    def apply_raw_update(self, channels: Mapping[Any, Any]) -> int:
        """Like apply_fixture_update but ignores the override (flash, overlays)."""
        with self.lock:
            return self._apply("raw-update", channels)

    def blackout(self) -> None:
        """All 512 channels to 0 and hold until resume_normal()"""
        with self.lock:
            self._override_active = True
            self._active.clear()
            self._safe_send("blackout", lambda: self.universe.update_all(MIN_VALUE))
        self._log.info("DMX blackout: all 512 channels -> 0 (override active)")

    def whiteout(self) -> None:
        """All 512 channels to 255 and hold until resume_normal()"""
        with self.lock:
            self._override_active = True
            self._active = {ch: MAX_VALUE for ch in range(MIN_CHANNEL, MAX_CHANNEL + 1)}
            self._safe_send("whiteout", lambda: self.universe.update_all(MAX_VALUE))
        self._log.info("DMX whiteout: all 512 channels -> 255 (override active)")

    def resume_normal(self) -> None:
        """Clear the override; current output is left as it is."""
        with self.lock:
            self._override_active = False
        self._log.info("DMX override cleared: resuming normal updates")

    # ============================================================
    # Reads
    # ============================================================

    def is_override_active(self) -> bool:
        with self.lock:
            return self._override_active

    def get_active_channel_count(self) -> int:
        with self.lock:
            return len(self._active)

    def get_full_snapshot(self) -> Dict[int, int]:
        """Copy of every non-zero channel"""
        with self.lock:
            return dict(self._active)

    def get_channel_snapshot(self, start: int, count: int) -> Dict[int, int]:
        """Values for ``count`` channels from ``start``, gaps filled with 0"""
        with self.lock:
            return {ch: self._active.get(ch, 0) for ch in range(start, start + count)}

    def get_dmx_send_status(self) -> DmxSendStatus:
        with self.lock:
            return DmxSendStatus(
                last_send_time=self._last_send_time,
                last_send_error=self._last_send_error,
            )
