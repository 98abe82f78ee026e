"""
DMXr Lighting Controller - high-level facade over the universe

Coordinates fixtures, colour mapping and the universe manager for the
control surface (HTTP layer, plugins):

    controller = LightingController(manager, store.get_all)
    controller.apply_colors([{"id": "par-1", "r": 255, "g": 0, "b": 0, "brightness": 1.0}])
    controller.whiteout()
    controller.flash_fixture("par-1", duration_ms=500)
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import threading

from .dmx.universe import UniverseManager
from .fixtures.capabilities import StrobeMode, analyze_fixture
from .fixtures.mapper import map_color
from .fixtures.types import ChannelType, Fixture, STROBE_TYPES
from .scheduler import ThreadingScheduler

MIN_FLASH_MS = 100
MAX_FLASH_MS = 5000
DEFAULT_FLASH_MS = 500


class FixtureNotFoundError(LookupError):
    """No fixture with the requested id."""
    pass


class OverrideActiveError(RuntimeError):
    """Blackout or whiteout is holding the universe."""
    pass


def build_flash_values(fixture: Fixture, snapshot: Mapping[int, int]) -> Dict[int, int]:
    """Full-output values for identifying a fixture.

    Colour and dimmer channels go to 255; the strobe is forced open unless it
    is an effect strobe; everything else keeps its current value.
    """
    caps = analyze_fixture(fixture.channels)
    result: Dict[int, int] = {}

    for channel in fixture.channels:
        address = fixture.dmx_start_address + channel.offset
        if channel.type in (ChannelType.COLOR_INTENSITY.value, ChannelType.INTENSITY.value):
            result[address] = 255
        elif channel.type in STROBE_TYPES:
            result[address] = 0 if caps.strobe_mode == StrobeMode.EFFECT else 255
        else:
            result[address] = snapshot.get(address, channel.default_value)

    return result


class LightingController:
    """
    High-level lighting operations.

    Attributes:
        manager: UniverseManager that owns channel state
        fixtures_provider: Returns the currently patched fixtures
    """

    def __init__(
        self,
        manager: UniverseManager,
        fixtures_provider: Callable[[], Sequence[Fixture]],
        scheduler=None,
        logger: Optional[logging.Logger] = None
    ):
        self.manager = manager
        self.fixtures_provider = fixtures_provider
        self._scheduler = scheduler or ThreadingScheduler()
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._flash_timers: Dict[str, Any] = {}
        self.lock = threading.Lock()

    def _fixtures_by_id(self) -> Dict[str, Fixture]:
        return {f.id: f for f in self.fixtures_provider()}

    def apply_raw(self, fixture_name: str, channels: Mapping[Any, Any]) -> int:
        """Raw channel update from a controller. Returns channels applied."""
        count = self.manager.apply_fixture_update(fixture_name, channels)
        self._log.info(f'raw update: "{fixture_name}" {count} channels')
        return count

    def apply_colors(self, entries: Iterable[Mapping[str, Any]]) -> Tuple[int, int]:
        """
        Map colour intents onto fixtures and send them as one update.

        Each entry carries id, r, g, b and brightness. Unknown ids are skipped.

        Returns:
            (fixtures matched, channels updated)
        """
        fixtures = self._fixtures_by_id()
        merged: Dict[int, int] = {}
        matched = 0

        for entry in entries:
            fixture = fixtures.get(str(entry.get("id")))
            if fixture is None:
                continue
            matched += 1
            merged.update(map_color(
                fixture,
                entry.get("r", 0),
                entry.get("g", 0),
                entry.get("b", 0),
                entry.get("brightness", 1.0),
            ))

        updated = 0
        if merged:
            updated = self.manager.apply_fixture_update("color-batch", merged)

        self._log.info(f"color update: {matched} fixtures, {updated} channels")
        return matched, updated

    def blackout(self) -> None:
        self.manager.blackout()

    def whiteout(self) -> int:
        """
        Whiteout, then overlay each fixture's full-white mapping so pan stays
        centred, strobes open and dimmers full. Returns channels overlaid.
        """
        self.manager.whiteout()

        overlay: Dict[int, int] = {}
        fixtures = list(self.fixtures_provider())
        for fixture in fixtures:
            overlay.update(map_color(fixture, 255, 255, 255, 1.0))

        if overlay:
            self.manager.apply_raw_update(overlay)

        self._log.info(f"whiteout: {len(fixtures)} fixtures, {len(overlay)} channels set via map_color")
        return len(overlay)

    def resume(self) -> None:
        self.manager.resume_normal()

    def flash_fixture(self, fixture_id: str, duration_ms: int = DEFAULT_FLASH_MS) -> Dict[int, int]:
        """
        Light a fixture at full output for ``duration_ms`` then restore it.

        Raises:
            ValueError: If duration_ms is outside 100-5000
            OverrideActiveError: During blackout/whiteout
            FixtureNotFoundError: If the fixture id is unknown
        """
        if not MIN_FLASH_MS <= duration_ms <= MAX_FLASH_MS:
            raise ValueError(f"durationMs must be {MIN_FLASH_MS}-{MAX_FLASH_MS}, got {duration_ms}")
        if self.manager.is_override_active():
            raise OverrideActiveError("Cannot flash during blackout/whiteout override")

        fixture = self._fixtures_by_id().get(fixture_id)
        if fixture is None:
            self._log.warning(f"flash: fixture not found: {fixture_id}")
            raise FixtureNotFoundError(f"Fixture not found: {fixture_id}")

        with self.lock:
            pending = self._flash_timers.pop(fixture.id, None)
            if pending is not None:
                # Re-flash: keep restoring to the pre-flash state
                pending[0].cancel()
                snapshot = pending[1]
            else:
                snapshot = self.manager.get_channel_snapshot(fixture.dmx_start_address, fixture.channel_count)
            flash_values = build_flash_values(fixture, snapshot)
            self.manager.apply_raw_update(flash_values)

            def _restore():
                self.manager.apply_raw_update(snapshot)
                with self.lock:
                    entry = self._flash_timers.get(fixture.id)
                    if entry is not None and entry[0] is call:
                        del self._flash_timers[fixture.id]
                self._log.info(f'flash-restore: "{fixture.name}" restored to snapshot')

            call = self._scheduler.call_later(duration_ms / 1000.0, _restore)
            self._flash_timers[fixture.id] = (call, snapshot)

        self._log.info(
            f'flash: "{fixture.name}" DMX {fixture.dmx_start_address}-{fixture.end_address} for {duration_ms}ms'
        )
        return flash_values

    def pending_flashes(self) -> List[str]:
        with self.lock:
            return list(self._flash_timers)

    def close(self) -> None:
        """Cancel pending flash restores."""
        with self.lock:
            for call, _ in self._flash_timers.values():
                call.cancel()
            self._flash_timers.clear()
