"""
Fixture validation - address allocation and channel definitions

Both checks report problems through ValidationResult instead of raising.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .types import Fixture, FixtureChannel, KNOWN_CHANNEL_TYPES

MIN_ADDRESS = 1
MAX_ADDRESS = 512


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.valid


def _is_int(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, int)


def ranges_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Inclusive DMX ranges [start1, end1] and [start2, end2] share a channel"""
    return start1 <= end2 and end1 >= start2


def validate_fixture_address(
    start_address: int,
    channel_count: int,
    existing_fixtures: Sequence[Fixture],
    exclude_id: Optional[str] = None
) -> ValidationResult:
    """
    Check that a fixture fits the universe and does not overlap others.

    Args:
        start_address: First DMX channel (1-based)
        channel_count: Fixture footprint
        existing_fixtures: Fixtures already patched
        exclude_id: Fixture being moved, ignored in the overlap check
    """
    if not _is_int(start_address) or start_address < MIN_ADDRESS:
        return ValidationResult(False, f"Start address must be >= {MIN_ADDRESS}")
    start_address = int(start_address)

    if not _is_int(channel_count) or channel_count < 1:
        return ValidationResult(False, "Channel count must be >= 1")
    channel_count = int(channel_count)

    end_address = start_address + channel_count - 1
    if end_address > MAX_ADDRESS:
        return ValidationResult(
            False,
            f"Fixture extends beyond channel {MAX_ADDRESS} (needs {start_address}-{end_address})",
        )

    for existing in existing_fixtures:
        if exclude_id is not None and existing.id == exclude_id:
            continue

        existing_end = existing.dmx_start_address + existing.channel_count - 1
        if ranges_overlap(start_address, end_address, existing.dmx_start_address, existing_end):
            return ValidationResult(
                False,
                f'Overlaps with "{existing.name}" (DMX {existing.dmx_start_address}-{existing_end})',
            )

    return ValidationResult(True)


def validate_fixture_channels(channels: Sequence[FixtureChannel], expected_count: int) -> ValidationResult:
    """Channel list must match the declared footprint and carry sane defaults.

    Unknown channel roles are allowed but reported as warnings.
    """
    if len(channels) != expected_count:
        return ValidationResult(
            False,
            f"channelCount ({expected_count}) does not match channels array length ({len(channels)})",
        )

    for ch in channels:
        if ch.default_value < 0 or ch.default_value > 255:
            return ValidationResult(
                False,
                f'Channel "{ch.name}" has defaultValue {ch.default_value} outside 0-255',
            )

    warnings = [
        f'Unknown channel type "{ch.type}" on channel "{ch.name}"'
        for ch in channels
        if ch.type not in KNOWN_CHANNEL_TYPES
    ]
    return ValidationResult(True, warnings=warnings)
