"""Domain-level validation rules for the operating day and lottery entries."""

from __future__ import annotations

from dataclasses import dataclass

from teesheet.utils.time_utils import parse_hhmm_to_minutes


class ConfigurationInvalidError(ValueError):
    """Raised when operating hours or slot inputs cannot support a lottery run."""


class EntryValidationError(ValueError):
    """Raised when a lottery entry breaks a submission invariant."""


@dataclass(frozen=True)
class OperatingConfig:
    start_time: str
    end_time: str
    slot_interval_minutes: int
    max_occupants_per_slot: int
    window_duration_minutes: int

    @property
    def start_minutes(self) -> int | None:
        return parse_hhmm_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int | None:
        return parse_hhmm_to_minutes(self.end_time)


def validate_operating_config(config: OperatingConfig | None) -> None:
    if config is None:
        raise ConfigurationInvalidError("operating configuration is missing")
    start = config.start_minutes
    end = config.end_minutes
    if start is None or end is None:
        raise ConfigurationInvalidError("operating hours must follow HH:MM format")
    if start >= end:
        raise ConfigurationInvalidError("operating start time must be before end time")
    if config.slot_interval_minutes <= 0:
        raise ConfigurationInvalidError("slot_interval_minutes must be > 0")
    if config.max_occupants_per_slot <= 0:
        raise ConfigurationInvalidError("max_occupants_per_slot must be > 0")
    if config.window_duration_minutes <= 0:
        raise ConfigurationInvalidError("window_duration_minutes must be > 0")


def validate_entry_shape(
    *,
    is_group: bool,
    member_count: int,
    guest_count: int,
    guest_fill_count: int,
    preferred_window: int,
    alternate_window: int | None,
    window_count: int,
    max_occupants: int,
    max_group_members: int,
) -> None:
    """Check the invariants every entry must satisfy at submission time."""
    if guest_fill_count < 0:
        raise EntryValidationError("guest_fill_count must be >= 0")
    if is_group:
        if member_count < 2:
            raise EntryValidationError("group entries need the organizer and at least one member")
        if member_count > max_group_members:
            raise EntryValidationError(
                f"group entries are limited to {max_group_members} members"
            )
    elif member_count != 1:
        raise EntryValidationError("individual entries carry only the organizer")
    if not 0 <= preferred_window < window_count:
        raise EntryValidationError("preferred_window is outside the configured windows")
    if alternate_window is not None:
        if not 0 <= alternate_window < window_count:
            raise EntryValidationError("alternate_window is outside the configured windows")
        if alternate_window == preferred_window:
            raise EntryValidationError("alternate_window must differ from preferred_window")
    party_size = member_count + guest_count + guest_fill_count
    if party_size > max_occupants:
        raise EntryValidationError(
            f"party size {party_size} exceeds the slot limit of {max_occupants}"
        )
