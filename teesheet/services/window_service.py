"""Preference-window and slot-time computation from the operating day."""

from __future__ import annotations

import math
from typing import Optional, Sequence

from teesheet.domain.constraints import OperatingConfig
from teesheet.domain.models import PreferenceWindow
from teesheet.utils.time_utils import format_minutes_hhmm, format_time_range


FOUR_WINDOW_LABELS = ("Morning", "Midday", "Afternoon", "Evening")


def _window_label(index: int, count: int) -> str:
    if count == len(FOUR_WINDOW_LABELS):
        return FOUR_WINDOW_LABELS[index]
    return f"Window {index + 1}"


def compute_windows(config: Optional[OperatingConfig]) -> list[PreferenceWindow]:
    """Split the operating interval into contiguous preference windows.

    Returns an empty list when the configuration is missing or cannot produce
    a window. Window ``i`` always covers the same minutes for the same
    configuration because stored entries refer to windows by index.
    """
    if config is None:
        return []
    start = config.start_minutes
    end = config.end_minutes
    if start is None or end is None or start >= end:
        return []
    if config.window_duration_minutes <= 0:
        return []

    span = end - start
    count = math.ceil(span / config.window_duration_minutes)
    width = span // count

    windows: list[PreferenceWindow] = []
    for index in range(count):
        window_start = start + index * width
        window_end = end if index == count - 1 else window_start + width
        windows.append(
            PreferenceWindow(
                index=index,
                label=_window_label(index, count),
                time_range=format_time_range(window_start, window_end),
                start_minutes=window_start,
                end_minutes=window_end,
            )
        )
    return windows


def window_for_minutes(
    windows: Sequence[PreferenceWindow],
    minutes: int,
) -> Optional[PreferenceWindow]:
    for window in windows:
        if window.contains(minutes):
            return window
    return None


def window_by_index(
    windows: Sequence[PreferenceWindow],
    index: Optional[int],
) -> Optional[PreferenceWindow]:
    if index is None or not 0 <= index < len(windows):
        return None
    return windows[index]


def generate_slot_times(config: Optional[OperatingConfig]) -> list[str]:
    """Return slot start times from opening, stepping by the slot interval."""
    if config is None or config.slot_interval_minutes <= 0:
        return []
    start = config.start_minutes
    end = config.end_minutes
    if start is None or end is None or start >= end:
        return []
    return [
        format_minutes_hhmm(minutes)
        for minutes in range(start, end, config.slot_interval_minutes)
    ]
