from __future__ import annotations

from teesheet.domain.constraints import OperatingConfig
from teesheet.services.window_service import (
    compute_windows,
    generate_slot_times,
    window_by_index,
    window_for_minutes,
)


def _config(**overrides) -> OperatingConfig:
    defaults = {
        "start_time": "07:00",
        "end_time": "19:00",
        "slot_interval_minutes": 10,
        "max_occupants_per_slot": 4,
        "window_duration_minutes": 180,
    }
    defaults.update(overrides)
    return OperatingConfig(**defaults)


def test_default_day_splits_into_four_named_windows() -> None:
    windows = compute_windows(_config())

    assert [window.label for window in windows] == ["Morning", "Midday", "Afternoon", "Evening"]
    assert [(window.start_minutes, window.end_minutes) for window in windows] == [
        (420, 600),
        (600, 780),
        (780, 960),
        (960, 1140),
    ]
    assert windows[0].time_range == "7:00 AM - 10:00 AM"
    assert windows[3].time_range == "4:00 PM - 7:00 PM"


def test_hourly_windows_match_operating_hours() -> None:
    windows = compute_windows(_config(end_time="11:00", window_duration_minutes=60))

    assert [window.index for window in windows] == [0, 1, 2, 3]
    assert [window.time_range for window in windows] == [
        "7:00 AM - 8:00 AM",
        "8:00 AM - 9:00 AM",
        "9:00 AM - 10:00 AM",
        "10:00 AM - 11:00 AM",
    ]


def test_windows_cover_the_day_without_gaps_and_last_absorbs_remainder() -> None:
    config = _config(end_time="17:50")
    windows = compute_windows(config)

    assert len(windows) == 4
    assert windows[0].start_minutes == config.start_minutes
    assert windows[-1].end_minutes == config.end_minutes
    for current, following in zip(windows, windows[1:]):
        assert current.end_minutes == following.start_minutes
    assert windows[0].end_minutes - windows[0].start_minutes == 162
    assert windows[-1].end_minutes - windows[-1].start_minutes == 164


def test_non_four_window_days_use_numbered_labels() -> None:
    windows = compute_windows(_config(end_time="12:00", window_duration_minutes=60))

    assert [window.label for window in windows] == [
        "Window 1",
        "Window 2",
        "Window 3",
        "Window 4",
        "Window 5",
    ]


def test_invalid_configuration_yields_no_windows() -> None:
    assert compute_windows(None) == []
    assert compute_windows(_config(start_time="19:00", end_time="07:00")) == []
    assert compute_windows(_config(end_time="07:00")) == []
    assert compute_windows(_config(window_duration_minutes=0)) == []
    assert compute_windows(_config(start_time="7am")) == []


def test_window_computation_is_deterministic() -> None:
    assert compute_windows(_config()) == compute_windows(_config())


def test_window_lookup_by_minute_is_half_open() -> None:
    windows = compute_windows(_config(end_time="11:00", window_duration_minutes=60))

    assert window_for_minutes(windows, 420).index == 0
    assert window_for_minutes(windows, 479).index == 0
    assert window_for_minutes(windows, 480).index == 1
    assert window_for_minutes(windows, 419) is None
    assert window_for_minutes(windows, 660) is None


def test_window_lookup_by_index_rejects_unknown_indices() -> None:
    windows = compute_windows(_config())

    assert window_by_index(windows, 2).label == "Afternoon"
    assert window_by_index(windows, None) is None
    assert window_by_index(windows, 4) is None
    assert window_by_index(windows, -1) is None


def test_slot_times_step_from_opening_and_stop_before_close() -> None:
    times = generate_slot_times(_config(end_time="08:00"))

    assert times == ["07:00", "07:10", "07:20", "07:30", "07:40", "07:50"]
    assert generate_slot_times(_config(slot_interval_minutes=0)) == []
