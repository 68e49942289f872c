from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from teesheet.domain.constraints import OperatingConfig
from teesheet.domain.models import EntryType, FairnessRecord, LotteryEntry, Slot
from teesheet.services.fairness_service import (
    FairnessPolicy,
    preference_outcomes,
    recompute_fairness,
    roll_fairness_record,
)
from teesheet.services.window_service import compute_windows
from teesheet.utils.config import get_settings


LOTTERY_DATE = "2026-05-16"
WINDOWS = compute_windows(
    OperatingConfig(
        start_time="07:00",
        end_time="11:00",
        slot_interval_minutes=10,
        max_occupants_per_slot=4,
        window_duration_minutes=60,
    )
)
SLOTS = [
    Slot(slot_id=1, lottery_date=LOTTERY_DATE, start_time="07:10", max_occupants=4),
    Slot(slot_id=2, lottery_date=LOTTERY_DATE, start_time="09:10", max_occupants=4),
]


def _entry(entry_id: int, organizer_id: int, preferred_window: int, members=()) -> LotteryEntry:
    return LotteryEntry(
        entry_id=entry_id,
        entry_type=EntryType.GROUP if members else EntryType.INDIVIDUAL,
        organizer_id=organizer_id,
        lottery_date=LOTTERY_DATE,
        preferred_window=preferred_window,
        submitted_at=datetime(2026, 5, 10, 9, 0),
        member_ids=(organizer_id, *members),
    )


def test_granted_preference_moves_score_down_and_denied_moves_up() -> None:
    entries = [_entry(1, 100, 0), _entry(2, 200, 0)]

    scores = recompute_fairness(
        LOTTERY_DATE,
        {1: 1, 2: 2},
        entries,
        slots=SLOTS,
        windows=WINDOWS,
        current_scores={100: 2, 200: 2},
    )

    assert scores == {100: 1, 200: 3}


def test_scores_are_clamped_to_the_policy_bounds() -> None:
    entries = [_entry(1, 100, 0), _entry(2, 200, 0)]

    scores = recompute_fairness(
        LOTTERY_DATE,
        {1: 1, 2: 2},
        entries,
        slots=SLOTS,
        windows=WINDOWS,
        current_scores={100: -10, 200: 10},
    )

    assert scores == {100: -10, 200: 10}


def test_unassigned_entries_leave_scores_untouched() -> None:
    scores = recompute_fairness(
        LOTTERY_DATE,
        {1: None},
        [_entry(1, 100, 0)],
        slots=SLOTS,
        windows=WINDOWS,
        current_scores={100: 4},
    )

    assert scores == {}


def test_group_members_share_the_outcome_and_guests_are_ignored() -> None:
    group = replace(_entry(1, 100, 1, members=(101, 102)), guest_ids=frozenset({900}))

    scores = recompute_fairness(
        LOTTERY_DATE,
        {1: 1},
        [group],
        slots=SLOTS,
        windows=WINDOWS,
        current_scores={101: 5},
    )

    assert scores == {100: 1, 101: 6, 102: 1}


def test_custom_policy_step_and_default() -> None:
    policy = FairnessPolicy(step=2, min_score=-5, max_score=5, default_score=1)

    scores = recompute_fairness(
        LOTTERY_DATE,
        {1: 1},
        [_entry(1, 100, 0)],
        slots=SLOTS,
        windows=WINDOWS,
        current_scores={},
        policy=policy,
    )

    assert scores == {100: -1}


def test_policy_reads_configured_bounds() -> None:
    settings = replace(get_settings(), fairness_step=3, fairness_min_score=-4, fairness_max_score=4)

    policy = FairnessPolicy.from_settings(settings)

    assert policy.step == 3
    assert policy.clamp(9) == 4
    assert policy.clamp(-9) == -4


def test_entries_for_other_dates_are_ignored() -> None:
    other_day = replace(_entry(1, 100, 0), lottery_date="2026-05-17")

    assert (
        recompute_fairness(
            LOTTERY_DATE,
            {1: 1},
            [other_day],
            slots=SLOTS,
            windows=WINDOWS,
            current_scores={},
        )
        == {}
    )


def test_preference_outcomes_per_member() -> None:
    entries = [_entry(1, 100, 0, members=(101,)), _entry(2, 200, 0)]

    outcomes = preference_outcomes(
        LOTTERY_DATE,
        {1: 1, 2: 2},
        entries,
        slots=SLOTS,
        windows=WINDOWS,
    )

    assert outcomes == {100: True, 101: True, 200: False}


def test_monthly_record_starts_fresh_for_new_member() -> None:
    record = roll_fairness_record(
        None,
        member_id=100,
        new_score=-1,
        preference_granted=True,
        month="2026-05",
    )

    assert record == FairnessRecord(
        member_id=100,
        fairness_score=-1,
        total_entries_month=1,
        preferences_granted_month=1,
        days_without_good_time=0,
        current_month="2026-05",
    )
    assert record.fulfillment_rate == 1.0


def test_monthly_record_accumulates_within_a_month() -> None:
    previous = FairnessRecord(
        member_id=100,
        fairness_score=0,
        total_entries_month=3,
        preferences_granted_month=1,
        days_without_good_time=2,
        current_month="2026-05",
    )

    record = roll_fairness_record(
        previous,
        member_id=100,
        new_score=1,
        preference_granted=False,
        month="2026-05",
    )

    assert record.total_entries_month == 4
    assert record.preferences_granted_month == 1
    assert record.days_without_good_time == 3
    assert record.fulfillment_rate == 0.25


def test_monthly_counters_reset_when_the_month_changes() -> None:
    previous = FairnessRecord(
        member_id=100,
        fairness_score=4,
        total_entries_month=9,
        preferences_granted_month=2,
        days_without_good_time=5,
        current_month="2026-04",
    )

    record = roll_fairness_record(
        previous,
        member_id=100,
        new_score=5,
        preference_granted=False,
        month="2026-05",
    )

    assert record.total_entries_month == 1
    assert record.preferences_granted_month == 0
    assert record.days_without_good_time == 6
    assert record.current_month == "2026-05"
