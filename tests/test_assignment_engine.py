from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from teesheet.domain.constraints import (
    ConfigurationInvalidError,
    EntryValidationError,
    OperatingConfig,
)
from teesheet.domain.models import (
    AssignmentReason,
    EntryStatus,
    EntryType,
    LotteryEntry,
    RestrictionCategory,
    RestrictionRule,
    Scope,
    Slot,
)
from teesheet.services.assignment_service import CapacityLedger, process_lottery
from teesheet.services.window_service import compute_windows


LOTTERY_DATE = "2026-05-16"
SUBMITTED_BASE = datetime(2026, 5, 10, 8, 0)
WINDOWS = compute_windows(
    OperatingConfig(
        start_time="07:00",
        end_time="11:00",
        slot_interval_minutes=10,
        max_occupants_per_slot=4,
        window_duration_minutes=60,
    )
)
SOCIAL_MORNING = RestrictionRule(
    rule_id=1,
    name="Social morning block",
    category=RestrictionCategory.MEMBER_CLASS,
    classes=Scope.only(["SOCIAL"]),
    windows=Scope.only([0]),
)


def _slot(slot_id: int, start_time: str, max_occupants: int = 4, reserved: int = 0) -> Slot:
    return Slot(
        slot_id=slot_id,
        lottery_date=LOTTERY_DATE,
        start_time=start_time,
        max_occupants=max_occupants,
        reserved_occupants=reserved,
    )


def _entry(
    entry_id: int,
    organizer_id: int,
    preferred_window: int,
    *,
    alternate_window=None,
    members=(),
    guest_fill_count: int = 0,
    guest_ids=frozenset(),
    submitted_offset_minutes: int = 0,
    **overrides,
) -> LotteryEntry:
    member_ids = (organizer_id, *members)
    values = {
        "entry_id": entry_id,
        "entry_type": EntryType.GROUP if members else EntryType.INDIVIDUAL,
        "organizer_id": organizer_id,
        "lottery_date": LOTTERY_DATE,
        "preferred_window": preferred_window,
        "alternate_window": alternate_window,
        "submitted_at": SUBMITTED_BASE + timedelta(minutes=submitted_offset_minutes),
        "member_ids": member_ids,
        "guest_fill_count": guest_fill_count,
        "guest_ids": frozenset(guest_ids),
    }
    values.update(overrides)
    return LotteryEntry(**values)


def _run(entries, slots, *, rules=(), scores=None, classes=None):
    member_classes = classes
    if member_classes is None:
        member_classes = {
            member_id: "FULL" for entry in entries for member_id in entry.member_ids
        }
    return process_lottery(
        LOTTERY_DATE,
        entries,
        slots,
        list(rules),
        scores or {},
        windows=WINDOWS,
        member_classes=member_classes,
    )


def _log_for(result, entry_id: int):
    return next(item for item in result.log if item.entry_id == entry_id)


def test_single_entry_gets_its_preferred_window() -> None:
    slots = [_slot(1, "07:10"), _slot(2, "09:10")]

    result = _run([_entry(1, organizer_id=100, preferred_window=0)], slots)

    assert result.assignments == {1: 1}
    log = _log_for(result, 1)
    assert log.assignment_reason is AssignmentReason.PREFERRED_MATCH
    assert log.violated_restrictions is None
    assert log.fairness_score_before == 0
    assert log.fairness_score_after == -1
    assert result.updated_fairness == {100: -1}


def test_full_preferred_window_falls_back_to_nearest_open_slot() -> None:
    slots = [_slot(1, "07:10", reserved=4), _slot(2, "09:10")]

    result = _run([_entry(1, organizer_id=100, preferred_window=0)], slots)

    assert result.assignments == {1: 2}
    assert _log_for(result, 1).assignment_reason is AssignmentReason.ALLOWED_FALLBACK
    assert result.updated_fairness == {100: 1}


def test_alternate_window_is_tried_before_fallback() -> None:
    slots = [_slot(1, "07:10", reserved=4), _slot(2, "08:10"), _slot(3, "10:10")]

    result = _run([_entry(1, organizer_id=100, preferred_window=0, alternate_window=3)], slots)

    assert result.assignments == {1: 3}
    assert _log_for(result, 1).assignment_reason is AssignmentReason.ALTERNATE_MATCH


def test_earliest_slot_with_room_in_window_is_chosen() -> None:
    slots = [_slot(3, "07:40"), _slot(1, "07:10", reserved=3), _slot(2, "07:20")]

    result = _run([_entry(1, organizer_id=100, preferred_window=0, members=(101,))], slots)

    assert result.assignments == {1: 2}


def test_restricted_preferred_window_is_skipped() -> None:
    slots = [_slot(1, "07:10"), _slot(2, "09:10")]

    result = _run(
        [_entry(1, organizer_id=100, preferred_window=0)],
        slots,
        rules=[SOCIAL_MORNING],
        classes={100: "SOCIAL"},
    )

    assert result.assignments == {1: 2}
    assert _log_for(result, 1).assignment_reason is AssignmentReason.ALLOWED_FALLBACK


def test_restricted_window_is_used_only_when_nothing_else_has_room() -> None:
    slots = [_slot(1, "07:10"), _slot(2, "09:10", reserved=4)]

    result = _run(
        [_entry(1, organizer_id=100, preferred_window=0)],
        slots,
        rules=[SOCIAL_MORNING],
        classes={100: "SOCIAL"},
    )

    assert result.assignments == {1: 1}
    log = _log_for(result, 1)
    assert log.assignment_reason is AssignmentReason.RESTRICTION_VIOLATION
    assert log.violated_restrictions == (
        "Social morning block: SOCIAL may not book Morning (7:00 AM - 8:00 AM)",
    )


def test_no_capacity_anywhere_leaves_entry_unassigned() -> None:
    slots = [_slot(1, "07:10", reserved=4), _slot(2, "09:10", reserved=4)]

    result = _run([_entry(1, organizer_id=100, preferred_window=0)], slots)

    assert result.assignments == {1: None}
    assert result.unassigned_entry_ids == [1]
    log = _log_for(result, 1)
    assert log.assignment_reason is AssignmentReason.CAPACITY_EXHAUSTED
    assert log.violated_restrictions == ()
    assert log.fairness_score_after == log.fairness_score_before
    assert result.updated_fairness == {}


def test_unassigned_restricted_entry_reports_the_restriction() -> None:
    slots = [_slot(1, "07:10", reserved=4), _slot(2, "09:10", reserved=4)]

    result = _run(
        [_entry(1, organizer_id=100, preferred_window=0)],
        slots,
        rules=[SOCIAL_MORNING],
        classes={100: "SOCIAL"},
    )

    log = _log_for(result, 1)
    assert result.assignments == {1: None}
    assert log.assignment_reason is AssignmentReason.RESTRICTION_VIOLATION
    assert log.violated_restrictions


def test_lower_fairness_score_is_served_first() -> None:
    slots = [_slot(1, "07:10", max_occupants=1), _slot(2, "09:10")]
    entries = [
        _entry(1, organizer_id=100, preferred_window=0, submitted_offset_minutes=0),
        _entry(2, organizer_id=200, preferred_window=0, submitted_offset_minutes=30),
    ]

    result = _run(entries, slots, scores={100: 3, 200: -2})

    assert result.assignments == {2: 1, 1: 2}
    assert [item.entry_id for item in result.log] == [2, 1]


def test_equal_scores_fall_back_to_submission_order() -> None:
    slots = [_slot(1, "07:10", max_occupants=1), _slot(2, "09:10")]
    entries = [
        _entry(1, organizer_id=100, preferred_window=0, submitted_offset_minutes=30),
        _entry(2, organizer_id=200, preferred_window=0, submitted_offset_minutes=5),
    ]

    result = _run(entries, slots)

    assert result.assignments[2] == 1
    assert result.assignments[1] == 2


def test_naive_and_aware_submission_times_order_together() -> None:
    slots = [_slot(1, "07:10", max_occupants=1), _slot(2, "09:10")]
    naive = _entry(1, organizer_id=100, preferred_window=0, submitted_offset_minutes=30)
    aware = _entry(
        2,
        organizer_id=200,
        preferred_window=0,
        submitted_at=datetime(2026, 5, 10, 10, 5, tzinfo=timezone(timedelta(hours=2))),
    )

    result = _run([naive, aware], slots)

    assert naive.submitted_at == datetime(2026, 5, 10, 8, 30, tzinfo=timezone.utc)
    assert aware.submitted_at.utcoffset() == timedelta(0)
    assert result.assignments == {2: 1, 1: 2}


def test_group_is_placed_whole_and_every_member_is_scored() -> None:
    slots = [_slot(1, "07:10", reserved=1), _slot(2, "07:30")]
    group = _entry(
        1,
        organizer_id=100,
        preferred_window=0,
        members=(101, 102),
        guest_ids={900},
    )

    result = _run([group], slots)

    assert group.party_size == 4
    assert result.assignments == {1: 2}
    assert result.updated_fairness == {100: -1, 101: -1, 102: -1}
    assert 900 not in result.updated_fairness


def test_equidistant_fallback_prefers_the_earlier_slot() -> None:
    # Window 1 (08:00-09:00) has its midpoint at 08:30; both slots are 40 minutes away.
    slots = [_slot(3, "09:10"), _slot(5, "07:50")]
    rule = RestrictionRule(
        rule_id=1,
        name="Social midday block",
        category=RestrictionCategory.MEMBER_CLASS,
        classes=Scope.only(["SOCIAL"]),
        windows=Scope.only([1]),
    )

    result = _run(
        [_entry(1, organizer_id=100, preferred_window=1)],
        slots,
        rules=[rule],
        classes={100: "SOCIAL"},
    )

    assert result.assignments == {1: 5}


def test_capacity_is_never_exceeded() -> None:
    slots = [
        _slot(1, "07:00"),
        _slot(2, "07:30", reserved=2),
        _slot(3, "08:30"),
        _slot(4, "09:30", max_occupants=2),
        _slot(5, "10:30"),
    ]
    entries = [
        _entry(
            index,
            organizer_id=100 + index * 10,
            preferred_window=index % 4,
            alternate_window=(index + 1) % 4,
            members=tuple(range(101 + index * 10, 101 + index * 10 + index % 3)),
            submitted_offset_minutes=index,
        )
        for index in range(1, 13)
    ]

    result = _run(entries, slots)

    occupied = defaultdict(int)
    sizes = {entry.entry_id: entry.party_size for entry in entries}
    for entry_id, slot_id in result.assignments.items():
        if slot_id is not None:
            occupied[slot_id] += sizes[entry_id]
    for slot in slots:
        assert occupied[slot.slot_id] + slot.reserved_occupants <= slot.max_occupants
    assert set(result.assignments) == {entry.entry_id for entry in entries}


def test_processing_is_deterministic() -> None:
    slots = [_slot(1, "07:10", max_occupants=2), _slot(2, "08:10"), _slot(3, "09:10")]
    entries = [
        _entry(1, organizer_id=100, preferred_window=0, members=(101,)),
        _entry(2, organizer_id=200, preferred_window=0, submitted_offset_minutes=1),
        _entry(3, organizer_id=300, preferred_window=1, alternate_window=0),
    ]

    first = _run(entries, slots, scores={200: -1})
    second = _run(list(reversed(entries)), list(reversed(slots)), scores={200: -1})

    assert first == second


def test_ledger_refuses_overbooking() -> None:
    ledger = CapacityLedger([_slot(1, "07:10", reserved=1)])

    ledger.reserve(1, 3)

    assert ledger.remaining(1) == 0
    with pytest.raises(ValueError):
        ledger.reserve(1, 1)


def test_non_pending_entries_are_rejected() -> None:
    entry = _entry(1, organizer_id=100, preferred_window=0, status=EntryStatus.CANCELLED)

    with pytest.raises(EntryValidationError):
        _run([entry], [_slot(1, "07:10")])


def test_unknown_alternate_window_is_rejected() -> None:
    entry = _entry(1, organizer_id=100, preferred_window=0, alternate_window=9)

    with pytest.raises(EntryValidationError):
        _run([entry], [_slot(1, "07:10")])


def test_entries_for_another_date_are_rejected() -> None:
    entry = _entry(1, organizer_id=100, preferred_window=0, lottery_date="2026-05-17")

    with pytest.raises(EntryValidationError):
        _run([entry], [_slot(1, "07:10")])


def test_missing_windows_or_slots_is_a_configuration_error() -> None:
    entry = _entry(1, organizer_id=100, preferred_window=0)

    with pytest.raises(ConfigurationInvalidError):
        process_lottery(
            LOTTERY_DATE,
            [entry],
            [_slot(1, "07:10")],
            [],
            {},
            windows=[],
            member_classes={},
        )
    with pytest.raises(ConfigurationInvalidError):
        _run([entry], [])
