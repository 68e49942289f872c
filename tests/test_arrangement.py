from __future__ import annotations

import pytest

from teesheet.domain.models import PendingChange, Slot
from teesheet.services.arrangement_service import (
    ArrangedEntry,
    ArrangementModel,
    CapacityExceededError,
    NotFoundError,
)


LOTTERY_DATE = "2026-05-16"


def _slot(slot_id: int, start_time: str, max_occupants: int = 4, reserved: int = 0) -> Slot:
    return Slot(
        slot_id=slot_id,
        lottery_date=LOTTERY_DATE,
        start_time=start_time,
        max_occupants=max_occupants,
        reserved_occupants=reserved,
    )


def _full_pair_model() -> ArrangementModel:
    """Slot X holds A(2)+B(2), slot Y holds C(3)+D(1), E(1) is unassigned."""
    slots = [_slot(1, "07:10"), _slot(2, "07:20"), _slot(3, "07:30")]
    entries = [
        ArrangedEntry(entry_id=1, is_group=True, party_size=2),
        ArrangedEntry(entry_id=2, is_group=True, party_size=2),
        ArrangedEntry(entry_id=3, is_group=True, party_size=3),
        ArrangedEntry(entry_id=4, is_group=False, party_size=1),
        ArrangedEntry(entry_id=5, is_group=False, party_size=1),
    ]
    return ArrangementModel(slots, entries, {1: 1, 2: 1, 3: 2, 4: 2, 5: None})


def test_swap_that_overfills_a_slot_fails_and_changes_nothing() -> None:
    model = _full_pair_model()
    before = model.placements()

    with pytest.raises(CapacityExceededError):
        model.swap_entries(1, 3)

    assert model.placements() == before
    assert model.occupancy(1) == 4
    assert model.occupancy(2) == 4
    assert model.diff() == []
    assert model.change_log == []


def test_swap_of_equal_parties_exchanges_slots() -> None:
    model = _full_pair_model()

    model.swap_entries(4, 5)

    assert model.location_of(4) is None
    assert model.location_of(5) == 2
    assert model.diff() == [
        PendingChange(entry_id=4, is_group=False, new_slot_id=None),
        PendingChange(entry_id=5, is_group=False, new_slot_id=2),
    ]


def test_move_into_full_slot_fails() -> None:
    model = _full_pair_model()

    with pytest.raises(CapacityExceededError):
        model.move_entry(5, 1)

    assert model.unassigned_entries() == [5]


def test_move_to_empty_slot_and_to_unassigned_pool() -> None:
    model = _full_pair_model()

    model.move_entry(3, 3)
    model.move_entry(4, None)

    assert model.slot_entries(3) == [3]
    assert model.slot_entries(2) == []
    assert model.unassigned_entries() == [5, 4]
    assert [change.kind for change in model.change_log] == ["move", "move"]
    assert model.change_log[0].description == "Moved entry 3 from 07:20 to 07:30"


def test_last_write_wins_in_the_diff() -> None:
    model = _full_pair_model()

    model.move_entry(4, 3)
    model.move_entry(4, 2)

    assert model.diff() == []
    assert len(model.change_log) == 2


def test_swap_slot_contents_moves_every_entry() -> None:
    model = _full_pair_model()

    model.swap_slot_contents(1, 2)

    assert sorted(model.slot_entries(1)) == [3, 4]
    assert sorted(model.slot_entries(2)) == [1, 2]
    assert [change.entry_id for change in model.diff()] == [1, 2, 3, 4]


def test_swap_slot_contents_respects_reserved_players() -> None:
    slots = [_slot(1, "07:10"), _slot(2, "07:20", reserved=2)]
    entries = [ArrangedEntry(entry_id=1, is_group=True, party_size=3)]
    model = ArrangementModel(slots, entries, {1: 1})

    with pytest.raises(CapacityExceededError):
        model.swap_slot_contents(1, 2)

    assert model.location_of(1) == 1
    assert model.occupancy(2) == 2


def test_unknown_ids_raise_not_found() -> None:
    model = _full_pair_model()

    with pytest.raises(NotFoundError):
        model.move_entry(99, 1)
    with pytest.raises(NotFoundError):
        model.move_entry(1, 99)
    with pytest.raises(NotFoundError):
        model.swap_entries(1, 99)
    with pytest.raises(NotFoundError):
        model.swap_slot_contents(1, 99)


def test_reset_restores_the_original_layout() -> None:
    model = _full_pair_model()
    model.move_entry(3, 3)
    model.swap_entries(4, 5)

    model.reset()

    assert model.diff() == []
    assert model.change_log == []
    assert model.slot_entries(2) == [3, 4]


def test_delay_shifts_every_occupied_slot() -> None:
    slots = [_slot(1, "07:00"), _slot(2, "07:10"), _slot(3, "07:20"), _slot(4, "07:30")]
    entries = [
        ArrangedEntry(entry_id=1, is_group=True, party_size=2),
        ArrangedEntry(entry_id=2, is_group=True, party_size=2),
    ]
    model = ArrangementModel(slots, entries, {1: 1, 2: 2})

    model.apply_delay(10)

    assert model.placements() == {1: 2, 2: 3}
    assert model.change_log[-1].kind == "delay"


def test_delay_without_a_later_slot_changes_nothing() -> None:
    slots = [_slot(1, "07:00"), _slot(2, "07:10"), _slot(3, "07:20"), _slot(4, "07:30")]
    entries = [
        ArrangedEntry(entry_id=1, is_group=False, party_size=1),
        ArrangedEntry(entry_id=2, is_group=False, party_size=1),
    ]
    model = ArrangementModel(slots, entries, {1: 1, 2: 2})

    with pytest.raises(NotFoundError):
        model.apply_delay(30)

    assert model.placements() == {1: 1, 2: 2}


def test_delay_that_overfills_a_target_changes_nothing() -> None:
    slots = [_slot(1, "07:00"), _slot(2, "07:10"), _slot(3, "07:20", reserved=3)]
    entries = [
        ArrangedEntry(entry_id=1, is_group=False, party_size=1),
        ArrangedEntry(entry_id=2, is_group=True, party_size=2),
    ]
    model = ArrangementModel(slots, entries, {1: 1, 2: 2})

    with pytest.raises(CapacityExceededError):
        model.apply_delay(10)

    assert model.placements() == {1: 1, 2: 2}
    assert model.change_log == []


def test_delay_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _full_pair_model().apply_delay(0)


def test_placement_in_unknown_slot_is_rejected() -> None:
    with pytest.raises(NotFoundError):
        ArrangementModel(
            [_slot(1, "07:10")],
            [ArrangedEntry(entry_id=1, is_group=False, party_size=1)],
            {1: 42},
        )
