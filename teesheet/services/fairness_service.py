"""Fairness-score feedback applied against final slot placements."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from teesheet.domain.models import FairnessRecord, LotteryEntry, PreferenceWindow, Slot
from teesheet.services.window_service import window_by_index
from teesheet.utils.config import Settings


@dataclass(frozen=True)
class FairnessPolicy:
    step: int = 1
    min_score: int = -10
    max_score: int = 10
    default_score: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "FairnessPolicy":
        return cls(
            step=settings.fairness_step,
            min_score=settings.fairness_min_score,
            max_score=settings.fairness_max_score,
            default_score=settings.fairness_default_score,
        )

    def clamp(self, score: int) -> int:
        return max(self.min_score, min(self.max_score, score))


def _placed_entries(
    lottery_date: str,
    final_assignments: Mapping[int, Optional[int]],
    entries: Iterable[LotteryEntry],
    slots: Sequence[Slot],
) -> list[tuple[LotteryEntry, Slot]]:
    slot_by_id = {slot.slot_id: slot for slot in slots}
    placed: list[tuple[LotteryEntry, Slot]] = []
    for entry in sorted(entries, key=lambda item: item.entry_id):
        if entry.lottery_date != lottery_date:
            continue
        slot_id = final_assignments.get(entry.entry_id)
        if slot_id is None or slot_id not in slot_by_id:
            continue
        placed.append((entry, slot_by_id[slot_id]))
    return placed


def preference_outcomes(
    lottery_date: str,
    final_assignments: Mapping[int, Optional[int]],
    entries: Iterable[LotteryEntry],
    *,
    slots: Sequence[Slot],
    windows: Sequence[PreferenceWindow],
) -> dict[int, bool]:
    """Map each placed member to whether the slot sits in their preferred window.

    Guests carry no score and are never included.
    """
    outcomes: dict[int, bool] = {}
    for entry, slot in _placed_entries(lottery_date, final_assignments, entries, slots):
        preferred = window_by_index(windows, entry.preferred_window)
        granted = preferred is not None and preferred.contains(slot.start_minutes)
        for member_id in entry.member_ids:
            outcomes[member_id] = granted
    return outcomes


def recompute_fairness(
    lottery_date: str,
    final_assignments: Mapping[int, Optional[int]],
    entries: Iterable[LotteryEntry],
    *,
    slots: Sequence[Slot],
    windows: Sequence[PreferenceWindow],
    current_scores: Mapping[int, int],
    policy: FairnessPolicy = FairnessPolicy(),
) -> dict[int, int]:
    """Return the new score of every member placed on ``lottery_date``.

    A member whose final slot is inside the preferred window moves down by one
    step, anyone else placed moves up by one step. Unplaced entries leave
    scores untouched.
    """
    scores: dict[int, int] = {}
    for entry, slot in _placed_entries(lottery_date, final_assignments, entries, slots):
        preferred = window_by_index(windows, entry.preferred_window)
        granted = preferred is not None and preferred.contains(slot.start_minutes)
        delta = -policy.step if granted else policy.step
        for member_id in entry.member_ids:
            before = scores.get(member_id, current_scores.get(member_id, policy.default_score))
            scores[member_id] = policy.clamp(before + delta)
    return scores


def roll_fairness_record(
    record: Optional[FairnessRecord],
    *,
    member_id: int,
    new_score: int,
    preference_granted: bool,
    month: str,
) -> FairnessRecord:
    """Fold one placement into the member's monthly statistics."""
    if record is None or record.current_month != month:
        total = 0
        granted = 0
        days_without = 0 if record is None else record.days_without_good_time
    else:
        total = record.total_entries_month
        granted = record.preferences_granted_month
        days_without = record.days_without_good_time

    return FairnessRecord(
        member_id=member_id,
        fairness_score=new_score,
        total_entries_month=total + 1,
        preferences_granted_month=granted + (1 if preference_granted else 0),
        days_without_good_time=0 if preference_granted else days_without + 1,
        current_month=month,
    )
