"""Capacity-checked manual arrangement of a lottery result before commit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from teesheet.domain.models import EntryStatus, LotteryEntry, PendingChange, Slot
from teesheet.repository.data_repository import (
    CapacityConflictError,
    DataRepository,
    RecordNotFoundError,
)
from teesheet.utils.config import Settings, get_settings
from teesheet.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class ArrangementError(Exception):
    """Base exception for arrangement edits."""


class CapacityExceededError(ArrangementError):
    """Raised when an edit would push a slot over its occupant limit."""


class NotFoundError(ArrangementError):
    """Raised when an entry or slot id is not part of the arrangement."""


class ArrangementLockedError(ArrangementError):
    """Raised when the placement of a date can no longer be edited."""


@dataclass(frozen=True)
class ArrangedEntry:
    entry_id: int
    is_group: bool
    party_size: int

    @classmethod
    def from_lottery_entry(cls, entry: LotteryEntry) -> "ArrangedEntry":
        return cls(entry_id=entry.entry_id, is_group=entry.is_group, party_size=entry.party_size)


@dataclass(frozen=True)
class ArrangementChange:
    kind: str
    description: str


class ArrangementModel:
    """Editable in-memory view of slots, their occupants and an unassigned pool.

    Every mutation is all-or-nothing: a failed call raises and leaves the
    layout exactly as it was. ``diff()`` compares the current layout with the
    snapshot the model was built from.
    """

    def __init__(
        self,
        slots: Sequence[Slot],
        entries: Sequence[ArrangedEntry],
        placements: Mapping[int, Optional[int]],
    ) -> None:
        ordered_slots = sorted(slots, key=lambda slot: (slot.start_minutes, slot.slot_id))
        self._slots: dict[int, Slot] = {slot.slot_id: slot for slot in ordered_slots}
        self._entries: dict[int, ArrangedEntry] = {entry.entry_id: entry for entry in entries}

        original: dict[int, Optional[int]] = {}
        for entry in sorted(entries, key=lambda item: item.entry_id):
            slot_id = placements.get(entry.entry_id)
            if slot_id is not None and slot_id not in self._slots:
                raise NotFoundError(f"entry {entry.entry_id} is placed in unknown slot {slot_id}")
            original[entry.entry_id] = slot_id
        self._original = original
        self._layout: dict[Optional[int], list[int]] = {}
        self._location: dict[int, Optional[int]] = {}
        self.change_log: list[ArrangementChange] = []
        self._restore()

    @classmethod
    def from_entries(
        cls,
        slots: Sequence[Slot],
        entries: Iterable[LotteryEntry],
    ) -> "ArrangementModel":
        entry_list = list(entries)
        return cls(
            slots=slots,
            entries=[ArrangedEntry.from_lottery_entry(entry) for entry in entry_list],
            placements={entry.entry_id: entry.assigned_slot_id for entry in entry_list},
        )

    def _restore(self) -> None:
        self._layout = {slot_id: [] for slot_id in self._slots}
        self._layout[None] = []
        self._location = {}
        for entry_id, slot_id in self._original.items():
            self._layout[slot_id].append(entry_id)
            self._location[entry_id] = slot_id

    # --- lookups -------------------------------------------------------

    def _require_entry(self, entry_id: int) -> ArrangedEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"entry {entry_id} is not part of this arrangement")
        return entry

    def _require_slot(self, slot_id: int) -> Slot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise NotFoundError(f"slot {slot_id} is not part of this arrangement")
        return slot

    def _size_of(self, entry_ids: Iterable[int]) -> int:
        return sum(self._entries[entry_id].party_size for entry_id in entry_ids)

    def _label(self, slot_id: Optional[int]) -> str:
        if slot_id is None:
            return "unassigned"
        return self._slots[slot_id].start_time

    def occupancy(self, slot_id: int) -> int:
        slot = self._require_slot(slot_id)
        return slot.reserved_occupants + self._size_of(self._layout[slot_id])

    def slot_entries(self, slot_id: int) -> list[int]:
        self._require_slot(slot_id)
        return list(self._layout[slot_id])

    def unassigned_entries(self) -> list[int]:
        return list(self._layout[None])

    def location_of(self, entry_id: int) -> Optional[int]:
        self._require_entry(entry_id)
        return self._location[entry_id]

    def placements(self) -> dict[int, Optional[int]]:
        return dict(self._location)

    @property
    def slots(self) -> list[Slot]:
        return list(self._slots.values())

    # --- mutations -----------------------------------------------------

    def _fits(self, slot_id: Optional[int], occupant_size: int) -> bool:
        if slot_id is None:
            return True
        slot = self._slots[slot_id]
        return slot.reserved_occupants + occupant_size <= slot.max_occupants

    def _record(self, kind: str, description: str) -> None:
        self.change_log.append(ArrangementChange(kind=kind, description=description))
        logger.debug("Arrangement edit | %s", format_fields(kind=kind, detail=description))

    def move_entry(self, entry_id: int, target_slot_id: Optional[int]) -> None:
        entry = self._require_entry(entry_id)
        if target_slot_id is not None:
            self._require_slot(target_slot_id)
        current = self._location[entry_id]
        if current == target_slot_id:
            return

        if target_slot_id is not None:
            projected = self._size_of(self._layout[target_slot_id]) + entry.party_size
            if not self._fits(target_slot_id, projected):
                raise CapacityExceededError(
                    f"slot {self._label(target_slot_id)} cannot take a party of {entry.party_size}"
                )

        self._layout[current].remove(entry_id)
        self._layout[target_slot_id].append(entry_id)
        self._location[entry_id] = target_slot_id
        self._record(
            "move",
            f"Moved entry {entry_id} from {self._label(current)} to {self._label(target_slot_id)}",
        )

    def swap_entries(self, entry_id_a: int, entry_id_b: int) -> None:
        entry_a = self._require_entry(entry_id_a)
        entry_b = self._require_entry(entry_id_b)
        slot_a = self._location[entry_id_a]
        slot_b = self._location[entry_id_b]
        if entry_id_a == entry_id_b:
            return

        if slot_a != slot_b:
            for slot_id, leaving, arriving in (
                (slot_a, entry_a, entry_b),
                (slot_b, entry_b, entry_a),
            ):
                if slot_id is None:
                    continue
                projected = (
                    self._size_of(self._layout[slot_id])
                    - leaving.party_size
                    + arriving.party_size
                )
                if not self._fits(slot_id, projected):
                    raise CapacityExceededError(
                        f"swapping entries {entry_id_a} and {entry_id_b} would overfill "
                        f"{self._label(slot_id)}"
                    )

        position_a = self._layout[slot_a].index(entry_id_a)
        position_b = self._layout[slot_b].index(entry_id_b)
        self._layout[slot_a][position_a] = entry_id_b
        self._layout[slot_b][position_b] = entry_id_a
        self._location[entry_id_a] = slot_b
        self._location[entry_id_b] = slot_a
        self._record(
            "swap",
            f"Swapped entry {entry_id_a} ({self._label(slot_a)}) with "
            f"entry {entry_id_b} ({self._label(slot_b)})",
        )

    def swap_slot_contents(self, slot_id_a: int, slot_id_b: int) -> None:
        self._require_slot(slot_id_a)
        self._require_slot(slot_id_b)
        if slot_id_a == slot_id_b:
            return

        contents_a = self._layout[slot_id_a]
        contents_b = self._layout[slot_id_b]
        if not self._fits(slot_id_a, self._size_of(contents_b)) or not self._fits(
            slot_id_b, self._size_of(contents_a)
        ):
            raise CapacityExceededError(
                f"cannot swap {self._label(slot_id_a)} and {self._label(slot_id_b)}: "
                "capacity would be exceeded"
            )

        self._layout[slot_id_a], self._layout[slot_id_b] = contents_b, contents_a
        for entry_id in contents_b:
            self._location[entry_id] = slot_id_a
        for entry_id in contents_a:
            self._location[entry_id] = slot_id_b
        self._record(
            "swap_slots",
            f"Swapped all entries between {self._label(slot_id_a)} and {self._label(slot_id_b)}",
        )

    def apply_delay(self, minutes: int) -> None:
        """Push every occupied slot's entries to the first slot ``minutes`` later."""
        if minutes <= 0:
            raise ValueError("delay minutes must be > 0")

        ordered = list(self._slots.values())
        new_layout: dict[Optional[int], list[int]] = {slot_id: [] for slot_id in self._slots}
        new_layout[None] = list(self._layout[None])
        for slot in ordered:
            occupants = self._layout[slot.slot_id]
            if not occupants:
                continue
            target = next(
                (
                    candidate
                    for candidate in ordered
                    if candidate.start_minutes >= slot.start_minutes + minutes
                ),
                None,
            )
            if target is None:
                raise NotFoundError(
                    f"no slot at or after {slot.start_time} + {minutes} minutes"
                )
            new_layout[target.slot_id].extend(occupants)

        for slot_id, occupants in new_layout.items():
            if slot_id is not None and not self._fits(slot_id, self._size_of(occupants)):
                raise CapacityExceededError(
                    f"delay of {minutes} minutes would overfill {self._label(slot_id)}"
                )

        self._layout = new_layout
        self._location = {
            entry_id: slot_id
            for slot_id, occupants in new_layout.items()
            for entry_id in occupants
        }
        self._record("delay", f"Applied {minutes} minute delay to every occupied slot")

    # --- change set ----------------------------------------------------

    def diff(self) -> list[PendingChange]:
        return [
            PendingChange(
                entry_id=entry_id,
                is_group=self._entries[entry_id].is_group,
                new_slot_id=self._location[entry_id],
            )
            for entry_id in sorted(self._original)
            if self._location[entry_id] != self._original[entry_id]
        ]

    def reset(self) -> None:
        self._restore()
        self.change_log = []


class ArrangementService:
    """Loads a processed date into an ArrangementModel and commits edits."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def _require_open_run(self, lottery_date: str) -> None:
        run = self._repository.get_processing_run(lottery_date)
        if run is None:
            raise NotFoundError(f"lottery for {lottery_date} has not been processed")
        if run.fairness_assigned_at is not None:
            raise ArrangementLockedError(
                f"lottery for {lottery_date} was finalized at {run.fairness_assigned_at}"
            )

    def load(self, lottery_date: str) -> ArrangementModel:
        self._require_open_run(lottery_date)
        entries = self._repository.list_entries(
            lottery_date,
            [EntryStatus.PENDING, EntryStatus.ASSIGNED],
        )
        return ArrangementModel.from_entries(self._repository.list_slots(lottery_date), entries)

    def commit(self, lottery_date: str, changes: Sequence[PendingChange]) -> int:
        """Persist a change set atomically and return how many entries moved."""
        self._require_open_run(lottery_date)
        try:
            self._repository.apply_assignment_changes(lottery_date, changes)
        except RecordNotFoundError as exc:
            raise NotFoundError(str(exc)) from exc
        except CapacityConflictError as exc:
            raise CapacityExceededError(str(exc)) from exc
        logger.info(
            "Arrangement committed | %s",
            format_fields(
                date=lottery_date,
                changes=len(changes),
                groups=sum(1 for change in changes if change.is_group),
            ),
        )
        return len(changes)
