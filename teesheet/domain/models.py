"""Domain models for lottery entries, slots, restrictions and assignment audit."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from teesheet.utils.time_utils import parse_hhmm_to_minutes


class EntryStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    ASSIGNED = "ASSIGNED"
    CANCELLED = "CANCELLED"


class EntryType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    GROUP = "GROUP"


class RestrictionCategory(str, Enum):
    MEMBER_CLASS = "MEMBER_CLASS"
    FREQUENCY = "FREQUENCY"


class AssignmentReason(str, Enum):
    PREFERRED_MATCH = "PREFERRED_MATCH"
    ALTERNATE_MATCH = "ALTERNATE_MATCH"
    ALLOWED_FALLBACK = "ALLOWED_FALLBACK"
    RESTRICTION_VIOLATION = "RESTRICTION_VIOLATION"
    CAPACITY_EXHAUSTED = "CAPACITY_EXHAUSTED"


@dataclass(frozen=True)
class PreferenceWindow:
    index: int
    label: str
    time_range: str
    start_minutes: int
    end_minutes: int

    @property
    def midpoint(self) -> float:
        return (self.start_minutes + self.end_minutes) / 2

    def contains(self, minutes: int) -> bool:
        return self.start_minutes <= minutes < self.end_minutes


@dataclass(frozen=True)
class Scope:
    """Either every value or an explicit (possibly empty) set of values.

    ``Scope.everything()`` and ``Scope.only([])`` are different: the first
    matches anything, the second matches nothing.
    """

    universal: bool = True
    values: frozenset = field(default_factory=frozenset)

    @classmethod
    def everything(cls) -> "Scope":
        return cls(universal=True, values=frozenset())

    @classmethod
    def only(cls, values: Iterable) -> "Scope":
        return cls(universal=False, values=frozenset(values))

    def contains(self, value: object) -> bool:
        return self.universal or value in self.values

    def intersects(self, values: Iterable) -> bool:
        if self.universal:
            return True
        return any(value in self.values for value in values)


@dataclass(frozen=True)
class RestrictionRule:
    rule_id: int
    name: str
    category: RestrictionCategory
    classes: Scope = field(default_factory=Scope.everything)
    windows: Scope = field(default_factory=Scope.everything)
    requires_no_guests: bool = False
    max_count: Optional[int] = None
    period_days: Optional[int] = None
    is_active: bool = True
    description: str = ""


@dataclass(frozen=True)
class WindowVerdict:
    is_fully_restricted: bool
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class Slot:
    slot_id: int
    lottery_date: str
    start_time: str
    max_occupants: int
    # Players booked outside the lottery (events, blocked tee times).
    reserved_occupants: int = 0

    @property
    def start_minutes(self) -> int:
        minutes = parse_hhmm_to_minutes(self.start_time)
        if minutes is None:
            raise ValueError(f"slot {self.slot_id} has invalid start_time {self.start_time!r}")
        return minutes


@dataclass(frozen=True)
class LotteryEntry:
    """A pending or processed lottery request.

    ``member_ids`` always starts with the organizer; an individual entry holds
    only the organizer, a group holds the organizer plus one to three members.
    """

    entry_id: int
    entry_type: EntryType
    organizer_id: int
    lottery_date: str
    preferred_window: int
    submitted_at: datetime
    member_ids: tuple[int, ...] = ()
    alternate_window: Optional[int] = None
    status: EntryStatus = EntryStatus.PENDING
    guest_ids: frozenset[int] = frozenset()
    guest_fill_count: int = 0
    assigned_slot_id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.member_ids:
            object.__setattr__(self, "member_ids", (self.organizer_id,))
        # naive submission times are taken as UTC
        if self.submitted_at.tzinfo is None:
            object.__setattr__(self, "submitted_at", self.submitted_at.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, "submitted_at", self.submitted_at.astimezone(timezone.utc))
        if self.alternate_window is not None and self.alternate_window == self.preferred_window:
            raise ValueError("alternate_window must differ from preferred_window")

    @property
    def is_group(self) -> bool:
        return self.entry_type is EntryType.GROUP

    @property
    def party_size(self) -> int:
        return len(self.member_ids) + len(self.guest_ids) + self.guest_fill_count

    @property
    def has_guests_or_fills(self) -> bool:
        return bool(self.guest_ids) or self.guest_fill_count > 0


@dataclass(frozen=True)
class AssignmentLogEntry:
    entry_id: int
    entry_type: EntryType
    assignment_reason: AssignmentReason
    final_slot_id: Optional[int]
    fairness_score_before: int
    fairness_score_after: int
    violated_restrictions: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class ProcessingResult:
    assignments: dict[int, Optional[int]]
    log: list[AssignmentLogEntry]
    updated_fairness: dict[int, int]

    @property
    def assigned_count(self) -> int:
        return sum(1 for slot_id in self.assignments.values() if slot_id is not None)

    @property
    def unassigned_entry_ids(self) -> list[int]:
        return [entry_id for entry_id, slot_id in self.assignments.items() if slot_id is None]


@dataclass(frozen=True)
class PendingChange:
    entry_id: int
    is_group: bool
    new_slot_id: Optional[int]


@dataclass(frozen=True)
class FrequencyViolation:
    rule_id: int
    rule_name: str
    current_count: int
    max_count: int
    period_days: int
    message: str


@dataclass(frozen=True)
class FairnessRecord:
    member_id: int
    fairness_score: int
    total_entries_month: int = 0
    preferences_granted_month: int = 0
    days_without_good_time: int = 0
    current_month: str = ""

    @property
    def fulfillment_rate(self) -> float:
        if self.total_entries_month == 0:
            return 0.0
        return self.preferences_granted_month / self.total_entries_month


@dataclass(frozen=True)
class ProcessingRun:
    run_id: int
    lottery_date: str
    processed_at: str
    total_entries: int
    assigned_count: int
    group_count: int
    individual_count: int
    violation_count: int
    fairness_assigned_at: Optional[str] = None


def month_key(lottery_date: str | date) -> str:
    """Return the ``YYYY-MM`` bucket used for monthly fairness statistics."""
    if isinstance(lottery_date, date):
        return lottery_date.isoformat()[:7]
    return str(lottery_date)[:7]
