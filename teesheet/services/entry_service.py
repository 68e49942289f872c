"""Entry submission, cancellation and party restriction lookups."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from teesheet.domain.constraints import validate_entry_shape, validate_operating_config
from teesheet.domain.models import (
    EntryStatus,
    EntryType,
    FrequencyViolation,
    LotteryEntry,
    PreferenceWindow,
    RestrictionCategory,
    WindowVerdict,
)
from teesheet.repository.data_repository import DataRepository
from teesheet.services.restriction_service import check_frequency, evaluate_restrictions
from teesheet.services.window_service import compute_windows
from teesheet.utils.config import Settings, get_settings
from teesheet.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class EntryServiceError(Exception):
    """Base exception for entry lifecycle operations."""


class EntryNotFoundError(EntryServiceError):
    """Raised when an entry id does not exist."""


class MemberNotFoundError(EntryServiceError):
    """Raised when a party references an unknown member."""


class InvalidStatusTransitionError(EntryServiceError):
    """Raised when an entry cannot move from its current status."""


class LotteryClosedError(EntryServiceError):
    """Raised when entries are submitted for a date that was already processed."""


class DuplicateEntryError(EntryServiceError):
    """Raised when a party member already holds an entry for the date."""


@dataclass(frozen=True)
class SubmittedEntry:
    entry: LotteryEntry
    frequency_warnings: list[FrequencyViolation]


class EntryService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def windows(self) -> list[PreferenceWindow]:
        config = self._settings.operating_config()
        validate_operating_config(config)
        return compute_windows(config)

    def _member_classes(self, member_ids: Iterable[int]) -> dict[int, str]:
        requested = list(member_ids)
        classes = self._repository.get_member_classes(requested)
        missing = sorted(set(requested) - set(classes))
        if missing:
            raise MemberNotFoundError(
                "unknown member id(s): " + ", ".join(str(member_id) for member_id in missing)
            )
        return classes

    def evaluate_party(
        self,
        member_ids: Sequence[int],
        has_guests_or_fills: bool,
    ) -> dict[int, WindowVerdict]:
        """Per-window verdicts for a prospective party."""
        classes = self._member_classes(member_ids)
        return evaluate_restrictions(
            self.windows(),
            self._repository.list_restriction_rules(active_only=True),
            [classes[member_id] for member_id in member_ids],
            has_guests_or_fills,
        )

    def submit_entry(
        self,
        *,
        lottery_date: str,
        organizer_id: int,
        preferred_window: int,
        alternate_window: Optional[int] = None,
        member_ids: Sequence[int] = (),
        guest_ids: Sequence[int] = (),
        guest_fill_count: int = 0,
        submitted_at: Optional[datetime] = None,
    ) -> SubmittedEntry:
        """Validate and store a PENDING entry.

        ``member_ids`` lists the other players of a group; when empty the
        entry is an individual request. FREQUENCY limits are reported as
        warnings and never block the submission.
        """
        party = [organizer_id, *(member_id for member_id in member_ids if member_id != organizer_id)]
        if len(set(party)) != len(party):
            raise EntryServiceError("a member may appear only once in a party")
        is_group = len(party) > 1
        validate_entry_shape(
            is_group=is_group,
            member_count=len(party),
            guest_count=len(set(guest_ids)),
            guest_fill_count=guest_fill_count,
            preferred_window=preferred_window,
            alternate_window=alternate_window,
            window_count=len(self.windows()),
            max_occupants=self._settings.max_occupants_per_slot,
            max_group_members=self._settings.max_group_members,
        )
        classes = self._member_classes(party)
        if self._repository.get_processing_run(lottery_date) is not None:
            raise LotteryClosedError(f"lottery for {lottery_date} was already processed")
        self._ensure_not_entered(lottery_date, party)

        warnings = self._frequency_warnings(organizer_id, classes[organizer_id], lottery_date)
        entry_id = self._repository.create_entry(
            lottery_date=lottery_date,
            entry_type=EntryType.GROUP if is_group else EntryType.INDIVIDUAL,
            organizer_id=organizer_id,
            member_ids=party,
            preferred_window=preferred_window,
            alternate_window=alternate_window,
            guest_ids=guest_ids,
            guest_fill_count=guest_fill_count,
            submitted_at=submitted_at,
        )
        entry = self._load_entry(entry_id)
        logger.info(
            "Entry submitted | %s",
            format_fields(
                entry_id=entry_id,
                date=lottery_date,
                type=entry.entry_type.value,
                party_size=entry.party_size,
                frequency_warnings=len(warnings),
            ),
        )
        return SubmittedEntry(entry=entry, frequency_warnings=warnings)

    def _ensure_not_entered(self, lottery_date: str, party: Sequence[int]) -> None:
        active = self._repository.list_entries(
            lottery_date,
            [EntryStatus.PENDING, EntryStatus.PROCESSING, EntryStatus.ASSIGNED],
        )
        taken = sorted(
            {member_id for entry in active for member_id in entry.member_ids}.intersection(party)
        )
        if taken:
            raise DuplicateEntryError(
                f"member id(s) already entered for {lottery_date}: "
                + ", ".join(str(member_id) for member_id in taken)
            )

    def _load_entry(self, entry_id: int) -> LotteryEntry:
        entry = self._repository.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"entry {entry_id} does not exist")
        return entry

    def _frequency_warnings(
        self,
        organizer_id: int,
        member_class: str,
        lottery_date: str,
    ) -> list[FrequencyViolation]:
        rules = [
            rule
            for rule in self._repository.list_restriction_rules(active_only=True)
            if rule.category is RestrictionCategory.FREQUENCY and rule.period_days
        ]
        if not rules:
            return []
        day = date.fromisoformat(lottery_date)
        longest = max(rule.period_days or 0 for rule in rules)
        booked = self._repository.list_organizer_booking_dates(
            organizer_id,
            (day - timedelta(days=longest)).isoformat(),
            day.isoformat(),
        )
        return check_frequency(rules, member_class, day, booked)

    def cancel_entry(self, entry_id: int) -> LotteryEntry:
        """Move a PENDING entry to CANCELLED; any other status is refused."""
        entry = self._repository.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"entry {entry_id} does not exist")
        if not self._repository.update_entry_status(
            entry_id,
            EntryStatus.CANCELLED,
            expected_status=EntryStatus.PENDING,
        ):
            raise InvalidStatusTransitionError(
                f"entry {entry_id} is {entry.status.value}; only PENDING entries can be cancelled"
            )
        logger.info("Entry cancelled | %s", format_fields(entry_id=entry_id))
        return self._load_entry(entry_id)
