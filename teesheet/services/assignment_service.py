"""Lottery assignment engine and the service that runs it once per date."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

from teesheet.domain.constraints import (
    ConfigurationInvalidError,
    EntryValidationError,
    validate_operating_config,
)
from teesheet.domain.models import (
    AssignmentLogEntry,
    AssignmentReason,
    EntryStatus,
    EntryType,
    LotteryEntry,
    PreferenceWindow,
    ProcessingResult,
    ProcessingRun,
    RestrictionRule,
    Slot,
    WindowVerdict,
    month_key,
)
from teesheet.repository.data_repository import DataRepository
from teesheet.services.fairness_service import (
    FairnessPolicy,
    preference_outcomes,
    recompute_fairness,
    roll_fairness_record,
)
from teesheet.services.restriction_service import evaluate_restrictions
from teesheet.services.window_service import compute_windows, window_by_index, window_for_minutes
from teesheet.utils.config import Settings, get_settings
from teesheet.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


class LotteryProcessingError(Exception):
    """Base exception for the per-date processing workflow."""


class AlreadyProcessedError(LotteryProcessingError):
    """Raised when a date already has a processing run or processed entries."""


class RunFinalizedError(LotteryProcessingError):
    """Raised when a run whose fairness was already assigned is touched again."""


class RunNotFoundError(LotteryProcessingError):
    """Raised when a date has no processing run to act on."""


class CapacityLedger:
    """Remaining capacity per slot, owned by a single processing pass."""

    def __init__(self, slots: Iterable[Slot]) -> None:
        self._remaining: dict[int, int] = {
            slot.slot_id: slot.max_occupants - slot.reserved_occupants for slot in slots
        }

    def remaining(self, slot_id: int) -> int:
        return self._remaining[slot_id]

    def fits(self, slot_id: int, party_size: int) -> bool:
        return self._remaining[slot_id] >= party_size

    def reserve(self, slot_id: int, party_size: int) -> None:
        if not self.fits(slot_id, party_size):
            raise ValueError(f"slot {slot_id} cannot take a party of {party_size}")
        self._remaining[slot_id] -= party_size

    @property
    def total_remaining(self) -> int:
        return sum(self._remaining.values())


@dataclass(frozen=True)
class _Placement:
    slot: Optional[Slot]
    reason: AssignmentReason
    violated: Optional[tuple[str, ...]] = None


def _validate_entries(
    lottery_date: str,
    entries: Sequence[LotteryEntry],
    windows: Sequence[PreferenceWindow],
) -> None:
    for entry in entries:
        if entry.status is not EntryStatus.PENDING:
            raise EntryValidationError(
                f"entry {entry.entry_id} is {entry.status.value}; only PENDING entries can be processed"
            )
        if entry.lottery_date != lottery_date:
            raise EntryValidationError(
                f"entry {entry.entry_id} belongs to {entry.lottery_date}, not {lottery_date}"
            )
        if window_by_index(windows, entry.preferred_window) is None:
            raise EntryValidationError(
                f"entry {entry.entry_id} prefers unknown window {entry.preferred_window}"
            )
        if (
            entry.alternate_window is not None
            and window_by_index(windows, entry.alternate_window) is None
        ):
            raise EntryValidationError(
                f"entry {entry.entry_id} names unknown alternate window {entry.alternate_window}"
            )


def _priority_order(
    entries: Sequence[LotteryEntry],
    fairness_scores: Mapping[int, int],
    default_score: int,
) -> list[LotteryEntry]:
    keyed = [
        (
            (
                fairness_scores.get(entry.organizer_id, default_score),
                entry.submitted_at,
                entry.entry_id,
            ),
            entry,
        )
        for entry in entries
    ]
    keyed.sort(key=lambda item: item[0])
    return [entry for _, entry in keyed]


def _first_slot_in_window(
    window: PreferenceWindow,
    slots: Sequence[Slot],
    ledger: CapacityLedger,
    party_size: int,
) -> Optional[Slot]:
    for slot in slots:
        if window.contains(slot.start_minutes) and ledger.fits(slot.slot_id, party_size):
            return slot
    return None


def _nearest_slot(
    midpoint: float,
    candidates: Iterable[Slot],
) -> Optional[Slot]:
    ranked = sorted(
        candidates,
        key=lambda slot: (abs(slot.start_minutes - midpoint), slot.start_minutes, slot.slot_id),
    )
    return ranked[0] if ranked else None


def _place_entry(
    entry: LotteryEntry,
    *,
    slots: Sequence[Slot],
    windows: Sequence[PreferenceWindow],
    verdicts: Mapping[int, WindowVerdict],
    ledger: CapacityLedger,
) -> _Placement:
    party_size = entry.party_size
    preferred = window_by_index(windows, entry.preferred_window)
    alternate = window_by_index(windows, entry.alternate_window)

    restriction_reasons: list[str] = []
    for window in (preferred, alternate):
        if window is not None and verdicts[window.index].is_fully_restricted:
            restriction_reasons.extend(verdicts[window.index].reasons)

    if preferred is not None and not verdicts[preferred.index].is_fully_restricted:
        slot = _first_slot_in_window(preferred, slots, ledger, party_size)
        if slot is not None:
            return _Placement(slot=slot, reason=AssignmentReason.PREFERRED_MATCH)

    if alternate is not None and not verdicts[alternate.index].is_fully_restricted:
        slot = _first_slot_in_window(alternate, slots, ledger, party_size)
        if slot is not None:
            return _Placement(slot=slot, reason=AssignmentReason.ALTERNATE_MATCH)

    with_capacity = [slot for slot in slots if ledger.fits(slot.slot_id, party_size)]
    allowed: list[Slot] = []
    restricted: list[Slot] = []
    slot_reasons: dict[int, tuple[str, ...]] = {}
    for slot in with_capacity:
        window = window_for_minutes(windows, slot.start_minutes)
        if window is not None and verdicts[window.index].is_fully_restricted:
            restricted.append(slot)
            slot_reasons[slot.slot_id] = verdicts[window.index].reasons
        else:
            allowed.append(slot)

    midpoint = preferred.midpoint if preferred is not None else 0.0
    slot = _nearest_slot(midpoint, allowed)
    if slot is not None:
        return _Placement(slot=slot, reason=AssignmentReason.ALLOWED_FALLBACK)

    slot = _nearest_slot(midpoint, restricted)
    if slot is not None:
        return _Placement(
            slot=slot,
            reason=AssignmentReason.RESTRICTION_VIOLATION,
            violated=slot_reasons[slot.slot_id],
        )

    if restriction_reasons:
        return _Placement(
            slot=None,
            reason=AssignmentReason.RESTRICTION_VIOLATION,
            violated=tuple(restriction_reasons),
        )
    return _Placement(slot=None, reason=AssignmentReason.CAPACITY_EXHAUSTED, violated=())


def process_lottery(
    lottery_date: str,
    entries: Sequence[LotteryEntry],
    slots: Sequence[Slot],
    rules: Sequence[RestrictionRule],
    fairness_scores: Mapping[int, int],
    *,
    windows: Sequence[PreferenceWindow],
    member_classes: Mapping[int, str],
    fairness_policy: FairnessPolicy = FairnessPolicy(),
) -> ProcessingResult:
    """Assign every pending entry for ``lottery_date`` to at most one slot.

    Entries are served lowest fairness score first, earliest submission
    breaking ties. Identical inputs always yield identical assignments and
    logs. Entries that cannot be placed are reported, not raised.
    """
    if not windows:
        raise ConfigurationInvalidError("no preference windows could be derived for the day")
    day_slots = sorted(
        (slot for slot in slots if slot.lottery_date == lottery_date),
        key=lambda slot: (slot.start_minutes, slot.slot_id),
    )
    if not day_slots:
        raise ConfigurationInvalidError(f"no slots exist for {lottery_date}")
    _validate_entries(lottery_date, entries, windows)

    ledger = CapacityLedger(day_slots)
    ordered = _priority_order(entries, fairness_scores, fairness_policy.default_score)
    logger.info(
        "Lottery processing started | %s",
        format_fields(
            date=lottery_date,
            entries=len(ordered),
            slots=len(day_slots),
            open_capacity=ledger.total_remaining,
        ),
    )

    assignments: dict[int, Optional[int]] = {}
    placements: list[tuple[LotteryEntry, _Placement]] = []
    for entry in ordered:
        party_classes = [
            member_classes[member_id]
            for member_id in entry.member_ids
            if member_id in member_classes
        ]
        verdicts = evaluate_restrictions(
            windows,
            rules,
            party_classes,
            entry.has_guests_or_fills,
        )
        placement = _place_entry(
            entry,
            slots=day_slots,
            windows=windows,
            verdicts=verdicts,
            ledger=ledger,
        )
        if placement.slot is not None:
            ledger.reserve(placement.slot.slot_id, entry.party_size)
            if placement.reason is AssignmentReason.RESTRICTION_VIOLATION:
                logger.warning(
                    "Fallback into restricted window | %s",
                    format_fields(entry_id=entry.entry_id, slot=placement.slot.start_time),
                )
        assignments[entry.entry_id] = placement.slot.slot_id if placement.slot else None
        placements.append((entry, placement))
        logger.debug(
            "Entry processed | %s",
            format_fields(
                entry_id=entry.entry_id,
                party_size=entry.party_size,
                reason=placement.reason.value,
                slot=placement.slot.start_time if placement.slot else None,
            ),
        )

    updated_fairness = recompute_fairness(
        lottery_date,
        assignments,
        ordered,
        slots=day_slots,
        windows=windows,
        current_scores=fairness_scores,
        policy=fairness_policy,
    )

    log: list[AssignmentLogEntry] = []
    for entry, placement in placements:
        before = fairness_scores.get(entry.organizer_id, fairness_policy.default_score)
        log.append(
            AssignmentLogEntry(
                entry_id=entry.entry_id,
                entry_type=entry.entry_type,
                assignment_reason=placement.reason,
                final_slot_id=placement.slot.slot_id if placement.slot else None,
                fairness_score_before=before,
                fairness_score_after=updated_fairness.get(entry.organizer_id, before),
                violated_restrictions=placement.violated,
            )
        )

    result = ProcessingResult(
        assignments=assignments,
        log=log,
        updated_fairness=updated_fairness,
    )
    logger.info(
        "Lottery processing completed | %s",
        format_fields(
            date=lottery_date,
            assigned=result.assigned_count,
            unassigned=len(result.unassigned_entry_ids),
            groups=sum(1 for entry in ordered if entry.entry_type is EntryType.GROUP),
            remaining_capacity=ledger.total_remaining,
        ),
    )
    return result


@dataclass(frozen=True)
class DateProcessingSummary:
    run: ProcessingRun
    result: ProcessingResult


@dataclass(frozen=True)
class DateProcessingLog:
    run: ProcessingRun
    entries: list[dict[str, object]]


class LotteryProcessingService:
    """Runs the lottery for a date against persisted entries, once."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._policy = FairnessPolicy.from_settings(self._settings)

    def _windows(self) -> list[PreferenceWindow]:
        config = self._settings.operating_config()
        validate_operating_config(config)
        return compute_windows(config)

    def process_date(self, lottery_date: str) -> DateProcessingSummary:
        if self._repository.get_processing_run(lottery_date) is not None:
            raise AlreadyProcessedError(f"lottery for {lottery_date} was already processed")
        if self._repository.count_processed_entries(lottery_date) > 0:
            raise AlreadyProcessedError(
                f"lottery for {lottery_date} has entries already in processing"
            )

        windows = self._windows()
        slots = self._repository.ensure_slots_for_date(
            lottery_date,
            self._settings.operating_config(),
        )
        entries = self._repository.list_entries(lottery_date, [EntryStatus.PENDING])
        member_ids = {member_id for entry in entries for member_id in entry.member_ids}
        member_classes = self._repository.get_member_classes(member_ids)
        fairness_scores = self._repository.get_fairness_scores(member_ids)
        rules = self._repository.list_restriction_rules(active_only=True)

        entry_ids = [entry.entry_id for entry in entries]
        self._repository.mark_entries_processing(entry_ids)
        try:
            result = process_lottery(
                lottery_date,
                entries,
                slots,
                rules,
                fairness_scores,
                windows=windows,
                member_classes=member_classes,
                fairness_policy=self._policy,
            )
            group_count = sum(1 for entry in entries if entry.is_group)
            self._repository.save_processing_outcome(
                lottery_date=lottery_date,
                assignments=result.assignments,
                log=result.log,
                group_count=group_count,
                individual_count=len(entries) - group_count,
            )
        except Exception:
            for entry_id in entry_ids:
                self._repository.update_entry_status(
                    entry_id,
                    EntryStatus.PENDING,
                    expected_status=EntryStatus.PROCESSING,
                )
            raise

        run = self._repository.get_processing_run(lottery_date)
        if run is None:
            raise LotteryProcessingError(f"processing run for {lottery_date} was not recorded")
        return DateProcessingSummary(run=run, result=result)

    def processing_log(self, lottery_date: str) -> DateProcessingLog:
        """Return the run for a date with its per-entry audit rows."""
        run = self._repository.get_processing_run(lottery_date)
        if run is None:
            raise RunNotFoundError(f"lottery for {lottery_date} has not been processed")
        return DateProcessingLog(run=run, entries=self._repository.list_processing_log(run.run_id))

    def reset_date(self, lottery_date: str) -> int:
        """Put every non-cancelled entry back to PENDING and drop the run."""
        run = self._repository.get_processing_run(lottery_date)
        if run is not None and run.fairness_assigned_at is not None:
            raise RunFinalizedError(
                f"lottery for {lottery_date} was finalized at {run.fairness_assigned_at}"
            )
        reverted = self._repository.reset_date(lottery_date)
        logger.info(
            "Lottery reset | %s",
            format_fields(date=lottery_date, reverted_entries=reverted, had_run=run is not None),
        )
        return reverted

    def finalize_date(self, lottery_date: str) -> dict[int, int]:
        """Score members against the final placement and close the run.

        Returns the new fairness score of every member that holds a slot.
        """
        run = self._repository.get_processing_run(lottery_date)
        if run is None:
            raise RunNotFoundError(f"lottery for {lottery_date} has not been processed")
        if run.fairness_assigned_at is not None:
            raise RunFinalizedError(
                f"lottery for {lottery_date} was finalized at {run.fairness_assigned_at}"
            )

        windows = self._windows()
        slots = self._repository.list_slots(lottery_date)
        entries = self._repository.list_entries(
            lottery_date,
            [EntryStatus.PENDING, EntryStatus.ASSIGNED],
        )
        final_slots = {
            entry.entry_id: (
                entry.assigned_slot_id if entry.status is EntryStatus.ASSIGNED else None
            )
            for entry in entries
        }
        member_ids = {member_id for entry in entries for member_id in entry.member_ids}
        records = self._repository.get_fairness_records(member_ids)
        current_scores = {member_id: record.fairness_score for member_id, record in records.items()}

        new_scores = recompute_fairness(
            lottery_date,
            final_slots,
            entries,
            slots=slots,
            windows=windows,
            current_scores=current_scores,
            policy=self._policy,
        )
        outcomes = preference_outcomes(
            lottery_date,
            final_slots,
            entries,
            slots=slots,
            windows=windows,
        )
        month = month_key(lottery_date)
        rolled = [
            roll_fairness_record(
                records.get(member_id),
                member_id=member_id,
                new_score=score,
                preference_granted=outcomes[member_id],
                month=month,
            )
            for member_id, score in sorted(new_scores.items())
        ]
        organizer_scores = {
            entry.entry_id: new_scores[entry.organizer_id]
            for entry in entries
            if entry.organizer_id in new_scores
        }
        self._repository.record_fairness_assignment(
            run_id=run.run_id,
            records=rolled,
            final_slots=final_slots,
            organizer_scores=organizer_scores,
        )
        logger.info(
            "Fairness assigned | %s",
            format_fields(
                date=lottery_date,
                members=len(rolled),
                granted=sum(1 for granted in outcomes.values() if granted),
            ),
        )
        return new_scores
