"""HTTP controller layer for lottery processing and slot arrangement."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from teesheet.controllers.dependencies import get_arrangement_service, get_processing_service
from teesheet.domain.constraints import ConfigurationInvalidError, EntryValidationError
from teesheet.domain.models import PendingChange
from teesheet.services.arrangement_service import (
    ArrangementLockedError,
    ArrangementService,
    CapacityExceededError,
    NotFoundError,
)
from teesheet.services.assignment_service import (
    AlreadyProcessedError,
    LotteryProcessingService,
    RunFinalizedError,
    RunNotFoundError,
)
from teesheet.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/lottery", tags=["lottery"])


class AssignmentLogResponse(BaseModel):
    entry_id: int = Field(gt=0)
    entry_type: str
    assignment_reason: str
    final_slot_id: Optional[int] = None
    fairness_score_before: int
    fairness_score_after: int
    violated_restrictions: Optional[list[str]] = None


class ProcessResponse(BaseModel):
    run_id: int = Field(gt=0)
    lottery_date: date
    total_entries: int = Field(ge=0)
    assigned_count: int = Field(ge=0)
    group_count: int = Field(ge=0)
    individual_count: int = Field(ge=0)
    violation_count: int = Field(ge=0)
    unassigned_entry_ids: list[int]
    log: list[AssignmentLogResponse]


class ProcessingLogEntryResponse(BaseModel):
    entry_id: int = Field(gt=0)
    entry_type: str
    assignment_reason: str
    auto_assigned_slot_id: Optional[int] = None
    final_slot_id: Optional[int] = None
    fairness_score_before: int
    fairness_score_after: Optional[int] = None
    violated_restrictions: Optional[list[str]] = None


class ProcessingLogResponse(BaseModel):
    run_id: int = Field(gt=0)
    lottery_date: date
    processed_at: str
    fairness_assigned_at: Optional[str] = None
    entries: list[ProcessingLogEntryResponse]


class ResetResponse(BaseModel):
    lottery_date: date
    reverted_entries: int = Field(ge=0)


class FinalizeResponse(BaseModel):
    lottery_date: date
    fairness_scores: dict[int, int]


class ArrangedSlotResponse(BaseModel):
    slot_id: int = Field(gt=0)
    start_time: str
    max_occupants: int = Field(gt=0)
    occupancy: int = Field(ge=0)
    entry_ids: list[int]


class ArrangementResponse(BaseModel):
    lottery_date: date
    slots: list[ArrangedSlotResponse]
    unassigned_entry_ids: list[int]


class PendingChangeRequest(BaseModel):
    entry_id: int = Field(gt=0)
    is_group: bool = False
    new_slot_id: Optional[int] = Field(default=None, gt=0)


class CommitRequest(BaseModel):
    changes: list[PendingChangeRequest] = Field(min_length=1)


class CommitResponse(BaseModel):
    lottery_date: date
    applied_changes: int = Field(ge=0)


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post(
    "/{lottery_date}/process",
    response_model=ProcessResponse,
    status_code=status.HTTP_200_OK,
)
async def process_lottery(
    lottery_date: date,
    service: LotteryProcessingService = Depends(get_processing_service),
) -> ProcessResponse:
    """Run the lottery for a date; a second call is refused until reset."""
    try:
        summary = service.process_date(lottery_date.isoformat())
    except AlreadyProcessedError as exc:
        raise _conflict(exc) from exc
    except (ConfigurationInvalidError, EntryValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected lottery processing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process lottery",
        ) from exc

    run = summary.run
    return ProcessResponse(
        run_id=run.run_id,
        lottery_date=run.lottery_date,
        total_entries=run.total_entries,
        assigned_count=run.assigned_count,
        group_count=run.group_count,
        individual_count=run.individual_count,
        violation_count=run.violation_count,
        unassigned_entry_ids=summary.result.unassigned_entry_ids,
        log=[
            AssignmentLogResponse(
                entry_id=item.entry_id,
                entry_type=item.entry_type.value,
                assignment_reason=item.assignment_reason.value,
                final_slot_id=item.final_slot_id,
                fairness_score_before=item.fairness_score_before,
                fairness_score_after=item.fairness_score_after,
                violated_restrictions=(
                    list(item.violated_restrictions)
                    if item.violated_restrictions is not None
                    else None
                ),
            )
            for item in summary.result.log
        ],
    )


@router.get(
    "/{lottery_date}/log",
    response_model=ProcessingLogResponse,
    status_code=status.HTTP_200_OK,
)
async def get_processing_log(
    lottery_date: date,
    service: LotteryProcessingService = Depends(get_processing_service),
) -> ProcessingLogResponse:
    """Per-entry audit of the run; final slots and scores fill in on finalize."""
    try:
        processing_log = service.processing_log(lottery_date.isoformat())
    except RunNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    run = processing_log.run
    return ProcessingLogResponse(
        run_id=run.run_id,
        lottery_date=run.lottery_date,
        processed_at=run.processed_at,
        fairness_assigned_at=run.fairness_assigned_at,
        entries=[ProcessingLogEntryResponse(**row) for row in processing_log.entries],
    )


@router.post(
    "/{lottery_date}/reset",
    response_model=ResetResponse,
    status_code=status.HTTP_200_OK,
)
async def reset_lottery(
    lottery_date: date,
    service: LotteryProcessingService = Depends(get_processing_service),
) -> ResetResponse:
    try:
        reverted = service.reset_date(lottery_date.isoformat())
    except RunFinalizedError as exc:
        raise _conflict(exc) from exc
    return ResetResponse(lottery_date=lottery_date, reverted_entries=reverted)


@router.post(
    "/{lottery_date}/finalize",
    response_model=FinalizeResponse,
    status_code=status.HTTP_200_OK,
)
async def finalize_lottery(
    lottery_date: date,
    service: LotteryProcessingService = Depends(get_processing_service),
) -> FinalizeResponse:
    """Apply fairness feedback against the placement as it stands now."""
    try:
        scores = service.finalize_date(lottery_date.isoformat())
    except RunNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except RunFinalizedError as exc:
        raise _conflict(exc) from exc
    except ConfigurationInvalidError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return FinalizeResponse(lottery_date=lottery_date, fairness_scores=scores)


@router.get(
    "/{lottery_date}/arrangement",
    response_model=ArrangementResponse,
    status_code=status.HTTP_200_OK,
)
async def get_arrangement(
    lottery_date: date,
    service: ArrangementService = Depends(get_arrangement_service),
) -> ArrangementResponse:
    try:
        model = service.load(lottery_date.isoformat())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except ArrangementLockedError as exc:
        raise _conflict(exc) from exc
    return ArrangementResponse(
        lottery_date=lottery_date,
        slots=[
            ArrangedSlotResponse(
                slot_id=slot.slot_id,
                start_time=slot.start_time,
                max_occupants=slot.max_occupants,
                occupancy=model.occupancy(slot.slot_id),
                entry_ids=model.slot_entries(slot.slot_id),
            )
            for slot in model.slots
        ],
        unassigned_entry_ids=model.unassigned_entries(),
    )


@router.post(
    "/{lottery_date}/arrangement/commit",
    response_model=CommitResponse,
    status_code=status.HTTP_200_OK,
)
async def commit_arrangement(
    lottery_date: date,
    payload: CommitRequest,
    service: ArrangementService = Depends(get_arrangement_service),
) -> CommitResponse:
    """Persist a batch of entry moves; any failure leaves the date untouched."""
    changes = [
        PendingChange(
            entry_id=item.entry_id,
            is_group=item.is_group,
            new_slot_id=item.new_slot_id,
        )
        for item in payload.changes
    ]
    try:
        applied = service.commit(lottery_date.isoformat(), changes)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (CapacityExceededError, ArrangementLockedError) as exc:
        raise _conflict(exc) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected arrangement commit failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to commit arrangement",
        ) from exc
    return CommitResponse(lottery_date=lottery_date, applied_changes=applied)
