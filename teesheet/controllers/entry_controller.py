"""HTTP controller layer for windows, restriction checks and entry lifecycle."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from teesheet.controllers.dependencies import get_entry_service
from teesheet.domain.constraints import ConfigurationInvalidError, EntryValidationError
from teesheet.services.entry_service import (
    EntryNotFoundError,
    EntryService,
    EntryServiceError,
    InvalidStatusTransitionError,
    DuplicateEntryError,
    LotteryClosedError,
    MemberNotFoundError,
)
from teesheet.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["entries"])


class WindowResponse(BaseModel):
    index: int = Field(ge=0)
    label: str
    time_range: str
    start_minutes: int = Field(ge=0)
    end_minutes: int = Field(gt=0)


class WindowsResponse(BaseModel):
    windows: list[WindowResponse]


class RestrictionEvaluationRequest(BaseModel):
    member_ids: list[int] = Field(min_length=1)
    has_guests_or_fills: bool = False

    @field_validator("member_ids")
    @classmethod
    def validate_member_ids(cls, value: list[int]) -> list[int]:
        for member_id in value:
            if member_id <= 0:
                raise ValueError("member_ids values must be positive integers")
        return value


class WindowVerdictResponse(BaseModel):
    window_index: int = Field(ge=0)
    is_fully_restricted: bool
    reasons: list[str]


class RestrictionEvaluationResponse(BaseModel):
    verdicts: list[WindowVerdictResponse]


class SubmitEntryRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    lottery_date: date
    organizer_id: int = Field(gt=0)
    preferred_window: int = Field(ge=0)
    alternate_window: Optional[int] = Field(default=None, ge=0)
    member_ids: list[int] = Field(default_factory=list)
    guest_ids: list[int] = Field(default_factory=list)
    guest_fill_count: int = Field(default=0, ge=0)
    submitted_at: Optional[datetime] = None

    @field_validator("member_ids", "guest_ids")
    @classmethod
    def validate_ids(cls, value: list[int]) -> list[int]:
        for item in value:
            if item <= 0:
                raise ValueError("ids must be positive integers")
        return value


class FrequencyWarningResponse(BaseModel):
    rule_name: str
    current_count: int = Field(ge=0)
    max_count: int = Field(gt=0)
    period_days: int = Field(gt=0)
    message: str


class EntryResponse(BaseModel):
    entry_id: int = Field(gt=0)
    entry_type: str
    lottery_date: date
    organizer_id: int = Field(gt=0)
    member_ids: list[int]
    party_size: int = Field(gt=0)
    preferred_window: int = Field(ge=0)
    alternate_window: Optional[int] = None
    status: str
    assigned_slot_id: Optional[int] = None


class SubmitEntryResponse(BaseModel):
    entry: EntryResponse
    frequency_warnings: list[FrequencyWarningResponse]


def _entry_response(entry) -> EntryResponse:
    return EntryResponse(
        entry_id=entry.entry_id,
        entry_type=entry.entry_type.value,
        lottery_date=entry.lottery_date,
        organizer_id=entry.organizer_id,
        member_ids=list(entry.member_ids),
        party_size=entry.party_size,
        preferred_window=entry.preferred_window,
        alternate_window=entry.alternate_window,
        status=entry.status.value,
        assigned_slot_id=entry.assigned_slot_id,
    )


@router.get(
    "/windows",
    response_model=WindowsResponse,
    status_code=status.HTTP_200_OK,
)
async def list_windows(
    service: EntryService = Depends(get_entry_service),
) -> WindowsResponse:
    try:
        windows = service.windows()
    except ConfigurationInvalidError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return WindowsResponse(
        windows=[
            WindowResponse(
                index=window.index,
                label=window.label,
                time_range=window.time_range,
                start_minutes=window.start_minutes,
                end_minutes=window.end_minutes,
            )
            for window in windows
        ]
    )


@router.post(
    "/restrictions/evaluate",
    response_model=RestrictionEvaluationResponse,
    status_code=status.HTTP_200_OK,
)
async def evaluate_restrictions(
    payload: RestrictionEvaluationRequest,
    service: EntryService = Depends(get_entry_service),
) -> RestrictionEvaluationResponse:
    """Show which windows a party may book and why the others are closed."""
    try:
        verdicts = service.evaluate_party(payload.member_ids, payload.has_guests_or_fills)
    except ConfigurationInvalidError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except MemberNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return RestrictionEvaluationResponse(
        verdicts=[
            WindowVerdictResponse(
                window_index=index,
                is_fully_restricted=verdict.is_fully_restricted,
                reasons=list(verdict.reasons),
            )
            for index, verdict in sorted(verdicts.items())
        ]
    )


@router.post(
    "/entries",
    response_model=SubmitEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_entry(
    payload: SubmitEntryRequest,
    service: EntryService = Depends(get_entry_service),
) -> SubmitEntryResponse:
    try:
        submitted = service.submit_entry(
            lottery_date=payload.lottery_date.isoformat(),
            organizer_id=payload.organizer_id,
            preferred_window=payload.preferred_window,
            alternate_window=payload.alternate_window,
            member_ids=payload.member_ids,
            guest_ids=payload.guest_ids,
            guest_fill_count=payload.guest_fill_count,
            submitted_at=payload.submitted_at,
        )
    except MemberNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except (LotteryClosedError, DuplicateEntryError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except (EntryValidationError, ConfigurationInvalidError, EntryServiceError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected entry submission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit entry",
        ) from exc

    return SubmitEntryResponse(
        entry=_entry_response(submitted.entry),
        frequency_warnings=[
            FrequencyWarningResponse(
                rule_name=warning.rule_name,
                current_count=warning.current_count,
                max_count=warning.max_count,
                period_days=warning.period_days,
                message=warning.message,
            )
            for warning in submitted.frequency_warnings
        ],
    )


@router.post(
    "/entries/{entry_id}/cancel",
    response_model=EntryResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_entry(
    entry_id: int,
    service: EntryService = Depends(get_entry_service),
) -> EntryResponse:
    try:
        entry = service.cancel_entry(entry_id)
    except EntryNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidStatusTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return _entry_response(entry)
