"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from teesheet.services.arrangement_service import ArrangementService
from teesheet.services.assignment_service import LotteryProcessingService
from teesheet.services.entry_service import EntryService


def _service_from_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_entry_service(request: Request) -> EntryService:
    return _service_from_state(request, "entry_service", "Entry")


def get_processing_service(request: Request) -> LotteryProcessingService:
    return _service_from_state(request, "processing_service", "Lottery processing")


def get_arrangement_service(request: Request) -> ArrangementService:
    return _service_from_state(request, "arrangement_service", "Arrangement")
