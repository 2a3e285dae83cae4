"""HTTP triggers for scheduler-driven housekeeping jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.controllers.dependencies import get_housekeeping_service, workflow_http_error
from backend.domain.errors import WorkflowError
from backend.services.housekeeping_service import HousekeepingService


router = APIRouter(prefix="/housekeeping", tags=["housekeeping"])


class ReleaseRequest(BaseModel):
    now: Optional[datetime] = None


class ReleaseResponse(BaseModel):
    event_id: int
    released: bool
    venue_bookings_cancelled: int
    resource_bookings_cancelled: int
    reason: Optional[str]


class CleanupRequest(BaseModel):
    cutoff: Optional[datetime] = None


class CleanupResponse(BaseModel):
    cutoff: datetime
    venue_bookings_removed: int
    resource_bookings_removed: int


@router.post("/events/{event_id}/release", response_model=ReleaseResponse)
def release_event_resources(
    event_id: int,
    payload: Optional[ReleaseRequest] = None,
    service: HousekeepingService = Depends(get_housekeeping_service),
) -> ReleaseResponse:
    try:
        summary = service.release_resources_for_event(
            event_id,
            now=payload.now if payload is not None else None,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ReleaseResponse(
        event_id=summary.event_id,
        released=summary.released,
        venue_bookings_cancelled=summary.venue_bookings_cancelled,
        resource_bookings_cancelled=summary.resource_bookings_cancelled,
        reason=summary.reason,
    )


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_stale_bookings(
    payload: Optional[CleanupRequest] = None,
    service: HousekeepingService = Depends(get_housekeeping_service),
) -> CleanupResponse:
    summary = service.cleanup_stale_provisional_bookings(
        cutoff=payload.cutoff if payload is not None else None,
    )
    return CleanupResponse(
        cutoff=summary.cutoff,
        venue_bookings_removed=summary.venue_bookings_removed,
        resource_bookings_removed=summary.resource_bookings_removed,
    )
