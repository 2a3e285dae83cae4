"""HTTP controller layer for event authoring, approvals and allocation."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from backend.controllers.dependencies import (
    get_allocation_service,
    get_approval_service,
    get_current_user_id,
    get_event_service,
    workflow_http_error,
)
from backend.domain.constraints import PARTICIPANT_LIMIT, REQUEST_PRIORITIES, TITLE_MAX_LENGTH
from backend.domain.errors import WorkflowError
from backend.domain.models import (
    AllocationResult,
    ApprovalAction,
    ApprovalOutcome,
    ApprovalStep,
    Event,
)
from backend.services.allocation_service import AllocationService
from backend.services.approval_service import (
    INVALID_STATE,
    ApprovalWorkflowService,
)
from backend.services.event_service import EventService, ResourceRequestInput
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["events"])


class ResourceRequestPayload(BaseModel):
    resource_id: int = Field(gt=0)
    quantity: int = Field(ge=1)
    priority: str = "normal"
    justification: Optional[str] = Field(default=None, max_length=500)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, value: str) -> str:
        if value not in REQUEST_PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(REQUEST_PRIORITIES)}")
        return value


class CreateEventRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    schedule_start: datetime
    schedule_end: datetime
    participant_count: int = Field(ge=1, le=PARTICIPANT_LIMIT)
    venue_type_preference: Optional[str] = Field(default=None, min_length=1)
    resource_requests: list[ResourceRequestPayload] = Field(default_factory=list)

    @field_validator("schedule_end")
    @classmethod
    def validate_schedule_window(cls, value: datetime, info: ValidationInfo) -> datetime:
        start = info.data.get("schedule_start")
        if start is not None and (start.tzinfo is None) == (value.tzinfo is None):
            if value <= start:
                raise ValueError("End time must be after start time")
        return value


class EventResponse(BaseModel):
    event_id: int
    title: str
    description: Optional[str]
    schedule_start: datetime
    schedule_end: datetime
    participant_count: int
    venue_type_preference: Optional[str]
    school_id: int
    department_id: int
    coordinator_id: int
    status: str
    approval_stage: str
    rejection_reason: Optional[str]


class ResourceRequestResponse(BaseModel):
    request_id: int
    resource_id: int
    quantity_needed: int
    priority: str
    is_allocated: bool
    allocated_quantity: int


class BookingResponse(BaseModel):
    booking_id: int
    target_id: int
    quantity: int = 1
    start_time: datetime
    end_time: datetime
    status: str


class EventDetailResponse(BaseModel):
    event: EventResponse
    resource_requests: list[ResourceRequestResponse]
    venue_bookings: list[BookingResponse]
    resource_bookings: list[BookingResponse]


class ApprovalRequest(BaseModel):
    action: ApprovalAction
    comments: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("action")
    @classmethod
    def validate_decision(cls, value: ApprovalAction) -> ApprovalAction:
        if value is ApprovalAction.SUBMITTED:
            raise ValueError("action must be APPROVED, REJECTED or MODIFICATION_REQUIRED")
        return value


class ConflictResponse(BaseModel):
    type: str
    conflicting_event_ids: list[int]
    details: str
    suggestions: list[str]


class ResourceAllocationResponse(BaseModel):
    resource_id: int
    allocated_quantity: int = Field(ge=0)


class AllocationResultResponse(BaseModel):
    success: bool
    venue_id: Optional[int]
    resource_allocations: list[ResourceAllocationResponse]
    conflicts: list[ConflictResponse]
    explanation: str


class ApprovalOutcomeResponse(BaseModel):
    success: bool
    next_stage: Optional[str]
    action: Optional[str]
    downgraded: bool
    allocation: Optional[AllocationResultResponse]
    notified_user_ids: list[int]


class ApprovalStepResponse(BaseModel):
    step_id: int
    approver_id: Optional[int]
    stage: str
    action: str
    comments: Optional[str]
    timestamp: datetime


def _event_response(event: Event) -> EventResponse:
    return EventResponse(
        event_id=event.event_id,
        title=event.title,
        description=event.description,
        schedule_start=event.schedule_start,
        schedule_end=event.schedule_end,
        participant_count=event.participant_count,
        venue_type_preference=event.venue_type_preference,
        school_id=event.school_id,
        department_id=event.department_id,
        coordinator_id=event.coordinator_id,
        status=event.status.value,
        approval_stage=event.approval_stage.value,
        rejection_reason=event.rejection_reason,
    )


def _allocation_response(result: AllocationResult) -> AllocationResultResponse:
    return AllocationResultResponse(**result.to_dict())


def _outcome_response(outcome: ApprovalOutcome) -> ApprovalOutcomeResponse:
    if not outcome.success:
        code = (
            status.HTTP_409_CONFLICT
            if outcome.error_code == INVALID_STATE
            else status.HTTP_403_FORBIDDEN
        )
        raise HTTPException(status_code=code, detail=outcome.error)
    return ApprovalOutcomeResponse(
        success=outcome.success,
        next_stage=outcome.next_stage.value if outcome.next_stage else None,
        action=outcome.action.value if outcome.action else None,
        downgraded=outcome.downgraded,
        allocation=(
            _allocation_response(outcome.allocation)
            if outcome.allocation is not None
            else None
        ),
        notified_user_ids=list(outcome.notified_user_ids),
    )


@router.post(
    "/events",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_event(
    payload: CreateEventRequest,
    user_id: int = Depends(get_current_user_id),
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    try:
        event = service.create_event(
            coordinator_id=user_id,
            title=payload.title,
            description=payload.description,
            schedule_start=payload.schedule_start,
            schedule_end=payload.schedule_end,
            participant_count=payload.participant_count,
            venue_type_preference=payload.venue_type_preference,
            resource_requests=[
                ResourceRequestInput(
                    resource_id=item.resource_id,
                    quantity=item.quantity,
                    priority=item.priority,
                    justification=item.justification,
                )
                for item in payload.resource_requests
            ],
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _event_response(event)


@router.get("/events/{event_id}", response_model=EventDetailResponse)
def get_event(
    event_id: int,
    service: EventService = Depends(get_event_service),
) -> EventDetailResponse:
    try:
        details = service.get_event(event_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return EventDetailResponse(
        event=_event_response(details.event),
        resource_requests=[
            ResourceRequestResponse(
                request_id=item.request_id,
                resource_id=item.resource_id,
                quantity_needed=item.quantity_needed,
                priority=item.priority,
                is_allocated=item.is_allocated,
                allocated_quantity=item.allocated_quantity,
            )
            for item in details.resource_requests
        ],
        venue_bookings=[
            BookingResponse(
                booking_id=booking.booking_id,
                target_id=booking.venue_id,
                start_time=booking.start_time,
                end_time=booking.end_time,
                status=booking.status.value,
            )
            for booking in details.venue_bookings
        ],
        resource_bookings=[
            BookingResponse(
                booking_id=booking.booking_id,
                target_id=booking.resource_id,
                quantity=booking.quantity,
                start_time=booking.start_time,
                end_time=booking.end_time,
                status=booking.status.value,
            )
            for booking in details.resource_bookings
        ],
    )


@router.post("/events/{event_id}/submit", response_model=ApprovalOutcomeResponse)
def submit_event(
    event_id: int,
    user_id: int = Depends(get_current_user_id),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> ApprovalOutcomeResponse:
    try:
        outcome = service.submit_event_for_approval(event_id, user_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _outcome_response(outcome)


@router.post("/events/{event_id}/approval", response_model=ApprovalOutcomeResponse)
def process_approval(
    event_id: int,
    payload: ApprovalRequest,
    user_id: int = Depends(get_current_user_id),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> ApprovalOutcomeResponse:
    """Record an approver decision; a failed final allocation still answers 200 with ``downgraded``."""
    try:
        outcome = service.process_approval(
            approver_id=user_id,
            action=payload.action,
            comments=payload.comments,
            event_id=event_id,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected approval failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process approval",
        ) from exc
    return _outcome_response(outcome)


@router.post("/events/{event_id}/allocation", response_model=AllocationResultResponse)
def allocate_event(
    event_id: int,
    _: int = Depends(get_current_user_id),
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResultResponse:
    """Retry allocation for an event left at the final human approval stage."""
    try:
        result = service.allocate_event(event_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _allocation_response(result)


@router.get("/events/{event_id}/feasibility", response_model=AllocationResultResponse)
def check_feasibility(
    event_id: int,
    service: AllocationService = Depends(get_allocation_service),
) -> AllocationResultResponse:
    try:
        result = service.check_allocation_feasibility(event_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return _allocation_response(result)


@router.get("/events/{event_id}/history", response_model=list[ApprovalStepResponse])
def approval_history(
    event_id: int,
    service: EventService = Depends(get_event_service),
) -> list[ApprovalStepResponse]:
    try:
        steps: list[ApprovalStep] = service.list_approval_history(event_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return [
        ApprovalStepResponse(
            step_id=step.step_id,
            approver_id=step.approver_id,
            stage=step.stage.value,
            action=step.action.value,
            comments=step.comments,
            timestamp=step.timestamp,
        )
        for step in steps
    ]


@router.get("/approvals/pending", response_model=list[EventResponse])
def pending_approvals(
    user_id: int = Depends(get_current_user_id),
    service: ApprovalWorkflowService = Depends(get_approval_service),
) -> list[EventResponse]:
    try:
        events = service.get_pending_approvals(user_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return [_event_response(event) for event in events]
