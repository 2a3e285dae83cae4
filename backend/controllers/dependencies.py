"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from backend.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    NotReadyError,
    WorkflowError,
)
from backend.services.allocation_service import AllocationService
from backend.services.approval_service import ApprovalWorkflowService
from backend.services.event_service import EventService
from backend.services.housekeeping_service import HousekeepingService
from backend.services.notification_service import NotificationService


def _service_from_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_event_service(request: Request) -> EventService:
    return _service_from_state(request, "event_service", "Event")


def get_approval_service(request: Request) -> ApprovalWorkflowService:
    return _service_from_state(request, "approval_service", "Approval")


def get_allocation_service(request: Request) -> AllocationService:
    return _service_from_state(request, "allocation_service", "Allocation")


def get_notification_service(request: Request) -> NotificationService:
    return _service_from_state(request, "notification_service", "Notification")


def get_housekeeping_service(request: Request) -> HousekeepingService:
    return _service_from_state(request, "housekeeping_service", "Housekeeping")


async def get_current_user_id(
    x_user_id: Optional[int] = Header(default=None, alias="X-User-Id", gt=0),
) -> int:
    """Acting user as asserted by the upstream authentication gateway."""
    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return x_user_id


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (NotReadyError, InvalidTransitionError)):
        code = status.HTTP_409_CONFLICT
    else:
        # EventValidationError and any other caller-side workflow error
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))
