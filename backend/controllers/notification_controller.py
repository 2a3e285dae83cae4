"""HTTP controller layer for the in-app notification inbox."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from backend.controllers.dependencies import (
    get_current_user_id,
    get_notification_service,
    workflow_http_error,
)
from backend.domain.errors import WorkflowError
from backend.services.notification_service import NotificationService


router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    notification_id: int
    event_id: Optional[int]
    type: str
    title: str
    message: str
    data: dict[str, Any]
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    unread_count: int


class MarkReadResponse(BaseModel):
    updated: int
    unread_count: int


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id: int = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    try:
        notifications = service.list_notifications(
            user_id,
            unread_only=unread_only,
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return NotificationListResponse(
        items=[
            NotificationResponse(
                notification_id=item.notification_id,
                event_id=item.event_id,
                type=item.notification_type,
                title=item.title,
                message=item.message,
                data=item.data,
                is_read=item.is_read,
                created_at=item.created_at,
            )
            for item in notifications
        ],
        unread_count=service.unread_count(user_id),
    )


@router.post("/read-all", response_model=MarkReadResponse)
def mark_all_read(
    user_id: int = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> MarkReadResponse:
    updated = service.mark_all_as_read(user_id)
    return MarkReadResponse(updated=updated, unread_count=service.unread_count(user_id))


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
def mark_read(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> MarkReadResponse:
    try:
        service.mark_as_read(user_id, notification_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return MarkReadResponse(updated=1, unread_count=service.unread_count(user_id))
