"""Notification dispatch for workflow and allocation transitions.

Dispatch is fire-and-forget: workflow code queues notifications on the open
transaction with :meth:`NotificationService.queue`, they are delivered only
after commit, and a failing sender is logged without touching the already
committed state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional, Sequence

from backend.domain.errors import NotificationNotFoundError
from backend.domain.models import Notification, NotificationType
from backend.repository.data_repository import DataRepository, Transaction
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class OutboundNotification:
    user_id: int
    event_id: Optional[int]
    notification_type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationSender(ABC):
    """Delivery channel for one notification."""

    channel = "base"

    @abstractmethod
    def send(self, notification: OutboundNotification) -> None:
        raise NotImplementedError


class InAppNotificationSender(NotificationSender):
    """Stores the notification so the recipient sees it in their inbox."""

    channel = "in_app"

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def send(self, notification: OutboundNotification) -> None:
        self._repository.insert_notification(
            user_id=notification.user_id,
            event_id=notification.event_id,
            notification_type=notification.notification_type.value,
            title=notification.title,
            message=notification.message,
            data=notification.data,
        )


class NotificationService:
    """Fans notifications out to every registered sender and serves the inbox."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        senders: Optional[Sequence[NotificationSender]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        if senders is None:
            senders = [InAppNotificationSender(self._repository)]
        self._senders = list(senders)

    def notify(
        self,
        user_id: int,
        event_id: Optional[int],
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        notification = OutboundNotification(
            user_id=user_id,
            event_id=event_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=dict(data or {}),
        )
        for sender in self._senders:
            try:
                sender.send(notification)
            except Exception:
                logger.exception(
                    "Notification dispatch failed | %s",
                    fields(
                        channel=sender.channel,
                        user_id=user_id,
                        event_id=event_id,
                        type=notification_type.value,
                    ),
                )

    def queue(
        self,
        tx: Transaction,
        user_id: int,
        event_id: Optional[int],
        notification_type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        """Deliver after ``tx`` commits; nothing is sent if it rolls back."""
        tx.after_commit(
            partial(
                self.notify,
                user_id,
                event_id,
                notification_type,
                title,
                message,
                data,
            )
        )

    def list_notifications(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        if limit < 1 or limit > 200:
            raise ValueError("limit must be between 1 and 200")
        if offset < 0:
            raise ValueError("offset must be >= 0")
        return self._repository.list_notifications(
            user_id,
            unread_only=unread_only,
            limit=limit,
            offset=offset,
        )

    def mark_as_read(self, user_id: int, notification_id: int) -> None:
        with self._repository.transaction() as tx:
            if not self._repository.notification_exists(notification_id, user_id, tx=tx):
                raise NotificationNotFoundError(notification_id)
            self._repository.mark_notifications_read(user_id, [notification_id], tx=tx)

    def mark_all_as_read(self, user_id: int) -> int:
        return self._repository.mark_notifications_read(user_id)

    def unread_count(self, user_id: int) -> int:
        return self._repository.count_unread_notifications(user_id)
