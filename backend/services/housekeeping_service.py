"""Idempotent housekeeping jobs triggered by an external scheduler.

Availability is always derived from the overlap scan over confirmed
bookings, so releasing quantity back to the pool is just cancelling or
removing the booking rows. Re-running either job once there is nothing left
to do changes nothing and writes no ledger entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from backend.domain.errors import EventNotFoundError
from backend.domain.models import EventStatus, NotificationType
from backend.repository.data_repository import DataRepository, to_db_timestamp, utc_now
from backend.services.notification_service import NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReleaseSummary:
    event_id: int
    released: bool
    venue_bookings_cancelled: int = 0
    resource_bookings_cancelled: int = 0
    reason: Optional[str] = None


@dataclass(frozen=True)
class CleanupSummary:
    cutoff: datetime
    venue_bookings_removed: int
    resource_bookings_removed: int

    @property
    def total_removed(self) -> int:
        return self.venue_bookings_removed + self.resource_bookings_removed


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class HousekeepingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._notifications = notification_service or NotificationService(
            repository=self._repository,
            settings=self._settings,
        )

    def release_resources_for_event(
        self,
        event_id: int,
        now: Optional[datetime] = None,
    ) -> ReleaseSummary:
        """Cancel an ended event's bookings so its venue and resources count as free again."""
        current_time = _as_utc(now) if now is not None else utc_now()
        grace = timedelta(hours=self._settings.resource_release_grace_hours)

        with self._repository.transaction() as tx:
            event = self._repository.get_event(event_id, tx=tx)
            if event is None:
                raise EventNotFoundError(event_id)

            ended = event.schedule_end + grace <= current_time
            if not ended and event.status is not EventStatus.COMPLETED:
                return ReleaseSummary(
                    event_id=event_id,
                    released=False,
                    reason="Event has not ended yet",
                )

            venue_count, resource_count = self._repository.cancel_bookings_for_event(
                event_id, tx=tx
            )
            if venue_count == 0 and resource_count == 0:
                return ReleaseSummary(
                    event_id=event_id,
                    released=False,
                    reason="No active bookings to release",
                )

            self._repository.append_audit_log(
                event_id=event_id,
                actor=self._settings.system_actor_name,
                action="auto_release",
                entity_type="Event",
                entity_id=str(event_id),
                data={
                    "venue_bookings_cancelled": venue_count,
                    "resource_bookings_cancelled": resource_count,
                    "released_at": to_db_timestamp(current_time),
                },
                tx=tx,
            )
            self._notifications.queue(
                tx,
                event.coordinator_id,
                event_id,
                NotificationType.RESOURCES_RELEASED,
                "Resources Released",
                f'Venue and resources held for "{event.title}" have been released',
                {
                    "venue_bookings_cancelled": venue_count,
                    "resource_bookings_cancelled": resource_count,
                },
            )

        logger.info(
            "Released event bookings | %s",
            fields(event_id=event_id, venues=venue_count, resources=resource_count),
        )
        return ReleaseSummary(
            event_id=event_id,
            released=True,
            venue_bookings_cancelled=venue_count,
            resource_bookings_cancelled=resource_count,
        )

    def cleanup_stale_provisional_bookings(
        self,
        cutoff: Optional[datetime] = None,
    ) -> CleanupSummary:
        if cutoff is None:
            cutoff = utc_now() - timedelta(hours=self._settings.provisional_booking_ttl_hours)
        cutoff = _as_utc(cutoff)

        with self._repository.transaction() as tx:
            venue_count, resource_count = self._repository.delete_stale_provisional_bookings(
                cutoff, tx=tx
            )
            if venue_count or resource_count:
                self._repository.append_audit_log(
                    actor=self._settings.system_actor_name,
                    action="cleanup_stale",
                    entity_type="Booking",
                    entity_id="provisional",
                    data={
                        "cutoff": to_db_timestamp(cutoff),
                        "venue_bookings_removed": venue_count,
                        "resource_bookings_removed": resource_count,
                    },
                    tx=tx,
                )

        summary = CleanupSummary(
            cutoff=cutoff,
            venue_bookings_removed=venue_count,
            resource_bookings_removed=resource_count,
        )
        logger.info(
            "Stale provisional cleanup finished | %s",
            fields(cutoff=to_db_timestamp(cutoff), removed=summary.total_removed),
        )
        return summary
