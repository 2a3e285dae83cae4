"""Event authoring and read models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from backend.domain.constraints import EventDraft, validate_event_draft, validate_requested_quantity
from backend.domain.errors import (
    EventNotFoundError,
    EventValidationError,
    ResourceNotFoundError,
    UserNotFoundError,
)
from backend.domain.models import (
    ApprovalStep,
    Event,
    ResourceBooking,
    ResourceRequest,
    Role,
    VenueBooking,
)
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ResourceRequestInput:
    resource_id: int
    quantity: int
    priority: str = "normal"
    justification: Optional[str] = None


@dataclass(frozen=True)
class EventDetails:
    event: Event
    resource_requests: list[ResourceRequest]
    venue_bookings: list[VenueBooking]
    resource_bookings: list[ResourceBooking]


class EventService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def create_event(
        self,
        *,
        coordinator_id: int,
        title: str,
        schedule_start: datetime,
        schedule_end: datetime,
        participant_count: int,
        venue_type_preference: Optional[str] = None,
        description: Optional[str] = None,
        resource_requests: Sequence[ResourceRequestInput] = (),
    ) -> Event:
        """Create a draft event owned by ``coordinator_id`` together with its resource requests."""
        draft = EventDraft(
            title=title.strip(),
            schedule_start=schedule_start,
            schedule_end=schedule_end,
            participant_count=participant_count,
            venue_type_preference=venue_type_preference,
        )
        try:
            validate_event_draft(draft)
            for item in resource_requests:
                validate_requested_quantity(item.quantity, item.priority)
        except ValueError as exc:
            raise EventValidationError(str(exc)) from exc

        with self._repository.transaction() as tx:
            coordinator = self._repository.get_user(coordinator_id, tx=tx)
            if coordinator is None:
                raise UserNotFoundError(coordinator_id)
            if coordinator.role not in (Role.COORDINATOR, Role.ADMIN):
                raise EventValidationError("Only coordinators can create events")
            if coordinator.school_id is None or coordinator.department_id is None:
                raise EventValidationError("Coordinator must belong to a school and department")

            event_id = self._repository.create_event(
                title=draft.title,
                description=description,
                schedule_start=draft.schedule_start,
                schedule_end=draft.schedule_end,
                participant_count=draft.participant_count,
                venue_type_preference=draft.venue_type_preference,
                school_id=coordinator.school_id,
                department_id=coordinator.department_id,
                coordinator_id=coordinator.user_id,
                tx=tx,
            )
            for item in resource_requests:
                if self._repository.get_resource(item.resource_id, tx=tx) is None:
                    raise ResourceNotFoundError(item.resource_id)
                self._repository.add_resource_request(
                    event_id,
                    item.resource_id,
                    item.quantity,
                    priority=item.priority,
                    justification=item.justification,
                    tx=tx,
                )
            event = self._repository.get_event(event_id, tx=tx)

        logger.info(
            "Event created | %s",
            fields(
                event_id=event_id,
                coordinator_id=coordinator_id,
                participants=participant_count,
                resource_requests=len(resource_requests),
            ),
        )
        return event

    def get_event(self, event_id: int) -> EventDetails:
        with self._repository.transaction(isolation_level="READ_COMMITTED") as tx:
            event = self._repository.get_event(event_id, tx=tx)
            if event is None:
                raise EventNotFoundError(event_id)
            return EventDetails(
                event=event,
                resource_requests=self._repository.list_resource_requests(event_id, tx=tx),
                venue_bookings=self._repository.list_venue_bookings(event_id=event_id, tx=tx),
                resource_bookings=self._repository.list_resource_bookings(
                    event_id=event_id, tx=tx
                ),
            )

    def list_approval_history(self, event_id: int) -> list[ApprovalStep]:
        with self._repository.transaction(isolation_level="READ_COMMITTED") as tx:
            if self._repository.get_event(event_id, tx=tx) is None:
                raise EventNotFoundError(event_id)
            return self._repository.list_approval_steps(event_id, tx=tx)
