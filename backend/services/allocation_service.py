"""Venue and resource allocation for events that cleared the approval chain.

Selection is a deterministic greedy pass: candidate venues are ordered by
``(capacity, name)`` and the first one without an overlapping confirmed
booking wins. Every resource request is evaluated even after a failure so
the caller always receives the complete conflict set. Bookings are written
only when the whole plan succeeds, inside a savepoint, so a failed or
interrupted attempt never leaves partial bookings behind.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from backend.domain.errors import EventNotFoundError, NotReadyError, ResourceNotFoundError
from backend.domain.models import (
    AllocationConflict,
    AllocationResult,
    ApprovalAction,
    ApprovalStage,
    ConflictKind,
    Event,
    EventStatus,
    NotificationType,
    ResourceAllocation,
    ResourceRequest,
    Venue,
)
from backend.domain.workflow import FINAL_HUMAN_STAGE
from backend.repository.data_repository import DataRepository, Transaction
from backend.services.notification_service import NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)

NO_CAPACITY_SUGGESTIONS = (
    "Consider reducing participant count",
    "Choose different time slot",
)
VENUE_BOOKED_SUGGESTIONS = (
    "Choose different time slot",
    "Consider smaller venue capacity requirement",
    "Contact conflicting events for rescheduling",
)
RESOURCE_SHORTAGE_SUGGESTIONS = (
    "Reduce quantity requirement",
    "Choose different time slot",
    "Find alternative resources",
)
SYSTEM_APPROVAL_COMMENT = "Automatic allocation completed successfully"


@dataclass(frozen=True)
class _PlannedResource:
    request: ResourceRequest
    quantity: int


@dataclass(frozen=True)
class AllocationPlan:
    """Outcome of evaluating an event against current bookings, before any write."""

    venue: Optional[Venue]
    venue_conflict: Optional[AllocationConflict]
    resources: tuple[_PlannedResource, ...]
    resource_conflicts: tuple[AllocationConflict, ...]

    @property
    def feasible(self) -> bool:
        return self.venue is not None and not self.resource_conflicts

    @property
    def conflicts(self) -> tuple[AllocationConflict, ...]:
        head = (self.venue_conflict,) if self.venue_conflict is not None else ()
        return head + self.resource_conflicts

    @property
    def resource_allocations(self) -> tuple[ResourceAllocation, ...]:
        return tuple(
            ResourceAllocation(
                resource_id=planned.request.resource_id,
                allocated_quantity=planned.quantity,
            )
            for planned in self.resources
        )

    def failure_explanation(self) -> str:
        parts: list[str] = []
        if self.venue_conflict is not None:
            parts.append(f"Venue allocation failed: {self.venue_conflict.details}")
        if self.resource_conflicts:
            count = len(self.resource_conflicts)
            noun = "resource" if count == 1 else "resources"
            parts.append(f"Resource allocation failed: Failed to allocate {count} {noun}")
        return "; ".join(parts)


class AllocationService:
    """Finds and commits one venue plus every requested resource for an event."""

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

    def allocate_event(self, event_id: int, tx: Optional[Transaction] = None) -> AllocationResult:
        """Allocate an event sitting at the final human approval stage.

        When ``tx`` is given the allocation joins the caller's transaction,
        which is how the approval flow keeps the stage change and the
        bookings atomic. Raises ``EventNotFoundError`` or ``NotReadyError``.
        """
        if tx is None:
            with self._repository.transaction() as own_tx:
                return self.allocate_event(event_id, tx=own_tx)

        event = self._repository.get_event(event_id, tx=tx)
        if event is None:
            raise EventNotFoundError(event_id)
        if event.approval_stage is not FINAL_HUMAN_STAGE:
            raise NotReadyError(event_id, event.approval_stage.value)

        plan = self._plan(event, tx)
        if not plan.feasible:
            result = AllocationResult(
                success=False,
                explanation=plan.failure_explanation(),
                conflicts=plan.conflicts,
            )
            self._record_failure(event, result, tx)
            return result

        with tx.savepoint("allocation"):
            self._commit_plan(event, plan, tx)
            self._repository.update_event_stage(
                event.event_id,
                stage=ApprovalStage.APPROVED,
                status=EventStatus.APPROVED,
                tx=tx,
            )
            self._repository.insert_approval_step(
                event_id=event.event_id,
                approver_id=None,
                stage=ApprovalStage.APPROVED,
                action=ApprovalAction.APPROVED,
                comments=SYSTEM_APPROVAL_COMMENT,
                tx=tx,
            )

        result = AllocationResult(
            success=True,
            explanation=(
                f"Allocated {plan.venue.name} with "
                f"{len(plan.resources)} resource request(s) fulfilled"
            ),
            venue_id=plan.venue.venue_id,
            resource_allocations=plan.resource_allocations,
        )
        self._repository.append_audit_log(
            event_id=event.event_id,
            actor=self._settings.system_actor_name,
            action="allocation_succeeded",
            entity_type="Event",
            entity_id=str(event.event_id),
            data=result.to_dict(),
            tx=tx,
        )
        logger.info(
            "Allocation succeeded | %s",
            fields(
                event_id=event.event_id,
                venue_id=result.venue_id,
                resources=len(result.resource_allocations),
            ),
        )
        return result

    def check_allocation_feasibility(self, event_id: int) -> AllocationResult:
        """Run the venue and resource checks without writing anything."""
        with self._repository.transaction(isolation_level="READ_COMMITTED") as tx:
            event = self._repository.get_event(event_id, tx=tx)
            if event is None:
                raise EventNotFoundError(event_id)
            plan = self._plan(event, tx)

        venue_part = "Venue OK" if plan.venue is not None else "Venue issues"
        resource_part = "Resources OK" if not plan.resource_conflicts else "Resource issues"
        return AllocationResult(
            success=plan.feasible,
            explanation=f"Feasibility check: {venue_part}, {resource_part}",
            venue_id=plan.venue.venue_id if plan.venue is not None else None,
            resource_allocations=plan.resource_allocations if plan.feasible else (),
            conflicts=plan.conflicts,
        )

    def _plan(self, event: Event, tx: Transaction) -> AllocationPlan:
        venue, venue_conflict = self._select_venue(event, tx)
        resources, resource_conflicts = self._plan_resources(event, tx)
        return AllocationPlan(
            venue=venue,
            venue_conflict=venue_conflict,
            resources=resources,
            resource_conflicts=resource_conflicts,
        )

    def _select_venue(
        self,
        event: Event,
        tx: Transaction,
    ) -> tuple[Optional[Venue], Optional[AllocationConflict]]:
        candidates = self._repository.list_candidate_venues(
            event.participant_count,
            event.venue_type_preference,
            tx=tx,
        )
        if not candidates:
            details = f"No venues found with capacity >= {event.participant_count}"
            if event.venue_type_preference is not None:
                details += f" and type '{event.venue_type_preference}'"
            return None, AllocationConflict(
                kind=ConflictKind.VENUE_UNAVAILABLE,
                conflicting_event_ids=(),
                details=details,
                suggestions=NO_CAPACITY_SUGGESTIONS,
            )

        conflicting_event_ids: set[int] = set()
        for venue in candidates:
            overlapping = self._repository.list_overlapping_venue_bookings(
                venue.venue_id,
                event.schedule_start,
                event.schedule_end,
                tx=tx,
            )
            if not overlapping:
                return venue, None
            conflicting_event_ids.update(booking.event_id for booking in overlapping)

        return None, AllocationConflict(
            kind=ConflictKind.VENUE_UNAVAILABLE,
            conflicting_event_ids=tuple(sorted(conflicting_event_ids)),
            details="All suitable venues are booked during requested time",
            suggestions=VENUE_BOOKED_SUGGESTIONS,
        )

    def _plan_resources(
        self,
        event: Event,
        tx: Transaction,
    ) -> tuple[tuple[_PlannedResource, ...], tuple[AllocationConflict, ...]]:
        planned: list[_PlannedResource] = []
        conflicts: list[AllocationConflict] = []
        # Earlier requests in this pass reserve against later ones for the same resource.
        reserved_in_pass: dict[int, int] = defaultdict(int)

        for request in self._repository.list_resource_requests(event.event_id, tx=tx):
            resource = self._repository.get_resource(request.resource_id, tx=tx)
            if resource is None:
                raise ResourceNotFoundError(request.resource_id)
            overlapping = self._repository.list_overlapping_resource_bookings(
                resource.resource_id,
                event.schedule_start,
                event.schedule_end,
                tx=tx,
            )
            booked = sum(booking.quantity for booking in overlapping)
            booked += reserved_in_pass[resource.resource_id]
            available = max(resource.total_quantity - booked, 0)

            if available >= request.quantity_needed:
                planned.append(_PlannedResource(request=request, quantity=request.quantity_needed))
                reserved_in_pass[resource.resource_id] += request.quantity_needed
                continue

            conflicts.append(
                AllocationConflict(
                    kind=ConflictKind.RESOURCE_SHORTAGE,
                    conflicting_event_ids=tuple(
                        sorted({booking.event_id for booking in overlapping})
                    ),
                    details=(
                        f"{resource.name}: need {request.quantity_needed}, "
                        f"only {available} available ({booked} already booked)"
                    ),
                    suggestions=RESOURCE_SHORTAGE_SUGGESTIONS,
                )
            )

        return tuple(planned), tuple(conflicts)

    def _commit_plan(self, event: Event, plan: AllocationPlan, tx: Transaction) -> None:
        self._repository.create_venue_booking(
            venue_id=plan.venue.venue_id,
            event_id=event.event_id,
            start_time=event.schedule_start,
            end_time=event.schedule_end,
            tx=tx,
        )
        for planned in plan.resources:
            self._repository.create_resource_booking(
                resource_id=planned.request.resource_id,
                event_id=event.event_id,
                quantity=planned.quantity,
                start_time=event.schedule_start,
                end_time=event.schedule_end,
                tx=tx,
            )
            self._repository.mark_resource_request_allocated(
                planned.request.request_id,
                planned.quantity,
                tx=tx,
            )

    def _record_failure(self, event: Event, result: AllocationResult, tx: Transaction) -> None:
        self._repository.append_audit_log(
            event_id=event.event_id,
            actor=self._settings.system_actor_name,
            action="allocation_failed",
            entity_type="Event",
            entity_id=str(event.event_id),
            data=result.to_dict(),
            tx=tx,
        )
        self._notifications.queue(
            tx,
            event.coordinator_id,
            event.event_id,
            NotificationType.ALLOCATION_FAILED,
            "Allocation Failed",
            f'Resources for "{event.title}" could not be allocated. {result.explanation}',
            {"conflicts": [conflict.to_dict() for conflict in result.conflicts]},
        )
        logger.warning(
            "Allocation failed | %s",
            fields(
                event_id=event.event_id,
                conflicts=len(result.conflicts),
                explanation=result.explanation,
            ),
        )
