"""Domain models for event approval and venue/resource allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class EventStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    RUNNING = "RUNNING"


class ApprovalStage(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    HOD_APPROVED = "HOD_APPROVED"
    DEAN_APPROVED = "DEAN_APPROVED"
    HEAD_APPROVED = "HEAD_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MODIFICATION_REQUIRED = "MODIFICATION_REQUIRED"


class ApprovalAction(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MODIFICATION_REQUIRED = "MODIFICATION_REQUIRED"


class Role(str, Enum):
    COORDINATOR = "COORDINATOR"
    HOD = "HOD"
    DEAN = "DEAN"
    INSTITUTIONAL_HEAD = "INSTITUTIONAL_HEAD"
    ADMIN = "ADMIN"


class BookingStatus(str, Enum):
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ConflictKind(str, Enum):
    VENUE_UNAVAILABLE = "venue_unavailable"
    RESOURCE_SHORTAGE = "resource_shortage"
    # Reserved; time clashes are reported as venue or resource unavailability.
    TIME_OVERLAP = "time_overlap"


class NotificationType(str, Enum):
    EVENT_SUBMITTED = "EVENT_SUBMITTED"
    EVENT_APPROVED = "EVENT_APPROVED"
    EVENT_REJECTED = "EVENT_REJECTED"
    EVENT_MODIFICATION_REQUIRED = "EVENT_MODIFICATION_REQUIRED"
    ALLOCATION_FAILED = "ALLOCATION_FAILED"
    RESOURCES_RELEASED = "RESOURCES_RELEASED"


@dataclass(frozen=True)
class User:
    user_id: int
    first_name: str
    last_name: str
    email: str
    role: Role
    school_id: Optional[int]
    department_id: Optional[int]
    is_active: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class Venue:
    venue_id: int
    name: str
    venue_type: str
    capacity: int
    location: str
    is_active: bool = True
    maintenance_mode: bool = False


@dataclass(frozen=True)
class Resource:
    resource_id: int
    name: str
    category: str
    total_quantity: int
    unit: str


@dataclass(frozen=True)
class ResourceRequest:
    request_id: int
    event_id: int
    resource_id: int
    quantity_needed: int
    is_allocated: bool = False
    allocated_quantity: int = 0
    priority: str = "normal"
    justification: Optional[str] = None


@dataclass(frozen=True)
class Event:
    event_id: int
    title: str
    schedule_start: datetime
    schedule_end: datetime
    participant_count: int
    school_id: int
    department_id: int
    coordinator_id: int
    status: EventStatus
    approval_stage: ApprovalStage
    venue_type_preference: Optional[str] = None
    description: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class VenueBooking:
    booking_id: int
    venue_id: int
    event_id: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ResourceBooking:
    booking_id: int
    resource_id: int
    event_id: int
    quantity: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ApprovalStep:
    """Immutable audit row for one workflow transition; ``approver_id`` is None for system steps."""

    step_id: int
    event_id: int
    approver_id: Optional[int]
    stage: ApprovalStage
    action: ApprovalAction
    comments: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class AuditEntry:
    entry_id: int
    event_id: Optional[int]
    actor: str
    action: str
    entity_type: str
    entity_id: str
    data: dict[str, Any]
    timestamp: datetime


@dataclass(frozen=True)
class Notification:
    notification_id: int
    user_id: int
    event_id: Optional[int]
    notification_type: str
    title: str
    message: str
    data: dict[str, Any]
    is_read: bool
    created_at: datetime


@dataclass(frozen=True)
class AllocationConflict:
    kind: ConflictKind
    conflicting_event_ids: tuple[int, ...]
    details: str
    suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "conflicting_event_ids": list(self.conflicting_event_ids),
            "details": self.details,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class ResourceAllocation:
    resource_id: int
    allocated_quantity: int


@dataclass(frozen=True)
class AllocationResult:
    success: bool
    explanation: str
    venue_id: Optional[int] = None
    resource_allocations: tuple[ResourceAllocation, ...] = ()
    conflicts: tuple[AllocationConflict, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "venue_id": self.venue_id,
            "resource_allocations": [
                {
                    "resource_id": item.resource_id,
                    "allocated_quantity": item.allocated_quantity,
                }
                for item in self.resource_allocations
            ],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of a submit/approve call; permission failures come back here, not as exceptions."""

    success: bool
    next_stage: Optional[ApprovalStage] = None
    action: Optional[ApprovalAction] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    allocation: Optional[AllocationResult] = None
    notified_user_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def downgraded(self) -> bool:
        return (
            self.success
            and self.allocation is not None
            and not self.allocation.success
        )
