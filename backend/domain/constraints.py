"""Domain-level validation rules for events, bookings and catalog entries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


TITLE_MAX_LENGTH = 200
PARTICIPANT_LIMIT = 10000
REQUEST_PRIORITIES = ("high", "normal", "low")


@dataclass(frozen=True)
class EventDraft:
    title: str
    schedule_start: datetime
    schedule_end: datetime
    participant_count: int
    venue_type_preference: Optional[str] = None


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Strict overlap of half-open intervals; touching endpoints do not overlap."""
    return start_a < end_b and end_a > start_b


def validate_time_window(start: datetime, end: datetime) -> None:
    if (start.tzinfo is None) != (end.tzinfo is None):
        raise ValueError("start and end must both be timezone-aware or both naive")
    if start >= end:
        raise ValueError("End time must be after start time")


def validate_event_draft(draft: EventDraft) -> None:
    if not draft.title.strip():
        raise ValueError("Title is required")
    if len(draft.title) > TITLE_MAX_LENGTH:
        raise ValueError("Title too long")
    validate_time_window(draft.schedule_start, draft.schedule_end)
    if draft.participant_count < 1:
        raise ValueError("Must have at least 1 participant")
    if draft.participant_count > PARTICIPANT_LIMIT:
        raise ValueError("Too many participants")
    if draft.venue_type_preference is not None and not draft.venue_type_preference.strip():
        raise ValueError("venue_type_preference must be non-empty when provided")


def validate_requested_quantity(quantity: int, priority: str = "normal") -> None:
    if quantity < 1:
        raise ValueError("Quantity must be at least 1")
    if priority not in REQUEST_PRIORITIES:
        raise ValueError(f"priority must be one of {', '.join(REQUEST_PRIORITIES)}")


def validate_venue(capacity: int, name: str, venue_type: str) -> None:
    if capacity < 1:
        raise ValueError("Capacity must be at least 1")
    if not name.strip():
        raise ValueError("Name is required")
    if not venue_type.strip():
        raise ValueError("Type is required")


def validate_resource(total_quantity: int, name: str, unit: str) -> None:
    if total_quantity < 0:
        raise ValueError("Quantity cannot be negative")
    if not name.strip():
        raise ValueError("Name is required")
    if not unit.strip():
        raise ValueError("Unit is required")
