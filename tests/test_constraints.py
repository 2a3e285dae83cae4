"""Tests for event, booking and catalog validation rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.domain.constraints import (
    EventDraft,
    intervals_overlap,
    validate_event_draft,
    validate_requested_quantity,
    validate_resource,
    validate_time_window,
    validate_venue,
)


START = datetime(2030, 5, 1, 10, 0, tzinfo=timezone.utc)


def valid_draft(**overrides) -> EventDraft:
    """Return a valid baseline EventDraft, optionally overriding fields."""
    defaults = {
        "title": "Robotics Expo",
        "schedule_start": START,
        "schedule_end": START + timedelta(hours=2),
        "participant_count": 40,
        "venue_type_preference": None,
    }
    defaults.update(overrides)
    return EventDraft(**defaults)


# --- Overlap predicate ---

def test_touching_intervals_do_not_overlap() -> None:
    assert not intervals_overlap(START, START + timedelta(hours=1), START + timedelta(hours=1), START + timedelta(hours=2))


def test_partial_overlap_detected() -> None:
    assert intervals_overlap(START, START + timedelta(hours=2), START + timedelta(hours=1), START + timedelta(hours=3))


def test_containment_overlaps() -> None:
    assert intervals_overlap(START, START + timedelta(hours=4), START + timedelta(hours=1), START + timedelta(hours=2))


# --- Event drafts ---

def test_valid_draft_passes() -> None:
    validate_event_draft(valid_draft())


def test_blank_title_raises() -> None:
    with pytest.raises(ValueError, match="Title is required"):
        validate_event_draft(valid_draft(title="   "))


def test_end_before_start_raises() -> None:
    with pytest.raises(ValueError, match="End time must be after start time"):
        validate_event_draft(valid_draft(schedule_end=START))


def test_mixed_timezone_awareness_raises() -> None:
    with pytest.raises(ValueError):
        validate_time_window(START, datetime(2030, 5, 1, 12, 0))


def test_zero_participants_raises() -> None:
    with pytest.raises(ValueError, match="at least 1 participant"):
        validate_event_draft(valid_draft(participant_count=0))


def test_empty_venue_type_preference_raises() -> None:
    with pytest.raises(ValueError):
        validate_event_draft(valid_draft(venue_type_preference=""))


# --- Quantities and catalog ---

def test_requested_quantity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        validate_requested_quantity(0)


def test_unknown_priority_raises() -> None:
    with pytest.raises(ValueError, match="priority"):
        validate_requested_quantity(3, "urgent")


def test_venue_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        validate_venue(0, "Hall", "seminar")


def test_resource_quantity_cannot_be_negative() -> None:
    with pytest.raises(ValueError):
        validate_resource(-1, "Chairs", "piece")
    validate_resource(0, "Chairs", "piece")
