from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import EVENT_END, EVENT_START, hours

from backend.domain.errors import EventNotFoundError
from backend.domain.models import ApprovalStage, BookingStatus, EventStatus, NotificationType
from backend.services.housekeeping_service import HousekeepingService


def _allocated_event(campus) -> tuple[int, int, int]:
    venue = campus.repository.create_venue("Seminar Room", "seminar", 60)
    chairs = campus.repository.create_resource("Chairs", "furniture", 30, "piece")
    event_id = campus.add_ready_event(participants=50)
    campus.repository.add_resource_request(event_id, chairs, 30)
    assert campus.allocation.allocate_event(event_id).success
    return event_id, venue, chairs


def test_release_is_a_noop_before_event_ends(campus):
    event_id, _, _ = _allocated_event(campus)

    summary = campus.housekeeping.release_resources_for_event(event_id, now=EVENT_START)

    assert not summary.released
    assert campus.repository.list_venue_bookings(event_id=event_id)[0].status is BookingStatus.CONFIRMED
    assert campus.repository.list_audit_logs(action="auto_release") == []


def test_release_at_end_time_frees_capacity_once(campus):
    event_id, _, chairs = _allocated_event(campus)

    first = campus.housekeeping.release_resources_for_event(event_id, now=EVENT_END)
    second = campus.housekeeping.release_resources_for_event(
        event_id, now=EVENT_END + timedelta(minutes=1)
    )

    assert first.released
    assert (first.venue_bookings_cancelled, first.resource_bookings_cancelled) == (1, 1)
    assert not second.released
    assert len(campus.repository.list_audit_logs(action="auto_release")) == 1
    assert campus.repository.list_overlapping_resource_bookings(chairs, EVENT_START, EVENT_END) == []
    types = [n.notification_type for n in campus.notifications.list_notifications(campus.coordinator_id)]
    assert types.count(NotificationType.RESOURCES_RELEASED.value) == 1


def test_grace_period_delays_release(campus):
    event_id, _, _ = _allocated_event(campus)
    delayed = HousekeepingService(
        repository=campus.repository,
        settings=replace(campus.settings, resource_release_grace_hours=1),
        notification_service=campus.notifications,
    )

    early = delayed.release_resources_for_event(event_id, now=EVENT_END + timedelta(minutes=30))
    late = delayed.release_resources_for_event(event_id, now=EVENT_END + hours(1))

    assert not early.released
    assert early.reason == "Event has not ended yet"
    assert late.released


def test_completed_event_releases_immediately(campus):
    event_id, venue, _ = _allocated_event(campus)
    campus.repository.update_event_stage(
        event_id, stage=ApprovalStage.APPROVED, status=EventStatus.COMPLETED
    )

    summary = campus.housekeeping.release_resources_for_event(event_id, now=EVENT_START)

    assert summary.released
    other = campus.add_ready_event(participants=50)
    assert campus.allocation.allocate_event(other).venue_id == venue


def test_release_of_missing_event_raises(campus):
    with pytest.raises(EventNotFoundError):
        campus.housekeeping.release_resources_for_event(4242)


def test_cleanup_removes_only_stale_provisional_holds(campus):
    venue = campus.repository.create_venue("Seminar Room", "seminar", 60)
    chairs = campus.repository.create_resource("Chairs", "furniture", 30, "piece")
    event_id = campus.add_event()
    cutoff = EVENT_START - hours(48)
    campus.repository.create_venue_booking(
        venue_id=venue,
        event_id=event_id,
        start_time=EVENT_START,
        end_time=EVENT_END,
        status=BookingStatus.PROVISIONAL,
        created_at=cutoff - hours(1),
    )
    campus.repository.create_resource_booking(
        resource_id=chairs,
        event_id=event_id,
        quantity=5,
        start_time=EVENT_START,
        end_time=EVENT_END,
        status=BookingStatus.PROVISIONAL,
        created_at=cutoff + hours(1),
    )
    campus.repository.create_venue_booking(
        venue_id=venue,
        event_id=event_id,
        start_time=EVENT_END,
        end_time=EVENT_END + hours(1),
        status=BookingStatus.CONFIRMED,
        created_at=cutoff - hours(5),
    )

    first = campus.housekeeping.cleanup_stale_provisional_bookings(cutoff)
    second = campus.housekeeping.cleanup_stale_provisional_bookings(cutoff)

    assert (first.venue_bookings_removed, first.resource_bookings_removed) == (1, 0)
    assert second.total_removed == 0
    assert len(campus.repository.list_audit_logs(action="cleanup_stale")) == 1
    remaining = campus.repository.list_venue_bookings(event_id=event_id)
    assert [b.status for b in remaining] == [BookingStatus.CONFIRMED]
    assert len(campus.repository.list_resource_bookings(event_id=event_id)) == 1


def test_cleanup_default_cutoff_uses_ttl(campus):
    summary = campus.housekeeping.cleanup_stale_provisional_bookings()

    assert summary.total_removed == 0
    assert summary.cutoff.tzinfo is not None
