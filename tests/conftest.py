from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from backend.domain.models import ApprovalStage, EventStatus, Role
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationService
from backend.services.approval_service import ApprovalWorkflowService
from backend.services.event_service import EventService
from backend.services.housekeeping_service import HousekeepingService
from backend.services.notification_service import NotificationService
from backend.utils.config import Settings, get_settings


EVENT_START = datetime(2030, 3, 11, 10, 0, tzinfo=timezone.utc)
EVENT_END = datetime(2030, 3, 11, 12, 0, tzinfo=timezone.utc)


def build_test_settings(tmp_path, filename: str = "venue_allocation.db") -> Settings:
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / filename, seed_demo_data=False)


def dump_database(path) -> list[str]:
    connection = sqlite3.connect(path)
    try:
        return list(connection.iterdump())
    finally:
        connection.close()


@dataclass
class Campus:
    settings: Settings
    repository: DataRepository
    notifications: NotificationService
    allocation: AllocationService
    approvals: ApprovalWorkflowService
    events: EventService
    housekeeping: HousekeepingService
    school_id: int
    other_school_id: int
    cse_id: int
    mech_id: int
    coordinator_id: int
    hod_id: int
    mech_hod_id: int
    dean_id: int
    other_dean_id: int
    head_id: int

    def add_event(
        self,
        *,
        participants: int = 50,
        start: datetime = EVENT_START,
        end: datetime = EVENT_END,
        venue_type: Optional[str] = None,
        title: str = "Tech Symposium",
        stage: ApprovalStage = ApprovalStage.DRAFT,
        status: EventStatus = EventStatus.DRAFT,
    ) -> int:
        event_id = self.repository.create_event(
            title=title,
            schedule_start=start,
            schedule_end=end,
            participant_count=participants,
            school_id=self.school_id,
            department_id=self.cse_id,
            coordinator_id=self.coordinator_id,
            venue_type_preference=venue_type,
        )
        if stage is not ApprovalStage.DRAFT:
            self.repository.update_event_stage(event_id, stage=stage, status=status)
        return event_id

    def add_ready_event(self, **kwargs) -> int:
        return self.add_event(
            stage=ApprovalStage.HEAD_APPROVED,
            status=EventStatus.SUBMITTED,
            **kwargs,
        )

    def book_venue(self, venue_id: int, start: datetime, end: datetime) -> int:
        """Confirmed booking held by a separate, already approved event."""
        holder = self.add_event(
            start=start,
            end=end,
            title="Existing booking",
            stage=ApprovalStage.APPROVED,
            status=EventStatus.APPROVED,
        )
        self.repository.create_venue_booking(
            venue_id=venue_id,
            event_id=holder,
            start_time=start,
            end_time=end,
        )
        return holder

    def book_resource(self, resource_id: int, quantity: int, start: datetime, end: datetime) -> int:
        holder = self.add_event(
            start=start,
            end=end,
            title="Existing resource hold",
            stage=ApprovalStage.APPROVED,
            status=EventStatus.APPROVED,
        )
        self.repository.create_resource_booking(
            resource_id=resource_id,
            event_id=holder,
            quantity=quantity,
            start_time=start,
            end_time=end,
        )
        return holder

    def advance_to_dean_approved(self, event_id: int) -> None:
        assert self.approvals.submit_event_for_approval(event_id, self.coordinator_id).success
        assert self.approvals.process_approval(self.hod_id, "APPROVED", "ok", event_id).success
        assert self.approvals.process_approval(self.dean_id, "APPROVED", "ok", event_id).success


def build_campus(tmp_path, filename: str = "campus.db") -> Campus:
    settings = build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()

    school_id = repository.create_school("School of Engineering", "SOE")
    other_school_id = repository.create_school("School of Management", "SOM")
    cse_id = repository.create_department(school_id, "Computer Science", "CSE")
    mech_id = repository.create_department(school_id, "Mechanical Engineering", "MECH")

    def user(email: str, role: Role, school: Optional[int], department: Optional[int]) -> int:
        return repository.create_user(
            first_name=email.split("@")[0],
            last_name="Tester",
            email=email,
            role=role,
            school_id=school,
            department_id=department,
        )

    notifications = NotificationService(repository=repository, settings=settings)
    allocation = AllocationService(
        repository=repository,
        settings=settings,
        notification_service=notifications,
    )
    return Campus(
        settings=settings,
        repository=repository,
        notifications=notifications,
        allocation=allocation,
        approvals=ApprovalWorkflowService(
            repository=repository,
            settings=settings,
            allocation_service=allocation,
            notification_service=notifications,
        ),
        events=EventService(repository=repository, settings=settings),
        housekeeping=HousekeepingService(
            repository=repository,
            settings=settings,
            notification_service=notifications,
        ),
        school_id=school_id,
        other_school_id=other_school_id,
        cse_id=cse_id,
        mech_id=mech_id,
        coordinator_id=user("coordinator@campus.edu", Role.COORDINATOR, school_id, cse_id),
        hod_id=user("hod.cse@campus.edu", Role.HOD, school_id, cse_id),
        mech_hod_id=user("hod.mech@campus.edu", Role.HOD, school_id, mech_id),
        dean_id=user("dean.soe@campus.edu", Role.DEAN, school_id, None),
        other_dean_id=user("dean.som@campus.edu", Role.DEAN, other_school_id, None),
        head_id=user("head@campus.edu", Role.INSTITUTIONAL_HEAD, None, None),
    )


@pytest.fixture
def campus(tmp_path) -> Campus:
    return build_campus(tmp_path)


@pytest.fixture
def event_window() -> tuple[datetime, datetime]:
    return EVENT_START, EVENT_END


def hours(value: float) -> timedelta:
    return timedelta(hours=value)
