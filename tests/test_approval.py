from __future__ import annotations

import pytest

from conftest import EVENT_END, EVENT_START

from backend.domain.errors import EventNotFoundError, InvalidTransitionError, UserNotFoundError
from backend.domain.models import (
    ApprovalAction,
    ApprovalStage,
    EventStatus,
    NotificationType,
    Role,
)
from backend.services.approval_service import (
    INVALID_STATE,
    NOT_EVENT_OWNER,
    PERMISSION_DENIED,
    ApprovalWorkflowService,
)
from backend.services.notification_service import NotificationSender, NotificationService


class ExplodingSender(NotificationSender):
    channel = "exploding"

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, notification) -> None:
        self.attempts += 1
        raise RuntimeError("smtp relay unreachable")


def _types(campus, user_id: int) -> list[str]:
    return [n.notification_type for n in campus.notifications.list_notifications(user_id)]


def test_submission_moves_draft_to_submitted_and_notifies_hods(campus):
    event_id = campus.add_event()

    outcome = campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    assert outcome.success
    assert outcome.next_stage is ApprovalStage.SUBMITTED
    assert outcome.notified_user_ids == (campus.hod_id,)
    event = campus.repository.get_event(event_id)
    assert (event.approval_stage, event.status) == (ApprovalStage.SUBMITTED, EventStatus.SUBMITTED)
    (step,) = campus.repository.list_approval_steps(event_id)
    assert step.action is ApprovalAction.SUBMITTED
    assert step.comments == "Event submitted for approval"
    assert _types(campus, campus.hod_id) == [NotificationType.EVENT_SUBMITTED.value]
    assert _types(campus, campus.mech_hod_id) == []


def test_only_owner_can_submit(campus):
    event_id = campus.add_event()

    outcome = campus.approvals.submit_event_for_approval(event_id, campus.hod_id)

    assert not outcome.success
    assert outcome.error_code == NOT_EVENT_OWNER
    assert campus.repository.get_event(event_id).approval_stage is ApprovalStage.DRAFT


def test_submission_from_mid_chain_is_refused(campus):
    event_id = campus.add_event(stage=ApprovalStage.HOD_APPROVED, status=EventStatus.SUBMITTED)

    outcome = campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    assert outcome.error_code == INVALID_STATE
    assert campus.repository.list_approval_steps(event_id) == []


def test_dean_cannot_approve_event_awaiting_hod(campus):
    event_id = campus.add_event()
    campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    outcome = campus.approvals.process_approval(campus.dean_id, "APPROVED", "looks fine", event_id)

    assert not outcome.success
    assert outcome.error_code == PERMISSION_DENIED
    event = campus.repository.get_event(event_id)
    assert event.approval_stage is ApprovalStage.SUBMITTED
    assert len(campus.repository.list_approval_steps(event_id)) == 1


def test_hod_of_another_department_is_denied(campus):
    event_id = campus.add_event()
    campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    outcome = campus.approvals.process_approval(campus.mech_hod_id, "APPROVED", None, event_id)

    assert outcome.error_code == PERMISSION_DENIED


def test_dean_of_another_school_is_denied(campus):
    event_id = campus.add_event(stage=ApprovalStage.HOD_APPROVED, status=EventStatus.SUBMITTED)

    outcome = campus.approvals.process_approval(campus.other_dean_id, "APPROVED", None, event_id)

    assert outcome.error_code == PERMISSION_DENIED


def test_missing_event_or_approver_raises(campus):
    event_id = campus.add_event()
    with pytest.raises(EventNotFoundError):
        campus.approvals.process_approval(campus.hod_id, "APPROVED", None, 9999)
    with pytest.raises(UserNotFoundError):
        campus.approvals.process_approval(9999, "APPROVED", None, event_id)


def test_submitted_is_not_an_approver_decision(campus):
    event_id = campus.add_event(stage=ApprovalStage.SUBMITTED, status=EventStatus.SUBMITTED)

    with pytest.raises(InvalidTransitionError):
        campus.approvals.process_approval(campus.hod_id, ApprovalAction.SUBMITTED, None, event_id)


def test_hod_approval_notifies_coordinator_and_school_deans(campus):
    event_id = campus.add_event()
    campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    outcome = campus.approvals.process_approval(campus.hod_id, "APPROVED", "Go ahead", event_id)

    assert outcome.next_stage is ApprovalStage.HOD_APPROVED
    assert set(outcome.notified_user_ids) == {campus.coordinator_id, campus.dean_id}
    assert _types(campus, campus.dean_id) == [NotificationType.EVENT_SUBMITTED.value]
    assert _types(campus, campus.other_dean_id) == []
    (approved,) = campus.notifications.list_notifications(campus.coordinator_id)
    assert approved.message == 'Your event "Tech Symposium" has been approved at HOD_APPROVED stage'


def test_full_chain_allocates_and_approves(campus):
    venue = campus.repository.create_venue("Seminar Room", "seminar", 60)
    chairs = campus.repository.create_resource("Chairs", "furniture", 100, "piece")
    event_id = campus.add_event()
    campus.repository.add_resource_request(event_id, chairs, 50)
    campus.advance_to_dean_approved(event_id)

    outcome = campus.approvals.process_approval(campus.head_id, "APPROVED", "Approved", event_id)

    assert outcome.success and not outcome.downgraded
    assert outcome.next_stage is ApprovalStage.APPROVED
    assert outcome.allocation.venue_id == venue
    event = campus.repository.get_event(event_id)
    assert (event.approval_stage, event.status) == (ApprovalStage.APPROVED, EventStatus.APPROVED)
    steps = campus.repository.list_approval_steps(event_id)
    assert [(s.stage, s.action, s.approver_id) for s in steps] == [
        (ApprovalStage.SUBMITTED, ApprovalAction.SUBMITTED, campus.coordinator_id),
        (ApprovalStage.HOD_APPROVED, ApprovalAction.APPROVED, campus.hod_id),
        (ApprovalStage.DEAN_APPROVED, ApprovalAction.APPROVED, campus.dean_id),
        (ApprovalStage.HEAD_APPROVED, ApprovalAction.APPROVED, campus.head_id),
        (ApprovalStage.APPROVED, ApprovalAction.APPROVED, None),
    ]
    latest = campus.notifications.list_notifications(campus.coordinator_id)[0]
    assert latest.notification_type == NotificationType.EVENT_APPROVED.value
    assert "APPROVED stage" in latest.message


def test_failed_final_allocation_downgrades_approval(campus):
    campus.repository.create_venue("Seminar Room", "seminar", 60)
    projectors = campus.repository.create_resource("Projectors", "av", 4, "unit")
    mics = campus.repository.create_resource("Microphones", "audio", 2, "unit")
    campus.book_resource(mics, 2, EVENT_START, EVENT_END)
    event_id = campus.add_event()
    campus.repository.add_resource_request(event_id, projectors, 2)
    campus.repository.add_resource_request(event_id, mics, 1)
    campus.advance_to_dean_approved(event_id)

    outcome = campus.approvals.process_approval(campus.head_id, "APPROVED", "Fine by me", event_id)

    assert outcome.success and outcome.downgraded
    assert outcome.action is ApprovalAction.MODIFICATION_REQUIRED
    assert outcome.next_stage is ApprovalStage.HEAD_APPROVED
    event = campus.repository.get_event(event_id)
    assert (event.approval_stage, event.status) == (
        ApprovalStage.HEAD_APPROVED,
        EventStatus.SUBMITTED,
    )
    assert campus.repository.list_venue_bookings(event_id=event_id) == []
    assert campus.repository.list_resource_bookings(event_id=event_id) == []

    last_step = campus.repository.list_approval_steps(event_id)[-1]
    assert last_step.action is ApprovalAction.MODIFICATION_REQUIRED
    assert last_step.stage is ApprovalStage.HEAD_APPROVED
    assert last_step.approver_id == campus.head_id
    assert last_step.comments.startswith("Allocation failed: Resource allocation failed")
    assert len(campus.repository.list_approval_steps(event_id)) == 4

    ledger = [e.action for e in campus.repository.list_audit_logs(event_id=event_id)]
    assert ledger == ["approval_downgraded"]
    coordinator_types = _types(campus, campus.coordinator_id)
    assert coordinator_types[0] == NotificationType.EVENT_MODIFICATION_REQUIRED.value
    assert NotificationType.ALLOCATION_FAILED.value not in coordinator_types


def test_downgraded_event_can_be_resubmitted(campus):
    event_id = campus.add_event()
    campus.advance_to_dean_approved(event_id)
    campus.approvals.process_approval(campus.head_id, "APPROVED", None, event_id)

    outcome = campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    assert outcome.success
    step = campus.repository.list_approval_steps(event_id)[-1]
    assert step.comments == "Event resubmitted for approval"
    assert campus.repository.get_event(event_id).approval_stage is ApprovalStage.SUBMITTED


def test_rejection_is_terminal(campus):
    event_id = campus.add_event()
    campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    outcome = campus.approvals.process_approval(campus.hod_id, "REJECTED", "Budget", event_id)

    assert outcome.next_stage is ApprovalStage.REJECTED
    event = campus.repository.get_event(event_id)
    assert event.status is EventStatus.REJECTED
    assert event.rejection_reason == "Budget"
    message = campus.notifications.list_notifications(campus.coordinator_id)[0].message
    assert message.endswith("Reason: Budget")
    assert not campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id).success


def test_modification_required_loops_back_through_submission(campus):
    event_id = campus.add_event()
    campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)
    campus.approvals.process_approval(campus.hod_id, "APPROVED", None, event_id)

    outcome = campus.approvals.process_approval(campus.dean_id, "MODIFICATION_REQUIRED", "Add agenda", event_id)

    assert outcome.next_stage is ApprovalStage.MODIFICATION_REQUIRED
    event = campus.repository.get_event(event_id)
    assert event.status is EventStatus.SUBMITTED
    resubmitted = campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)
    assert resubmitted.next_stage is ApprovalStage.SUBMITTED
    assert campus.approvals.process_approval(campus.hod_id, "APPROVED", None, event_id).success


def test_pending_approvals_are_scoped_by_role(campus):
    first = campus.add_event(title="First")
    second = campus.add_event(title="Second")
    campus.approvals.submit_event_for_approval(first, campus.coordinator_id)
    campus.approvals.submit_event_for_approval(second, campus.coordinator_id)
    campus.approvals.process_approval(campus.hod_id, "APPROVED", None, second)

    assert [e.event_id for e in campus.approvals.get_pending_approvals(campus.hod_id)] == [first]
    assert [e.event_id for e in campus.approvals.get_pending_approvals(campus.dean_id)] == [second]
    assert campus.approvals.get_pending_approvals(campus.mech_hod_id) == []
    assert campus.approvals.get_pending_approvals(campus.other_dean_id) == []
    assert campus.approvals.get_pending_approvals(campus.coordinator_id) == []
    with pytest.raises(UserNotFoundError):
        campus.approvals.get_pending_approvals(9999)


def test_notification_failure_never_rolls_back_transition(campus):
    sender = ExplodingSender()
    approvals = ApprovalWorkflowService(
        repository=campus.repository,
        settings=campus.settings,
        notification_service=NotificationService(
            repository=campus.repository,
            settings=campus.settings,
            senders=[sender],
        ),
    )
    event_id = campus.add_event()

    outcome = approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    assert outcome.success
    assert sender.attempts == 1
    assert campus.repository.get_event(event_id).approval_stage is ApprovalStage.SUBMITTED


def test_inactive_hods_are_not_notified(campus):
    campus.repository.create_user(
        first_name="Former",
        last_name="Hod",
        email="former.hod@campus.edu",
        role=Role.HOD,
        school_id=campus.school_id,
        department_id=campus.cse_id,
        is_active=False,
    )
    event_id = campus.add_event()

    outcome = campus.approvals.submit_event_for_approval(event_id, campus.coordinator_id)

    assert outcome.notified_user_ids == (campus.hod_id,)
