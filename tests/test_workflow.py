from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.domain.errors import InvalidTransitionError
from backend.domain.models import ApprovalAction, ApprovalStage, Event, EventStatus, Role, User
from backend.domain.workflow import (
    REQUIRED_APPROVERS,
    STAGE_CHAIN,
    STAGE_STATUSES,
    TERMINAL_STAGES,
    get_next_approval_stage,
    get_required_approver_role,
    is_consistent,
    is_resubmittable,
    resolve_transition,
    status_for_stage,
    validate_approval_permission,
)


def _event(stage: ApprovalStage, status: EventStatus = EventStatus.SUBMITTED) -> Event:
    return Event(
        event_id=1,
        title="Hackathon",
        schedule_start=datetime(2030, 1, 1, 9, tzinfo=timezone.utc),
        schedule_end=datetime(2030, 1, 1, 17, tzinfo=timezone.utc),
        participant_count=80,
        school_id=10,
        department_id=100,
        coordinator_id=5,
        status=status,
        approval_stage=stage,
    )


def _user(role: Role, school_id=None, department_id=None, is_active=True) -> User:
    return User(
        user_id=42,
        first_name="Ada",
        last_name="Lovelace",
        email="ada@campus.edu",
        role=role,
        school_id=school_id,
        department_id=department_id,
        is_active=is_active,
    )


def test_tables_cover_every_stage():
    for table in (STAGE_CHAIN, REQUIRED_APPROVERS, STAGE_STATUSES):
        assert set(table) == set(ApprovalStage)


def test_chain_is_linear_up_to_approved():
    stage = ApprovalStage.DRAFT
    walked = [stage]
    while STAGE_CHAIN[stage] is not None:
        stage = get_next_approval_stage(stage)
        walked.append(stage)
    assert walked == [
        ApprovalStage.DRAFT,
        ApprovalStage.SUBMITTED,
        ApprovalStage.HOD_APPROVED,
        ApprovalStage.DEAN_APPROVED,
        ApprovalStage.HEAD_APPROVED,
        ApprovalStage.APPROVED,
    ]


def test_terminal_stages_never_transition():
    assert TERMINAL_STAGES == {ApprovalStage.APPROVED, ApprovalStage.REJECTED}
    for stage in TERMINAL_STAGES:
        for action in ApprovalAction:
            with pytest.raises(InvalidTransitionError):
                resolve_transition(stage, action)


def test_modification_required_routes_back_to_submitted():
    stage = resolve_transition(ApprovalStage.DEAN_APPROVED, ApprovalAction.MODIFICATION_REQUIRED)
    assert stage is ApprovalStage.MODIFICATION_REQUIRED
    assert resolve_transition(stage, ApprovalAction.SUBMITTED) is ApprovalStage.SUBMITTED
    assert get_next_approval_stage(stage) is ApprovalStage.SUBMITTED


def test_reject_is_reachable_from_any_open_stage():
    for stage in (ApprovalStage.SUBMITTED, ApprovalStage.HOD_APPROVED, ApprovalStage.DEAN_APPROVED):
        assert resolve_transition(stage, ApprovalAction.REJECTED) is ApprovalStage.REJECTED


def test_submit_is_rejected_mid_chain():
    with pytest.raises(InvalidTransitionError, match="SUBMITTED from HOD_APPROVED"):
        resolve_transition(ApprovalStage.HOD_APPROVED, ApprovalAction.SUBMITTED)


def test_required_roles_follow_fixed_table():
    assert get_required_approver_role(ApprovalStage.SUBMITTED) is Role.HOD
    assert get_required_approver_role(ApprovalStage.HOD_APPROVED) is Role.DEAN
    assert get_required_approver_role(ApprovalStage.DEAN_APPROVED) is Role.INSTITUTIONAL_HEAD
    assert get_required_approver_role(ApprovalStage.HEAD_APPROVED) is None
    assert get_required_approver_role(ApprovalStage.DRAFT) is None


def test_hod_permission_requires_matching_department():
    event = _event(ApprovalStage.SUBMITTED)
    assert validate_approval_permission(_user(Role.HOD, 10, 100), event)
    assert not validate_approval_permission(_user(Role.HOD, 10, 101), event)


def test_dean_permission_requires_matching_school():
    event = _event(ApprovalStage.HOD_APPROVED)
    assert validate_approval_permission(_user(Role.DEAN, 10), event)
    assert not validate_approval_permission(_user(Role.DEAN, 11), event)


def test_dean_cannot_act_on_event_awaiting_hod():
    assert not validate_approval_permission(_user(Role.DEAN, 10), _event(ApprovalStage.SUBMITTED))


def test_head_permission_is_institution_wide():
    event = _event(ApprovalStage.DEAN_APPROVED)
    assert validate_approval_permission(_user(Role.INSTITUTIONAL_HEAD), event)


def test_inactive_approver_is_denied():
    event = _event(ApprovalStage.SUBMITTED)
    assert not validate_approval_permission(_user(Role.HOD, 10, 100, is_active=False), event)


def test_status_follows_stage():
    assert status_for_stage(ApprovalStage.APPROVED) is EventStatus.APPROVED
    assert status_for_stage(ApprovalStage.REJECTED) is EventStatus.REJECTED
    assert status_for_stage(ApprovalStage.MODIFICATION_REQUIRED) is EventStatus.SUBMITTED
    assert status_for_stage(ApprovalStage.DRAFT) is EventStatus.DRAFT
    assert is_consistent(EventStatus.COMPLETED, ApprovalStage.APPROVED)
    assert not is_consistent(EventStatus.APPROVED, ApprovalStage.DEAN_APPROVED)


def test_resubmittable_states():
    assert is_resubmittable(_event(ApprovalStage.DRAFT, EventStatus.DRAFT))
    assert is_resubmittable(_event(ApprovalStage.MODIFICATION_REQUIRED))
    assert is_resubmittable(_event(ApprovalStage.HEAD_APPROVED))
    assert not is_resubmittable(_event(ApprovalStage.SUBMITTED))
    assert not is_resubmittable(_event(ApprovalStage.REJECTED, EventStatus.REJECTED))
