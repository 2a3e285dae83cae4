"""Approval chain state machine.

The chain is fixed::

    DRAFT -> SUBMITTED -> HOD_APPROVED -> DEAN_APPROVED -> HEAD_APPROVED -> APPROVED

REJECTED and APPROVED are terminal. MODIFICATION_REQUIRED loops back to
SUBMITTED once the coordinator resubmits. Every table below is keyed by
``ApprovalStage`` and checked for exhaustiveness at import time, so adding a
stage without wiring it fails immediately instead of at the first lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from backend.domain.errors import InvalidTransitionError
from backend.domain.models import (
    ApprovalAction,
    ApprovalStage,
    Event,
    EventStatus,
    Role,
    User,
)


class ApproverScope(str, Enum):
    DEPARTMENT = "DEPARTMENT"
    SCHOOL = "SCHOOL"
    INSTITUTION = "INSTITUTION"


@dataclass(frozen=True)
class ApproverRule:
    role: Role
    scope: ApproverScope

    def matches(self, approver: User, event: Event) -> bool:
        if approver.role != self.role:
            return False
        if self.scope is ApproverScope.DEPARTMENT:
            return approver.department_id == event.department_id
        if self.scope is ApproverScope.SCHOOL:
            return approver.school_id == event.school_id
        return True


# None marks a terminal stage.
STAGE_CHAIN: Mapping[ApprovalStage, Optional[ApprovalStage]] = {
    ApprovalStage.DRAFT: ApprovalStage.SUBMITTED,
    ApprovalStage.SUBMITTED: ApprovalStage.HOD_APPROVED,
    ApprovalStage.HOD_APPROVED: ApprovalStage.DEAN_APPROVED,
    ApprovalStage.DEAN_APPROVED: ApprovalStage.HEAD_APPROVED,
    ApprovalStage.HEAD_APPROVED: ApprovalStage.APPROVED,
    ApprovalStage.APPROVED: None,
    ApprovalStage.REJECTED: None,
    ApprovalStage.MODIFICATION_REQUIRED: ApprovalStage.SUBMITTED,
}

# Who may act on an event sitting at a given stage. HEAD_APPROVED belongs to
# the allocation engine, not to a person.
REQUIRED_APPROVERS: Mapping[ApprovalStage, Optional[ApproverRule]] = {
    ApprovalStage.DRAFT: None,
    ApprovalStage.SUBMITTED: ApproverRule(Role.HOD, ApproverScope.DEPARTMENT),
    ApprovalStage.HOD_APPROVED: ApproverRule(Role.DEAN, ApproverScope.SCHOOL),
    ApprovalStage.DEAN_APPROVED: ApproverRule(Role.INSTITUTIONAL_HEAD, ApproverScope.INSTITUTION),
    ApprovalStage.HEAD_APPROVED: None,
    ApprovalStage.APPROVED: None,
    ApprovalStage.REJECTED: None,
    ApprovalStage.MODIFICATION_REQUIRED: None,
}

STAGE_STATUSES: Mapping[ApprovalStage, frozenset[EventStatus]] = {
    ApprovalStage.DRAFT: frozenset({EventStatus.DRAFT}),
    ApprovalStage.SUBMITTED: frozenset({EventStatus.SUBMITTED}),
    ApprovalStage.HOD_APPROVED: frozenset({EventStatus.SUBMITTED}),
    ApprovalStage.DEAN_APPROVED: frozenset({EventStatus.SUBMITTED}),
    ApprovalStage.HEAD_APPROVED: frozenset({EventStatus.SUBMITTED}),
    ApprovalStage.APPROVED: frozenset(
        {EventStatus.APPROVED, EventStatus.RUNNING, EventStatus.COMPLETED}
    ),
    ApprovalStage.REJECTED: frozenset({EventStatus.REJECTED}),
    ApprovalStage.MODIFICATION_REQUIRED: frozenset({EventStatus.SUBMITTED}),
}

# A persisted HEAD_APPROVED stage only survives a transaction when the final
# allocation failed and the approval was downgraded, so it reopens for
# resubmission just like MODIFICATION_REQUIRED.
RESUBMITTABLE_STAGES = frozenset(
    {
        ApprovalStage.DRAFT,
        ApprovalStage.MODIFICATION_REQUIRED,
        ApprovalStage.HEAD_APPROVED,
    }
)

TERMINAL_STAGES = frozenset(
    stage for stage, successor in STAGE_CHAIN.items() if successor is None
)

FINAL_HUMAN_STAGE = ApprovalStage.HEAD_APPROVED


def _ensure_exhaustive(table: Mapping[ApprovalStage, object], table_name: str) -> None:
    missing = [stage.value for stage in ApprovalStage if stage not in table]
    if missing:
        raise RuntimeError(f"{table_name} is missing stages: {', '.join(missing)}")


_ensure_exhaustive(STAGE_CHAIN, "STAGE_CHAIN")
_ensure_exhaustive(REQUIRED_APPROVERS, "REQUIRED_APPROVERS")
_ensure_exhaustive(STAGE_STATUSES, "STAGE_STATUSES")


def get_next_approval_stage(stage: ApprovalStage) -> ApprovalStage:
    successor = STAGE_CHAIN[stage]
    if successor is None:
        raise InvalidTransitionError(stage.value, ApprovalAction.APPROVED.value)
    return successor


def get_required_approver(stage: ApprovalStage) -> Optional[ApproverRule]:
    return REQUIRED_APPROVERS[stage]


def get_required_approver_role(stage: ApprovalStage) -> Optional[Role]:
    rule = REQUIRED_APPROVERS[stage]
    return rule.role if rule is not None else None


def validate_approval_permission(approver: User, event: Event) -> bool:
    """True when ``approver`` holds the role and scope the event's current stage waits on."""
    if not approver.is_active:
        return False
    rule = REQUIRED_APPROVERS[event.approval_stage]
    if rule is None:
        return False
    return rule.matches(approver, event)


def resolve_transition(stage: ApprovalStage, action: ApprovalAction) -> ApprovalStage:
    """Return the stage reached by applying ``action`` at ``stage``."""
    if stage in TERMINAL_STAGES:
        raise InvalidTransitionError(stage.value, action.value)
    if action is ApprovalAction.APPROVED:
        return get_next_approval_stage(stage)
    if action is ApprovalAction.REJECTED:
        return ApprovalStage.REJECTED
    if action is ApprovalAction.MODIFICATION_REQUIRED:
        return ApprovalStage.MODIFICATION_REQUIRED
    if action is ApprovalAction.SUBMITTED:
        if stage not in RESUBMITTABLE_STAGES:
            raise InvalidTransitionError(stage.value, action.value)
        return ApprovalStage.SUBMITTED
    raise InvalidTransitionError(stage.value, str(action))


def status_for_stage(stage: ApprovalStage) -> EventStatus:
    """Status an event takes on when it enters ``stage`` through the workflow."""
    if stage is ApprovalStage.APPROVED:
        return EventStatus.APPROVED
    (status,) = STAGE_STATUSES[stage]
    return status


def is_consistent(status: EventStatus, stage: ApprovalStage) -> bool:
    return status in STAGE_STATUSES[stage]


def ensure_consistent(status: EventStatus, stage: ApprovalStage) -> None:
    if not is_consistent(status, stage):
        raise InvalidTransitionError(stage.value, f"status {status.value}")


def is_resubmittable(event: Event) -> bool:
    if event.approval_stage is ApprovalStage.DRAFT:
        return event.status is EventStatus.DRAFT
    return (
        event.approval_stage in RESUBMITTABLE_STAGES
        and event.status is EventStatus.SUBMITTED
    )
