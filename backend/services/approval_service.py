"""Approval workflow service: submission, approver decisions and inbox queries."""

from __future__ import annotations

from typing import Optional, Union

from backend.domain.errors import EventNotFoundError, InvalidTransitionError, UserNotFoundError
from backend.domain.models import (
    AllocationResult,
    ApprovalAction,
    ApprovalOutcome,
    ApprovalStage,
    Event,
    EventStatus,
    NotificationType,
    User,
)
from backend.domain.workflow import (
    FINAL_HUMAN_STAGE,
    REQUIRED_APPROVERS,
    ApproverScope,
    ensure_consistent,
    get_required_approver,
    get_required_approver_role,
    is_resubmittable,
    resolve_transition,
    status_for_stage,
    validate_approval_permission,
)
from backend.repository.data_repository import DataRepository, Transaction
from backend.services.allocation_service import AllocationService
from backend.services.notification_service import NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)

PERMISSION_DENIED = "permission_denied"
NOT_EVENT_OWNER = "not_event_owner"
INVALID_STATE = "invalid_state"

DECISION_ACTIONS = frozenset(
    {
        ApprovalAction.APPROVED,
        ApprovalAction.REJECTED,
        ApprovalAction.MODIFICATION_REQUIRED,
    }
)


class ApprovalWorkflowService:
    """Drives events through the fixed approval chain.

    The transition that reaches the final human approval runs the allocation
    engine inside the same transaction. If allocation fails, everything done
    for that approval is rolled back to a savepoint and the decision is
    recorded as ``MODIFICATION_REQUIRED`` with the failure explanation.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        allocation_service: Optional[AllocationService] = None,
        notification_service: Optional[NotificationService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._notifications = notification_service or NotificationService(
            repository=self._repository,
            settings=self._settings,
        )
        self._allocation = allocation_service or AllocationService(
            repository=self._repository,
            settings=self._settings,
            notification_service=self._notifications,
        )

    def submit_event_for_approval(self, event_id: int, coordinator_id: int) -> ApprovalOutcome:
        with self._repository.transaction() as tx:
            event = self._load_event(event_id, tx)
            self._load_user(coordinator_id, tx)

            if event.coordinator_id != coordinator_id:
                return ApprovalOutcome(
                    success=False,
                    error="Only the event coordinator can submit this event",
                    error_code=NOT_EVENT_OWNER,
                )
            if not is_resubmittable(event):
                return ApprovalOutcome(
                    success=False,
                    error=(
                        f"Event cannot be submitted from stage {event.approval_stage.value} "
                        f"with status {event.status.value}"
                    ),
                    error_code=INVALID_STATE,
                )

            next_stage = resolve_transition(event.approval_stage, ApprovalAction.SUBMITTED)
            resubmission = event.approval_stage is not ApprovalStage.DRAFT
            self._repository.update_event_stage(
                event.event_id,
                stage=next_stage,
                status=status_for_stage(next_stage),
                tx=tx,
            )
            self._repository.insert_approval_step(
                event_id=event.event_id,
                approver_id=coordinator_id,
                stage=next_stage,
                action=ApprovalAction.SUBMITTED,
                comments=(
                    "Event resubmitted for approval"
                    if resubmission
                    else "Event submitted for approval"
                ),
                tx=tx,
            )
            notified = self._notify_next_approvers(event, next_stage, tx)

        logger.info(
            "Event submitted | %s",
            fields(
                event_id=event_id,
                coordinator_id=coordinator_id,
                resubmission=resubmission,
                notified=len(notified),
            ),
        )
        return ApprovalOutcome(
            success=True,
            next_stage=next_stage,
            action=ApprovalAction.SUBMITTED,
            notified_user_ids=notified,
        )

    def process_approval(
        self,
        approver_id: int,
        action: Union[ApprovalAction, str],
        comments: Optional[str],
        event_id: int,
    ) -> ApprovalOutcome:
        action = ApprovalAction(action)
        with self._repository.transaction() as tx:
            event = self._load_event(event_id, tx)
            approver = self._load_user(approver_id, tx)
            ensure_consistent(event.status, event.approval_stage)
            if action not in DECISION_ACTIONS:
                raise InvalidTransitionError(event.approval_stage.value, action.value)

            if not validate_approval_permission(approver, event):
                logger.warning(
                    "Approval permission denied | %s",
                    fields(
                        event_id=event_id,
                        approver_id=approver_id,
                        role=approver.role.value,
                        stage=event.approval_stage.value,
                        required_role=getattr(
                            get_required_approver_role(event.approval_stage), "value", None
                        ),
                    ),
                )
                return ApprovalOutcome(
                    success=False,
                    error="User does not have permission to approve this event at current stage",
                    error_code=PERMISSION_DENIED,
                )

            next_stage = resolve_transition(event.approval_stage, action)
            if action is ApprovalAction.APPROVED and next_stage is FINAL_HUMAN_STAGE:
                outcome = self._approve_with_allocation(event, approver, comments, tx)
            else:
                outcome = self._apply_decision(event, approver, action, next_stage, comments, tx)

        logger.info(
            "Approval processed | %s",
            fields(
                event_id=event_id,
                approver_id=approver_id,
                action=outcome.action.value,
                next_stage=outcome.next_stage.value,
                downgraded=outcome.downgraded,
            ),
        )
        return outcome

    def get_pending_approvals(self, user_id: int) -> list[Event]:
        """Events waiting on ``user_id``'s role within their department/school, oldest first."""
        with self._repository.transaction(isolation_level="READ_COMMITTED") as tx:
            user = self._load_user(user_id, tx)
            if not user.is_active:
                return []
            pending: list[Event] = []
            for stage, rule in REQUIRED_APPROVERS.items():
                if rule is None or rule.role is not user.role:
                    continue
                if rule.scope is ApproverScope.DEPARTMENT:
                    if user.department_id is None:
                        continue
                    events = self._repository.list_events_awaiting_stage(
                        stage, department_id=user.department_id, tx=tx
                    )
                elif rule.scope is ApproverScope.SCHOOL:
                    if user.school_id is None:
                        continue
                    events = self._repository.list_events_awaiting_stage(
                        stage, school_id=user.school_id, tx=tx
                    )
                else:
                    events = self._repository.list_events_awaiting_stage(stage, tx=tx)
                pending.extend(events)
        pending.sort(key=lambda event: (event.created_at, event.event_id))
        return pending

    def _apply_decision(
        self,
        event: Event,
        approver: User,
        action: ApprovalAction,
        next_stage: ApprovalStage,
        comments: Optional[str],
        tx: Transaction,
    ) -> ApprovalOutcome:
        self._repository.update_event_stage(
            event.event_id,
            stage=next_stage,
            status=status_for_stage(next_stage),
            rejection_reason=comments if action is ApprovalAction.REJECTED else None,
            tx=tx,
        )
        self._repository.insert_approval_step(
            event_id=event.event_id,
            approver_id=approver.user_id,
            stage=next_stage,
            action=action,
            comments=comments,
            tx=tx,
        )

        notified = [event.coordinator_id]
        if action is ApprovalAction.APPROVED:
            self._queue_coordinator(
                event,
                NotificationType.EVENT_APPROVED,
                "Event Approved",
                f'Your event "{event.title}" has been approved at {next_stage.value} stage',
                tx,
                stage=next_stage.value,
                approved_by=approver.full_name,
            )
            notified.extend(self._notify_next_approvers(event, next_stage, tx))
        elif action is ApprovalAction.REJECTED:
            self._queue_coordinator(
                event,
                NotificationType.EVENT_REJECTED,
                "Event Rejected",
                f'Your event "{event.title}" has been rejected. Reason: {comments or "Not specified"}',
                tx,
                reason=comments,
            )
        else:
            self._queue_coordinator(
                event,
                NotificationType.EVENT_MODIFICATION_REQUIRED,
                "Event Requires Modification",
                f'Your event "{event.title}" requires modifications. Comments: {comments or ""}',
                tx,
                comments=comments,
            )

        return ApprovalOutcome(
            success=True,
            next_stage=next_stage,
            action=action,
            notified_user_ids=tuple(notified),
        )

    def _approve_with_allocation(
        self,
        event: Event,
        approver: User,
        comments: Optional[str],
        tx: Transaction,
    ) -> ApprovalOutcome:
        with tx.savepoint("final_approval") as savepoint:
            self._repository.update_event_stage(
                event.event_id,
                stage=FINAL_HUMAN_STAGE,
                status=status_for_stage(FINAL_HUMAN_STAGE),
                tx=tx,
            )
            self._repository.insert_approval_step(
                event_id=event.event_id,
                approver_id=approver.user_id,
                stage=FINAL_HUMAN_STAGE,
                action=ApprovalAction.APPROVED,
                comments=comments,
                tx=tx,
            )
            allocation = self._allocation.allocate_event(event.event_id, tx=tx)
            if not allocation.success:
                savepoint.rollback()

        if allocation.success:
            self._queue_coordinator(
                event,
                NotificationType.EVENT_APPROVED,
                "Event Approved",
                (
                    f'Your event "{event.title}" has been approved at '
                    f"{ApprovalStage.APPROVED.value} stage"
                ),
                tx,
                stage=ApprovalStage.APPROVED.value,
                allocation=allocation.to_dict(),
            )
            return ApprovalOutcome(
                success=True,
                next_stage=ApprovalStage.APPROVED,
                action=ApprovalAction.APPROVED,
                allocation=allocation,
                notified_user_ids=(event.coordinator_id,),
            )

        return self._downgrade(event, approver, comments, allocation, tx)

    def _downgrade(
        self,
        event: Event,
        approver: User,
        comments: Optional[str],
        allocation: AllocationResult,
        tx: Transaction,
    ) -> ApprovalOutcome:
        downgrade_comment = f"Allocation failed: {allocation.explanation}"
        self._repository.update_event_stage(
            event.event_id,
            stage=FINAL_HUMAN_STAGE,
            status=EventStatus.SUBMITTED,
            tx=tx,
        )
        self._repository.insert_approval_step(
            event_id=event.event_id,
            approver_id=approver.user_id,
            stage=FINAL_HUMAN_STAGE,
            action=ApprovalAction.MODIFICATION_REQUIRED,
            comments=downgrade_comment,
            tx=tx,
        )
        self._repository.append_audit_log(
            event_id=event.event_id,
            actor=str(approver.user_id),
            action="approval_downgraded",
            entity_type="Event",
            entity_id=str(event.event_id),
            data={
                "approver_comments": comments,
                "allocation": allocation.to_dict(),
            },
            tx=tx,
        )
        self._queue_coordinator(
            event,
            NotificationType.EVENT_MODIFICATION_REQUIRED,
            "Event Requires Modification",
            f'Your event "{event.title}" requires modifications. Comments: {downgrade_comment}',
            tx,
            comments=downgrade_comment,
            conflicts=[conflict.to_dict() for conflict in allocation.conflicts],
        )
        logger.warning(
            "Final approval downgraded | %s",
            fields(event_id=event.event_id, explanation=allocation.explanation),
        )
        return ApprovalOutcome(
            success=True,
            next_stage=FINAL_HUMAN_STAGE,
            action=ApprovalAction.MODIFICATION_REQUIRED,
            allocation=allocation,
            notified_user_ids=(event.coordinator_id,),
        )

    def _notify_next_approvers(
        self,
        event: Event,
        stage: ApprovalStage,
        tx: Transaction,
    ) -> tuple[int, ...]:
        rule = get_required_approver(stage)
        if rule is None:
            return ()
        if rule.scope is ApproverScope.DEPARTMENT:
            approvers = self._repository.list_active_users_by_role(
                rule.role, department_id=event.department_id, tx=tx
            )
        elif rule.scope is ApproverScope.SCHOOL:
            approvers = self._repository.list_active_users_by_role(
                rule.role, school_id=event.school_id, tx=tx
            )
        else:
            approvers = self._repository.list_active_users_by_role(rule.role, tx=tx)

        for approver in approvers:
            self._notifications.queue(
                tx,
                approver.user_id,
                event.event_id,
                NotificationType.EVENT_SUBMITTED,
                "New Event Awaiting Approval",
                f'Event "{event.title}" requires your approval',
                {"stage": stage.value, "required_role": rule.role.value},
            )
        return tuple(approver.user_id for approver in approvers)

    def _queue_coordinator(
        self,
        event: Event,
        notification_type: NotificationType,
        title: str,
        message: str,
        tx: Transaction,
        **data: object,
    ) -> None:
        self._notifications.queue(
            tx,
            event.coordinator_id,
            event.event_id,
            notification_type,
            title,
            message,
            dict(data),
        )

    def _load_event(self, event_id: int, tx: Transaction) -> Event:
        event = self._repository.get_event(event_id, tx=tx)
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    def _load_user(self, user_id: int, tx: Transaction) -> User:
        user = self._repository.get_user(user_id, tx=tx)
        if user is None:
            raise UserNotFoundError(user_id)
        return user
