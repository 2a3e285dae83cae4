"""Error taxonomy shared by the approval workflow and allocation engine."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every domain-level failure in this service."""


class NotFoundError(WorkflowError):
    """Raised when a referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: object) -> None:
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class EventNotFoundError(NotFoundError):
    entity = "Event"


class UserNotFoundError(NotFoundError):
    entity = "User"


class ResourceNotFoundError(NotFoundError):
    entity = "Resource"


class NotificationNotFoundError(NotFoundError):
    entity = "Notification"


class NotReadyError(WorkflowError):
    """Raised when allocation is attempted before the final human approval."""

    def __init__(self, event_id: int, stage: str) -> None:
        self.event_id = event_id
        self.stage = stage
        super().__init__(
            f"Event {event_id} is not ready for allocation (approval stage {stage})"
        )


class InvalidTransitionError(WorkflowError):
    """Raised when a stage change is not part of the approval chain."""

    def __init__(self, from_stage: str, action: str) -> None:
        self.from_stage = from_stage
        self.action = action
        super().__init__(f"Illegal approval transition: {action} from {from_stage}")


class EventValidationError(WorkflowError):
    """Raised when event authoring input violates a model invariant."""
