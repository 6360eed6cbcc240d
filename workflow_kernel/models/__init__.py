"""ORM models for the workflow kernel."""

from workflow_kernel.models.notification import (
    NotificationAttemptModel,
    NotificationDeliveryModel,
)
from workflow_kernel.models.project_record import ProjectStatusRecord
from workflow_kernel.models.status_transition import StatusTransitionModel

__all__ = [
    "ProjectStatusRecord",
    "StatusTransitionModel",
    "NotificationDeliveryModel",
    "NotificationAttemptModel",
]
