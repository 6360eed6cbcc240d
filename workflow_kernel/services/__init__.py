"""Kernel services: the only writers of status and delivery tables."""

from workflow_kernel.services.base import BaseService
from workflow_kernel.services.delivery_recorder import DeliveryRecorder
from workflow_kernel.services.status_ledger import StatusLedger

__all__ = ["BaseService", "DeliveryRecorder", "StatusLedger"]
