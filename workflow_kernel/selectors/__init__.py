"""Read-only selectors for the workflow kernel."""

from workflow_kernel.selectors.base import BaseSelector
from workflow_kernel.selectors.status_selector import StatusSelector

__all__ = ["BaseSelector", "StatusSelector"]
