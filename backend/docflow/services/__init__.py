"""Service modules - Business logic layer

WorkflowService and BulkWorkflowService depend on the engine, which itself
uses the directory and notification services; import them from their
modules.
"""
from .directory_service import DirectoryService
from .notification_service import NotificationService

__all__ = [
    "DirectoryService",
    "NotificationService",
]
