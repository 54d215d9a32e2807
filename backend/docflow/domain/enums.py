"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class InstanceStatus(str, Enum):
    """Workflow instance status"""
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class TaskStatus(str, Enum):
    """Per-task approval state"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class TaskAction(str, Enum):
    """What an actor may do with a pending task; approve and reject are always allowed"""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    DELEGATE = "DELEGATE"


class TriggerType(str, Enum):
    """Step outcome that fires a routing rule"""
    ON_APPROVE = "ON_APPROVE"
    ON_REJECT = "ON_REJECT"
    ON_TIMEOUT = "ON_TIMEOUT"

    @property
    def tag(self) -> str:
        """Element name used in the definition markup"""
        return _TRIGGER_TAGS[self]

    @classmethod
    def from_tag(cls, tag: str) -> "TriggerType":
        for trigger, trigger_tag in _TRIGGER_TAGS.items():
            if trigger_tag == tag:
                return trigger
        raise ValueError(f"Unknown routing tag: {tag}")


_TRIGGER_TAGS = {
    TriggerType.ON_APPROVE: "onApprove",
    TriggerType.ON_REJECT: "onReject",
    TriggerType.ON_TIMEOUT: "onTimeout",
}


class AuditActionType(str, Enum):
    """Types of audit entries"""
    WORKFLOW_STARTED = "WORKFLOW_STARTED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_REJECTED = "WORKFLOW_REJECTED"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    TASK_CREATED = "TASK_CREATED"
    TASK_APPROVED = "TASK_APPROVED"
    TASK_REJECTED = "TASK_REJECTED"
    TASK_TIMED_OUT = "TASK_TIMED_OUT"
    TASK_CANCELLED = "TASK_CANCELLED"
    TASK_DELEGATED = "TASK_DELEGATED"
    STEP_ADVANCED = "STEP_ADVANCED"
    ROUTING_RULE_APPLIED = "ROUTING_RULE_APPLIED"


class NotificationEventType(str, Enum):
    """Events fanned out to notification hooks after commit"""
    TASK_CREATED = "TASK_CREATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_APPROVED = "TASK_APPROVED"
    TASK_REJECTED = "TASK_REJECTED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_REJECTED = "WORKFLOW_REJECTED"
    WORKFLOW_RETURNED = "WORKFLOW_RETURNED"


class Priority(str, Enum):
    """Document priority"""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DocumentType(str, Enum):
    """Document classification"""
    GENERAL = "GENERAL"
    CONTRACT = "CONTRACT"
    INVOICE = "INVOICE"
    ORDER = "ORDER"
    REPORT = "REPORT"


class DocumentStatus(str, Enum):
    """Document lifecycle status"""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SIGNED = "SIGNED"
    ARCHIVED = "ARCHIVED"
