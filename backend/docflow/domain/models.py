"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, List, Optional, Tuple, Union
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, StrictBool

from .enums import (
    InstanceStatus, TaskAction, TaskStatus, TriggerType, AuditActionType,
    NotificationEventType, Priority, DocumentType, DocumentStatus
)
from ..utils.time import ensure_utc, utc_now


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]

# Stored as text so MongoDB never sees a float
DecimalStr = Annotated[Decimal, PlainSerializer(str, return_type=str, when_used="always")]

MetadataValue = Union[StrictBool, int, str, None]

MAX_AUDIT_METADATA_PAIRS = 16


# ============================================================================
# Actors & Subjects
# ============================================================================

class ActorContext(BaseModel):
    """Explicit acting user, passed into every engine entry point"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    actor_id: str = Field(..., min_length=1, description="User ID")
    display_name: Optional[str] = Field(None, description="User display name")


class DocumentContext(BaseModel):
    """Snapshot of the subject document used for routing conditions"""
    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(..., min_length=1)
    company_id: str = Field(..., min_length=1)
    title: str = ""
    amount: Optional[DecimalStr] = None
    priority: Priority = Priority.NORMAL
    document_type: DocumentType = DocumentType.GENERAL
    status: DocumentStatus = DocumentStatus.SUBMITTED


# ============================================================================
# Workflow Definition
# ============================================================================

class WorkflowStep(BaseModel):
    """One step declaration; steps sharing an order form a parallel group"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    order: int = Field(..., gt=0)
    role_name: str = Field(..., min_length=1)
    role_level: int = Field(..., ge=1, le=100)
    action: str = Field(..., min_length=1)
    parallel: bool = False
    description: Optional[str] = None
    # Actions on top of approve/reject, e.g. DELEGATE
    allowed_actions: Tuple[TaskAction, ...] = ()


class RoutingRule(BaseModel):
    """Conditional next-step instruction; no target_step means terminate"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    source_step: int = Field(..., gt=0)
    trigger_type: TriggerType
    target_step: Optional[int] = Field(None, gt=0)
    condition: Optional[str] = None
    description: Optional[str] = None

    @property
    def terminates(self) -> bool:
        return self.target_step is None


class WorkflowDefinition(BaseModel):
    """Ordered steps plus routing rules, as produced by the definition parser"""
    model_config = ConfigDict(extra="forbid")

    steps: List[WorkflowStep] = Field(default_factory=list)
    routing_rules: List[RoutingRule] = Field(default_factory=list)

    def step_orders(self) -> List[int]:
        """Distinct step orders, ascending"""
        return sorted({step.order for step in self.steps})

    def steps_for_order(self, order: int) -> List[WorkflowStep]:
        return [step for step in self.steps if step.order == order]

    def step_groups(self) -> Dict[int, List[WorkflowStep]]:
        return {order: self.steps_for_order(order) for order in self.step_orders()}

    def first_order(self) -> Optional[int]:
        orders = self.step_orders()
        return orders[0] if orders else None

    def next_order_after(self, order: int) -> Optional[int]:
        for candidate in self.step_orders():
            if candidate > order:
                return candidate
        return None

    def has_order(self, order: int) -> bool:
        return any(step.order == order for step in self.steps)

    def find_rule(self, source_step: int, trigger_type: TriggerType) -> Optional[RoutingRule]:
        for rule in self.routing_rules:
            if rule.source_step == source_step and rule.trigger_type == trigger_type:
                return rule
        return None


class WorkflowTemplate(BaseModel):
    """Stored definition with identity and ownership"""
    model_config = ConfigDict(extra="forbid")

    definition_id: str
    company_id: str
    name: str
    description: Optional[str] = None
    definition: WorkflowDefinition
    source_xml: Optional[str] = None
    created_by: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    updated_by: Optional[str] = None
    updated_at: Optional[UtcDatetime] = None
    # None: any company member may start; otherwise the starter's level must be listed
    allowed_role_levels: Optional[List[int]] = None
    # Deleted definitions stay readable for the instances that reference them
    is_active: bool = True

    def can_start(self, role_level: int) -> bool:
        if self.allowed_role_levels is None:
            return True
        return role_level in self.allowed_role_levels


class StoredRoutingRule(BaseModel):
    """Routing rule row, unique per (definition_id, source_step, trigger_type)"""
    model_config = ConfigDict(extra="forbid")

    rule_id: str
    definition_id: str
    rule: RoutingRule


# ============================================================================
# Runtime State
# ============================================================================

class WorkflowInstance(BaseModel):
    """One running activation of a definition against one document"""
    model_config = ConfigDict(extra="forbid")

    instance_id: str
    definition_id: str
    company_id: str
    document: DocumentContext
    status: InstanceStatus = InstanceStatus.IN_PROGRESS
    initiated_by: Optional[str] = None
    started_at: UtcDatetime = Field(default_factory=utc_now)
    completed_at: Optional[UtcDatetime] = None
    # Bumped on every rollback; tasks (re)activated together share a round
    round: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == InstanceStatus.IN_PROGRESS


class Task(BaseModel):
    """One approval unit for one step (or one member of a parallel group)"""
    model_config = ConfigDict(extra="forbid")

    task_id: str
    instance_id: str
    company_id: str
    step_order: int
    required_role_name: str
    required_role_level: int
    action: str
    status: TaskStatus = TaskStatus.PENDING
    allowed_actions: List[TaskAction] = Field(
        default_factory=lambda: [TaskAction.APPROVE, TaskAction.REJECT]
    )
    round: int = 1
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utc_now)
    completed_by: Optional[str] = None
    completed_at: Optional[UtcDatetime] = None
    comment: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


# ============================================================================
# Audit
# ============================================================================

class MetadataPair(BaseModel):
    """One typed key/value in an audit entry's side channel"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(..., min_length=1, max_length=64)
    value: MetadataValue = None


class AuditEntry(BaseModel):
    """Immutable record of one engine-driven transition"""
    model_config = ConfigDict(extra="forbid", frozen=True)

    entry_id: str
    instance_id: str
    task_id: Optional[str] = None
    action_type: AuditActionType
    description: str
    metadata: Tuple[MetadataPair, ...] = Field(default=(), max_length=MAX_AUDIT_METADATA_PAIRS)
    actor_id: Optional[str] = None
    timestamp: UtcDatetime = Field(default_factory=utc_now)
    sequence: int = 0
    origin: Optional[str] = None

    def metadata_value(self, key: str) -> MetadataValue:
        for pair in self.metadata:
            if pair.key == key:
                return pair.value
        return None


def audit_metadata(**values: MetadataValue) -> Tuple[MetadataPair, ...]:
    """Build an ordered metadata tuple, keeping keyword order"""
    return tuple(MetadataPair(key=key, value=value) for key, value in values.items())


# ============================================================================
# Results
# ============================================================================

class AuthorizationResult(BaseModel):
    """Outcome of the permission guard"""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None
    actor_level: int = 0
    required_level: int = 0


class BulkOperationResult(BaseModel):
    """Partial-success report of a bulk approve/reject"""
    total_tasks: int
    successful_count: int
    successful_task_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class NotificationEvent(BaseModel):
    """Post-commit notification payload"""
    model_config = ConfigDict(frozen=True)

    instance_id: str
    task_id: Optional[str] = None
    event_type: NotificationEventType
    actor_id: Optional[str] = None


class Membership(BaseModel):
    """A user's role inside one company"""
    model_config = ConfigDict(extra="forbid")

    company_id: str
    actor_id: str
    role_name: str
    role_level: int = Field(..., ge=1, le=100)
