"""In-Memory Store - Same repository surface as the MongoDB repositories

Used for tests and for embedding the engine in a single process. A
transaction snapshots workflow state and restores it if the block raises.
"""
import copy
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from ..domain.models import (
    AuditEntry, Membership, RoutingRule, Task, WorkflowInstance, WorkflowTemplate
)
from ..domain.enums import InstanceStatus, TaskStatus, TriggerType
from ..domain.errors import (
    DefinitionNotFoundError, InstanceNotFoundError, TaskNotFoundError, ValidationError
)


@dataclass
class InMemoryDatabase:
    """Backing dictionaries shared by the in-memory repositories"""
    tasks: Dict[str, Task] = field(default_factory=dict)
    instances: Dict[str, WorkflowInstance] = field(default_factory=dict)
    definitions: Dict[str, WorkflowTemplate] = field(default_factory=dict)
    routing_rules: Dict[Tuple[str, int, TriggerType], RoutingRule] = field(default_factory=dict)
    audit_entries: List[AuditEntry] = field(default_factory=list)
    memberships: Dict[Tuple[str, str], Membership] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def snapshot(self) -> tuple:
        # Audit entries are written after commit and are not part of the snapshot
        return copy.deepcopy((self.tasks, self.instances, self.definitions, self.routing_rules))

    def restore(self, state: tuple) -> None:
        self.tasks, self.instances, self.definitions, self.routing_rules = state


class InMemoryUnitOfWork:
    """Serializes transactions and rolls state back when the block raises"""

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._db.lock:
            state = self._db.snapshot()
            try:
                yield
            except BaseException:
                self._db.restore(state)
                raise


class InMemoryTaskRepository:

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def create_task(self, task: Task) -> Task:
        self._db.tasks[task.task_id] = task.model_copy(deep=True)
        return task

    def save_task(self, task: Task) -> Task:
        if task.task_id not in self._db.tasks:
            raise TaskNotFoundError(f"Task {task.task_id} not found")
        self._db.tasks[task.task_id] = task.model_copy(deep=True)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._db.tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def get_task_or_raise(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found", details={"task_id": task_id})
        return task

    def list_tasks(self, instance_id: str) -> List[Task]:
        tasks = [t for t in self._db.tasks.values() if t.instance_id == instance_id]
        tasks.sort(key=lambda t: (t.step_order, t.created_at))
        return [t.model_copy(deep=True) for t in tasks]

    def list_pending_for_company(self, company_id: str) -> List[Task]:
        tasks = [
            t for t in self._db.tasks.values()
            if t.company_id == company_id and t.status == TaskStatus.PENDING
        ]
        tasks.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in tasks]

    def list_pending_created_before(self, cutoff: datetime, limit: int = 500) -> List[Task]:
        tasks = [
            t for t in self._db.tasks.values()
            if t.status == TaskStatus.PENDING and t.created_at < cutoff
        ]
        tasks.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in tasks[:limit]]


class InMemoryInstanceRepository:

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        self._db.instances[instance.instance_id] = instance.model_copy(deep=True)
        return instance

    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        if instance.instance_id not in self._db.instances:
            raise InstanceNotFoundError(f"Workflow instance {instance.instance_id} not found")
        self._db.instances[instance.instance_id] = instance.model_copy(deep=True)
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        instance = self._db.instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    def get_instance_or_raise(self, instance_id: str) -> WorkflowInstance:
        instance = self.get_instance(instance_id)
        if not instance:
            raise InstanceNotFoundError(
                f"Workflow instance {instance_id} not found",
                details={"instance_id": instance_id}
            )
        return instance

    def find_active(self, document_id: str, definition_id: str) -> Optional[WorkflowInstance]:
        for instance in self._db.instances.values():
            if (
                instance.document.document_id == document_id
                and instance.definition_id == definition_id
                and instance.status == InstanceStatus.IN_PROGRESS
            ):
                return instance.model_copy(deep=True)
        return None

    def count_active_for_definition(self, definition_id: str) -> int:
        return sum(
            1 for i in self._db.instances.values()
            if i.definition_id == definition_id and i.status == InstanceStatus.IN_PROGRESS
        )


class InMemoryDefinitionRepository:

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def create_definition(self, template: WorkflowTemplate) -> WorkflowTemplate:
        keys = []
        for rule in template.definition.routing_rules:
            key = (template.definition_id, rule.source_step, rule.trigger_type)
            if key in self._db.routing_rules or key in keys:
                raise ValidationError(
                    "Duplicate routing rule for the same step and trigger",
                    details={"definition_id": template.definition_id, "step_order": rule.source_step}
                )
            keys.append(key)

        self._db.definitions[template.definition_id] = template.model_copy(deep=True)
        for key, rule in zip(keys, template.definition.routing_rules):
            self._db.routing_rules[key] = rule
        return template

    def save_definition(self, template: WorkflowTemplate, replace_rules: bool = False) -> WorkflowTemplate:
        if template.definition_id not in self._db.definitions:
            raise DefinitionNotFoundError(
                f"Workflow definition {template.definition_id} not found",
                details={"definition_id": template.definition_id}
            )
        if replace_rules:
            for key in [k for k in self._db.routing_rules if k[0] == template.definition_id]:
                del self._db.routing_rules[key]
            del self._db.definitions[template.definition_id]
            return self.create_definition(template)
        self._db.definitions[template.definition_id] = template.model_copy(deep=True)
        return template

    def get_definition(self, definition_id: str) -> Optional[WorkflowTemplate]:
        template = self._db.definitions.get(definition_id)
        return template.model_copy(deep=True) if template else None

    def get_definition_or_raise(self, definition_id: str) -> WorkflowTemplate:
        template = self.get_definition(definition_id)
        if not template:
            raise DefinitionNotFoundError(
                f"Workflow definition {definition_id} not found",
                details={"definition_id": definition_id}
            )
        return template

    def list_definitions(self, company_id: str, include_inactive: bool = False) -> List[WorkflowTemplate]:
        templates = [
            t for t in self._db.definitions.values()
            if t.company_id == company_id and (include_inactive or t.is_active)
        ]
        templates.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in templates]

    def find_routing_rule(
        self,
        definition_id: str,
        step_order: int,
        trigger_type: TriggerType
    ) -> Optional[RoutingRule]:
        return self._db.routing_rules.get((definition_id, step_order, trigger_type))


class InMemoryAuditRepository:

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def append(self, entry: AuditEntry) -> AuditEntry:
        self._db.audit_entries.append(entry)
        return entry

    def list_for_instance(self, instance_id: str, limit: int = 1000) -> List[AuditEntry]:
        entries = [e for e in self._db.audit_entries if e.instance_id == instance_id]
        entries.sort(key=lambda e: (e.timestamp, e.sequence))
        return entries[:limit]


class InMemoryMembershipRepository:

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    def upsert_membership(self, membership: Membership) -> Membership:
        self._db.memberships[(membership.company_id, membership.actor_id)] = membership
        return membership

    def get_membership(self, actor_id: str, company_id: str) -> Optional[Membership]:
        return self._db.memberships.get((company_id, actor_id))

    def list_by_role(self, company_id: str, role_name: str, min_level: int) -> List[Membership]:
        members = [
            m for m in self._db.memberships.values()
            if m.company_id == company_id and m.role_name == role_name and m.role_level >= min_level
        ]
        return sorted(members, key=lambda m: m.actor_id)
