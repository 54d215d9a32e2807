"""
Workflow Engine - The state machine behind document approval

This module contains the WorkflowEngine class that creates approval tasks,
processes approve/reject/timeout events, applies routing rules and keeps the
audit trail.

=============================================================================
MODULE STRUCTURE
=============================================================================

1. INITIALIZATION
   - Constructor with repository, guard and service dependencies

2. PUBLIC OPERATIONS
   - initialize: Start an instance and create its first step group
   - approve: Approve a pending task and advance
   - reject: Reject a pending task and apply ON_REJECT routing
   - timeout: Expire a pending task and apply ON_TIMEOUT routing
   - delegate: Hand a pending task to another eligible member

3. ROUTING
   - _advance: Move on once a step group is fully approved
   - _route_rejection: Rollback or terminal rejection
   - _rollback: Cancel downstream tasks and reset the target step
   - _finish: Terminal COMPLETED / REJECTED

4. STEP HELPERS
   - _activate_step: Materialize the next step group
   - _materialize: Create tasks for one step group

5. UNIT OF WORK
   - _transition: One atomic unit of work per public operation
   - _after_commit: Audit and notification side channels

=============================================================================
TRANSITION RULES
=============================================================================

Instance: IN_PROGRESS -> COMPLETED | REJECTED (terminal).
Task:     PENDING -> APPROVED | REJECTED | CANCELLED; a rollback puts the
          target step's tasks back to PENDING in a new round.

Only the first step group exists after initialize; later groups are created
when the group before them is fully APPROVED, so the PENDING tasks of an
instance always share one step order.

Audit entries and notifications are collected while the transition runs and
written after it commits. An audit write failure is logged and never undoes
the committed transition.

=============================================================================
"""
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from ..domain.models import (
    ActorContext, AuditEntry, MetadataPair, NotificationEvent, RoutingRule,
    Task, WorkflowDefinition, WorkflowInstance, WorkflowStep, audit_metadata
)
from ..domain.enums import (
    AuditActionType, InstanceStatus, NotificationEventType, TaskAction, TaskStatus,
    TriggerType
)
from ..domain.errors import (
    AuditWriteError, InitializationError, InvalidStateTransitionError,
    UnauthorizedTransitionError, ValidationError
)
from .audit_recorder import AuditRecorder
from .condition_evaluator import ConditionEvaluator
from .permission_guard import PermissionGuard
from ..services.directory_service import DirectoryService
from ..services.notification_service import NotificationService
from ..utils.idgen import generate_task_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR_ID = "system"


class _Transition:
    """Side effects collected during one unit of work"""

    def __init__(self, actor_id: Optional[str]):
        self.actor_id = actor_id
        self.entries: List[AuditEntry] = []
        self.events: List[NotificationEvent] = []


class WorkflowEngine:
    """
    Core workflow engine

    Every public operation runs inside one unit of work: either the whole
    transition (task update, cancellations, resets, new tasks, instance
    status) commits, or none of it does.
    """

    # =========================================================================
    # Initialization
    # =========================================================================

    def __init__(
        self,
        task_repo=None,
        instance_repo=None,
        definition_repo=None,
        unit_of_work=None,
        directory: Optional[DirectoryService] = None,
        audit: Optional[AuditRecorder] = None,
        notifications: Optional[NotificationService] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        permission_guard: Optional[PermissionGuard] = None
    ):
        if task_repo is None or instance_repo is None or definition_repo is None or unit_of_work is None:
            from ..repositories import (
                TaskRepository, InstanceRepository, DefinitionRepository, MongoUnitOfWork
            )
            task_repo = task_repo or TaskRepository()
            instance_repo = instance_repo or InstanceRepository()
            definition_repo = definition_repo or DefinitionRepository()
            unit_of_work = unit_of_work or MongoUnitOfWork()

        self.task_repo = task_repo
        self.instance_repo = instance_repo
        self.definition_repo = definition_repo
        self.uow = unit_of_work
        self.directory = directory or DirectoryService()
        self.audit = audit or AuditRecorder()
        self.notifications = notifications or NotificationService()
        self.evaluator = evaluator or ConditionEvaluator()
        self.permission_guard = permission_guard or PermissionGuard(self.directory)

    # =========================================================================
    # Public Operations
    # =========================================================================

    def initialize(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        actor: Optional[ActorContext] = None
    ) -> List[Task]:
        """
        Start an instance: store it and create tasks for the first step group

        On failure the instance is stored as REJECTED together with whatever
        tasks were already created, and InitializationError is raised.
        """
        actor_id = actor.actor_id if actor else instance.initiated_by
        failure: Optional[Exception] = None
        tasks: List[Task] = []

        with self._transition(actor_id) as t:
            existing = self.instance_repo.get_instance(instance.instance_id)
            if existing is not None:
                raise InvalidStateTransitionError(
                    f"Workflow instance {instance.instance_id} is already initialized",
                    details={"instance_id": instance.instance_id, "status": existing.status.value}
                )

            instance.status = InstanceStatus.IN_PROGRESS
            instance.completed_at = None
            self.instance_repo.create_instance(instance)

            try:
                first_order = definition.first_order()
                if first_order is None:
                    raise InitializationError(
                        "Workflow definition has no steps",
                        details={"definition_id": instance.definition_id}
                    )

                self._record(
                    t, instance.instance_id, AuditActionType.WORKFLOW_STARTED,
                    f"Workflow started for document {instance.document.document_id}",
                    metadata=audit_metadata(
                        definition_id=instance.definition_id,
                        document_id=instance.document.document_id,
                        first_step=first_order
                    )
                )
                tasks = self._materialize(t, instance, definition, first_order)

            except Exception as e:
                failure = e
                instance.status = InstanceStatus.REJECTED
                instance.completed_at = utc_now()
                self.instance_repo.save_instance(instance)
                self._record(
                    t, instance.instance_id, AuditActionType.INITIALIZATION_FAILED,
                    f"Initialization failed: {e}",
                    metadata=audit_metadata(error=type(e).__name__)
                )
                logger.error(
                    f"Failed to initialize workflow instance {instance.instance_id}: {e}",
                    extra={"instance_id": instance.instance_id, "definition_id": instance.definition_id}
                )

        if failure is not None:
            if isinstance(failure, InitializationError):
                raise failure
            raise InitializationError(
                f"Failed to initialize workflow instance {instance.instance_id}: {failure}",
                details={"instance_id": instance.instance_id}
            ) from failure

        logger.info(
            f"Initialized workflow instance {instance.instance_id} with {len(tasks)} tasks",
            extra={"instance_id": instance.instance_id, "definition_id": instance.definition_id}
        )
        return tasks

    def approve(
        self,
        task_id: str,
        actor: ActorContext,
        comment: Optional[str] = None,
        company_scope: Optional[str] = None
    ) -> Task:
        """Approve a pending task and advance the instance if its step group is done"""
        with self._transition(actor.actor_id) as t:
            task, instance = self._load_for_action(task_id, actor, company_scope)
            definition = self._definition_for(instance)

            self._complete_task(task, TaskStatus.APPROVED, actor.actor_id, comment)
            self._record(
                t, instance.instance_id, AuditActionType.TASK_APPROVED,
                f"Step {task.step_order} ({task.required_role_name}) approved",
                task_id=task.task_id,
                metadata=audit_metadata(step_order=task.step_order, comment=comment)
            )
            self._notify(t, instance.instance_id, NotificationEventType.TASK_APPROVED, task.task_id)

            logger.info(
                f"Task {task.task_id} approved",
                extra={
                    "task_id": task.task_id, "instance_id": instance.instance_id,
                    "step_order": task.step_order, "actor_id": actor.actor_id, "action": "approve"
                }
            )
            self._advance(t, instance, definition, task)
            return task

    def reject(
        self,
        task_id: str,
        actor: ActorContext,
        comment: Optional[str] = None,
        company_scope: Optional[str] = None
    ) -> Task:
        """Reject a pending task and route the instance back or to REJECTED"""
        with self._transition(actor.actor_id) as t:
            task, instance = self._load_for_action(task_id, actor, company_scope)
            definition = self._definition_for(instance)

            self._complete_task(task, TaskStatus.REJECTED, actor.actor_id, comment)
            self._record(
                t, instance.instance_id, AuditActionType.TASK_REJECTED,
                f"Step {task.step_order} ({task.required_role_name}) rejected",
                task_id=task.task_id,
                metadata=audit_metadata(step_order=task.step_order, comment=comment)
            )
            self._notify(t, instance.instance_id, NotificationEventType.TASK_REJECTED, task.task_id)

            logger.info(
                f"Task {task.task_id} rejected",
                extra={
                    "task_id": task.task_id, "instance_id": instance.instance_id,
                    "step_order": task.step_order, "actor_id": actor.actor_id, "action": "reject"
                }
            )
            self._route_rejection(t, instance, definition, task, TriggerType.ON_REJECT)
            return task

    def timeout(self, task_id: str, reason: Optional[str] = None) -> Task:
        """
        Expire a pending task (called by the timeout scheduler)

        The task is closed as REJECTED and the ON_TIMEOUT rule is applied;
        without one, ON_REJECT routing applies. No role check.
        """
        reason = reason or "Task timed out"
        with self._transition(SYSTEM_ACTOR_ID) as t:
            task = self.task_repo.get_task_or_raise(task_id)
            self._require_pending(task)
            instance = self.instance_repo.get_instance_or_raise(task.instance_id)
            self._require_active(instance)
            definition = self._definition_for(instance)

            self._complete_task(task, TaskStatus.REJECTED, None, reason)
            self._record(
                t, instance.instance_id, AuditActionType.TASK_TIMED_OUT,
                f"Step {task.step_order} ({task.required_role_name}) timed out",
                task_id=task.task_id,
                metadata=audit_metadata(step_order=task.step_order, reason=reason)
            )
            self._notify(t, instance.instance_id, NotificationEventType.TASK_REJECTED, task.task_id)

            logger.info(
                f"Task {task.task_id} timed out",
                extra={"task_id": task.task_id, "instance_id": instance.instance_id, "action": "timeout"}
            )
            self._route_rejection(t, instance, definition, task, TriggerType.ON_TIMEOUT)
            return task

    def delegate(
        self,
        task_id: str,
        actor: ActorContext,
        target_actor_id: str,
        comment: Optional[str] = None,
        company_scope: Optional[str] = None
    ) -> Task:
        """
        Reassign a pending task to another member of the task's company

        The actor must be allowed to act on the task and the step must offer
        DELEGATE. The target needs the step's role level and must not already
        hold a pending task in the same step group.
        """
        with self._transition(actor.actor_id) as t:
            task, instance = self._load_for_action(task_id, actor, company_scope)

            if TaskAction.DELEGATE not in task.allowed_actions:
                raise UnauthorizedTransitionError(
                    f"Step {task.step_order} does not allow delegation",
                    details={"task_id": task.task_id, "step_order": task.step_order}
                )
            if target_actor_id == actor.actor_id or target_actor_id == task.assigned_to:
                raise ValidationError(
                    f"Task {task.task_id} is already with {target_actor_id}",
                    details={"task_id": task.task_id, "target_actor_id": target_actor_id}
                )

            target_level = self.directory.role_level(target_actor_id, task.company_id)
            if target_level < task.required_role_level:
                raise ValidationError(
                    f"{target_actor_id} cannot take the task: level {target_level} < required {task.required_role_level}",
                    details={"task_id": task.task_id, "target_actor_id": target_actor_id}
                )
            for other in self.task_repo.list_tasks(instance.instance_id):
                if (
                    other.task_id != task.task_id
                    and other.is_pending
                    and other.step_order == task.step_order
                    and other.assigned_to == target_actor_id
                ):
                    raise ValidationError(
                        f"{target_actor_id} already holds a task in step {task.step_order}",
                        details={"task_id": task.task_id, "target_actor_id": target_actor_id}
                    )

            previous = task.assigned_to
            task.assigned_to = target_actor_id
            task.assigned_by = actor.actor_id
            self.task_repo.save_task(task)

            self._record(
                t, instance.instance_id, AuditActionType.TASK_DELEGATED,
                f"Step {task.step_order} ({task.required_role_name}) delegated to {target_actor_id}",
                task_id=task.task_id,
                metadata=audit_metadata(
                    step_order=task.step_order,
                    from_actor=previous,
                    to_actor=target_actor_id,
                    comment=comment
                )
            )
            self._notify(t, instance.instance_id, NotificationEventType.TASK_ASSIGNED, task.task_id)

            logger.info(
                f"Task {task.task_id} delegated to {target_actor_id}",
                extra={
                    "task_id": task.task_id, "instance_id": instance.instance_id,
                    "actor_id": actor.actor_id, "action": "delegate"
                }
            )
            return task

    # =========================================================================
    # Routing
    # =========================================================================

    def _advance(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        task: Task
    ) -> None:
        """Route onward once every task in the approved task's group is APPROVED"""
        group = [
            other for other in self.task_repo.list_tasks(instance.instance_id)
            if other.step_order == task.step_order and other.round == task.round
        ]
        if any(other.status != TaskStatus.APPROVED for other in group):
            return

        order = task.step_order
        rule = self._matching_rule(instance, order, TriggerType.ON_APPROVE)
        if rule is not None:
            if rule.terminates:
                self._record_rule(t, instance, rule, order)
                self._finish(t, instance, InstanceStatus.COMPLETED, f"Routing rule completed the workflow at step {order}")
            elif rule.target_step > order:
                self._record_rule(t, instance, rule, order)
                self._activate_step(t, instance, definition, order, rule.target_step)
            else:
                self._rollback(t, instance, definition, order, rule.target_step)
            return

        next_order = definition.next_order_after(order)
        if next_order is None:
            self._finish(t, instance, InstanceStatus.COMPLETED, f"All steps approved (last step {order})")
        else:
            self._activate_step(t, instance, definition, order, next_order)

    def _route_rejection(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        task: Task,
        trigger: TriggerType
    ) -> None:
        order = task.step_order
        rule = self._matching_rule(instance, order, trigger)
        if rule is None and trigger == TriggerType.ON_TIMEOUT:
            rule = self._matching_rule(instance, order, TriggerType.ON_REJECT)

        if rule is None:
            self._finish(t, instance, InstanceStatus.REJECTED, f"Step {order} rejected with no routing rule")
            return

        if rule.terminates:
            self._record_rule(t, instance, rule, order)
            self._finish(t, instance, InstanceStatus.REJECTED, f"Routing rule rejected the workflow at step {order}")
        else:
            self._rollback(t, instance, definition, order, rule.target_step)

    def _rollback(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        from_step: int,
        target_step: int
    ) -> None:
        """
        Return the instance to target_step

        Open work from min(from_step, target_step) onward is cancelled, the
        latest tasks at target_step go back to PENDING in a new round (or
        the group is created if it never existed).
        """
        if not definition.has_order(target_step):
            raise ValidationError(
                f"Routing target step {target_step} does not exist",
                details={"instance_id": instance.instance_id, "target_step": target_step}
            )

        threshold = min(from_step, target_step)
        tasks = self.task_repo.list_tasks(instance.instance_id)
        instance.round += 1

        cancelled: List[Task] = []
        for other in tasks:
            if (
                other.step_order >= threshold
                and other.step_order != target_step
                and other.status in (TaskStatus.PENDING, TaskStatus.APPROVED)
            ):
                other.status = TaskStatus.CANCELLED
                self.task_repo.save_task(other)
                cancelled.append(other)

        at_target = [other for other in tasks if other.step_order == target_step]
        reset: List[Task] = []
        if at_target:
            latest_round = max(other.round for other in at_target)
            for other in at_target:
                if other.round != latest_round:
                    continue
                other.status = TaskStatus.PENDING
                other.round = instance.round
                other.completed_by = None
                other.completed_at = None
                other.comment = None
                self.task_repo.save_task(other)
                reset.append(other)

        self.instance_repo.save_instance(instance)

        self._record(
            t, instance.instance_id, AuditActionType.ROUTING_RULE_APPLIED,
            f"Workflow returned from step {from_step} to step {target_step}",
            metadata=audit_metadata(
                from_step=from_step,
                to_step=target_step,
                reset_count=len(reset),
                cancelled_count=len(cancelled),
                round=instance.round
            )
        )
        for other in cancelled:
            self._record(
                t, instance.instance_id, AuditActionType.TASK_CANCELLED,
                f"Step {other.step_order} ({other.required_role_name}) cancelled by rollback",
                task_id=other.task_id,
                metadata=audit_metadata(step_order=other.step_order)
            )
        self._notify(t, instance.instance_id, NotificationEventType.WORKFLOW_RETURNED)

        if reset:
            for other in reset:
                self._notify_pending(t, instance.instance_id, other)
        else:
            self._materialize(t, instance, definition, target_step)

        logger.info(
            f"Rolled back instance {instance.instance_id} from step {from_step} to {target_step}",
            extra={"instance_id": instance.instance_id, "step_order": target_step, "action": "rollback"}
        )

    def _finish(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        status: InstanceStatus,
        description: str
    ) -> None:
        """Move the instance to a terminal status, cancelling leftover pending tasks"""
        instance.status = status
        instance.completed_at = utc_now()
        self.instance_repo.save_instance(instance)

        for other in self.task_repo.list_tasks(instance.instance_id):
            if other.status != TaskStatus.PENDING:
                continue
            other.status = TaskStatus.CANCELLED
            self.task_repo.save_task(other)
            self._record(
                t, instance.instance_id, AuditActionType.TASK_CANCELLED,
                f"Step {other.step_order} ({other.required_role_name}) cancelled, workflow {status.value.lower()}",
                task_id=other.task_id,
                metadata=audit_metadata(step_order=other.step_order)
            )

        if status == InstanceStatus.COMPLETED:
            action, event = AuditActionType.WORKFLOW_COMPLETED, NotificationEventType.WORKFLOW_COMPLETED
        else:
            action, event = AuditActionType.WORKFLOW_REJECTED, NotificationEventType.WORKFLOW_REJECTED
        self._record(t, instance.instance_id, action, description)
        self._notify(t, instance.instance_id, event)

        logger.info(
            f"Workflow instance {instance.instance_id} {status.value}",
            extra={"instance_id": instance.instance_id, "status": status.value}
        )

    def _matching_rule(
        self,
        instance: WorkflowInstance,
        step_order: int,
        trigger: TriggerType
    ) -> Optional[RoutingRule]:
        """Rule for (definition, step, trigger) whose condition holds; a false condition means no rule"""
        rule = self.definition_repo.find_routing_rule(instance.definition_id, step_order, trigger)
        if rule is None:
            return None
        if not self.evaluator.evaluate(rule.condition, instance.document):
            logger.debug(
                f"Routing condition '{rule.condition}' not met at step {step_order}",
                extra={"instance_id": instance.instance_id, "step_order": step_order}
            )
            return None
        return rule

    # =========================================================================
    # Step Helpers
    # =========================================================================

    def _activate_step(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        from_step: int,
        to_step: int
    ) -> List[Task]:
        if not definition.has_order(to_step):
            raise ValidationError(
                f"Routing target step {to_step} does not exist",
                details={"instance_id": instance.instance_id, "target_step": to_step}
            )
        self._record(
            t, instance.instance_id, AuditActionType.STEP_ADVANCED,
            f"Advanced from step {from_step} to step {to_step}",
            metadata=audit_metadata(from_step=from_step, to_step=to_step)
        )
        return self._materialize(t, instance, definition, to_step)

    def _materialize(
        self,
        t: _Transition,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        order: int
    ) -> List[Task]:
        """
        Create the tasks of one step group

        Parallel groups get one assigned task per directory member holding
        the step's role (one unassigned task if nobody does); other groups
        get one unassigned task per step.
        """
        steps = definition.steps_for_order(order)
        if not steps:
            raise ValidationError(
                f"Step {order} has no step declarations",
                details={"instance_id": instance.instance_id, "step_order": order}
            )

        parallel = any(step.parallel for step in steps)
        seen_roles = set()
        created: List[Task] = []
        for step in steps:
            assignees: List[Optional[str]] = [None]
            if parallel:
                if step.role_name in seen_roles:
                    continue
                seen_roles.add(step.role_name)
                members = self.directory.members_with_role(
                    instance.company_id, step.role_name, step.role_level
                )
                assignees = list(members) or [None]

            for assignee in assignees:
                task = Task(
                    task_id=generate_task_id(),
                    instance_id=instance.instance_id,
                    company_id=instance.company_id,
                    step_order=step.order,
                    required_role_name=step.role_name,
                    required_role_level=step.role_level,
                    action=step.action,
                    allowed_actions=_task_actions(step),
                    round=instance.round,
                    assigned_to=assignee,
                    assigned_by=SYSTEM_ACTOR_ID if assignee else None,
                    created_at=utc_now()
                )
                self.task_repo.create_task(task)
                created.append(task)

                self._record(
                    t, instance.instance_id, AuditActionType.TASK_CREATED,
                    f"Task created for step {step.order} ({step.role_name})",
                    task_id=task.task_id,
                    metadata=audit_metadata(
                        step_order=step.order,
                        role_name=step.role_name,
                        role_level=step.role_level,
                        assigned_to=assignee
                    )
                )
                self._notify_pending(t, instance.instance_id, task)

        logger.info(
            f"Created {len(created)} tasks for step {order}",
            extra={"instance_id": instance.instance_id, "step_order": order}
        )
        return created

    def _load_for_action(
        self,
        task_id: str,
        actor: ActorContext,
        company_scope: Optional[str]
    ) -> Tuple[Task, WorkflowInstance]:
        """Load a task for approve/reject: status first, then instance, then permissions"""
        task = self.task_repo.get_task_or_raise(task_id)
        self._require_pending(task)
        instance = self.instance_repo.get_instance_or_raise(task.instance_id)
        self._require_active(instance)

        result = self.permission_guard.check(task, actor, company_scope)
        if not result.allowed:
            raise UnauthorizedTransitionError(
                result.reason or "Not permitted",
                details={
                    "task_id": task.task_id,
                    "actor_level": result.actor_level,
                    "required_level": result.required_level
                }
            )
        return task, instance

    def _definition_for(self, instance: WorkflowInstance) -> WorkflowDefinition:
        return self.definition_repo.get_definition_or_raise(instance.definition_id).definition

    def _require_pending(self, task: Task) -> None:
        if not task.is_pending:
            raise InvalidStateTransitionError(
                f"Task {task.task_id} is {task.status.value}, expected PENDING",
                details={"task_id": task.task_id, "status": task.status.value}
            )

    def _require_active(self, instance: WorkflowInstance) -> None:
        if not instance.is_active:
            raise InvalidStateTransitionError(
                f"Workflow instance {instance.instance_id} is {instance.status.value}",
                details={"instance_id": instance.instance_id, "status": instance.status.value}
            )

    def _complete_task(
        self,
        task: Task,
        status: TaskStatus,
        actor_id: Optional[str],
        comment: Optional[str]
    ) -> None:
        task.status = status
        task.completed_by = actor_id
        task.completed_at = utc_now()
        task.comment = comment
        self.task_repo.save_task(task)

    # =========================================================================
    # Unit of Work
    # =========================================================================

    @contextmanager
    def _transition(self, actor_id: Optional[str]) -> Iterator[_Transition]:
        """Run a block atomically; side channels fire only after commit"""
        transition = _Transition(actor_id)
        with self.uow.transaction():
            yield transition
        self._after_commit(transition)

    def _after_commit(self, t: _Transition) -> None:
        for entry in t.entries:
            try:
                self.audit.append(entry)
            except AuditWriteError as e:
                logger.error(
                    f"Audit entry lost after commit: {e.message}",
                    extra={
                        "instance_id": entry.instance_id,
                        "task_id": entry.task_id,
                        "action": entry.action_type.value
                    }
                )
        for event in t.events:
            self.notifications.dispatch(event)

    def _record(
        self,
        t: _Transition,
        instance_id: str,
        action_type: AuditActionType,
        description: str,
        task_id: Optional[str] = None,
        metadata: Tuple[MetadataPair, ...] = ()
    ) -> None:
        t.entries.append(self.audit.build(
            instance_id=instance_id,
            action_type=action_type,
            description=description,
            task_id=task_id,
            actor_id=t.actor_id,
            metadata=metadata
        ))

    def _record_rule(self, t: _Transition, instance: WorkflowInstance, rule: RoutingRule, order: int) -> None:
        # Rollbacks write their own entry with reset/cancel counts
        self._record(
            t, instance.instance_id, AuditActionType.ROUTING_RULE_APPLIED,
            rule.description or f"{rule.trigger_type.value} rule applied at step {order}",
            metadata=audit_metadata(
                from_step=order,
                to_step=rule.target_step,
                trigger=rule.trigger_type.value,
                condition=rule.condition
            )
        )

    def _notify(
        self,
        t: _Transition,
        instance_id: str,
        event_type: NotificationEventType,
        task_id: Optional[str] = None
    ) -> None:
        t.events.append(NotificationEvent(
            instance_id=instance_id,
            task_id=task_id,
            event_type=event_type,
            actor_id=t.actor_id
        ))

    def _notify_pending(self, t: _Transition, instance_id: str, task: Task) -> None:
        event_type = NotificationEventType.TASK_ASSIGNED if task.assigned_to else NotificationEventType.TASK_CREATED
        self._notify(t, instance_id, event_type, task.task_id)


def _task_actions(step: WorkflowStep) -> List[TaskAction]:
    actions = [TaskAction.APPROVE, TaskAction.REJECT]
    actions.extend(a for a in step.allowed_actions if a not in actions)
    return actions
