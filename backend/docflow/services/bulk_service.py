"""Bulk Workflow Service - Approve or reject many tasks with partial success"""
from typing import List, Optional

from ..config.settings import get_settings
from ..domain.models import ActorContext, BulkOperationResult
from ..domain.enums import TaskStatus
from ..domain.errors import DomainError, ValidationError
from ..engine.engine import WorkflowEngine
from ..utils.logger import get_logger

logger = get_logger(__name__)


class BulkWorkflowService:
    """
    Drive a batch of task decisions through the engine

    Tasks are processed one at a time, each in its own unit of work, so two
    approvals in the same step group never race on the advance check. A
    failing item is recorded as "task <id>: <reason>" and the batch goes on.
    """

    def __init__(self, engine: Optional[WorkflowEngine] = None):
        self.engine = engine or WorkflowEngine()

    def bulk_approve(
        self,
        task_ids: List[str],
        actor: ActorContext,
        company_scope: str,
        comment: Optional[str] = None
    ) -> BulkOperationResult:
        return self._run(task_ids, actor, company_scope, comment, approve=True)

    def bulk_reject(
        self,
        task_ids: List[str],
        actor: ActorContext,
        company_scope: str,
        comment: Optional[str] = None
    ) -> BulkOperationResult:
        return self._run(task_ids, actor, company_scope, comment, approve=False)

    def _run(
        self,
        task_ids: List[str],
        actor: ActorContext,
        company_scope: str,
        comment: Optional[str],
        approve: bool
    ) -> BulkOperationResult:
        max_tasks = get_settings().bulk_max_tasks
        if len(task_ids) > max_tasks:
            raise ValidationError(
                f"Bulk operation limited to {max_tasks} tasks",
                details={"requested": len(task_ids), "max": max_tasks}
            )

        action = "approve" if approve else "reject"
        successful: List[str] = []
        errors: List[str] = []

        for task_id in task_ids:
            reason = self._precheck(task_id, actor, company_scope)
            if reason is not None:
                errors.append(f"task {task_id}: {reason}")
                continue

            try:
                if approve:
                    self.engine.approve(task_id, actor, comment, company_scope)
                else:
                    self.engine.reject(task_id, actor, comment, company_scope)
                successful.append(task_id)
            except DomainError as e:
                errors.append(f"task {task_id}: {e.message}")
            except Exception as e:
                logger.error(
                    f"Bulk {action} failed on task {task_id}: {e}",
                    extra={"task_id": task_id, "actor_id": actor.actor_id, "action": action}
                )
                errors.append(f"task {task_id}: unexpected error: {e}")

        logger.info(
            f"Bulk {action}: {len(successful)}/{len(task_ids)} succeeded",
            extra={"actor_id": actor.actor_id, "company_id": company_scope, "action": action}
        )
        return BulkOperationResult(
            total_tasks=len(task_ids),
            successful_count=len(successful),
            successful_task_ids=successful,
            errors=errors
        )

    def _precheck(self, task_id: str, actor: ActorContext, company_scope: str) -> Optional[str]:
        """Reason the item cannot be processed, or None"""
        try:
            task = self.engine.task_repo.get_task(task_id)
            if task is None:
                return "task not found"
            result = self.engine.permission_guard.check(task, actor, company_scope)
        except Exception as e:
            logger.error(f"Could not check task {task_id}: {e}", extra={"task_id": task_id})
            return f"could not check task: {e}"

        if not result.allowed:
            return result.reason

        if task.status != TaskStatus.PENDING:
            return f"task is {task.status.value}, expected PENDING"
        return None
