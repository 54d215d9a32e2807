"""Permission Guard - Authorization checks for task transitions"""
from typing import Optional, TYPE_CHECKING

from ..domain.models import Task, ActorContext, AuthorizationResult
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..services.directory_service import DirectoryService

logger = get_logger(__name__)


class PermissionGuard:
    """
    Decide whether an actor may approve or reject a task

    Rules, checked in order:
    - Task must belong to the caller's company scope (when one is given)
    - A task with an explicit assignee can only be acted on by that user
    - Actor's role level in the task's company must meet the requirement

    The guard only answers; raising or recording the denial is up to the
    caller (engine raises, bulk coordinator records).
    """

    def __init__(self, directory: Optional["DirectoryService"] = None):
        if directory is None:
            from ..services.directory_service import DirectoryService
            directory = DirectoryService()
        self.directory = directory

    def check(
        self,
        task: Task,
        actor: ActorContext,
        company_scope: Optional[str] = None
    ) -> AuthorizationResult:
        required = task.required_role_level

        if company_scope is not None and task.company_id != company_scope:
            return self._deny(task, actor, "task belongs to another company", 0)

        if task.assigned_to and task.assigned_to != actor.actor_id:
            return self._deny(task, actor, "task is assigned to another user", 0)

        level = self.directory.role_level(actor.actor_id, task.company_id)
        if level < required:
            return self._deny(
                task, actor,
                f"insufficient permissions: level {level} < required {required}",
                level
            )

        return AuthorizationResult(allowed=True, actor_level=level, required_level=required)

    def _deny(self, task: Task, actor: ActorContext, reason: str, level: int) -> AuthorizationResult:
        logger.info(
            f"Denied {actor.actor_id} on task {task.task_id}: {reason}",
            extra={"task_id": task.task_id, "actor_id": actor.actor_id, "instance_id": task.instance_id}
        )
        return AuthorizationResult(
            allowed=False,
            reason=reason,
            actor_level=level,
            required_level=task.required_role_level
        )
