"""Task Repository - Data access for approval tasks"""
from datetime import datetime
from typing import List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection, current_session
from ..domain.models import Task
from ..domain.enums import TaskStatus
from ..domain.errors import TaskNotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class TaskRepository:
    """Repository for task operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._tasks: Collection = collection if collection is not None else get_collection("tasks")

    def create_task(self, task: Task) -> Task:
        """Create a new task"""
        # Don't use mode="json" - it converts datetime to strings, breaking MongoDB sorting
        doc = task.model_dump()
        doc["_id"] = task.task_id

        self._tasks.insert_one(doc, session=current_session())
        logger.debug(
            f"Created task: {task.task_id}",
            extra={"task_id": task.task_id, "instance_id": task.instance_id, "step_order": task.step_order}
        )
        return task

    def save_task(self, task: Task) -> Task:
        """Replace the stored task with the given state"""
        doc = task.model_dump()
        doc["_id"] = task.task_id

        result = self._tasks.replace_one({"task_id": task.task_id}, doc, session=current_session())
        if result.matched_count == 0:
            raise TaskNotFoundError(f"Task {task.task_id} not found")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get task by ID"""
        doc = self._tasks.find_one({"task_id": task_id}, session=current_session())
        if doc:
            doc.pop("_id", None)
            return Task.model_validate(doc)
        return None

    def get_task_or_raise(self, task_id: str) -> Task:
        """Get task by ID or raise error"""
        task = self.get_task(task_id)
        if not task:
            raise TaskNotFoundError(f"Task {task_id} not found", details={"task_id": task_id})
        return task

    def list_tasks(self, instance_id: str) -> List[Task]:
        """All tasks of an instance, by step order then creation time"""
        cursor = self._tasks.find(
            {"instance_id": instance_id}, session=current_session()
        ).sort([("step_order", ASCENDING), ("created_at", ASCENDING)])
        return [self._to_model(doc) for doc in cursor]

    def list_pending_for_company(self, company_id: str) -> List[Task]:
        """Pending tasks of one company"""
        cursor = self._tasks.find(
            {"company_id": company_id, "status": TaskStatus.PENDING.value},
            session=current_session()
        ).sort("created_at", ASCENDING)
        return [self._to_model(doc) for doc in cursor]

    def list_pending_created_before(self, cutoff: datetime, limit: int = 500) -> List[Task]:
        """Pending tasks older than cutoff (timeout sweep)"""
        cursor = self._tasks.find(
            {"status": TaskStatus.PENDING.value, "created_at": {"$lt": cutoff}},
            session=current_session()
        ).sort("created_at", ASCENDING).limit(limit)
        return [self._to_model(doc) for doc in cursor]

    @staticmethod
    def _to_model(doc) -> Task:
        doc.pop("_id", None)
        return Task.model_validate(doc)
