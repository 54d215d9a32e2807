"""Instance Repository - Data access for workflow instances"""
from typing import Optional
from pymongo.collection import Collection

from .mongo_client import get_collection, current_session
from ..domain.models import WorkflowInstance
from ..domain.enums import InstanceStatus
from ..domain.errors import InstanceNotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class InstanceRepository:
    """Repository for workflow instance operations"""

    def __init__(self, collection: Optional[Collection] = None):
        self._instances: Collection = (
            collection if collection is not None else get_collection("workflow_instances")
        )

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Create a new workflow instance"""
        doc = instance.model_dump()
        doc["_id"] = instance.instance_id

        self._instances.insert_one(doc, session=current_session())
        logger.info(
            f"Created workflow instance: {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "definition_id": instance.definition_id}
        )
        return instance

    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Replace the stored instance with the given state"""
        doc = instance.model_dump()
        doc["_id"] = instance.instance_id

        result = self._instances.replace_one(
            {"instance_id": instance.instance_id}, doc, session=current_session()
        )
        if result.matched_count == 0:
            raise InstanceNotFoundError(f"Workflow instance {instance.instance_id} not found")
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Get instance by ID"""
        doc = self._instances.find_one({"instance_id": instance_id}, session=current_session())
        if doc:
            doc.pop("_id", None)
            return WorkflowInstance.model_validate(doc)
        return None

    def get_instance_or_raise(self, instance_id: str) -> WorkflowInstance:
        """Get instance by ID or raise error"""
        instance = self.get_instance(instance_id)
        if not instance:
            raise InstanceNotFoundError(
                f"Workflow instance {instance_id} not found",
                details={"instance_id": instance_id}
            )
        return instance

    def find_active(self, document_id: str, definition_id: str) -> Optional[WorkflowInstance]:
        """In-progress instance for a (document, definition) pair"""
        doc = self._instances.find_one(
            {
                "document.document_id": document_id,
                "definition_id": definition_id,
                "status": InstanceStatus.IN_PROGRESS.value,
            },
            session=current_session()
        )
        if doc:
            doc.pop("_id", None)
            return WorkflowInstance.model_validate(doc)
        return None

    def count_active_for_definition(self, definition_id: str) -> int:
        """Number of in-progress instances running a definition"""
        return self._instances.count_documents(
            {"definition_id": definition_id, "status": InstanceStatus.IN_PROGRESS.value},
            session=current_session()
        )
