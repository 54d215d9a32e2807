"""Audit Repository - Data access for audit entries"""
from typing import List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection
from ..domain.models import AuditEntry
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AuditRepository:
    """Repository for audit entry operations (append-only)"""

    def __init__(self, collection: Optional[Collection] = None):
        self._audit_entries: Collection = (
            collection if collection is not None else get_collection("audit_entries")
        )

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Insert an audit entry; entries are never updated or deleted"""
        doc = entry.model_dump()
        doc["_id"] = entry.entry_id

        # Written after the transition commits, outside its session
        self._audit_entries.insert_one(doc)
        logger.debug(
            f"Created audit entry: {entry.action_type.value}",
            extra={"instance_id": entry.instance_id, "task_id": entry.task_id}
        )
        return entry

    def list_for_instance(self, instance_id: str, limit: int = 1000) -> List[AuditEntry]:
        """Entries for an instance, oldest first"""
        cursor = self._audit_entries.find(
            {"instance_id": instance_id}
        ).sort([("timestamp", ASCENDING), ("sequence", ASCENDING)]).limit(limit)

        entries = []
        for doc in cursor:
            doc.pop("_id", None)
            entries.append(AuditEntry.model_validate(doc))
        return entries
