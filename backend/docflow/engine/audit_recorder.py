"""Audit Recorder - Append-only audit trail of engine transitions"""
import itertools
from typing import List, Optional, Tuple, TYPE_CHECKING

from ..config.settings import get_settings
from ..domain.models import AuditEntry, MetadataPair
from ..domain.enums import AuditActionType
from ..domain.errors import AuditWriteError
from ..utils.idgen import generate_audit_entry_id
from ..utils.logger import get_correlation_id, get_logger
from ..utils.time import utc_now

if TYPE_CHECKING:
    from ..repositories.audit_repo import AuditRepository

logger = get_logger(__name__)

# Tie-breaker for entries written within the same clock tick
_sequence = itertools.count(1)


class AuditRecorder:
    """
    Build and store audit entries

    append() never fails silently: any sink error is re-raised as
    AuditWriteError. Whether that aborts anything is the caller's decision;
    the engine logs it and keeps the committed transition.
    """

    def __init__(self, repo: Optional["AuditRepository"] = None):
        if repo is None:
            from ..repositories.audit_repo import AuditRepository
            repo = AuditRepository()
        self.repo = repo

    def build(
        self,
        instance_id: str,
        action_type: AuditActionType,
        description: str,
        task_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        metadata: Tuple[MetadataPair, ...] = (),
        origin: Optional[str] = None
    ) -> AuditEntry:
        """Create an entry without storing it"""
        return AuditEntry(
            entry_id=generate_audit_entry_id(),
            instance_id=instance_id,
            task_id=task_id,
            action_type=action_type,
            description=description,
            metadata=metadata,
            actor_id=actor_id,
            timestamp=utc_now(),
            sequence=next(_sequence),
            origin=origin or get_correlation_id() or None
        )

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Store an entry"""
        try:
            return self.repo.append(entry)
        except Exception as e:
            raise AuditWriteError(
                f"Failed to write audit entry {entry.entry_id}: {e}",
                details={"instance_id": entry.instance_id, "action_type": entry.action_type.value}
            ) from e

    def history(self, instance_id: str, limit: Optional[int] = None) -> List[AuditEntry]:
        """Entries for an instance, oldest first"""
        if limit is None:
            limit = get_settings().audit_history_limit
        return self.repo.list_for_instance(instance_id, limit=limit)
