"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection, MongoUnitOfWork
from .task_repo import TaskRepository
from .instance_repo import InstanceRepository
from .definition_repo import DefinitionRepository
from .audit_repo import AuditRepository
from .membership_repo import MembershipRepository

__all__ = [
    "get_database",
    "get_collection",
    "MongoUnitOfWork",
    "TaskRepository",
    "InstanceRepository",
    "DefinitionRepository",
    "AuditRepository",
    "MembershipRepository",
]
