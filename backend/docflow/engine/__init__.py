"""Workflow Engine - The brain of the system"""
from .engine import WorkflowEngine
from .permission_guard import PermissionGuard
from .condition_evaluator import ConditionEvaluator
from .audit_recorder import AuditRecorder
from .definition_parser import DefinitionParser

__all__ = [
    "WorkflowEngine",
    "PermissionGuard",
    "ConditionEvaluator",
    "AuditRecorder",
    "DefinitionParser",
]
