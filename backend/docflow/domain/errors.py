"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Definition Errors
class DefinitionParseError(DomainError):
    """Definition markup is malformed (not well-formed or wrong structure)"""
    error_code = "DEFINITION_PARSE_ERROR"
    http_status = 400


class ValidationError(DomainError):
    """Well-formed input with a missing or out-of-range field"""
    error_code = "VALIDATION_ERROR"
    http_status = 400


# Authorization Errors
class AuthorizationError(DomainError):
    """User lacks permission for action"""
    error_code = "AUTHORIZATION_ERROR"
    http_status = 403


class UnauthorizedTransitionError(AuthorizationError):
    """Actor's role level is below the task requirement"""
    error_code = "UNAUTHORIZED_TRANSITION"


class StartNotPermittedError(AuthorizationError):
    """Actor's role level is not among a definition's allowed starter levels"""
    error_code = "START_NOT_PERMITTED"


# State Errors
class InvalidStateTransitionError(DomainError):
    """Task is not PENDING when approve/reject is attempted"""
    error_code = "INVALID_STATE_TRANSITION"
    http_status = 409


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"
    http_status = 404


class TaskNotFoundError(NotFoundError):
    """Task not found"""
    error_code = "TASK_NOT_FOUND"


class InstanceNotFoundError(NotFoundError):
    """Workflow instance not found"""
    error_code = "INSTANCE_NOT_FOUND"


class DefinitionNotFoundError(NotFoundError):
    """Workflow definition not found"""
    error_code = "DEFINITION_NOT_FOUND"


# Engine Errors
class InitializationError(DomainError):
    """Definition produced no usable steps"""
    error_code = "INITIALIZATION_ERROR"
    http_status = 422


class AuditWriteError(DomainError):
    """Audit sink rejected or could not store an entry"""
    error_code = "AUDIT_WRITE_ERROR"
    http_status = 500
