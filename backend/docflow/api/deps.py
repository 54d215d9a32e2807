"""API Dependencies - Common dependencies for routes"""
from functools import lru_cache
from typing import Optional
from fastapi import Depends, Header, HTTPException, status

from ..domain.models import ActorContext
from ..engine.engine import WorkflowEngine
from ..services.bulk_service import BulkWorkflowService
from ..services.directory_service import DirectoryService
from ..services.workflow_service import WorkflowService
from ..utils.logger import set_correlation_id
from ..utils.idgen import generate_correlation_id


async def get_correlation_id_dep(
    x_correlation_id: Optional[str] = Header(None, alias="X-Correlation-Id")
) -> str:
    """
    Get or generate correlation ID for request tracing

    If client provides X-Correlation-Id, use it.
    Otherwise generate a new one.
    """
    correlation_id = x_correlation_id or generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


async def get_actor_dep(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_name: Optional[str] = Header(None, alias="X-Actor-Name")
) -> ActorContext:
    """
    Acting user from the X-Actor-Id header

    Authentication happens upstream; this service trusts the gateway.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": {"code": "AUTHENTICATION_ERROR", "message": "X-Actor-Id header is missing"}}
        )
    return ActorContext(actor_id=x_actor_id.strip(), display_name=x_actor_name)


async def get_company_dep(
    x_company_id: Optional[str] = Header(None, alias="X-Company-Id")
) -> str:
    """Company scope from the X-Company-Id header"""
    if not x_company_id or not x_company_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": {"code": "VALIDATION_ERROR", "message": "X-Company-Id header is missing"}}
        )
    return x_company_id.strip()


@lru_cache
def get_engine() -> WorkflowEngine:
    """Process-wide engine wired to MongoDB"""
    return WorkflowEngine()


def get_workflow_service(engine: WorkflowEngine = Depends(get_engine)) -> WorkflowService:
    return WorkflowService(engine=engine)


def get_bulk_service(engine: WorkflowEngine = Depends(get_engine)) -> BulkWorkflowService:
    return BulkWorkflowService(engine=engine)


def get_directory_service(engine: WorkflowEngine = Depends(get_engine)) -> DirectoryService:
    return engine.directory
