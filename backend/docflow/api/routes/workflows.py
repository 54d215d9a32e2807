"""Workflow API Routes - Definitions, instances and task decisions"""
from decimal import Decimal
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..deps import (
    get_actor_dep, get_company_dep, get_correlation_id_dep,
    get_bulk_service, get_workflow_service
)
from ...domain.models import ActorContext, DocumentContext, Task, WorkflowDefinition
from ...domain.enums import DocumentStatus, DocumentType, Priority
from ...domain.errors import DomainError, ValidationError
from ...engine.definition_parser import generate_example_xml, generate_parallel_workflow_xml
from ...services.bulk_service import BulkWorkflowService
from ...services.workflow_service import WorkflowService
from ...utils.logger import get_logger
from ...utils.time import parse_iso

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class ValidateDefinitionRequest(BaseModel):
    """Definition markup to check"""
    xml: str = Field(..., min_length=1)


class ValidateDefinitionResponse(BaseModel):
    """Parsed definition"""
    is_valid: bool = True
    definition: Dict[str, Any]


class RegisterDefinitionRequest(BaseModel):
    """Markup or structured steps/routing; markup wins when both are given"""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    xml: Optional[str] = None
    definition: Optional[Dict[str, Any]] = None


class RegisterDefinitionResponse(BaseModel):
    definition_id: str
    step_count: int
    routing_rule_count: int


class UpdateDefinitionRequest(BaseModel):
    """Fields left out stay unchanged; new markup or steps replace the definition"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    xml: Optional[str] = None
    definition: Optional[Dict[str, Any]] = None


class StartPermissionsRequest(BaseModel):
    allowed_role_levels: List[int] = Field(..., min_length=1)


class DocumentInput(BaseModel):
    """Document a workflow is started for"""
    document_id: str = Field(..., min_length=1)
    title: str = ""
    amount: Optional[Decimal] = None
    priority: Priority = Priority.NORMAL
    document_type: DocumentType = DocumentType.GENERAL
    status: DocumentStatus = DocumentStatus.SUBMITTED


class StartWorkflowRequest(BaseModel):
    definition_id: str = Field(..., min_length=1)
    document: DocumentInput


class TaskDecisionRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=4000)


class DelegateTaskRequest(BaseModel):
    target_actor_id: str = Field(..., min_length=1)
    comment: Optional[str] = Field(None, max_length=4000)


class BulkDecisionRequest(BaseModel):
    task_ids: List[str] = Field(..., min_length=1)
    comment: Optional[str] = Field(None, max_length=4000)


def _task_dict(task: Task) -> Dict[str, Any]:
    return task.model_dump(mode="json")


def _definition_dict(definition: WorkflowDefinition) -> Dict[str, Any]:
    return definition.model_dump(mode="json")


# ============================================================================
# Definitions
# ============================================================================

@router.post("/definitions/validate", response_model=ValidateDefinitionResponse)
async def validate_definition(
    request: ValidateDefinitionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Parse definition markup without storing it"""
    try:
        definition = service.validate_definition(request.xml)
        return ValidateDefinitionResponse(definition=_definition_dict(definition))

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/definitions/examples/{name}", response_class=PlainTextResponse)
async def get_example_definition(name: str):
    """Example markup: 'conditional' or 'parallel'"""
    examples = {
        "conditional": generate_example_xml,
        "parallel": generate_parallel_workflow_xml,
    }
    if name not in examples:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "NOT_FOUND", "message": f"Unknown example '{name}'"}}
        )
    return examples[name]()


@router.get("/conditions")
async def list_conditions(service: WorkflowService = Depends(get_workflow_service)):
    """Supported routing condition forms"""
    return {"conditions": service.engine.evaluator.available_conditions()}


@router.post("/definitions", response_model=RegisterDefinitionResponse, status_code=status.HTTP_201_CREATED)
async def register_definition(
    request: RegisterDefinitionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Parse and store a workflow definition for the company"""
    try:
        template = service.register_definition(
            company_id=company_id,
            name=request.name,
            actor=actor,
            xml_content=request.xml,
            definition_data=request.definition,
            description=request.description
        )
        return RegisterDefinitionResponse(
            definition_id=template.definition_id,
            step_count=len(template.definition.steps),
            routing_rule_count=len(template.definition.routing_rules)
        )

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/definitions")
async def list_definitions(
    include_inactive: bool = Query(False),
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Definitions of the company"""
    templates = service.list_definitions(company_id, include_inactive=include_inactive)
    return {"items": [t.model_dump(mode="json", exclude={"source_xml"}) for t in templates]}


@router.get("/definitions/{definition_id}")
async def get_definition(
    definition_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        template = service.get_definition(definition_id, company_id)
        return template.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.put("/definitions/{definition_id}")
async def update_definition(
    definition_id: str,
    request: UpdateDefinitionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Rename, describe or replace the steps of a definition"""
    try:
        template = service.update_definition(
            definition_id,
            company_id,
            actor,
            name=request.name,
            description=request.description,
            xml_content=request.xml,
            definition_data=request.definition
        )
        return template.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.delete("/definitions/{definition_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_definition(
    definition_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        service.delete_definition(definition_id, company_id, actor)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.patch("/definitions/{definition_id}/permissions")
async def update_start_permissions(
    definition_id: str,
    request: StartPermissionsRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Role levels allowed to start the definition"""
    try:
        template = service.set_start_permissions(
            definition_id, company_id, actor, request.allowed_role_levels
        )
        return {
            "definition_id": template.definition_id,
            "allowed_role_levels": template.allowed_role_levels,
        }

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


# ============================================================================
# Instances
# ============================================================================

@router.post("/instances", status_code=status.HTTP_201_CREATED)
async def start_workflow(
    request: StartWorkflowRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Start a definition against a document"""
    try:
        document = DocumentContext(company_id=company_id, **request.document.model_dump())
        instance = service.start_workflow(request.definition_id, document, actor)

        logger.info(
            f"Started workflow instance: {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "actor_id": actor.actor_id}
        )
        return {
            "instance": instance.model_dump(mode="json"),
            "tasks": [_task_dict(t) for t in service.list_tasks(instance.instance_id)],
        }

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/instances/{instance_id}")
async def get_instance(
    instance_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Instance with its tasks"""
    try:
        detail = service.get_instance_detail(instance_id, company_id)
        return {
            "instance": detail["instance"].model_dump(mode="json"),
            "tasks": [_task_dict(t) for t in detail["tasks"]],
        }

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.get("/instances/{instance_id}/history")
async def get_history(
    instance_id: str,
    limit: Optional[int] = Query(None, ge=1, le=5000),
    since: Optional[str] = Query(None, description="ISO 8601 timestamp"),
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Audit trail, oldest first"""
    try:
        since_dt = None
        if since:
            try:
                since_dt = parse_iso(since)
            except (ValueError, OverflowError):
                raise ValidationError(f"Invalid timestamp: {since}", details={"since": since})

        entries = service.history(instance_id, company_id, limit=limit, since=since_dt)
        return {"items": [e.model_dump(mode="json") for e in entries]}

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


# ============================================================================
# Tasks
# ============================================================================

@router.get("/tasks/pending")
async def my_pending_tasks(
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Pending tasks the actor may decide"""
    tasks = service.pending_tasks_for_actor(actor, company_id)
    return {"items": [_task_dict(t) for t in tasks]}


@router.post("/tasks/bulk-approve")
async def bulk_approve(
    request: BulkDecisionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: BulkWorkflowService = Depends(get_bulk_service)
):
    try:
        result = service.bulk_approve(request.task_ids, actor, company_id, request.comment)
        return result.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/tasks/bulk-reject")
async def bulk_reject(
    request: BulkDecisionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: BulkWorkflowService = Depends(get_bulk_service)
):
    try:
        result = service.bulk_reject(request.task_ids, actor, company_id, request.comment)
        return result.model_dump(mode="json")

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/tasks/{task_id}/approve")
async def approve_task(
    task_id: str,
    request: TaskDecisionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Approve a pending task"""
    try:
        task = service.engine.approve(task_id, actor, request.comment, company_scope=company_id)
        instance = service.get_instance(task.instance_id)
        return {"task": _task_dict(task), "instance_status": instance.status.value}

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/tasks/{task_id}/reject")
async def reject_task(
    task_id: str,
    request: TaskDecisionRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Reject a pending task"""
    try:
        task = service.engine.reject(task_id, actor, request.comment, company_scope=company_id)
        instance = service.get_instance(task.instance_id)
        return {"task": _task_dict(task), "instance_status": instance.status.value}

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())


@router.post("/tasks/{task_id}/delegate")
async def delegate_task(
    task_id: str,
    request: DelegateTaskRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Hand a pending task to another member"""
    try:
        task = service.engine.delegate(
            task_id, actor, request.target_actor_id, request.comment, company_scope=company_id
        )
        return {"task": _task_dict(task)}

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
