"""Directory API Routes - Company roles used for authorization and assignment"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..deps import get_actor_dep, get_company_dep, get_correlation_id_dep, get_directory_service
from ...domain.models import ActorContext
from ...domain.errors import DomainError
from ...services.directory_service import DirectoryService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class MemberRequest(BaseModel):
    """Role of a user inside the caller's company"""
    actor_id: str = Field(..., min_length=1)
    role_name: str = Field(..., min_length=1)
    role_level: int = Field(..., ge=1, le=100)


class MemberResponse(BaseModel):
    company_id: str
    actor_id: str
    role_name: str
    role_level: int


# ============================================================================
# Routes
# ============================================================================

@router.get("/members/{actor_id}", response_model=MemberResponse)
async def get_member(
    actor_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    directory: DirectoryService = Depends(get_directory_service)
):
    """Role of a user in the caller's company"""
    membership = directory.get_member(actor_id, company_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "NOT_FOUND", "message": f"{actor_id} is not a member of {company_id}"}}
        )
    return MemberResponse(**membership.model_dump())


@router.put("/members", response_model=MemberResponse)
async def upsert_member(
    request: MemberRequest,
    actor: ActorContext = Depends(get_actor_dep),
    company_id: str = Depends(get_company_dep),
    correlation_id: str = Depends(get_correlation_id_dep),
    directory: DirectoryService = Depends(get_directory_service)
):
    """
    Register or update a user's role

    Only affects tasks created afterwards; existing assignments are kept.
    """
    try:
        membership = directory.add_member(company_id, request.actor_id, request.role_name, request.role_level)
        logger.info(
            f"Member {request.actor_id} set to {request.role_name} ({request.role_level})",
            extra={"actor_id": actor.actor_id, "company_id": company_id}
        )
        return MemberResponse(**membership.model_dump())

    except DomainError as e:
        raise HTTPException(status_code=e.http_status, detail=e.to_dict())
