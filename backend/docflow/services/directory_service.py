"""Directory Service - Role resolution for authorization and task assignment"""
from typing import List, Optional, TYPE_CHECKING

from ..domain.models import Membership
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..repositories.membership_repo import MembershipRepository

logger = get_logger(__name__)


class DirectoryService:
    """
    Resolves a user's role level inside a company

    Every authorization check goes through role_level(). Users without a
    membership in the company resolve to level 0 and fail every check.
    """

    NO_ACCESS_LEVEL = 0

    def __init__(self, membership_repo: Optional["MembershipRepository"] = None):
        if membership_repo is None:
            from ..repositories.membership_repo import MembershipRepository
            membership_repo = MembershipRepository()
        self.membership_repo = membership_repo

    def role_level(self, actor_id: str, company_id: str) -> int:
        """Role level of actor in company, 0 when not a member"""
        membership = self.membership_repo.get_membership(actor_id, company_id)
        if membership is None:
            logger.info(
                f"No membership for {actor_id} in company {company_id}",
                extra={"actor_id": actor_id, "company_id": company_id}
            )
            return self.NO_ACCESS_LEVEL
        return membership.role_level

    def members_with_role(self, company_id: str, role_name: str, min_level: int) -> List[str]:
        """IDs of company members holding role_name at min_level or above"""
        return [
            m.actor_id
            for m in self.membership_repo.list_by_role(company_id, role_name, min_level)
        ]

    def add_member(self, company_id: str, actor_id: str, role_name: str, role_level: int) -> Membership:
        """Register or update a member's role"""
        membership = Membership(
            company_id=company_id,
            actor_id=actor_id,
            role_name=role_name,
            role_level=role_level
        )
        return self.membership_repo.upsert_membership(membership)

    def get_member(self, actor_id: str, company_id: str) -> Optional[Membership]:
        return self.membership_repo.get_membership(actor_id, company_id)
