"""Membership Repository - Company roles of users"""
from typing import List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection, current_session
from ..domain.models import Membership
from ..utils.logger import get_logger

logger = get_logger(__name__)


class MembershipRepository:
    """Repository for company memberships (read side of role resolution)"""

    def __init__(self, collection: Optional[Collection] = None):
        self._memberships: Collection = (
            collection if collection is not None else get_collection("memberships")
        )

    def upsert_membership(self, membership: Membership) -> Membership:
        """Create or replace a user's membership in a company"""
        self._memberships.replace_one(
            {"company_id": membership.company_id, "actor_id": membership.actor_id},
            membership.model_dump(),
            upsert=True,
            session=current_session()
        )
        return membership

    def get_membership(self, actor_id: str, company_id: str) -> Optional[Membership]:
        doc = self._memberships.find_one(
            {"company_id": company_id, "actor_id": actor_id}, session=current_session()
        )
        if doc:
            doc.pop("_id", None)
            return Membership.model_validate(doc)
        return None

    def list_by_role(self, company_id: str, role_name: str, min_level: int) -> List[Membership]:
        """Members holding role_name with at least min_level"""
        cursor = self._memberships.find(
            {"company_id": company_id, "role_name": role_name, "role_level": {"$gte": min_level}},
            session=current_session()
        ).sort("actor_id", ASCENDING)
        members = []
        for doc in cursor:
            doc.pop("_id", None)
            members.append(Membership.model_validate(doc))
        return members
