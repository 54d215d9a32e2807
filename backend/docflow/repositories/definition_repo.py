"""Definition Repository - Data access for workflow definitions and routing rules"""
from typing import List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, current_session
from ..domain.models import WorkflowTemplate, RoutingRule, StoredRoutingRule
from ..domain.enums import TriggerType
from ..domain.errors import DefinitionNotFoundError, ValidationError
from ..utils.idgen import generate_routing_rule_id
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DefinitionRepository:
    """Repository for workflow definitions"""

    def __init__(
        self,
        definitions: Optional[Collection] = None,
        routing_rules: Optional[Collection] = None
    ):
        self._definitions: Collection = (
            definitions if definitions is not None else get_collection("workflow_definitions")
        )
        self._rules: Collection = (
            routing_rules if routing_rules is not None else get_collection("routing_rules")
        )

    def create_definition(self, template: WorkflowTemplate) -> WorkflowTemplate:
        """Store a definition and one routing-rule row per rule"""
        doc = template.model_dump()
        doc["_id"] = template.definition_id
        session = current_session()

        self._definitions.insert_one(doc, session=session)
        self._insert_rules(template)

        logger.info(
            f"Created workflow definition: {template.definition_id}",
            extra={"definition_id": template.definition_id, "company_id": template.company_id}
        )
        return template

    def save_definition(self, template: WorkflowTemplate, replace_rules: bool = False) -> WorkflowTemplate:
        """Replace the stored definition; replace_rules rewrites its routing-rule rows"""
        doc = template.model_dump()
        doc["_id"] = template.definition_id
        session = current_session()

        result = self._definitions.replace_one(
            {"definition_id": template.definition_id}, doc, session=session
        )
        if result.matched_count == 0:
            raise DefinitionNotFoundError(
                f"Workflow definition {template.definition_id} not found",
                details={"definition_id": template.definition_id}
            )

        if replace_rules:
            self._rules.delete_many({"definition_id": template.definition_id}, session=session)
            self._insert_rules(template)

        logger.info(
            f"Updated workflow definition: {template.definition_id}",
            extra={"definition_id": template.definition_id, "company_id": template.company_id}
        )
        return template

    def get_definition(self, definition_id: str) -> Optional[WorkflowTemplate]:
        """Get definition by ID"""
        doc = self._definitions.find_one({"definition_id": definition_id}, session=current_session())
        if doc:
            doc.pop("_id", None)
            return WorkflowTemplate.model_validate(doc)
        return None

    def get_definition_or_raise(self, definition_id: str) -> WorkflowTemplate:
        """Get definition by ID or raise error"""
        template = self.get_definition(definition_id)
        if not template:
            raise DefinitionNotFoundError(
                f"Workflow definition {definition_id} not found",
                details={"definition_id": definition_id}
            )
        return template

    def list_definitions(self, company_id: str, include_inactive: bool = False) -> List[WorkflowTemplate]:
        """Definitions owned by a company; deleted ones only on request"""
        query = {"company_id": company_id}
        if not include_inactive:
            query["is_active"] = {"$ne": False}
        cursor = self._definitions.find(query, session=current_session()).sort("created_at", ASCENDING)
        templates = []
        for doc in cursor:
            doc.pop("_id", None)
            templates.append(WorkflowTemplate.model_validate(doc))
        return templates

    def find_routing_rule(
        self,
        definition_id: str,
        step_order: int,
        trigger_type: TriggerType
    ) -> Optional[RoutingRule]:
        """Single-result lookup by (definition, step, trigger)"""
        doc = self._rules.find_one(
            {
                "definition_id": definition_id,
                "rule.source_step": step_order,
                "rule.trigger_type": trigger_type.value,
            },
            session=current_session()
        )
        if doc:
            doc.pop("_id", None)
            return StoredRoutingRule.model_validate(doc).rule
        return None

    def _insert_rules(self, template: WorkflowTemplate) -> None:
        session = current_session()
        try:
            for rule in template.definition.routing_rules:
                stored = StoredRoutingRule(
                    rule_id=generate_routing_rule_id(),
                    definition_id=template.definition_id,
                    rule=rule
                )
                rule_doc = stored.model_dump()
                rule_doc["_id"] = stored.rule_id
                self._rules.insert_one(rule_doc, session=session)
        except DuplicateKeyError as e:
            raise ValidationError(
                "Duplicate routing rule for the same step and trigger",
                details={"definition_id": template.definition_id, "error": str(e)}
            )
