"""Workflow Service - Definition registration, workflow start and queries"""
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..domain.models import (
    ActorContext, AuditEntry, DocumentContext, Task, WorkflowDefinition,
    WorkflowInstance, WorkflowTemplate
)
from ..config.settings import get_settings
from ..domain.errors import (
    AuthorizationError, DefinitionNotFoundError, InstanceNotFoundError,
    InvalidStateTransitionError, StartNotPermittedError, ValidationError
)
from ..engine.definition_parser import DefinitionParser
from ..engine.engine import WorkflowEngine
from ..utils.idgen import generate_definition_id, generate_instance_id
from ..utils.time import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WorkflowService:
    """Service for workflow operations outside the engine's state machine"""

    def __init__(
        self,
        engine: Optional[WorkflowEngine] = None,
        parser: Optional[DefinitionParser] = None
    ):
        self.engine = engine or WorkflowEngine()
        self.parser = parser or DefinitionParser()

    # =========================================================================
    # Definitions
    # =========================================================================

    def validate_definition(self, xml_content: str) -> WorkflowDefinition:
        """Parse without storing"""
        return self.parser.parse(xml_content)

    def register_definition(
        self,
        company_id: str,
        name: str,
        actor: ActorContext,
        xml_content: Optional[str] = None,
        definition_data: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None
    ) -> WorkflowTemplate:
        """Parse and store a definition from markup or structured data"""
        if xml_content is not None:
            definition = self.parser.parse(xml_content)
        else:
            definition = self.parser.parse_dict(definition_data or {})

        template = WorkflowTemplate(
            definition_id=generate_definition_id(),
            company_id=company_id,
            name=name,
            description=description,
            definition=definition,
            source_xml=xml_content if xml_content is not None else self.parser.serialize(definition),
            created_by=actor.actor_id,
            created_at=utc_now()
        )
        with self.engine.uow.transaction():
            self.engine.definition_repo.create_definition(template)

        logger.info(
            f"Registered workflow definition '{name}' ({template.definition_id})",
            extra={"definition_id": template.definition_id, "company_id": company_id, "actor_id": actor.actor_id}
        )
        return template

    def get_definition(self, definition_id: str, company_id: Optional[str] = None) -> WorkflowTemplate:
        """Definition by ID; definitions of other companies are reported as missing"""
        template = self.engine.definition_repo.get_definition_or_raise(definition_id)
        if company_id is not None and template.company_id != company_id:
            raise DefinitionNotFoundError(
                f"Workflow definition {definition_id} not found",
                details={"definition_id": definition_id}
            )
        return template

    def list_definitions(self, company_id: str, include_inactive: bool = False) -> List[WorkflowTemplate]:
        return self.engine.definition_repo.list_definitions(company_id, include_inactive=include_inactive)

    def update_definition(
        self,
        definition_id: str,
        company_id: str,
        actor: ActorContext,
        name: Optional[str] = None,
        description: Optional[str] = None,
        xml_content: Optional[str] = None,
        definition_data: Optional[Mapping[str, Any]] = None
    ) -> WorkflowTemplate:
        """
        Update name, description or steps of an active definition

        Steps and routing can only change while no instance is running the
        definition; in-flight instances read it on every transition.
        """
        self._require_level(actor, company_id, get_settings().definition_manage_level, "update workflow definitions")

        definition = None
        if xml_content is not None:
            definition = self.parser.parse(xml_content)
        elif definition_data is not None:
            definition = self.parser.parse_dict(definition_data)

        with self.engine.uow.transaction():
            template = self._active_definition(definition_id, company_id)
            if definition is not None:
                running = self.engine.instance_repo.count_active_for_definition(definition_id)
                if running:
                    raise InvalidStateTransitionError(
                        f"Workflow definition {definition_id} has {running} running instances",
                        details={"definition_id": definition_id, "running": running}
                    )
                template.definition = definition
                template.source_xml = xml_content if xml_content is not None else self.parser.serialize(definition)
            if name is not None:
                template.name = name
            if description is not None:
                template.description = description
            template.updated_by = actor.actor_id
            template.updated_at = utc_now()
            self.engine.definition_repo.save_definition(template, replace_rules=definition is not None)

        logger.info(
            f"Updated workflow definition {definition_id}",
            extra={"definition_id": definition_id, "company_id": company_id, "actor_id": actor.actor_id}
        )
        return template

    def delete_definition(self, definition_id: str, company_id: str, actor: ActorContext) -> None:
        """Soft delete: no new starts, running instances carry on"""
        self._require_level(actor, company_id, get_settings().definition_manage_level, "delete workflow definitions")

        with self.engine.uow.transaction():
            template = self._active_definition(definition_id, company_id)
            template.is_active = False
            template.updated_by = actor.actor_id
            template.updated_at = utc_now()
            self.engine.definition_repo.save_definition(template)

        logger.info(
            f"Deleted workflow definition {definition_id}",
            extra={"definition_id": definition_id, "company_id": company_id, "actor_id": actor.actor_id}
        )

    def set_start_permissions(
        self,
        definition_id: str,
        company_id: str,
        actor: ActorContext,
        allowed_role_levels: List[int]
    ) -> WorkflowTemplate:
        """Restrict who may start a definition; only its creator or a company owner may"""
        levels = sorted(set(allowed_role_levels))
        if not levels:
            raise ValidationError("allowed_role_levels cannot be empty")
        invalid = [level for level in levels if not 1 <= level <= 100]
        if invalid:
            raise ValidationError(
                "Role levels must be between 1 and 100",
                details={"invalid": invalid}
            )

        with self.engine.uow.transaction():
            template = self._active_definition(definition_id, company_id)
            if template.created_by != actor.actor_id:
                self._require_level(
                    actor, company_id, get_settings().definition_owner_level, "change start permissions"
                )
            template.allowed_role_levels = levels
            template.updated_by = actor.actor_id
            template.updated_at = utc_now()
            self.engine.definition_repo.save_definition(template)

        logger.info(
            f"Start permissions of {definition_id} set to {levels}",
            extra={"definition_id": definition_id, "company_id": company_id, "actor_id": actor.actor_id}
        )
        return template

    def _active_definition(self, definition_id: str, company_id: str) -> WorkflowTemplate:
        template = self.get_definition(definition_id, company_id)
        if not template.is_active:
            raise DefinitionNotFoundError(
                f"Workflow definition {definition_id} was deleted",
                details={"definition_id": definition_id}
            )
        return template

    def _require_level(self, actor: ActorContext, company_id: str, required: int, purpose: str) -> None:
        level = self.engine.directory.role_level(actor.actor_id, company_id)
        if level < required:
            raise AuthorizationError(
                f"Not allowed to {purpose}: level {level} < required {required}",
                details={"actor_level": level, "required_level": required}
            )

    # =========================================================================
    # Instances
    # =========================================================================

    def start_workflow(
        self,
        definition_id: str,
        document: DocumentContext,
        actor: ActorContext
    ) -> WorkflowInstance:
        """
        Start a definition against a document

        Only one IN_PROGRESS instance may exist per (document, definition).
        A definition with allowed_role_levels can only be started by members
        holding one of those levels.
        """
        template = self._active_definition(definition_id, document.company_id)
        level = self.engine.directory.role_level(actor.actor_id, template.company_id)
        if not template.can_start(level):
            raise StartNotPermittedError(
                f"Not allowed to start '{template.name}': level {level} not in {template.allowed_role_levels}",
                details={"definition_id": definition_id, "actor_level": level}
            )

        active = self.engine.instance_repo.find_active(document.document_id, definition_id)
        if active is not None:
            raise InvalidStateTransitionError(
                f"Document {document.document_id} already has an active workflow",
                details={"instance_id": active.instance_id, "definition_id": definition_id}
            )

        instance = WorkflowInstance(
            instance_id=generate_instance_id(),
            definition_id=definition_id,
            company_id=template.company_id,
            document=document,
            initiated_by=actor.actor_id,
            started_at=utc_now()
        )
        self.engine.initialize(instance, template.definition, actor)
        return self.engine.instance_repo.get_instance_or_raise(instance.instance_id)

    def get_instance(self, instance_id: str, company_id: Optional[str] = None) -> WorkflowInstance:
        """Instance by ID; instances of other companies are reported as missing"""
        instance = self.engine.instance_repo.get_instance_or_raise(instance_id)
        if company_id is not None and instance.company_id != company_id:
            raise InstanceNotFoundError(
                f"Workflow instance {instance_id} not found",
                details={"instance_id": instance_id}
            )
        return instance

    def get_instance_detail(self, instance_id: str, company_id: Optional[str] = None) -> Dict[str, Any]:
        """Instance with its tasks"""
        instance = self.get_instance(instance_id, company_id)
        return {
            "instance": instance,
            "tasks": self.engine.task_repo.list_tasks(instance_id),
        }

    def list_tasks(self, instance_id: str, company_id: Optional[str] = None) -> List[Task]:
        self.get_instance(instance_id, company_id)
        return self.engine.task_repo.list_tasks(instance_id)

    def pending_tasks_for_actor(self, actor: ActorContext, company_id: str) -> List[Task]:
        """Pending tasks of the company that the actor is allowed to act on"""
        tasks = self.engine.task_repo.list_pending_for_company(company_id)
        return [
            task for task in tasks
            if task.is_pending
            and self.engine.permission_guard.check(task, actor, company_id).allowed
        ]

    def history(
        self,
        instance_id: str,
        company_id: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None
    ) -> List[AuditEntry]:
        """Audit trail of an instance, oldest first, optionally from `since` on"""
        self.get_instance(instance_id, company_id)
        entries = self.engine.audit.history(instance_id, limit=limit)
        if since is not None:
            entries = [e for e in entries if e.timestamp >= since]
        return entries
