"""
Pytest Configuration and Fixtures

Engine, services and API tests all run against the in-memory repositories;
no MongoDB is needed.
"""

from decimal import Decimal
from typing import Callable, List, Optional

import pytest

from docflow.domain.models import ActorContext, DocumentContext, Task, WorkflowInstance
from docflow.domain.enums import DocumentType, Priority, TaskStatus
from docflow.engine.audit_recorder import AuditRecorder
from docflow.engine.condition_evaluator import ConditionEvaluator
from docflow.engine.engine import WorkflowEngine
from docflow.repositories.memory import (
    InMemoryAuditRepository, InMemoryDatabase, InMemoryDefinitionRepository,
    InMemoryInstanceRepository, InMemoryMembershipRepository, InMemoryTaskRepository,
    InMemoryUnitOfWork
)
from docflow.services.bulk_service import BulkWorkflowService
from docflow.services.directory_service import DirectoryService
from docflow.services.notification_service import NotificationService
from docflow.services.workflow_service import WorkflowService

COMPANY_ID = "ACME"
OTHER_COMPANY_ID = "GLOBEX"

LINEAR_XML = """
<workflow>
    <step order="1" roleName="Manager" roleLevel="60" action="review" parallel="false"/>
    <step order="2" roleName="Director" roleLevel="80" action="approve" parallel="false"/>
    <step order="3" roleName="CEO" roleLevel="100" action="sign" parallel="false"/>
    <onReject stepOrder="2" targetStep="1" description="Return to manager"/>
</workflow>
"""

PARALLEL_XML = """
<workflow>
    <step order="1" roleName="Manager" roleLevel="60" action="review" parallel="false"/>
    <step order="2" roleName="Lawyer" roleLevel="70" action="review" parallel="true"/>
    <step order="2" roleName="Accountant" roleLevel="65" action="review" parallel="true"/>
    <step order="3" roleName="CEO" roleLevel="100" action="sign" parallel="false"/>
</workflow>
"""

MEMBERS = {
    "manager": ("Manager", 60),
    "director": ("Director", 80),
    "ceo": ("CEO", 100),
    "lawyer": ("Lawyer", 70),
    "accountant": ("Accountant", 65),
}


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def audit_repo(db):
    return InMemoryAuditRepository(db)


@pytest.fixture
def directory(db) -> DirectoryService:
    directory = DirectoryService(InMemoryMembershipRepository(db))
    for actor_id, (role_name, level) in MEMBERS.items():
        directory.add_member(COMPANY_ID, actor_id, role_name, level)
    directory.add_member(OTHER_COMPANY_ID, "outsider", "CEO", 100)
    return directory


@pytest.fixture
def notifications() -> NotificationService:
    return NotificationService()


@pytest.fixture
def engine(db, directory, audit_repo, notifications) -> WorkflowEngine:
    return WorkflowEngine(
        task_repo=InMemoryTaskRepository(db),
        instance_repo=InMemoryInstanceRepository(db),
        definition_repo=InMemoryDefinitionRepository(db),
        unit_of_work=InMemoryUnitOfWork(db),
        directory=directory,
        audit=AuditRecorder(audit_repo),
        notifications=notifications,
        evaluator=ConditionEvaluator(
            high_value_threshold=Decimal("50000"),
            low_value_threshold=Decimal("5000")
        ),
    )


@pytest.fixture
def service(engine) -> WorkflowService:
    return WorkflowService(engine=engine)


@pytest.fixture
def bulk(engine) -> BulkWorkflowService:
    return BulkWorkflowService(engine=engine)


def actor(actor_id: str) -> ActorContext:
    return ActorContext(actor_id=actor_id)


@pytest.fixture
def start(service) -> Callable[..., WorkflowInstance]:
    """Register a definition and start it for a fresh document"""
    counter = {"n": 0}

    def _start(
        xml: str = LINEAR_XML,
        amount: Optional[str] = "10000",
        document_type: DocumentType = DocumentType.GENERAL,
        priority: Priority = Priority.NORMAL
    ) -> WorkflowInstance:
        counter["n"] += 1
        template = service.register_definition(COMPANY_ID, "Test flow", actor("ceo"), xml_content=xml)
        document = DocumentContext(
            document_id=f"DOC-{counter['n']}",
            company_id=COMPANY_ID,
            title="Supply agreement",
            amount=Decimal(amount) if amount is not None else None,
            document_type=document_type,
            priority=priority,
        )
        return service.start_workflow(template.definition_id, document, actor("manager"))

    return _start


def pending(service: WorkflowService, instance_id: str) -> List[Task]:
    return [t for t in service.list_tasks(instance_id) if t.status == TaskStatus.PENDING]


def only_pending(service: WorkflowService, instance_id: str) -> Task:
    tasks = pending(service, instance_id)
    assert len(tasks) == 1, tasks
    return tasks[0]


def assert_single_current_step(service: WorkflowService, instance_id: str) -> None:
    orders = {t.step_order for t in pending(service, instance_id)}
    assert len(orders) <= 1, f"pending tasks span steps {sorted(orders)}"
