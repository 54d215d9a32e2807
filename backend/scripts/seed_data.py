"""
Seed Data Script - Creates sample members and definitions for local testing
Run: python -m scripts.seed_data
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from docflow.domain.models import ActorContext
from docflow.engine.definition_parser import generate_example_xml, generate_parallel_workflow_xml
from docflow.repositories.mongo_client import create_indexes
from docflow.services.workflow_service import WorkflowService

COMPANY_ID = "ACME"

MEMBERS = [
    ("manager@acme.test", "Manager", 60),
    ("director@acme.test", "Director", 80),
    ("ceo@acme.test", "CEO", 100),
    ("accountant@acme.test", "Accountant", 70),
    ("lawyer@acme.test", "Lawyer", 75),
    ("legal@acme.test", "Legal", 75),
]


def seed():
    create_indexes()
    service = WorkflowService()
    admin = ActorContext(actor_id="ceo@acme.test", display_name="Seed")

    if service.list_definitions(COMPANY_ID):
        print("Database already has definitions. Skipping seed.")
        return

    for actor_id, role_name, level in MEMBERS:
        service.engine.directory.add_member(COMPANY_ID, actor_id, role_name, level)
        print(f"Member: {actor_id} ({role_name}, {level})")

    for name, xml in (
        ("Conditional approval", generate_example_xml()),
        ("Parallel review", generate_parallel_workflow_xml()),
    ):
        template = service.register_definition(COMPANY_ID, name, admin, xml_content=xml)
        print(f"Definition: {name} -> {template.definition_id}")


if __name__ == "__main__":
    seed()
