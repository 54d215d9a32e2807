"""Script to validate a workflow definition file

Run: python -m scripts.validate_workflow path/to/workflow.xml
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from docflow.domain.errors import DomainError
from docflow.engine.condition_evaluator import ConditionEvaluator
from docflow.engine.definition_parser import DefinitionParser


def validate_workflow(path: str) -> int:
    with open(path, encoding="utf-8") as f:
        content = f.read()

    try:
        definition = DefinitionParser().parse(content)
    except DomainError as e:
        print(f"INVALID: {e.error_code} - {e.message}")
        if e.details:
            print(f"   details: {e.details}")
        return 1

    print(f"VALID: {len(definition.steps)} steps, {len(definition.routing_rules)} routing rules")
    print()
    print("=" * 60)
    print("STEPS")
    print("=" * 60)
    for order, steps in definition.step_groups().items():
        label = "parallel group" if len(steps) > 1 or any(s.parallel for s in steps) else "step"
        print(f"\n{order}. {label}")
        for step in steps:
            print(f"   - {step.role_name} (level {step.role_level}): {step.action}")

    print()
    print("=" * 60)
    print("ROUTING")
    print("=" * 60)
    known = {name.lower() for name in ConditionEvaluator().available_conditions()}
    for rule in definition.routing_rules:
        target = rule.target_step if rule.target_step is not None else "terminate"
        print(f"\n{rule.trigger_type.tag} step {rule.source_step} -> {target}")
        if rule.condition:
            bare = rule.condition.lstrip("!").strip().lower()
            hint = "" if bare in known or any(op in bare for op in "<>=") else "  (unknown predicate, evaluates false)"
            print(f"   condition: {rule.condition}{hint}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python -m scripts.validate_workflow <file.xml>")
        sys.exit(2)
    sys.exit(validate_workflow(sys.argv[1]))
