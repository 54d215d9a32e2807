"""Definition Parser - Workflow markup to WorkflowDefinition

Markup format:

    <workflow>
        <step order="1" roleName="Manager" roleLevel="60" action="review" parallel="false"/>
        <step order="2" roleName="Director" roleLevel="80" action="approve" parallel="false"
              allowedActions="DELEGATE"/>
        <onReject stepOrder="2" targetStep="1" description="Return to manager"/>
    </workflow>

Routing elements are onApprove, onReject and onTimeout. A missing targetStep
(or the literal "null") means the rule terminates the workflow.

allowedActions is a comma-separated list of actions offered on top of
approve and reject (currently only DELEGATE).

Parsing goes through defusedxml with DTDs forbidden, so entity expansion and
external references are rejected before any content is read.
"""
from typing import Any, Dict, List, Mapping, Optional, Tuple
from xml.etree.ElementTree import Element, ParseError, SubElement, tostring

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring

from ..domain.models import WorkflowDefinition, WorkflowStep, RoutingRule
from ..domain.enums import TaskAction, TriggerType
from ..domain.errors import DefinitionParseError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

STEP_TAG = "step"
ROUTING_TAGS = tuple(trigger.tag for trigger in TriggerType)
NULL_TARGET = "null"
MIN_ROLE_LEVEL = 1
MAX_ROLE_LEVEL = 100


class DefinitionParser:
    """
    Turn a step/routing description into a WorkflowDefinition

    Structural problems (not well-formed markup, missing or non-numeric
    attributes) raise DefinitionParseError. Values that parse but break a
    rule (order <= 0, empty roleName, roleLevel outside 1..100, empty
    action, duplicate or dangling routing rules) raise ValidationError.
    """

    def parse(self, xml_content: str) -> WorkflowDefinition:
        """Parse workflow markup"""
        if xml_content is None or not xml_content.strip():
            raise DefinitionParseError("Workflow definition cannot be empty")

        try:
            root = fromstring(xml_content.strip().encode("utf-8"), forbid_dtd=True)
        except DefusedXmlException as e:
            raise DefinitionParseError(
                "Workflow definition contains forbidden DTD or entity declarations",
                details={"reason": type(e).__name__}
            )
        except ParseError as e:
            raise DefinitionParseError(f"Invalid workflow markup: {e}")

        steps: List[WorkflowStep] = []
        rules: List[RoutingRule] = []
        for element in root.iter():
            if element.tag == STEP_TAG:
                steps.append(self._build_step(element.attrib, index=len(steps)))
            elif element.tag in ROUTING_TAGS:
                rules.append(self._build_rule(TriggerType.from_tag(element.tag), element.attrib))

        definition = self._finish(steps, rules)
        logger.info(
            f"Parsed workflow definition: {len(definition.steps)} steps, "
            f"{len(definition.routing_rules)} routing rules"
        )
        return definition

    def parse_dict(self, data: Mapping[str, Any]) -> WorkflowDefinition:
        """
        Parse an already-structured description

        Expected shape: {"steps": [{...step attributes...}],
        "routing": [{"type": "onReject", "stepOrder": 2, ...}]}
        """
        if not isinstance(data, Mapping):
            raise DefinitionParseError("Workflow definition must be an object")

        raw_steps = data.get("steps") or []
        raw_rules = data.get("routing") or []
        if not isinstance(raw_steps, list) or not isinstance(raw_rules, list):
            raise DefinitionParseError("'steps' and 'routing' must be lists")

        steps = []
        for index, raw in enumerate(raw_steps):
            if not isinstance(raw, Mapping):
                raise DefinitionParseError(f"Step #{index + 1} must be an object")
            steps.append(self._build_step(raw, index=index))

        rules = []
        for raw in raw_rules:
            if not isinstance(raw, Mapping):
                raise DefinitionParseError("Routing declarations must be objects")
            tag = raw.get("type")
            if tag not in ROUTING_TAGS:
                raise DefinitionParseError(
                    f"Unknown routing type: {tag}",
                    details={"allowed": list(ROUTING_TAGS)}
                )
            rules.append(self._build_rule(TriggerType.from_tag(tag), raw))

        return self._finish(steps, rules)

    def serialize(self, definition: WorkflowDefinition) -> str:
        """Render a definition back to markup; parse(serialize(d)) == d"""
        root = Element("workflow")
        for step in definition.steps:
            attrs = {
                "order": str(step.order),
                "roleName": step.role_name,
                "roleLevel": str(step.role_level),
                "action": step.action,
                "parallel": "true" if step.parallel else "false",
            }
            if step.description is not None:
                attrs["description"] = step.description
            if step.allowed_actions:
                attrs["allowedActions"] = ",".join(a.value for a in step.allowed_actions)
            SubElement(root, STEP_TAG, attrs)

        for rule in definition.routing_rules:
            attrs = {"stepOrder": str(rule.source_step)}
            if rule.target_step is not None:
                attrs["targetStep"] = str(rule.target_step)
            if rule.condition is not None:
                attrs["condition"] = rule.condition
            if rule.description is not None:
                attrs["description"] = rule.description
            SubElement(root, rule.trigger_type.tag, attrs)

        return tostring(root, encoding="unicode")

    # =========================================================================
    # Element builders
    # =========================================================================

    def _build_step(self, attrs: Mapping[str, Any], index: int) -> WorkflowStep:
        label = f"Step #{index + 1}"
        order = _required_int(attrs, "order", label)
        role_level = _required_int(attrs, "roleLevel", label)
        role_name = _text(attrs.get("roleName"))
        action = _text(attrs.get("action"))

        if order <= 0:
            raise ValidationError(f"{label}: order must be positive", details={"order": order})
        if not role_name:
            raise ValidationError(f"{label}: roleName is required", details={"order": order})
        if not MIN_ROLE_LEVEL <= role_level <= MAX_ROLE_LEVEL:
            raise ValidationError(
                f"{label}: roleLevel must be between {MIN_ROLE_LEVEL} and {MAX_ROLE_LEVEL}",
                details={"order": order, "roleLevel": role_level}
            )
        if not action:
            raise ValidationError(f"{label}: action is required", details={"order": order})

        return WorkflowStep(
            order=order,
            role_name=role_name,
            role_level=role_level,
            action=action,
            parallel=_bool(attrs.get("parallel"), label),
            description=_optional_text(attrs.get("description")),
            allowed_actions=_actions(attrs.get("allowedActions"), label),
        )

    def _build_rule(self, trigger: TriggerType, attrs: Mapping[str, Any]) -> RoutingRule:
        label = f"{trigger.tag} rule"
        source_step = _required_int(attrs, "stepOrder", label)
        target_step = _target(attrs.get("targetStep"), label)

        if source_step <= 0:
            raise ValidationError(f"{label}: stepOrder must be positive", details={"stepOrder": source_step})
        if target_step is not None and target_step <= 0:
            raise ValidationError(f"{label}: targetStep must be positive", details={"targetStep": target_step})

        return RoutingRule(
            source_step=source_step,
            trigger_type=trigger,
            target_step=target_step,
            condition=_optional_text(attrs.get("condition")),
            description=_optional_text(attrs.get("description")),
        )

    def _finish(self, steps: List[WorkflowStep], rules: List[RoutingRule]) -> WorkflowDefinition:
        if not steps:
            raise ValidationError("Workflow definition has no steps")

        # Stable: declaration order is kept inside a parallel group
        steps = sorted(steps, key=lambda s: s.order)
        orders = {s.order for s in steps}

        seen: Dict[Tuple[int, TriggerType], RoutingRule] = {}
        for rule in rules:
            key = (rule.source_step, rule.trigger_type)
            if key in seen:
                raise ValidationError(
                    f"Duplicate {rule.trigger_type.tag} rule for step {rule.source_step}",
                    details={"stepOrder": rule.source_step, "trigger": rule.trigger_type.value}
                )
            seen[key] = rule
            if rule.source_step not in orders:
                raise ValidationError(
                    f"{rule.trigger_type.tag} rule references unknown step {rule.source_step}",
                    details={"stepOrder": rule.source_step}
                )
            if rule.target_step is not None and rule.target_step not in orders:
                raise ValidationError(
                    f"{rule.trigger_type.tag} rule targets unknown step {rule.target_step}",
                    details={"targetStep": rule.target_step}
                )

        return WorkflowDefinition(steps=steps, routing_rules=list(rules))


# =============================================================================
# Attribute coercion (markup attributes are strings, dict input may be typed)
# =============================================================================

def _required_int(attrs: Mapping[str, Any], name: str, label: str) -> int:
    if name not in attrs or attrs[name] is None or attrs[name] == "":
        raise DefinitionParseError(f"{label}: missing attribute '{name}'")
    return _int(attrs[name], name, label)


def _int(value: Any, name: str, label: str) -> int:
    if isinstance(value, bool):
        raise DefinitionParseError(f"{label}: attribute '{name}' must be an integer")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise DefinitionParseError(
            f"{label}: attribute '{name}' must be an integer",
            details={name: str(value)}
        )


def _target(value: Any, label: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", NULL_TARGET):
        return None
    return _int(value, "targetStep", label)


def _bool(value: Any, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1"):
        return True
    if text in ("false", "0", ""):
        return False
    raise DefinitionParseError(f"{label}: attribute 'parallel' must be true or false")


def _actions(value: Any, label: str) -> Tuple[TaskAction, ...]:
    if value is None:
        return ()
    names = value.split(",") if isinstance(value, str) else value
    if not isinstance(names, (list, tuple)):
        raise DefinitionParseError(f"{label}: attribute 'allowedActions' must be a list")

    actions: List[TaskAction] = []
    for name in names:
        text = _text(name).upper()
        if not text:
            continue
        try:
            action = TaskAction(text)
        except ValueError:
            raise ValidationError(
                f"{label}: unknown action '{text}'",
                details={"allowed": [a.value for a in TaskAction]}
            )
        if action not in actions:
            actions.append(action)
    return tuple(actions)


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def parse_workflow_xml(xml_content: str) -> WorkflowDefinition:
    return DefinitionParser().parse(xml_content)


def parse_workflow_dict(data: Mapping[str, Any]) -> WorkflowDefinition:
    return DefinitionParser().parse_dict(data)


def serialize_definition(definition: WorkflowDefinition) -> str:
    return DefinitionParser().serialize(definition)


# =============================================================================
# Example definitions
# =============================================================================

def generate_example_xml() -> str:
    """Five-step definition exercising conditional and rejection routing"""
    return """<?xml version="1.0" encoding="UTF-8"?>
<workflow>
    <step order="1" roleName="Manager" roleLevel="60" action="review" parallel="false" description="Initial review"/>
    <step order="2" roleName="Director" roleLevel="80" action="approve" parallel="false" description="Director approval" allowedActions="DELEGATE"/>
    <step order="3" roleName="CEO" roleLevel="100" action="sign" parallel="false" description="Final signature"/>
    <step order="4" roleName="Accountant" roleLevel="70" action="verify" parallel="false" description="Final verification"/>
    <step order="5" roleName="Legal" roleLevel="75" action="legal_review" parallel="false" description="Legal review"/>

    <onApprove stepOrder="1" condition="isLowValue" targetStep="3" description="Skip director for low-value documents"/>
    <onReject stepOrder="2" targetStep="1" description="Return to manager if director rejects"/>
    <onApprove stepOrder="3" condition="!isContract" targetStep="4" description="Accountant verification for non-contracts"/>
    <onApprove stepOrder="4" description="Verified documents skip legal review"/>
    <onReject stepOrder="4" targetStep="1" description="Return to manager if accountant rejects"/>
    <onReject stepOrder="5" description="Reject the workflow if legal rejects"/>
    <onTimeout stepOrder="2" targetStep="1" description="Stale director approvals go back to the manager"/>
</workflow>
"""


def generate_parallel_workflow_xml() -> str:
    """Manager, then Lawyer and Accountant in parallel, then CEO"""
    return """<?xml version="1.0" encoding="UTF-8"?>
<workflow>
    <step order="1" roleName="Manager" roleLevel="60" action="review" parallel="false"/>
    <step order="2" roleName="Lawyer" roleLevel="70" action="review" parallel="true"/>
    <step order="2" roleName="Accountant" roleLevel="65" action="review" parallel="true"/>
    <step order="3" roleName="CEO" roleLevel="100" action="sign" parallel="false"/>
</workflow>
"""
