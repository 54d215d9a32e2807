"""Condition Evaluator - Safe evaluation of routing conditions"""
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional

from ..config.settings import get_settings
from ..domain.models import DocumentContext
from ..domain.enums import Priority, DocumentType
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Two-character operators first so ">=" is not read as ">"
OPERATORS = (">=", "<=", "!=", "=", ">", "<")

NUMERIC_FIELDS = {"amount"}

FIELD_ACCESSORS: Dict[str, Callable[[DocumentContext], Any]] = {
    "amount": lambda doc: doc.amount,
    "priority": lambda doc: doc.priority,
    "type": lambda doc: doc.document_type,
    "documenttype": lambda doc: doc.document_type,
    "status": lambda doc: doc.status,
    "title": lambda doc: doc.title,
}

CONDITION_DOCS = {
    "isHighValue": "Amount above the high-value threshold",
    "isLowValue": "Amount at or below the low-value threshold",
    "isMediumValue": "Amount between the low- and high-value thresholds",
    "isContract": "Document type is CONTRACT",
    "isInvoice": "Document type is INVOICE",
    "isUrgent": "Priority is HIGH or URGENT",
    "isNormal": "Priority is NORMAL or LOW",
    "amount > 10000": "Numeric comparison (>, >=, <, <=, =, !=)",
    "type = CONTRACT": "Field comparison on amount, priority, type, status or title",
    "!isContract": "Negation of any expression",
}


class ConditionEvaluator:
    """
    Evaluate routing conditions against a document

    Uses a closed grammar - no eval() or exec(). Anything that cannot be
    evaluated (unknown field or predicate, malformed literal, comparison on
    a missing amount) yields False. Value-band predicates are simply false
    for a document without an amount.
    """

    def __init__(
        self,
        high_value_threshold: Optional[Decimal] = None,
        low_value_threshold: Optional[Decimal] = None
    ):
        settings = get_settings()
        self.high_value_threshold = (
            high_value_threshold if high_value_threshold is not None
            else Decimal(settings.high_value_threshold)
        )
        self.low_value_threshold = (
            low_value_threshold if low_value_threshold is not None
            else Decimal(settings.low_value_threshold)
        )
        self._predicates: Dict[str, Callable[[DocumentContext], bool]] = {
            "ishighvalue": lambda doc: self._in_band(doc, self.high_value_threshold, None),
            "islowvalue": lambda doc: self._in_band(doc, None, self.low_value_threshold),
            "ismediumvalue": lambda doc: self._in_band(doc, self.low_value_threshold, self.high_value_threshold),
            "iscontract": lambda doc: doc.document_type == DocumentType.CONTRACT,
            "isinvoice": lambda doc: doc.document_type == DocumentType.INVOICE,
            "isurgent": lambda doc: doc.priority in (Priority.HIGH, Priority.URGENT),
            "isnormal": lambda doc: doc.priority in (Priority.NORMAL, Priority.LOW),
        }

    def evaluate(self, expression: Optional[str], context: DocumentContext) -> bool:
        """
        Evaluate an expression

        Args:
            expression: Predicate name, "field op literal", or "!" + expression
            context: Document the routing decision is about

        Returns:
            True if the condition holds; empty expressions always hold
        """
        if expression is None or not expression.strip():
            return True

        try:
            return self._evaluate(expression.strip(), context)
        except Exception as e:
            logger.warning(f"Condition evaluation failed for '{expression}': {e}")
            return False  # Fail closed

    def available_conditions(self) -> Dict[str, str]:
        """Supported predicates and expression forms, for documentation"""
        return dict(CONDITION_DOCS)

    def _evaluate(self, expression: str, context: DocumentContext) -> bool:
        if expression.startswith("!"):
            inner = expression[1:].strip()
            if not inner:
                raise ValueError("negation without operand")
            return not self._evaluate(inner, context)

        for operator in OPERATORS:
            if operator in expression:
                field, _, literal = expression.partition(operator)
                return self._compare(field.strip(), operator, literal.strip(), context)

        predicate = self._predicates.get(expression.lower())
        if predicate is None:
            raise ValueError(f"unknown predicate '{expression}'")
        return predicate(context)

    def _compare(self, field: str, operator: str, literal: str, context: DocumentContext) -> bool:
        accessor = FIELD_ACCESSORS.get(field.lower())
        if accessor is None:
            raise ValueError(f"unknown field '{field}'")
        if not literal:
            raise ValueError(f"missing value for '{field}'")

        value = accessor(context)
        if field.lower() in NUMERIC_FIELDS:
            if value is None:
                raise ValueError(f"'{field}' is not set")
            return _apply(operator, Decimal(value), _decimal(literal))

        left = _text(value)
        right = literal.strip("'\"").lower()
        if operator in ("=", "!="):
            return _apply(operator, left, right)
        number = _try_decimal(left)
        if number is not None:
            return _apply(operator, number, _decimal(right))
        return _apply(operator, left, right)

    def _in_band(self, context: DocumentContext, above: Optional[Decimal], up_to: Optional[Decimal]) -> bool:
        """above < amount <= up_to; a document without an amount is in no band"""
        if context.amount is None:
            return False
        amount = Decimal(context.amount)
        if above is not None and amount <= above:
            return False
        return up_to is None or amount <= up_to


def _apply(operator: str, left: Any, right: Any) -> bool:
    if operator == ">=":
        return left >= right
    if operator == "<=":
        return left <= right
    if operator == "!=":
        return left != right
    if operator == "=":
        return left == right
    if operator == ">":
        return left > right
    if operator == "<":
        return left < right
    raise ValueError(f"unsupported operator '{operator}'")


def _decimal(literal: str) -> Decimal:
    try:
        number = Decimal(literal)
    except InvalidOperation:
        raise ValueError(f"'{literal}' is not a number")
    if not number.is_finite():
        raise ValueError(f"'{literal}' is not a finite number")
    return number


def _try_decimal(text: str) -> Optional[Decimal]:
    try:
        return _decimal(text)
    except ValueError:
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "value"):
        return str(value.value).lower()
    return str(value).lower()
