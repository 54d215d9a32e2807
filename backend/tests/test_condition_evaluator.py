"""Condition evaluator tests"""
from decimal import Decimal

import pytest

from docflow.domain.models import DocumentContext
from docflow.domain.enums import DocumentStatus, DocumentType, Priority
from docflow.engine.condition_evaluator import ConditionEvaluator


@pytest.fixture
def evaluator():
    return ConditionEvaluator(
        high_value_threshold=Decimal("50000"),
        low_value_threshold=Decimal("5000")
    )


def doc(amount="10000", document_type=DocumentType.GENERAL, priority=Priority.NORMAL,
        status=DocumentStatus.SUBMITTED, title="Supply agreement"):
    return DocumentContext(
        document_id="DOC-1",
        company_id="ACME",
        title=title,
        amount=Decimal(amount) if amount is not None else None,
        document_type=document_type,
        priority=priority,
        status=status,
    )


@pytest.mark.parametrize("expression", [None, "", "   "])
def test_empty_expression_is_true(evaluator, expression):
    assert evaluator.evaluate(expression, doc()) is True


class TestPredicates:

    @pytest.mark.parametrize("amount,high,low,medium", [
        ("50000.01", True, False, False),
        ("50000", False, False, True),
        ("5000.01", False, False, True),
        ("5000", False, True, False),
        ("0", False, True, False),
    ])
    def test_value_bands_at_boundaries(self, evaluator, amount, high, low, medium):
        document = doc(amount=amount)
        assert evaluator.evaluate("isHighValue", document) is high
        assert evaluator.evaluate("isLowValue", document) is low
        assert evaluator.evaluate("isMediumValue", document) is medium

    def test_value_band_without_amount_is_false(self, evaluator):
        document = doc(amount=None)
        assert evaluator.evaluate("isHighValue", document) is False
        assert evaluator.evaluate("isLowValue", document) is False
        assert evaluator.evaluate("isMediumValue", document) is False
        assert evaluator.evaluate("!isHighValue", document) is True
        assert evaluator.evaluate("!isLowValue", document) is True

    def test_document_type(self, evaluator):
        assert evaluator.evaluate("isContract", doc(document_type=DocumentType.CONTRACT)) is True
        assert evaluator.evaluate("isContract", doc(document_type=DocumentType.INVOICE)) is False
        assert evaluator.evaluate("isInvoice", doc(document_type=DocumentType.INVOICE)) is True

    @pytest.mark.parametrize("priority,urgent", [
        (Priority.URGENT, True),
        (Priority.HIGH, True),
        (Priority.NORMAL, False),
        (Priority.LOW, False),
    ])
    def test_priority(self, evaluator, priority, urgent):
        document = doc(priority=priority)
        assert evaluator.evaluate("isUrgent", document) is urgent
        assert evaluator.evaluate("isNormal", document) is (not urgent)

    def test_predicate_names_are_case_insensitive(self, evaluator):
        assert evaluator.evaluate("ISCONTRACT", doc(document_type=DocumentType.CONTRACT)) is True

    def test_negation(self, evaluator):
        contract = doc(document_type=DocumentType.CONTRACT)
        assert evaluator.evaluate("!isContract", contract) is False
        assert evaluator.evaluate("!isContract", doc()) is True
        assert evaluator.evaluate("!!isContract", contract) is True


class TestComparisons:

    @pytest.mark.parametrize("expression,expected", [
        ("amount > 9999.99", True),
        ("amount >= 10000", True),
        ("amount >= 10000.00", True),
        ("amount > 10000", False),
        ("amount < 10000", False),
        ("amount <= 10000", True),
        ("amount = 10000.0", True),
        ("amount != 10000", False),
    ])
    def test_numeric_operators(self, evaluator, expression, expected):
        assert evaluator.evaluate(expression, doc()) is expected

    def test_numeric_comparison_is_exact(self, evaluator):
        document = doc(amount="0.3")
        assert evaluator.evaluate("amount = 0.3", document) is True
        assert evaluator.evaluate("amount > 0.29999999999999999", document) is True
        assert evaluator.evaluate("amount <= 0.30000000000000001", document) is True

    @pytest.mark.parametrize("expression,expected", [
        ("type = CONTRACT", True),
        ("type = contract", True),
        ("documentType = Contract", True),
        ("type != INVOICE", True),
        ("priority = high", True),
        ("status = submitted", True),
        ("title = supply agreement", True),
        ("TITLE = 'Supply Agreement'", True),
        ("priority = low", False),
    ])
    def test_string_fields_case_insensitive(self, evaluator, expression, expected):
        document = doc(document_type=DocumentType.CONTRACT, priority=Priority.HIGH)
        assert evaluator.evaluate(expression, document) is expected

    def test_negated_comparison(self, evaluator):
        assert evaluator.evaluate("!amount > 50000", doc()) is True


class TestFailClosed:

    @pytest.mark.parametrize("expression", [
        "unknownField > 5",
        "department = sales",
        "isVeryImportant",
        "amount > lots",
        "amount > NaN",
        "amount > Infinity",
        "amount >",
        "!",
        "> 5",
    ])
    def test_unevaluable_expressions_are_false(self, evaluator, expression):
        assert evaluator.evaluate(expression, doc()) is False

    def test_negated_unknown_still_false(self, evaluator):
        # the whole expression fails, not just the inner operand
        assert evaluator.evaluate("!isVeryImportant", doc()) is False

    def test_amount_comparison_without_amount(self, evaluator):
        assert evaluator.evaluate("amount > 0", doc(amount=None)) is False
        assert evaluator.evaluate("!amount > 0", doc(amount=None)) is False


def test_thresholds_from_settings():
    evaluator = ConditionEvaluator()
    assert evaluator.high_value_threshold == Decimal("50000")
    assert evaluator.low_value_threshold == Decimal("5000")


def test_available_conditions(evaluator):
    conditions = evaluator.available_conditions()
    for name in ("isHighValue", "isLowValue", "isMediumValue", "isContract", "isInvoice", "isUrgent", "isNormal"):
        assert name in conditions
