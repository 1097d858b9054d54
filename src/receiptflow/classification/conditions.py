"""
Condition evaluation — test one receipt field against a rule literal.

Every field is rendered to a string first, then compared. Evaluation never
raises: an unparsable number compares as 0.0 and a broken regex simply
does not match.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Callable

from receiptflow.models.rules import ConditionField, ConditionOperator

if TYPE_CHECKING:
    from receiptflow.models.receipt import Receipt
    from receiptflow.models.rules import ClassificationCondition, ClassificationRule

logger = logging.getLogger("receiptflow.classification.conditions")


def _to_float(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return 0.0


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return value.name
    return str(value)


def _render_amount(receipt: Receipt) -> str:
    return str(receipt.effective_amount)


def _render_tax(receipt: Receipt) -> str:
    return "" if receipt.tax_amount is None else str(receipt.tax_amount)


def _render_date(receipt: Receipt) -> str:
    day = receipt.invoice_date or receipt.created_at.date()
    return day.strftime("%Y-%m-%d")


# Fields that need more than a plain attribute read
_RENDERERS: dict[ConditionField, Callable[[Receipt], str]] = {
    ConditionField.AMOUNT: _render_amount,
    ConditionField.TAX_AMOUNT: _render_tax,
    ConditionField.DATE: _render_date,
    ConditionField.RECEIPT_CATEGORY: lambda r: _text(r.category),
}


class ConditionEvaluator:
    """
    Evaluates classification conditions against receipts.

    String operators (CONTAINS, STARTS_WITH, ENDS_WITH and the NOT_ forms)
    ignore case. EQUALS, NOT_EQUALS and IN compare exactly. Enum fields
    render as the member name, so a rule literal reads ``DINING``.
    """

    def field_value(self, receipt: Receipt, condition_field: ConditionField) -> str:
        """Render a receipt field as the string a condition compares against."""
        renderer = _RENDERERS.get(condition_field)
        if renderer is not None:
            return renderer(receipt)
        return _text(getattr(receipt, condition_field.value, None))

    def evaluate(self, receipt: Receipt, condition: ClassificationCondition) -> bool:
        value = self.field_value(receipt, condition.field)
        literal = condition.value
        op = condition.operator

        if op == ConditionOperator.EQUALS:
            return value == literal
        if op == ConditionOperator.NOT_EQUALS:
            return value != literal
        if op == ConditionOperator.CONTAINS:
            return literal.lower() in value.lower()
        if op == ConditionOperator.NOT_CONTAINS:
            return literal.lower() not in value.lower()
        if op == ConditionOperator.STARTS_WITH:
            return value.lower().startswith(literal.lower())
        if op == ConditionOperator.ENDS_WITH:
            return value.lower().endswith(literal.lower())
        if op == ConditionOperator.GREATER_THAN:
            return _to_float(value) > _to_float(literal)
        if op == ConditionOperator.LESS_THAN:
            return _to_float(value) < _to_float(literal)
        if op == ConditionOperator.GREATER_EQUAL:
            return _to_float(value) >= _to_float(literal)
        if op == ConditionOperator.LESS_EQUAL:
            return _to_float(value) <= _to_float(literal)
        if op == ConditionOperator.REGEX:
            try:
                return re.search(literal, value) is not None
            except re.error as e:
                logger.warning("Invalid regex %r in condition on %s: %s", literal, condition.field.name, e)
                return False
        if op == ConditionOperator.IN:
            return value in [part.strip() for part in literal.split(",")]

        logger.warning("Unsupported operator: %s", op)
        return False

    def matches(self, receipt: Receipt, rule: ClassificationRule) -> bool:
        """True when every condition of ``rule`` holds; no conditions means a catch-all."""
        for condition in rule.conditions:
            if not self.evaluate(receipt, condition):
                logger.debug(
                    "Rule '%s' stopped at %s %s %r",
                    rule.name, condition.field.name, condition.operator.name, condition.value,
                )
                return False
        return True
