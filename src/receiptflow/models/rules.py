"""
Classification rule models — conditions, actions and the rule itself.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field, field_validator

from receiptflow.models.receipt import ExpenseSubCategory, ReceiptCategory

E = TypeVar("E", bound=Enum)


class ConditionField(str, Enum):
    """Receipt attribute a condition inspects."""

    RECEIPT_TYPE = "receipt_type"
    RECEIPT_CATEGORY = "receipt_category"
    SELLER_NAME = "seller_name"
    BUYER_NAME = "buyer_name"
    MERCHANT = "merchant"
    AMOUNT = "amount"
    TAX_AMOUNT = "tax_amount"
    DATE = "date"
    ISSUER = "issuer"
    EXPENSE_TYPE = "expense_type"
    DEPARTURE_PLACE = "departure_place"
    DESTINATION = "destination"
    FILE_TYPE = "file_type"
    FILE_NAME = "file_name"
    INVOICE_CODE = "invoice_code"
    INVOICE_NUMBER = "invoice_number"
    REMARKS = "remarks"
    DEPARTMENT = "department"
    PROJECT = "project"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    REGEX = "regex"
    IN = "in"


NUMERIC_OPERATORS = frozenset({
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_THAN,
    ConditionOperator.GREATER_EQUAL,
    ConditionOperator.LESS_EQUAL,
})


class ActionType(str, Enum):
    SET_CATEGORY = "set_category"
    SET_SUB_CATEGORY = "set_sub_category"
    SET_EXPENSE_TYPE = "set_expense_type"
    SET_DEPARTMENT = "set_department"
    SET_PROJECT = "set_project"
    SET_TAG = "set_tag"
    ARCHIVE = "archive"
    GENERATE_ARCHIVE_NUMBER = "generate_archive_number"


def lookup_member(enum_cls: type[E], literal: str | None) -> E | None:
    """Resolve ``literal`` as a member name or value, case-insensitively."""
    if not literal:
        return None
    key = literal.strip()
    for member in enum_cls:
        if member.name.lower() == key.lower() or str(member.value).lower() == key.lower():
            return member
    return None


def member_named(enum_cls: type[E], literal: str | None) -> E | None:
    """Resolve ``literal`` as an exact member name, e.g. ``EXPENSE``.

    Rule actions use this stricter form; ``lookup_member`` is for lenient
    imports such as CSV type columns.
    """
    if not literal:
        return None
    try:
        return enum_cls[literal]
    except KeyError:
        return None


def _lower_enum_literal(value: Any) -> Any:
    # Rule files use member names ("RECEIPT_TYPE"); enum values are lowercase.
    if isinstance(value, str):
        return value.strip().lower()
    return value


class ClassificationCondition(BaseModel):
    """Single test of one receipt field against a string literal."""

    field: ConditionField
    operator: ConditionOperator
    value: str = ""

    @field_validator("field", "operator", mode="before")
    @classmethod
    def normalize_enum_names(cls, value: Any) -> Any:
        return _lower_enum_literal(value)

    def problems(self) -> list[str]:
        found: list[str] = []
        if self.operator == ConditionOperator.REGEX:
            try:
                re.compile(self.value)
            except re.error as e:
                found.append(f"invalid regex {self.value!r}: {e}")
        elif self.operator in NUMERIC_OPERATORS:
            try:
                float(self.value)
            except ValueError:
                found.append(f"non-numeric literal {self.value!r} for {self.operator.value}")
        return found


class ClassificationAction(BaseModel):
    """Effect applied to a receipt when its rule matches."""

    type: ActionType
    value: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def normalize_enum_names(cls, value: Any) -> Any:
        return _lower_enum_literal(value)

    def problems(self) -> list[str]:
        if self.type == ActionType.SET_CATEGORY and member_named(ReceiptCategory, self.value) is None:
            return [f"unknown category {self.value!r}"]
        if self.type == ActionType.SET_SUB_CATEGORY and member_named(ExpenseSubCategory, self.value) is None:
            return [f"unknown sub-category {self.value!r}"]
        if self.type == ActionType.SET_TAG and not self.value.strip():
            return ["empty tag"]
        return []


class ClassificationRule(BaseModel):
    """A named, ordered classification policy.

    Conditions are AND-ed; an empty condition list matches every receipt.
    Lower ``priority`` values are evaluated first, equal priorities keep
    insertion order.
    """

    id: int | None = None
    name: str
    description: str = ""
    priority: int = 0
    enabled: bool = True
    conditions: list[ClassificationCondition] = Field(default_factory=list)
    actions: list[ClassificationAction] = Field(default_factory=list)
    is_system_rule: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    def problems(self) -> list[str]:
        """Malformed literals that would silently no-op at evaluation time."""
        found: list[str] = []
        for condition in self.conditions:
            found.extend(condition.problems())
        for action in self.actions:
            found.extend(action.problems())
        return found
