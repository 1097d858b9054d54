"""
Rule Store — ordered container of classification rules.

Rules live in an explicit list. Evaluation order is priority ascending,
and a stable sort keeps insertion order for equal priorities, so the
order is the same on every run for the same rule set.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from receiptflow.errors import InvalidRuleError, RuleNotFoundError
from receiptflow.models.rules import (
    ActionType,
    ClassificationAction,
    ClassificationCondition,
    ClassificationRule,
    ConditionField,
    ConditionOperator,
)

logger = logging.getLogger("receiptflow.classification.rule_store")


class RuleStore:
    """
    Holds classification rules and hands them out in evaluation order.

    Rules are validated when written: with ``strict=True`` a rule carrying a
    malformed literal (unknown category name, broken regex, non-numeric
    comparison value) is rejected with ``InvalidRuleError``. With
    ``strict=False`` it is stored anyway and the classifier tolerates it at
    evaluation time.

    Example usage:
        store = RuleStore()
        store.add(ClassificationRule(
            name="Meals",
            priority=1,
            conditions=[ClassificationCondition(
                field=ConditionField.RECEIPT_TYPE,
                operator=ConditionOperator.EQUALS,
                value="DINING",
            )],
            actions=[ClassificationAction(type=ActionType.SET_CATEGORY, value="FOOD")],
        ))
        for rule in store.enabled_rules():
            ...
    """

    def __init__(
        self,
        rules: list[ClassificationRule] | None = None,
        strict: bool = True,
    ) -> None:
        self.strict = strict
        self._lock = threading.RLock()
        self._rules: list[ClassificationRule] = []
        self._next_id = 1
        for rule in rules or []:
            self.add(rule)

    def __len__(self) -> int:
        return len(self._rules)

    def add(self, rule: ClassificationRule) -> ClassificationRule:
        """Append a rule, assigning the next id if it has none."""
        self._check(rule)
        stored = rule.model_copy(deep=True)
        with self._lock:
            if stored.id is None:
                stored.id = self._next_id
            elif self._index_of(stored.id) is not None:
                raise ValueError(f"Rule already exists: {stored.id}")
            self._next_id = max(self._next_id, stored.id + 1)
            self._rules.append(stored)
        logger.info("Added rule: %s (id=%s, priority=%d)", stored.name, stored.id, stored.priority)
        return stored.model_copy(deep=True)

    def get(self, rule_id: int) -> ClassificationRule:
        with self._lock:
            index = self._index_of(rule_id)
            if index is None:
                raise RuleNotFoundError(rule_id)
            return self._rules[index].model_copy(deep=True)

    def update(self, rule: ClassificationRule) -> None:
        """Replace a stored rule in place; its insertion position is kept."""
        self._check(rule)
        with self._lock:
            index = self._index_of(rule.id)
            if index is None:
                raise RuleNotFoundError(rule.id)
            self._rules[index] = rule.model_copy(deep=True)
        logger.info("Updated rule: %s (id=%s)", rule.name, rule.id)

    def delete(self, rule_id: int) -> None:
        with self._lock:
            index = self._index_of(rule_id)
            if index is None:
                raise RuleNotFoundError(rule_id)
            removed = self._rules.pop(index)
        logger.info("Deleted rule: %s (id=%s)", removed.name, rule_id)

    def toggle(self, rule_id: int) -> bool:
        """Flip a rule's enabled flag and return the new value."""
        with self._lock:
            index = self._index_of(rule_id)
            if index is None:
                raise RuleNotFoundError(rule_id)
            rule = self._rules[index]
            rule.enabled = not rule.enabled
            enabled = rule.enabled
        logger.info("Rule %s %s", rule_id, "enabled" if enabled else "disabled")
        return enabled

    def reorder(self, rule_ids: list[int]) -> None:
        """Assign priorities 0..n-1 following the order of ``rule_ids``.

        Rules not named keep their current priority.
        """
        with self._lock:
            indexes = []
            for rule_id in rule_ids:
                index = self._index_of(rule_id)
                if index is None:
                    raise RuleNotFoundError(rule_id)
                indexes.append(index)
            for priority, index in enumerate(indexes):
                self._rules[index].priority = priority

    def all_rules(self) -> list[ClassificationRule]:
        """Every rule, enabled or not, in evaluation order."""
        with self._lock:
            ordered = sorted(self._rules, key=lambda r: r.priority)
            return [r.model_copy(deep=True) for r in ordered]

    def enabled_rules(self) -> list[ClassificationRule]:
        """Enabled rules in evaluation order (priority, then insertion)."""
        return [r for r in self.all_rules() if r.enabled]

    def export_rules(self) -> list[dict[str, Any]]:
        """Export rules as serializable dicts, in insertion order."""
        with self._lock:
            return [r.model_dump(mode="json", exclude={"created_at"}) for r in self._rules]

    def _index_of(self, rule_id: int | None) -> int | None:
        for i, rule in enumerate(self._rules):
            if rule.id == rule_id:
                return i
        return None

    def _check(self, rule: ClassificationRule) -> None:
        problems = rule.problems()
        if not problems:
            return
        if self.strict:
            raise InvalidRuleError(rule.name, problems)
        logger.warning("Rule '%s' stored with malformed literals: %s", rule.name, "; ".join(problems))


def _type_rule(
    name: str,
    receipt_types: str,
    category: str,
    sub_category: str,
    tag: str,
) -> ClassificationRule:
    return ClassificationRule(
        name=name,
        description=f"Receipts of type {receipt_types} filed as {category}",
        priority=100,
        is_system_rule=True,
        conditions=[
            ClassificationCondition(
                field=ConditionField.RECEIPT_TYPE,
                operator=ConditionOperator.IN,
                value=receipt_types,
            ),
        ],
        actions=[
            ClassificationAction(type=ActionType.SET_CATEGORY, value=category),
            ClassificationAction(type=ActionType.SET_SUB_CATEGORY, value=sub_category),
            ClassificationAction(type=ActionType.SET_TAG, value=tag),
        ],
    )


# System rules for the common receipt types
DEFAULT_RULES: list[ClassificationRule] = [
    _type_rule(
        "Travel tickets",
        "TRANSPORT,TRAIN_TICKET,FLIGHT_ITINERARY,BUS_TICKET,TAXI_RECEIPT",
        "TRANSPORTATION",
        "TRAVEL",
        "travel",
    ),
    _type_rule("Hotel stays", "ACCOMMODATION", "ACCOMMODATION", "TRAVEL", "travel"),
    _type_rule("Meals", "DINING", "FOOD", "BUSINESS_ENTERTAINMENT", "meal"),
    _type_rule("Office supplies", "OFFICE", "OFFICE", "OFFICE", "office"),
    _type_rule("Phone and internet", "COMMUNICATION", "EXPENSE", "EXPENSE", "telecom"),
    _type_rule(
        "VAT invoices",
        "VAT_SPECIAL_INVOICE,VAT_ORDINARY_INVOICE,VAT_ELECTRONIC_INVOICE",
        "EXPENSE",
        "PROCUREMENT",
        "invoice",
    ),
]


def create_default_rule_store(strict: bool = True) -> RuleStore:
    """Create a store pre-loaded with the system rules."""
    return RuleStore([r.model_copy(deep=True) for r in DEFAULT_RULES], strict=strict)
