"""
Classifier — apply the first matching rule to a receipt and file it.

Rules are tried in evaluation order (priority ascending, then insertion).
The first rule whose conditions all hold wins; its actions are applied in
listed order as a set of field changes, which is then committed together
with its archive number in one store write. That write touches only the
classification fields, so a link made meanwhile is kept. Classifying the
same receipt twice at once is serialized. A receipt that no rule matches
still gets an archive number and is marked processed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from receiptflow.audit import OperationLog, OperationResult, OperationType
from receiptflow.classification.archive import ArchiveNumberGenerator
from receiptflow.classification.conditions import ConditionEvaluator
from receiptflow.classification.rule_store import RuleStore
from receiptflow.errors import ReceiptFlowError
from receiptflow.models.receipt import ExpenseSubCategory, Receipt, ReceiptCategory
from receiptflow.models.rules import ActionType, ClassificationRule, member_named
from receiptflow.store.base import ReceiptRepository

logger = logging.getLogger("receiptflow.classification.classifier")


@dataclass
class ClassificationResult:
    """Outcome of classifying one receipt."""

    receipt: Receipt
    rule_applied: ClassificationRule | None = None
    archive_number: str | None = None

    @property
    def used_default(self) -> bool:
        return self.rule_applied is None


@dataclass
class BatchClassificationResult:
    """Aggregate of a batch run; one failed item never stops the rest."""

    total: int
    classified: int = 0
    failed: int = 0
    cancelled: bool = False
    results: list[ClassificationResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        """Items never attempted because the batch was cancelled."""
        return self.total - self.classified - self.failed


class Classifier:
    """
    Rule-driven receipt classifier.

    Example usage:
        classifier = Classifier(receipts, rules)
        result = classifier.classify("rcpt_42")
        print(result.archive_number)
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        rules: RuleStore,
        archive: ArchiveNumberGenerator | None = None,
        evaluator: ConditionEvaluator | None = None,
        operation_log: OperationLog | None = None,
    ) -> None:
        self.receipts = receipts
        self.rules = rules
        self.archive = archive if archive is not None else ArchiveNumberGenerator(receipts.archive_numbers)
        self.evaluator = evaluator if evaluator is not None else ConditionEvaluator()
        self.operation_log = operation_log if operation_log is not None else OperationLog()
        self._guard = threading.Lock()
        self._receipt_locks: dict[str, threading.Lock] = {}

    def find_matching_rule(self, receipt: Receipt) -> ClassificationRule | None:
        for rule in self.rules.enabled_rules():
            if self.evaluator.matches(receipt, rule):
                return rule
        return None

    def classify(self, receipt_id: str) -> ClassificationResult:
        """
        Classify one stored receipt and commit the result.

        Args:
            receipt_id: Id of a receipt in the repository.

        Returns:
            ClassificationResult with the updated receipt, the winning rule
            (None for the default path) and the archive number.

        Raises:
            ReceiptNotFoundError: No receipt has this id.
        """
        with self._lock_for(receipt_id):
            receipt = self.receipts.require(receipt_id)
            rule = self.find_matching_rule(receipt)

            now = datetime.now()
            changes: dict[str, Any] = {}
            numbering_source: Receipt | None = None
            if rule is not None:
                changes, numbering_source = self._apply_actions(receipt, rule, now)
            changes.update(processed=True, processed_at=now, updated_at=now)

            if receipt.archive_number:
                staged = self.receipts.apply_classification(receipt_id, changes)
            else:
                with self.archive.allocate(numbering_source or receipt.model_copy(update=changes)) as number:
                    changes["archive_number"] = number
                    staged = self.receipts.apply_classification(receipt_id, changes)

        if rule is not None:
            logger.info("Receipt %s classified by rule '%s' as %s", receipt_id, rule.name, staged.archive_number)
        else:
            logger.info("Receipt %s matched no rule, filed as %s", receipt_id, staged.archive_number)
        self.operation_log.record(
            OperationType.RECEIPT_CLASSIFY,
            receipt_id,
            detail=rule.name if rule is not None else "default",
        )
        return ClassificationResult(receipt=staged, rule_applied=rule, archive_number=staged.archive_number)

    def batch_classify(
        self,
        receipt_ids: list[str],
        cancel: threading.Event | None = None,
    ) -> BatchClassificationResult:
        """
        Classify several receipts, isolating per-item failures.

        ``cancel`` is checked between items; receipts already committed stay
        committed when it is set.
        """
        batch = BatchClassificationResult(total=len(receipt_ids))
        for receipt_id in receipt_ids:
            if cancel is not None and cancel.is_set():
                batch.cancelled = True
                logger.info("Batch cancelled after %d of %d receipts", batch.classified + batch.failed, batch.total)
                break
            try:
                result = self.classify(receipt_id)
            except ReceiptFlowError as e:
                self._record_failure(batch, receipt_id, str(e))
                continue
            except Exception as e:
                logger.exception("Unexpected failure classifying receipt %s", receipt_id)
                self._record_failure(batch, receipt_id, f"{type(e).__name__}: {e}")
                continue
            batch.results.append(result)
            batch.classified += 1
        return batch

    def auto_classify_all(self, cancel: threading.Event | None = None) -> BatchClassificationResult:
        """Classify every receipt not yet processed."""
        pending = [r.id for r in self.receipts.unprocessed() if r.id is not None]
        logger.info("Auto-classifying %d unprocessed receipts", len(pending))
        return self.batch_classify(pending, cancel=cancel)

    def _lock_for(self, receipt_id: str) -> threading.Lock:
        with self._guard:
            lock = self._receipt_locks.get(receipt_id)
            if lock is None:
                lock = self._receipt_locks[receipt_id] = threading.Lock()
            return lock

    def _record_failure(self, batch: BatchClassificationResult, receipt_id: str, message: str) -> None:
        logger.warning("Failed to classify receipt %s: %s", receipt_id, message)
        batch.failed += 1
        batch.errors.append(f"{receipt_id}: {message}")
        self.operation_log.record(
            OperationType.RECEIPT_CLASSIFY,
            receipt_id,
            detail=message,
            result=OperationResult.FAILED,
        )

    def _apply_actions(
        self,
        receipt: Receipt,
        rule: ClassificationRule,
        now: datetime,
    ) -> tuple[dict[str, Any], Receipt | None]:
        """Accumulate the rule's field overrides.

        Returns the overrides and, when the rule asks for an archive number
        mid-sequence, the receipt as it stood at that point (its category
        picks the bucket).
        """
        changes: dict[str, Any] = {}
        numbering_source: Receipt | None = None

        for action in rule.actions:
            if action.type == ActionType.SET_CATEGORY:
                category = member_named(ReceiptCategory, action.value)
                if category is None:
                    logger.warning("Rule '%s': unknown category %r, left unchanged", rule.name, action.value)
                else:
                    changes["category"] = category
            elif action.type == ActionType.SET_SUB_CATEGORY:
                sub_category = member_named(ExpenseSubCategory, action.value)
                if sub_category is None:
                    logger.warning("Rule '%s': unknown sub-category %r, left unchanged", rule.name, action.value)
                else:
                    changes["sub_category"] = sub_category
            elif action.type == ActionType.SET_EXPENSE_TYPE:
                changes["expense_type"] = action.value
            elif action.type == ActionType.SET_DEPARTMENT:
                changes["department"] = action.value
            elif action.type == ActionType.SET_PROJECT:
                changes["project"] = action.value
            elif action.type == ActionType.SET_TAG:
                tag = action.value.strip()
                current = receipt.model_copy(update=changes).tag_list
                if tag and tag not in current:
                    changes["tags"] = ",".join([*current, tag])
            elif action.type == ActionType.ARCHIVE:
                changes["archived"] = True
                if not receipt.archived_at:
                    changes["archived_at"] = now
            elif action.type == ActionType.GENERATE_ARCHIVE_NUMBER:
                if numbering_source is None and not receipt.archive_number:
                    numbering_source = receipt.model_copy(update=changes)

        return changes, numbering_source
