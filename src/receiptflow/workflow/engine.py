"""
Workflow Engine — the reimbursement approval state machine.

    DRAFT ──submit──▶ SUBMITTED ──approve──▶ APPROVED
      │                 │  │
      │                 │  └──reject──▶ REJECTED
      │                 └──return──▶ REVISION_REQUIRED ──resubmit──▶ SUBMITTED
      └──cancel──▶ CANCELLED ◀──cancel── REVISION_REQUIRED

Submission is gated by the compliance validator: any ERROR-severity issue
blocks it and the reimbursement stays where it was. Resubmitting a revision
skips the gate unless ``WorkflowConfig.revalidate_on_resubmit`` is set.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from receiptflow.audit import OperationLog, OperationResult, OperationType
from receiptflow.compliance.validator import ComplianceValidator, ValidationResult
from receiptflow.config import WorkflowConfig
from receiptflow.errors import (
    AlreadyLinkedError,
    InvalidTransitionError,
    ReceiptFlowError,
    ValidationFailedError,
)
from receiptflow.models.receipt import Receipt
from receiptflow.models.reimbursement import (
    WORKFLOW_FOR_STATUS,
    Reimbursement,
    ReimbursementStatus,
)
from receiptflow.store.base import ReceiptRepository, ReimbursementRepository
from receiptflow.workflow.events import StatusChangeEvent, StatusNotifier

logger = logging.getLogger("receiptflow.workflow.engine")

_S = ReimbursementStatus

# Operation -> states it may start from
ALLOWED_TRANSITIONS: dict[str, frozenset[ReimbursementStatus]] = {
    "submit": frozenset({_S.DRAFT, _S.REVISION_REQUIRED}),
    "approve": frozenset({_S.SUBMITTED}),
    "reject": frozenset({_S.SUBMITTED}),
    "return": frozenset({_S.SUBMITTED}),
    "resubmit": frozenset({_S.REVISION_REQUIRED}),
    "cancel": frozenset({_S.DRAFT, _S.REVISION_REQUIRED}),
}


@dataclass
class ReimbursementStatistics:
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total_amount: float = 0.0
    pending_amount: float = 0.0


def _totals(receipts: list[Receipt]) -> tuple[float, float, float]:
    total = sum(r.effective_amount for r in receipts)
    tax = sum(r.tax_amount or 0.0 for r in receipts)
    return total, tax, max(0.0, total - tax)


class WorkflowEngine:
    """
    Drives reimbursements through their lifecycle.

    All operations take the reimbursement id, re-read the stored record
    under the engine lock, check the transition, and commit one update.
    An invalid transition raises ``InvalidTransitionError`` and changes
    nothing.

    Example usage:
        engine = WorkflowEngine(receipts, reimbursements)
        claim = engine.create("March travel", "alice", ["rcpt_1", "rcpt_2"])
        engine.submit_for_approval(claim.id)
        engine.approve(claim.id, approver="bob", comment="ok")
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        reimbursements: ReimbursementRepository,
        validator: ComplianceValidator | None = None,
        config: WorkflowConfig | None = None,
        notifier: StatusNotifier | None = None,
        operation_log: OperationLog | None = None,
    ) -> None:
        self.receipts = receipts
        self.reimbursements = reimbursements
        self.validator = validator if validator is not None else ComplianceValidator()
        self.config = config if config is not None else WorkflowConfig()
        self.notifier = notifier if notifier is not None else StatusNotifier()
        self.operation_log = operation_log if operation_log is not None else OperationLog()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Creation and linkage
    # ------------------------------------------------------------------

    def create(
        self,
        title: str,
        applicant: str,
        receipt_ids: list[str] | None = None,
        description: str | None = None,
        department: str | None = None,
        project: str | None = None,
        budget_code: str | None = None,
        currency: str = "CNY",
    ) -> Reimbursement:
        """Create a DRAFT reimbursement and link the given receipts to it.

        Totals are computed from the receipts at creation time. Fails with
        ``ReceiptNotFoundError`` or ``AlreadyLinkedError`` and leaves no
        reimbursement behind, even when a receipt is linked elsewhere
        between the check and the link.
        """
        ids = list(dict.fromkeys(receipt_ids or []))
        with self._lock:
            receipts = [self.receipts.require(receipt_id) for receipt_id in ids]
            for receipt in receipts:
                if receipt.is_linked:
                    raise AlreadyLinkedError(receipt.id, receipt.reimbursement_id)

            total, tax, without_tax = _totals(receipts)
            reimbursement = self.reimbursements.add(Reimbursement(
                title=title,
                description=description,
                applicant=applicant,
                department=department,
                project=project,
                budget_code=budget_code,
                total_amount=total,
                tax_amount=tax,
                amount_without_tax=without_tax,
                receipt_count=len(receipts),
                currency=currency,
            ))
            if ids:
                try:
                    self.receipts.link(ids, reimbursement.id)
                except ReceiptFlowError:
                    self.reimbursements.delete(reimbursement.id)
                    logger.warning("Linking receipts to %s failed, draft discarded", reimbursement.id)
                    raise

        logger.info(
            "Created reimbursement %s '%s' for %s with %d receipts (%.2f %s)",
            reimbursement.id, title, applicant, len(ids), total, currency,
        )
        self.operation_log.record(
            OperationType.REIMBURSEMENT_CREATE, reimbursement.id, actor=applicant, detail=title,
        )
        return reimbursement

    def add_receipt(self, reimbursement_id: str, receipt_id: str) -> Reimbursement:
        """Link one more receipt and grow the totals by its amounts."""
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            receipt = self.receipts.require(receipt_id)
            self.receipts.link([receipt_id], reimbursement_id)

            reimbursement.receipt_count += 1
            reimbursement.total_amount += receipt.effective_amount
            reimbursement.tax_amount += receipt.tax_amount or 0.0
            reimbursement.amount_without_tax = max(0.0, reimbursement.total_amount - reimbursement.tax_amount)
            reimbursement.updated_at = datetime.now()
            self.reimbursements.update(reimbursement)

        logger.info("Receipt %s added to reimbursement %s", receipt_id, reimbursement_id)
        self.operation_log.record(OperationType.RECEIPT_LINK, reimbursement_id, detail=receipt_id)
        return reimbursement

    def remove_receipt(self, reimbursement_id: str, receipt_id: str) -> Reimbursement:
        """Unlink a receipt; totals and count never drop below zero."""
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            receipt = self.receipts.require(receipt_id)
            self.receipts.unlink([receipt_id], reimbursement_id)

            reimbursement.receipt_count = max(0, reimbursement.receipt_count - 1)
            reimbursement.total_amount = max(0.0, reimbursement.total_amount - receipt.effective_amount)
            reimbursement.tax_amount = max(0.0, reimbursement.tax_amount - (receipt.tax_amount or 0.0))
            reimbursement.amount_without_tax = max(0.0, reimbursement.total_amount - reimbursement.tax_amount)
            reimbursement.updated_at = datetime.now()
            self.reimbursements.update(reimbursement)

        logger.info("Receipt %s removed from reimbursement %s", receipt_id, reimbursement_id)
        self.operation_log.record(OperationType.RECEIPT_UNLINK, reimbursement_id, detail=receipt_id)
        return reimbursement

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit_for_approval(self, reimbursement_id: str, actor: str | None = None) -> ValidationResult:
        """
        Run the compliance gate and move DRAFT/REVISION_REQUIRED to SUBMITTED.

        Returns:
            The ValidationResult of the gate (warnings included).

        Raises:
            ValidationFailedError: The gate found ERROR-severity issues.
            InvalidTransitionError: The reimbursement is not submittable.
        """
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("submit", reimbursement)
            result = self._gate(reimbursement, OperationType.REIMBURSEMENT_SUBMIT, actor)

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.submitted_at = now
            reimbursement.compliance_score = result.score
            self._commit(reimbursement, _S.SUBMITTED, now)

        self._after_transition(
            OperationType.REIMBURSEMENT_SUBMIT, reimbursement, previous, actor or reimbursement.applicant,
        )
        return result

    def approve(self, reimbursement_id: str, approver: str, comment: str | None = None) -> Reimbursement:
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("approve", reimbursement)

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.current_approver = approver
            reimbursement.approval_comment = comment
            reimbursement.approved_at = now
            self._commit(reimbursement, _S.APPROVED, now)

        self._after_transition(OperationType.REIMBURSEMENT_APPROVE, reimbursement, previous, approver, comment)
        return reimbursement

    def reject(self, reimbursement_id: str, rejector: str, reason: str) -> Reimbursement:
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("reject", reimbursement)
            if not reason or not reason.strip():
                raise ValueError("A rejection reason is required")

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.current_approver = rejector
            reimbursement.rejection_reason = reason
            reimbursement.rejected_at = now
            self._commit(reimbursement, _S.REJECTED, now)

        self._after_transition(OperationType.REIMBURSEMENT_REJECT, reimbursement, previous, rejector, reason)
        return reimbursement

    def return_for_revision(self, reimbursement_id: str, reviewer: str, comment: str | None = None) -> Reimbursement:
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("return", reimbursement)

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.current_approver = reviewer
            reimbursement.revision_comment = comment
            self._commit(reimbursement, _S.REVISION_REQUIRED, now)

        self._after_transition(OperationType.REIMBURSEMENT_RETURN, reimbursement, previous, reviewer, comment)
        return reimbursement

    def resubmit(self, reimbursement_id: str, actor: str | None = None) -> Reimbursement:
        """Send a revised reimbursement back for approval.

        The compliance gate only runs here when the workflow config asks for
        it; by default a revision goes straight back to SUBMITTED.
        """
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("resubmit", reimbursement)
            if self.config.revalidate_on_resubmit:
                result = self._gate(reimbursement, OperationType.REIMBURSEMENT_RESUBMIT, actor)
                reimbursement.compliance_score = result.score

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.revision_count += 1
            reimbursement.submitted_at = now
            self._commit(reimbursement, _S.SUBMITTED, now)

        self._after_transition(
            OperationType.REIMBURSEMENT_RESUBMIT, reimbursement, previous, actor or reimbursement.applicant,
        )
        return reimbursement

    def cancel(self, reimbursement_id: str, actor: str | None = None) -> Reimbursement:
        with self._lock:
            reimbursement = self.reimbursements.require(reimbursement_id)
            self._check("cancel", reimbursement)

            previous = reimbursement.status
            now = datetime.now()
            reimbursement.cancelled_at = now
            self._commit(reimbursement, _S.CANCELLED, now)

        self._after_transition(
            OperationType.REIMBURSEMENT_CANCEL, reimbursement, previous, actor or reimbursement.applicant,
        )
        return reimbursement

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate(self, reimbursement_id: str) -> ValidationResult:
        """Run the compliance checks without changing any state."""
        reimbursement = self.reimbursements.require(reimbursement_id)
        return self.validator.validate(reimbursement, self.receipts.by_reimbursement(reimbursement_id))

    def pending_approvals(self) -> list[Reimbursement]:
        return self.reimbursements.by_status(_S.SUBMITTED)

    def reimbursements_for(self, applicant: str) -> list[Reimbursement]:
        return self.reimbursements.by_applicant(applicant)

    def statistics(self) -> ReimbursementStatistics:
        stats = ReimbursementStatistics()
        for reimbursement in self.reimbursements.list_all():
            stats.total += 1
            stats.total_amount += reimbursement.total_amount
            if reimbursement.status == _S.SUBMITTED:
                stats.pending += 1
                stats.pending_amount += reimbursement.total_amount
            elif reimbursement.status == _S.APPROVED:
                stats.approved += 1
            elif reimbursement.status == _S.REJECTED:
                stats.rejected += 1
        return stats

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, operation: str, reimbursement: Reimbursement) -> None:
        if reimbursement.status not in ALLOWED_TRANSITIONS[operation]:
            logger.warning(
                "Rejected %s of reimbursement %s in status %s",
                operation, reimbursement.id, reimbursement.status.value,
            )
            raise InvalidTransitionError(operation, reimbursement.status)

    def _gate(
        self,
        reimbursement: Reimbursement,
        operation: OperationType,
        actor: str | None,
    ) -> ValidationResult:
        receipts = self.receipts.by_reimbursement(reimbursement.id)
        result = self.validator.validate(reimbursement, receipts)
        if not result.is_compliant:
            error = ValidationFailedError(result.issues)
            logger.info("Submission of %s blocked: %s", reimbursement.id, str(error).replace("\n", "; "))
            self.operation_log.record(
                operation, reimbursement.id, actor=actor, detail=str(error), result=OperationResult.FAILED,
            )
            raise error
        return result

    def _commit(self, reimbursement: Reimbursement, status: ReimbursementStatus, now: datetime) -> None:
        reimbursement.status = status
        reimbursement.workflow_status = WORKFLOW_FOR_STATUS[status]
        reimbursement.updated_at = now
        self.reimbursements.update(reimbursement)

    def _after_transition(
        self,
        operation: OperationType,
        reimbursement: Reimbursement,
        previous: ReimbursementStatus,
        actor: str | None,
        comment: str | None = None,
    ) -> None:
        logger.info(
            "Reimbursement %s: %s -> %s (by %s)",
            reimbursement.id, previous.value, reimbursement.status.value, actor,
        )
        self.operation_log.record(operation, reimbursement.id, actor=actor, detail=comment or "")
        self.notifier.publish(StatusChangeEvent(
            reimbursement_id=reimbursement.id,
            status=reimbursement.status,
            previous_status=previous,
            actor=actor,
            comment=comment,
        ))
