"""Tests for the reimbursement workflow engine."""

from __future__ import annotations

from datetime import date

import pytest

from receiptflow.audit import OperationLog, OperationResult, OperationType
from receiptflow.config import WorkflowConfig
from receiptflow.errors import (
    AlreadyLinkedError,
    InvalidTransitionError,
    NotLinkedError,
    ReceiptNotFoundError,
    ReimbursementNotFoundError,
    ValidationFailedError,
)
from receiptflow.models.receipt import Receipt, ReceiptType
from receiptflow.models.reimbursement import ReimbursementStatus, WorkflowStatus
from receiptflow.store.memory import InMemoryReceiptStore, InMemoryReimbursementStore
from receiptflow.workflow.engine import WorkflowEngine
from receiptflow.workflow.events import StatusChangeEvent


def _make_receipt(receipt_id: str, amount: float = 100.0, **overrides) -> Receipt:
    data = {
        "id": receipt_id,
        "receipt_type": ReceiptType.TRANSPORT,
        "amount": amount,
        "merchant": f"Merchant {receipt_id}",
        "invoice_date": date.today(),
    }
    data.update(overrides)
    return Receipt(**data)


def _setup(*receipts: Receipt, config: WorkflowConfig | None = None) -> WorkflowEngine:
    return WorkflowEngine(
        InMemoryReceiptStore(list(receipts)),
        InMemoryReimbursementStore(),
        config=config,
    )


def _submitted(engine: WorkflowEngine) -> str:
    claim = engine.create("Client visit", "alice", ["r1"])
    engine.submit_for_approval(claim.id)
    return claim.id


class TestCreate:
    def test_totals_from_receipts(self) -> None:
        engine = _setup(
            _make_receipt("r1", 100.0, tax_amount=6.0),
            _make_receipt("r2", 240.0, total_amount=250.0, tax_amount=10.0),
        )
        claim = engine.create("Client visit", "alice", ["r1", "r2"])

        assert claim.status == ReimbursementStatus.DRAFT
        assert claim.workflow_status == WorkflowStatus.PENDING_SUBMISSION
        assert claim.total_amount == pytest.approx(350.0)
        assert claim.tax_amount == pytest.approx(16.0)
        assert claim.amount_without_tax == pytest.approx(334.0)
        assert claim.receipt_count == 2
        assert engine.receipts.get("r1").reimbursement_id == claim.id

    def test_duplicate_ids_counted_once(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1", "r1"])
        assert claim.receipt_count == 1

    def test_unknown_receipt_stores_nothing(self) -> None:
        engine = _setup(_make_receipt("r1"))
        with pytest.raises(ReceiptNotFoundError):
            engine.create("Client visit", "alice", ["r1", "ghost"])
        assert engine.reimbursements.list_all() == []
        assert engine.receipts.get("r1").reimbursement_id is None

    def test_linked_receipt_rejected(self) -> None:
        engine = _setup(_make_receipt("r1"))
        first = engine.create("First", "alice", ["r1"])
        with pytest.raises(AlreadyLinkedError):
            engine.create("Second", "bob", ["r1"])
        assert [r.id for r in engine.reimbursements.list_all()] == [first.id]

    def test_creation_is_logged(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        entry = engine.operation_log.entries(entity_id=claim.id)[0]
        assert entry.operation == OperationType.REIMBURSEMENT_CREATE
        assert entry.actor == "alice"

    def test_shared_empty_log_receives_entries(self) -> None:
        log = OperationLog()
        engine = WorkflowEngine(
            InMemoryReceiptStore([_make_receipt("r1")]),
            InMemoryReimbursementStore(),
            operation_log=log,
        )

        claim = engine.create("Client visit", "alice", ["r1"])

        assert engine.operation_log is log
        assert [e.entity_id for e in log.entries()] == [claim.id]

    def test_link_failure_discards_draft(self) -> None:
        class RacingStore(InMemoryReceiptStore):
            def link(self, receipt_ids: list[str], reimbursement_id: str) -> None:
                # Another claim takes the receipt after the engine's check
                raise AlreadyLinkedError(receipt_ids[0], "rb_other")

        engine = WorkflowEngine(RacingStore([_make_receipt("r1")]), InMemoryReimbursementStore())

        with pytest.raises(AlreadyLinkedError):
            engine.create("Client visit", "alice", ["r1"])

        assert engine.reimbursements.list_all() == []
        assert engine.operation_log.entries() == []


class TestReceiptLinkage:
    def test_add_receipt_grows_totals(self) -> None:
        engine = _setup(_make_receipt("r1"), _make_receipt("r2", 50.0, tax_amount=3.0))
        claim = engine.create("Client visit", "alice", ["r1"])

        updated = engine.add_receipt(claim.id, "r2")

        assert updated.receipt_count == 2
        assert updated.total_amount == pytest.approx(150.0)
        assert updated.tax_amount == pytest.approx(3.0)
        assert engine.receipts.get("r2").reimbursement_id == claim.id

    def test_add_linked_receipt_changes_nothing(self) -> None:
        engine = _setup(_make_receipt("r1"), _make_receipt("r2"))
        first = engine.create("First", "alice", ["r1"])
        second = engine.create("Second", "alice", ["r2"])
        with pytest.raises(AlreadyLinkedError):
            engine.add_receipt(second.id, "r1")
        assert engine.reimbursements.get(second.id).total_amount == pytest.approx(100.0)
        assert engine.receipts.get("r1").reimbursement_id == first.id

    def test_remove_receipt_shrinks_totals(self) -> None:
        engine = _setup(_make_receipt("r1"), _make_receipt("r2", 50.0))
        claim = engine.create("Client visit", "alice", ["r1", "r2"])

        updated = engine.remove_receipt(claim.id, "r2")

        assert updated.receipt_count == 1
        assert updated.total_amount == pytest.approx(100.0)
        assert engine.receipts.get("r2").reimbursement_id is None

    def test_remove_clamps_at_zero(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        stored = engine.reimbursements.get(claim.id)
        stored.total_amount = 40.0
        engine.reimbursements.update(stored)

        updated = engine.remove_receipt(claim.id, "r1")

        assert updated.total_amount == 0.0
        assert updated.receipt_count == 0

    def test_remove_unlinked_receipt(self) -> None:
        engine = _setup(_make_receipt("r1"), _make_receipt("r2"))
        claim = engine.create("Client visit", "alice", ["r1"])
        with pytest.raises(NotLinkedError):
            engine.remove_receipt(claim.id, "r2")

    def test_unknown_reimbursement(self) -> None:
        engine = _setup(_make_receipt("r1"))
        with pytest.raises(ReimbursementNotFoundError):
            engine.add_receipt("rb_missing", "r1")


class TestSubmission:
    def test_submit_moves_to_submitted(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])

        result = engine.submit_for_approval(claim.id)

        stored = engine.reimbursements.get(claim.id)
        assert result.is_compliant is True
        assert stored.status == ReimbursementStatus.SUBMITTED
        assert stored.workflow_status == WorkflowStatus.PENDING_APPROVAL
        assert stored.submitted_at is not None
        assert stored.compliance_score == result.score

    def test_blank_title_blocks_submission(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("", "alice", ["r1"])

        with pytest.raises(ValidationFailedError) as exc_info:
            engine.submit_for_approval(claim.id)

        assert "Reimbursement title is required" in str(exc_info.value)
        assert [i.code for i in exc_info.value.errors] == ["EMPTY_TITLE"]
        assert engine.reimbursements.get(claim.id).status == ReimbursementStatus.DRAFT

    def test_empty_claim_lists_every_blocker(self) -> None:
        engine = _setup()
        claim = engine.create("Nothing yet", "alice")
        with pytest.raises(ValidationFailedError) as exc_info:
            engine.submit_for_approval(claim.id)
        message = str(exc_info.value)
        assert "Claimed amount must be greater than 0" in message
        assert "A reimbursement needs at least one receipt" in message

    def test_blocked_submission_is_logged(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("", "alice", ["r1"])
        with pytest.raises(ValidationFailedError):
            engine.submit_for_approval(claim.id)
        entries = engine.operation_log.entries(claim.id, OperationType.REIMBURSEMENT_SUBMIT)
        assert entries[-1].result == OperationResult.FAILED

    def test_cannot_submit_twice(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)
        with pytest.raises(InvalidTransitionError, match="Cannot submit reimbursement in status 'submitted'"):
            engine.submit_for_approval(claim_id)


class TestApproval:
    def test_approve(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)

        approved = engine.approve(claim_id, approver="bob", comment="ok")

        assert approved.status == ReimbursementStatus.APPROVED
        assert approved.workflow_status == WorkflowStatus.COMPLETED
        assert approved.current_approver == "bob"
        assert approved.approval_comment == "ok"
        assert approved.approved_at is not None

    def test_reject(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)

        rejected = engine.reject(claim_id, rejector="bob", reason="No itinerary")

        assert rejected.status == ReimbursementStatus.REJECTED
        assert rejected.rejection_reason == "No itinerary"
        assert rejected.rejected_at is not None

    def test_reject_needs_reason(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)
        with pytest.raises(ValueError):
            engine.reject(claim_id, rejector="bob", reason="  ")
        assert engine.reimbursements.get(claim_id).status == ReimbursementStatus.SUBMITTED

    def test_return_for_revision(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)

        returned = engine.return_for_revision(claim_id, reviewer="bob", comment="Add the taxi receipt")

        assert returned.status == ReimbursementStatus.REVISION_REQUIRED
        assert returned.workflow_status == WorkflowStatus.REVISION_REQUIRED
        assert returned.revision_comment == "Add the taxi receipt"

    @pytest.mark.parametrize("operation", ["approve", "reject", "return_for_revision"])
    def test_review_requires_submitted(self, operation: str) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        with pytest.raises(InvalidTransitionError):
            getattr(engine, operation)(claim.id, "bob", "because")
        assert engine.reimbursements.get(claim.id).status == ReimbursementStatus.DRAFT


class TestRevision:
    def _returned(self, engine: WorkflowEngine) -> str:
        claim_id = _submitted(engine)
        engine.return_for_revision(claim_id, reviewer="bob")
        return claim_id

    def test_resubmit_counts_revisions(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = self._returned(engine)

        resubmitted = engine.resubmit(claim_id)

        assert resubmitted.status == ReimbursementStatus.SUBMITTED
        assert resubmitted.revision_count == 1

    def test_resubmit_skips_compliance_by_default(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = self._returned(engine)
        engine.remove_receipt(claim_id, "r1")

        assert engine.resubmit(claim_id).status == ReimbursementStatus.SUBMITTED

    def test_resubmit_revalidates_when_configured(self) -> None:
        engine = _setup(_make_receipt("r1"), config=WorkflowConfig(revalidate_on_resubmit=True))
        claim_id = self._returned(engine)
        engine.remove_receipt(claim_id, "r1")

        with pytest.raises(ValidationFailedError):
            engine.resubmit(claim_id)
        stored = engine.reimbursements.get(claim_id)
        assert stored.status == ReimbursementStatus.REVISION_REQUIRED
        assert stored.revision_count == 0

    def test_submit_allowed_from_revision(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = self._returned(engine)
        engine.submit_for_approval(claim_id)
        assert engine.reimbursements.get(claim_id).status == ReimbursementStatus.SUBMITTED

    def test_resubmit_requires_revision(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        with pytest.raises(InvalidTransitionError):
            engine.resubmit(claim.id)


class TestCancel:
    def test_cancel_draft(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        cancelled = engine.cancel(claim.id)
        assert cancelled.status == ReimbursementStatus.CANCELLED
        assert cancelled.cancelled_at is not None

    def test_cancel_revision(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)
        engine.return_for_revision(claim_id, reviewer="bob")
        assert engine.cancel(claim_id).status == ReimbursementStatus.CANCELLED

    def test_cannot_cancel_submitted(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim_id = _submitted(engine)
        with pytest.raises(InvalidTransitionError):
            engine.cancel(claim_id)

    def test_cancelled_is_terminal(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("Client visit", "alice", ["r1"])
        engine.cancel(claim.id)
        with pytest.raises(InvalidTransitionError):
            engine.submit_for_approval(claim.id)


class TestNotifications:
    def test_events_published_per_transition(self) -> None:
        engine = _setup(_make_receipt("r1"))
        received: list[StatusChangeEvent] = []
        engine.notifier.subscribe(received.append)

        claim_id = _submitted(engine)
        engine.approve(claim_id, approver="bob", comment="fine")

        assert [e.status for e in received] == [ReimbursementStatus.SUBMITTED, ReimbursementStatus.APPROVED]
        assert received[1].previous_status == ReimbursementStatus.SUBMITTED
        assert received[1].actor == "bob"
        assert received[1].summary.endswith("(by bob): fine")

    def test_failing_listener_does_not_undo_transition(self) -> None:
        engine = _setup(_make_receipt("r1"))
        received: list[StatusChangeEvent] = []

        def broken(event: StatusChangeEvent) -> None:
            raise RuntimeError("mail server down")

        engine.notifier.subscribe(broken)
        engine.notifier.subscribe(received.append)

        claim_id = _submitted(engine)

        assert engine.reimbursements.get(claim_id).status == ReimbursementStatus.SUBMITTED
        assert len(received) == 1

    def test_events_queue_drains(self) -> None:
        engine = _setup(_make_receipt("r1"))
        _submitted(engine)
        assert len(engine.notifier.events) == 1
        assert len(engine.notifier.drain()) == 1
        assert engine.notifier.events == []


class TestQueries:
    def test_pending_and_statistics(self) -> None:
        engine = _setup(_make_receipt("r1"), _make_receipt("r2", 50.0), _make_receipt("r3", 30.0))
        pending = engine.create("Pending", "alice", ["r1"])
        engine.submit_for_approval(pending.id)
        approved = engine.create("Approved", "bob", ["r2"])
        engine.submit_for_approval(approved.id)
        engine.approve(approved.id, approver="carol")
        engine.create("Draft", "alice", ["r3"])

        assert [r.id for r in engine.pending_approvals()] == [pending.id]
        assert len(engine.reimbursements_for("alice")) == 2

        stats = engine.statistics()
        assert stats.total == 3
        assert stats.pending == 1
        assert stats.approved == 1
        assert stats.rejected == 0
        assert stats.total_amount == pytest.approx(180.0)
        assert stats.pending_amount == pytest.approx(100.0)

    def test_validate_changes_nothing(self) -> None:
        engine = _setup(_make_receipt("r1"))
        claim = engine.create("", "alice", ["r1"])
        result = engine.validate(claim.id)
        assert result.is_compliant is False
        assert engine.reimbursements.get(claim.id).status == ReimbursementStatus.DRAFT
