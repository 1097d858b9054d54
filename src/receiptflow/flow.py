"""
ReceiptFlow — main orchestrator.

Wires configuration, storage, the classifier, the compliance validator and
the workflow engine into one object, so callers do not have to assemble
the collaborators by hand.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from receiptflow.audit import OperationLog
from receiptflow.classification.archive import ArchiveNumberGenerator
from receiptflow.classification.classifier import BatchClassificationResult, ClassificationResult, Classifier
from receiptflow.classification.rule_store import RuleStore, create_default_rule_store
from receiptflow.compliance.validator import ComplianceValidator
from receiptflow.config import ReceiptFlowConfig
from receiptflow.models.receipt import Receipt
from receiptflow.models.reimbursement import Reimbursement
from receiptflow.store.base import ReceiptRepository, ReimbursementRepository
from receiptflow.store.memory import InMemoryReceiptStore, InMemoryReimbursementStore
from receiptflow.workflow.engine import WorkflowEngine
from receiptflow.workflow.events import StatusNotifier
from receiptflow.workspace import Workspace, load_rules

logger = logging.getLogger("receiptflow")


@dataclass
class ReceiptFlow:
    """Top-level entry point for ReceiptFlow.

    Usage::

        from receiptflow import ReceiptFlow

        flow = ReceiptFlow.from_config("receiptflow.yaml")
        receipt = flow.add_receipt(Receipt(receipt_type="dining", amount=120))
        flow.classify(receipt.id)
        claim = flow.create_reimbursement("March meals", "alice", [receipt.id])
        flow.workflow.submit_for_approval(claim.id)

    Storage defaults to the in-memory repositories; pass your own
    ``ReceiptRepository``/``ReimbursementRepository`` to persist elsewhere.
    """

    config: ReceiptFlowConfig = field(default_factory=ReceiptFlowConfig)
    receipts: ReceiptRepository = field(default_factory=InMemoryReceiptStore)
    reimbursements: ReimbursementRepository = field(default_factory=InMemoryReimbursementStore)
    rules: RuleStore | None = None
    operation_log: OperationLog = field(default_factory=OperationLog)
    notifier: StatusNotifier = field(default_factory=StatusNotifier)

    archive: ArchiveNumberGenerator = field(init=False, repr=False)
    classifier: Classifier = field(init=False, repr=False)
    validator: ComplianceValidator = field(init=False, repr=False)
    workflow: WorkflowEngine = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._setup()

    @classmethod
    def from_config(cls, config_path: str | None = None, **overrides: Any) -> ReceiptFlow:
        """Create a ReceiptFlow from a config file or keyword arguments."""
        return cls(config=ReceiptFlowConfig.load(config_path, **overrides))

    @classmethod
    def from_workspace(cls, workspace: Workspace, config: ReceiptFlowConfig | None = None) -> ReceiptFlow:
        """Create a ReceiptFlow pre-loaded with a workspace's records."""
        flow = cls(
            config=config or ReceiptFlowConfig(),
            receipts=InMemoryReceiptStore(workspace.receipts),
            reimbursements=InMemoryReimbursementStore(workspace.reimbursements),
        )
        for rule in workspace.rules:
            flow.rules.add(rule)
        return flow

    def _setup(self) -> None:
        classification = self.config.classification
        if self.rules is None:
            if classification.use_default_rules:
                self.rules = create_default_rule_store(strict=classification.strict_rules)
            else:
                self.rules = RuleStore(strict=classification.strict_rules)
            if classification.rules_file:
                for rule in load_rules(classification.rules_file):
                    self.rules.add(rule)

        self.archive = ArchiveNumberGenerator(self.receipts.archive_numbers)
        self.classifier = Classifier(
            self.receipts,
            self.rules,
            archive=self.archive,
            operation_log=self.operation_log,
        )
        self.validator = ComplianceValidator.from_config(self.config.compliance)
        self.workflow = WorkflowEngine(
            self.receipts,
            self.reimbursements,
            validator=self.validator,
            config=self.config.workflow,
            notifier=self.notifier,
            operation_log=self.operation_log,
        )
        logger.info("ReceiptFlow initialized with %d rules", len(self.rules))

    def add_receipt(self, receipt: Receipt) -> Receipt:
        """Store a receipt handed over by the OCR step."""
        return self.receipts.add(receipt)

    def classify(self, receipt_id: str) -> ClassificationResult:
        return self.classifier.classify(receipt_id)

    def classify_all(self) -> BatchClassificationResult:
        return self.classifier.auto_classify_all()

    def create_reimbursement(
        self,
        title: str,
        applicant: str,
        receipt_ids: list[str] | None = None,
        **details: Any,
    ) -> Reimbursement:
        details.setdefault("currency", self.config.currency)
        return self.workflow.create(title, applicant, receipt_ids, **details)

    def snapshot(self) -> Workspace:
        """Current records as a Workspace, ready for ``save_workspace``."""
        return Workspace(
            receipts=self.receipts.list_all(),
            rules=self.rules.all_rules(),
            reimbursements=self.reimbursements.list_all(),
        )
