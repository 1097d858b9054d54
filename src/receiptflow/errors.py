"""
ReceiptFlow errors — recoverable domain failures surfaced to callers.

None of these are fatal to the process. The not-found and rule errors also
subclass ``ValueError`` so callers that only know the builtin keep working.
"""

from __future__ import annotations

from typing import Any

from receiptflow.compliance.validator import Severity, ValidationIssue


class ReceiptFlowError(Exception):
    """Base class for all ReceiptFlow domain errors."""


class NotFoundError(ReceiptFlowError, ValueError):
    """A referenced receipt, reimbursement or rule does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: Any) -> None:
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class ReceiptNotFoundError(NotFoundError):
    entity = "Receipt"


class ReimbursementNotFoundError(NotFoundError):
    entity = "Reimbursement"


class RuleNotFoundError(NotFoundError):
    entity = "Rule"


class ValidationFailedError(ReceiptFlowError):
    """Submission blocked by ERROR-severity compliance issues.

    ``issues`` holds every finding of the run; the message joins the
    blocking ones.
    """

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = list(issues)
        super().__init__("\n".join(issue.message for issue in self.errors))

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]


class InvalidTransitionError(ReceiptFlowError):
    """A workflow operation was attempted from an incompatible state."""

    def __init__(self, operation: str, current: Any) -> None:
        self.operation = operation
        self.current = current
        state = getattr(current, "value", current)
        super().__init__(f"Cannot {operation} reimbursement in status '{state}'")


class AlreadyLinkedError(ReceiptFlowError):
    """The receipt already belongs to a reimbursement."""

    def __init__(self, receipt_id: str, reimbursement_id: str) -> None:
        self.receipt_id = receipt_id
        self.reimbursement_id = reimbursement_id
        super().__init__(
            f"Receipt {receipt_id} already linked to reimbursement {reimbursement_id}"
        )


class NotLinkedError(ReceiptFlowError):
    """The receipt is not linked to the given reimbursement."""

    def __init__(self, receipt_id: str, reimbursement_id: str) -> None:
        self.receipt_id = receipt_id
        self.reimbursement_id = reimbursement_id
        super().__init__(
            f"Receipt {receipt_id} not linked to reimbursement {reimbursement_id}"
        )


class InvalidRuleError(ReceiptFlowError, ValueError):
    """A classification rule carries malformed literals."""

    def __init__(self, rule_name: str, problems: list[str]) -> None:
        self.rule_name = rule_name
        self.problems = list(problems)
        super().__init__(f"Invalid rule '{rule_name}': " + "; ".join(self.problems))
