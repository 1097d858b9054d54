"""
Repository interfaces — the persistence seam of ReceiptFlow.

The engine never talks to a database directly. Storage collaborators
(SQLite on a device, a server-side database, the in-memory store used in
tests) implement these interfaces and the classifier and workflow engine
consume them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from receiptflow.errors import ReceiptNotFoundError, ReimbursementNotFoundError

if TYPE_CHECKING:
    from receiptflow.models.receipt import Receipt
    from receiptflow.models.reimbursement import Reimbursement, ReimbursementStatus


class ReceiptRepository(ABC):
    """Storage for receipts.

    To back ReceiptFlow with a real database, subclass this and implement
    the abstract methods. ``link`` and ``unlink`` must be all-or-nothing:
    either every receipt in the call changes or none does.
    """

    @abstractmethod
    def add(self, receipt: Receipt) -> Receipt:
        """Insert a receipt, assigning an id if it has none."""
        ...

    @abstractmethod
    def get(self, receipt_id: str) -> Receipt | None:
        ...

    @abstractmethod
    def update(self, receipt: Receipt) -> None:
        ...

    @abstractmethod
    def apply_classification(self, receipt_id: str, changes: dict[str, Any]) -> Receipt:
        """Write classifier-owned fields onto the stored receipt atomically.

        Only names in ``CLASSIFICATION_FIELDS`` may appear in ``changes``;
        every other field keeps its stored value, so a link made while the
        receipt was being classified survives. An archive number already
        stored is never replaced. Returns the receipt as stored.
        """
        ...

    @abstractmethod
    def list_all(self) -> list[Receipt]:
        ...

    @abstractmethod
    def archive_numbers(self, prefix: str) -> list[str]:
        """All issued archive numbers starting with ``prefix``."""
        ...

    @abstractmethod
    def link(self, receipt_ids: list[str], reimbursement_id: str) -> None:
        """Attach unlinked receipts to a reimbursement."""
        ...

    @abstractmethod
    def unlink(self, receipt_ids: list[str], reimbursement_id: str) -> None:
        """Detach receipts currently linked to ``reimbursement_id``."""
        ...

    def require(self, receipt_id: str) -> Receipt:
        receipt = self.get(receipt_id)
        if receipt is None:
            raise ReceiptNotFoundError(receipt_id)
        return receipt

    def unprocessed(self) -> list[Receipt]:
        return [r for r in self.list_all() if not r.processed]

    def by_reimbursement(self, reimbursement_id: str) -> list[Receipt]:
        return [r for r in self.list_all() if r.reimbursement_id == reimbursement_id]


class ReimbursementRepository(ABC):
    """Storage for reimbursements."""

    @abstractmethod
    def add(self, reimbursement: Reimbursement) -> Reimbursement:
        ...

    @abstractmethod
    def get(self, reimbursement_id: str) -> Reimbursement | None:
        ...

    @abstractmethod
    def update(self, reimbursement: Reimbursement) -> None:
        ...

    @abstractmethod
    def list_all(self) -> list[Reimbursement]:
        ...

    @abstractmethod
    def delete(self, reimbursement_id: str) -> None:
        """Remove a reimbursement; a missing id is not an error."""
        ...

    def require(self, reimbursement_id: str) -> Reimbursement:
        reimbursement = self.get(reimbursement_id)
        if reimbursement is None:
            raise ReimbursementNotFoundError(reimbursement_id)
        return reimbursement

    def by_status(self, status: ReimbursementStatus) -> list[Reimbursement]:
        return [r for r in self.list_all() if r.status == status]

    def by_applicant(self, applicant: str) -> list[Reimbursement]:
        return [r for r in self.list_all() if r.applicant == applicant]
