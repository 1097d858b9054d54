"""
In-memory repositories — thread-safe, copy-on-read storage.

Used by the CLI, the tests and any caller that keeps receipts in process.
Records are copied on the way in and out, so a caller mutating a returned
model never changes stored state without an explicit ``update``.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Any

from receiptflow.errors import (
    AlreadyLinkedError,
    NotLinkedError,
    ReceiptNotFoundError,
    ReimbursementNotFoundError,
)
from receiptflow.models.receipt import CLASSIFICATION_FIELDS, Receipt
from receiptflow.models.reimbursement import Reimbursement
from receiptflow.store.base import ReceiptRepository, ReimbursementRepository

logger = logging.getLogger("receiptflow.store.memory")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class InMemoryReceiptStore(ReceiptRepository):
    """Receipts kept in a dict, guarded by one re-entrant lock."""

    def __init__(self, receipts: list[Receipt] | None = None) -> None:
        self._lock = threading.RLock()
        self._receipts: dict[str, Receipt] = {}
        for receipt in receipts or []:
            self.add(receipt)

    def __len__(self) -> int:
        return len(self._receipts)

    def add(self, receipt: Receipt) -> Receipt:
        with self._lock:
            stored = receipt.model_copy(deep=True)
            if stored.id is None:
                stored.id = _new_id("rcpt")
            elif stored.id in self._receipts:
                raise ValueError(f"Receipt already exists: {stored.id}")
            self._receipts[stored.id] = stored
            return stored.model_copy(deep=True)

    def get(self, receipt_id: str) -> Receipt | None:
        with self._lock:
            receipt = self._receipts.get(receipt_id)
            return receipt.model_copy(deep=True) if receipt else None

    def update(self, receipt: Receipt) -> None:
        with self._lock:
            if receipt.id not in self._receipts:
                raise ReceiptNotFoundError(receipt.id)
            self._receipts[receipt.id] = receipt.model_copy(deep=True)

    def apply_classification(self, receipt_id: str, changes: dict[str, Any]) -> Receipt:
        unknown = set(changes) - CLASSIFICATION_FIELDS
        if unknown:
            raise ValueError(f"Not a classification field: {', '.join(sorted(unknown))}")
        with self._lock:
            current = self._receipts.get(receipt_id)
            if current is None:
                raise ReceiptNotFoundError(receipt_id)
            update = dict(changes)
            if current.archive_number:
                update.pop("archive_number", None)
            stored = current.model_copy(update=update, deep=True)
            self._receipts[receipt_id] = stored
            return stored.model_copy(deep=True)

    def list_all(self) -> list[Receipt]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._receipts.values()]

    def archive_numbers(self, prefix: str) -> list[str]:
        with self._lock:
            return [
                r.archive_number
                for r in self._receipts.values()
                if r.archive_number and r.archive_number.startswith(prefix)
            ]

    def link(self, receipt_ids: list[str], reimbursement_id: str) -> None:
        with self._lock:
            for receipt_id in receipt_ids:
                receipt = self._receipts.get(receipt_id)
                if receipt is None:
                    raise ReceiptNotFoundError(receipt_id)
                if receipt.reimbursement_id is not None:
                    raise AlreadyLinkedError(receipt_id, receipt.reimbursement_id)
            now = datetime.now()
            for receipt_id in receipt_ids:
                receipt = self._receipts[receipt_id]
                receipt.reimbursement_id = reimbursement_id
                receipt.updated_at = now
        logger.debug("Linked %d receipt(s) to %s", len(receipt_ids), reimbursement_id)

    def unlink(self, receipt_ids: list[str], reimbursement_id: str) -> None:
        with self._lock:
            for receipt_id in receipt_ids:
                receipt = self._receipts.get(receipt_id)
                if receipt is None:
                    raise ReceiptNotFoundError(receipt_id)
                if receipt.reimbursement_id != reimbursement_id:
                    raise NotLinkedError(receipt_id, reimbursement_id)
            now = datetime.now()
            for receipt_id in receipt_ids:
                receipt = self._receipts[receipt_id]
                receipt.reimbursement_id = None
                receipt.updated_at = now
        logger.debug("Unlinked %d receipt(s) from %s", len(receipt_ids), reimbursement_id)


class InMemoryReimbursementStore(ReimbursementRepository):
    """Reimbursements kept in insertion order."""

    def __init__(self, reimbursements: list[Reimbursement] | None = None) -> None:
        self._lock = threading.RLock()
        self._reimbursements: dict[str, Reimbursement] = {}
        for reimbursement in reimbursements or []:
            self.add(reimbursement)

    def __len__(self) -> int:
        return len(self._reimbursements)

    def add(self, reimbursement: Reimbursement) -> Reimbursement:
        with self._lock:
            stored = reimbursement.model_copy(deep=True)
            if stored.id is None:
                stored.id = _new_id("rb")
            elif stored.id in self._reimbursements:
                raise ValueError(f"Reimbursement already exists: {stored.id}")
            self._reimbursements[stored.id] = stored
            return stored.model_copy(deep=True)

    def get(self, reimbursement_id: str) -> Reimbursement | None:
        with self._lock:
            reimbursement = self._reimbursements.get(reimbursement_id)
            return reimbursement.model_copy(deep=True) if reimbursement else None

    def update(self, reimbursement: Reimbursement) -> None:
        with self._lock:
            if reimbursement.id not in self._reimbursements:
                raise ReimbursementNotFoundError(reimbursement.id)
            self._reimbursements[reimbursement.id] = reimbursement.model_copy(deep=True)

    def list_all(self) -> list[Reimbursement]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._reimbursements.values()]

    def delete(self, reimbursement_id: str) -> None:
        with self._lock:
            self._reimbursements.pop(reimbursement_id, None)
