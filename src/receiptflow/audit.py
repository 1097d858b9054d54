"""
Operation log — append-only record of what the engine did and for whom.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class OperationType(str, Enum):
    """Operations recorded in the log."""

    RECEIPT_CLASSIFY = "receipt_classify"
    REIMBURSEMENT_CREATE = "reimbursement_create"
    REIMBURSEMENT_SUBMIT = "reimbursement_submit"
    REIMBURSEMENT_APPROVE = "reimbursement_approve"
    REIMBURSEMENT_REJECT = "reimbursement_reject"
    REIMBURSEMENT_RETURN = "reimbursement_return"
    REIMBURSEMENT_RESUBMIT = "reimbursement_resubmit"
    REIMBURSEMENT_CANCEL = "reimbursement_cancel"
    RECEIPT_LINK = "receipt_link"
    RECEIPT_UNLINK = "receipt_unlink"


class OperationResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationLogEntry:
    """One logged operation."""

    operation: OperationType
    entity_id: str
    actor: str | None = None
    detail: str = ""
    result: OperationResult = OperationResult.SUCCESS
    timestamp: datetime = field(default_factory=datetime.now)


class OperationLog:
    """Thread-safe, append-only list of ``OperationLogEntry``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[OperationLogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        operation: OperationType,
        entity_id: str,
        actor: str | None = None,
        detail: str = "",
        result: OperationResult = OperationResult.SUCCESS,
    ) -> OperationLogEntry:
        entry = OperationLogEntry(
            operation=operation,
            entity_id=entity_id,
            actor=actor,
            detail=detail,
            result=result,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(
        self,
        entity_id: str | None = None,
        operation: OperationType | None = None,
    ) -> list[OperationLogEntry]:
        """Entries in recording order, optionally filtered."""
        with self._lock:
            found = list(self._entries)
        if entity_id is not None:
            found = [e for e in found if e.entity_id == entity_id]
        if operation is not None:
            found = [e for e in found if e.operation == operation]
        return found
