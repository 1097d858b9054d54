"""
Reimbursement models — an aggregation of receipts moving through approval.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ReimbursementStatus(str, Enum):
    """Display status of a reimbursement."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUIRED = "revision_required"
    CANCELLED = "cancelled"


class WorkflowStatus(str, Enum):
    """Approval-lifecycle status, kept in lockstep with ``ReimbursementStatus``."""

    PENDING_SUBMISSION = "pending_submission"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REVISION_REQUIRED = "revision_required"
    CANCELLED = "cancelled"


WORKFLOW_FOR_STATUS: dict[ReimbursementStatus, WorkflowStatus] = {
    ReimbursementStatus.DRAFT: WorkflowStatus.PENDING_SUBMISSION,
    ReimbursementStatus.SUBMITTED: WorkflowStatus.PENDING_APPROVAL,
    ReimbursementStatus.APPROVED: WorkflowStatus.COMPLETED,
    ReimbursementStatus.REJECTED: WorkflowStatus.REJECTED,
    ReimbursementStatus.REVISION_REQUIRED: WorkflowStatus.REVISION_REQUIRED,
    ReimbursementStatus.CANCELLED: WorkflowStatus.CANCELLED,
}


class Reimbursement(BaseModel):
    """A claim aggregating one or more receipts.

    ``total_amount`` normally equals the sum of the linked receipts' effective
    amounts but may be overridden by hand; the compliance validator reports a
    mismatch as a warning only.
    """

    id: str | None = None
    title: str
    description: str | None = None
    applicant: str
    department: str | None = None
    project: str | None = None
    budget_code: str | None = None

    total_amount: float = Field(default=0.0, ge=0.0)
    tax_amount: float = Field(default=0.0, ge=0.0)
    amount_without_tax: float = Field(default=0.0, ge=0.0)
    receipt_count: int = Field(default=0, ge=0)
    currency: str = "CNY"

    status: ReimbursementStatus = ReimbursementStatus.DRAFT
    workflow_status: WorkflowStatus = WorkflowStatus.PENDING_SUBMISSION
    revision_count: int = 0
    current_approver: str | None = None
    approval_comment: str | None = None
    rejection_reason: str | None = None
    revision_comment: str | None = None
    compliance_score: int | None = None

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def is_editable(self) -> bool:
        return self.status in (ReimbursementStatus.DRAFT, ReimbursementStatus.REVISION_REQUIRED)

    @property
    def is_pending(self) -> bool:
        return self.status == ReimbursementStatus.SUBMITTED
