"""Workflow package — the reimbursement approval state machine."""
from receiptflow.workflow.engine import ALLOWED_TRANSITIONS, ReimbursementStatistics, WorkflowEngine
from receiptflow.workflow.events import StatusChangeEvent, StatusNotifier

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ReimbursementStatistics",
    "StatusChangeEvent",
    "StatusNotifier",
    "WorkflowEngine",
]
