"""Data models — receipts, classification rules and reimbursements."""
from receiptflow.models.receipt import (
    CATEGORY_CODES,
    CLASSIFICATION_FIELDS,
    ExpenseSubCategory,
    OcrStatus,
    Receipt,
    ReceiptCategory,
    ReceiptType,
    ValidationStatus,
)
from receiptflow.models.reimbursement import Reimbursement, ReimbursementStatus, WorkflowStatus
from receiptflow.models.rules import (
    ActionType,
    ClassificationAction,
    ClassificationCondition,
    ClassificationRule,
    ConditionField,
    ConditionOperator,
)

__all__ = [
    "CATEGORY_CODES",
    "CLASSIFICATION_FIELDS",
    "ActionType",
    "ClassificationAction",
    "ClassificationCondition",
    "ClassificationRule",
    "ConditionField",
    "ConditionOperator",
    "ExpenseSubCategory",
    "OcrStatus",
    "Receipt",
    "ReceiptCategory",
    "ReceiptType",
    "Reimbursement",
    "ReimbursementStatus",
    "ValidationStatus",
    "WorkflowStatus",
]
