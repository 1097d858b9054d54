"""Compliance package — pre-submission checks and scoring for reimbursements."""
from receiptflow.compliance.validator import (
    DEFAULT_COMPLIANCE_RULES,
    ComplianceRule,
    ComplianceValidator,
    Severity,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)

__all__ = [
    "DEFAULT_COMPLIANCE_RULES",
    "ComplianceRule",
    "ComplianceValidator",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    "ValidationWarning",
]
