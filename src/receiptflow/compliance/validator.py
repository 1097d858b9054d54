"""
Compliance Validator — score a reimbursement before it goes for approval.

Runs a fixed pipeline of independent checks over a reimbursement and its
receipts:

1. Basic info (title, amount, applicant)
2. Receipt presence and per-type required fields
3. Amount consistency and per-type spending limits
4. Time period (date span, month of claim)
5. Duplicate receipts
6. Score

Each check appends to shared issue and warning lists. A check that crashes
is logged and reported as an INFO issue; the other checks still run.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Callable

from receiptflow.models.receipt import ReceiptType
from receiptflow.models.rules import lookup_member

if TYPE_CHECKING:
    from receiptflow.config import ComplianceConfig
    from receiptflow.models.receipt import Receipt
    from receiptflow.models.reimbursement import Reimbursement

logger = logging.getLogger("receiptflow.compliance.validator")


class Severity(str, Enum):
    """How much a finding matters."""

    ERROR = "error"  # blocks submission
    WARNING = "warning"  # should be fixed, does not block
    INFO = "info"


@dataclass
class ValidationIssue:
    code: str
    message: str
    severity: Severity
    affected_items: list[str] = field(default_factory=list)


@dataclass
class ValidationWarning:
    code: str
    message: str
    suggestion: str | None = None


@dataclass
class ValidationResult:
    """Findings and 0-100 score for one reimbursement."""

    is_compliant: bool
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)
    score: int = 100

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def codes(self) -> list[str]:
        """Codes of every issue and warning, in report order."""
        return [i.code for i in self.issues] + [w.code for w in self.warnings]


@dataclass(frozen=True)
class ComplianceRule:
    """Spending policy for one receipt type."""

    category: str
    monthly_limit: float | None
    single_limit: float | None
    required_fields: tuple[str, ...]
    description: str


DEFAULT_COMPLIANCE_RULES: dict[ReceiptType, ComplianceRule] = {
    ReceiptType.TRANSPORT: ComplianceRule(
        category="Transport",
        monthly_limit=2000.0,
        single_limit=500.0,
        required_fields=("amount", "date", "merchant"),
        description="Business travel and local transport",
    ),
    ReceiptType.DINING: ComplianceRule(
        category="Dining",
        monthly_limit=3000.0,
        single_limit=1000.0,
        required_fields=("amount", "date", "merchant", "attendees"),
        description="Business meals and working lunches",
    ),
    ReceiptType.ACCOMMODATION: ComplianceRule(
        category="Accommodation",
        monthly_limit=5000.0,
        single_limit=800.0,
        required_fields=("amount", "date", "merchant", "checkInDate", "checkOutDate"),
        description="Hotels and other lodging",
    ),
    ReceiptType.OFFICE: ComplianceRule(
        category="Office",
        monthly_limit=1000.0,
        single_limit=200.0,
        required_fields=("amount", "date", "merchant", "itemDescription"),
        description="Office supplies and equipment",
    ),
    ReceiptType.COMMUNICATION: ComplianceRule(
        category="Communication",
        monthly_limit=500.0,
        single_limit=100.0,
        required_fields=("amount", "date", "merchant", "phoneNumber"),
        description="Phone and internet charges",
    ),
    ReceiptType.OTHER: ComplianceRule(
        category="Other",
        monthly_limit=1000.0,
        single_limit=300.0,
        required_fields=("amount", "date", "merchant", "description"),
        description="Anything else; needs an explanation",
    ),
}


class ComplianceValidator:
    """
    Validates reimbursements against the per-type compliance rules.

    Example usage:
        validator = ComplianceValidator()
        result = validator.validate(reimbursement, receipts)
        if not result.is_compliant:
            for issue in result.errors:
                print(issue.code, issue.message)
    """

    def __init__(
        self,
        rules: dict[ReceiptType, ComplianceRule] | None = None,
        amount_tolerance: float = 0.01,
        max_date_span_days: int = 30,
        error_penalty: int = 20,
        warning_penalty: int = 5,
    ) -> None:
        self._rules = dict(rules if rules is not None else DEFAULT_COMPLIANCE_RULES)
        self.amount_tolerance = amount_tolerance
        self.max_date_span_days = max_date_span_days
        self.error_penalty = error_penalty
        self.warning_penalty = warning_penalty

    @classmethod
    def from_config(cls, config: ComplianceConfig) -> ComplianceValidator:
        validator = cls(
            amount_tolerance=config.amount_tolerance,
            max_date_span_days=config.max_date_span_days,
            error_penalty=config.error_penalty,
            warning_penalty=config.warning_penalty,
        )
        for type_name, override in config.limits.items():
            receipt_type = lookup_member(ReceiptType, type_name)
            rule = validator._rules.get(receipt_type) if receipt_type else None
            if rule is None:
                logger.warning("Ignoring limit override for unknown receipt type %r", type_name)
                continue
            validator.update_compliance_rule(
                receipt_type,
                replace(
                    rule,
                    single_limit=override.single_limit if override.single_limit is not None else rule.single_limit,
                    monthly_limit=override.monthly_limit if override.monthly_limit is not None else rule.monthly_limit,
                ),
            )
        return validator

    def compliance_rules(self) -> dict[ReceiptType, ComplianceRule]:
        return dict(self._rules)

    def update_compliance_rule(self, receipt_type: ReceiptType, rule: ComplianceRule) -> None:
        self._rules[receipt_type] = rule
        logger.info("Compliance rule for %s updated", receipt_type.name)

    def validate(self, reimbursement: Reimbursement, receipts: list[Receipt]) -> ValidationResult:
        issues: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        checks: list[tuple[str, Callable[[], None]]] = [
            ("basic info", lambda: self._check_basic_info(reimbursement, issues)),
            ("receipts", lambda: self._check_receipts(receipts, issues, warnings)),
            ("amounts", lambda: self._check_amounts(reimbursement, receipts, issues, warnings)),
            ("time period", lambda: self._check_time_period(reimbursement, receipts, warnings)),
            ("duplicates", lambda: self._check_duplicates(receipts, issues)),
        ]
        for name, check in checks:
            try:
                check()
            except Exception as e:
                logger.exception("Compliance check '%s' failed", name)
                issues.append(ValidationIssue(
                    code="CHECK_FAILED",
                    message=f"The {name} check could not run: {e}",
                    severity=Severity.INFO,
                ))

        score = self._score(issues, warnings)
        result = ValidationResult(
            is_compliant=not any(i.severity == Severity.ERROR for i in issues),
            issues=issues,
            warnings=warnings,
            score=score,
        )
        logger.info(
            "Validated reimbursement %s: compliant=%s score=%d (%d issues, %d warnings)",
            reimbursement.id, result.is_compliant, score, len(issues), len(warnings),
        )
        return result

    def suggestions(self, reimbursement: Reimbursement, receipts: list[Receipt]) -> list[str]:
        """Plain-language hints for improving a claim."""
        hints: list[str] = []
        for receipt in receipts:
            if not receipt.merchant_name.strip():
                hints.append(f"Add the merchant for '{receipt.title}'")
            if receipt.receipt_type == ReceiptType.OTHER and not receipt.description.strip():
                hints.append(f"Describe what '{receipt.title}' was for")

        if len({r.receipt_type for r in receipts}) > 3:
            hints.append("Split this claim into one reimbursement per expense type")
        return hints

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_basic_info(self, reimbursement: Reimbursement, issues: list[ValidationIssue]) -> None:
        if not reimbursement.title.strip():
            issues.append(ValidationIssue("EMPTY_TITLE", "Reimbursement title is required", Severity.ERROR))
        if reimbursement.total_amount <= 0:
            issues.append(ValidationIssue("INVALID_AMOUNT", "Claimed amount must be greater than 0", Severity.ERROR))
        if not reimbursement.applicant.strip():
            issues.append(ValidationIssue("EMPTY_APPLICANT", "Applicant is required", Severity.ERROR))

    def _check_receipts(
        self,
        receipts: list[Receipt],
        issues: list[ValidationIssue],
        warnings: list[ValidationWarning],
    ) -> None:
        if not receipts:
            issues.append(ValidationIssue(
                "NO_RECEIPTS", "A reimbursement needs at least one receipt", Severity.ERROR,
            ))
            return

        for receipt in receipts:
            rule = self._rules.get(receipt.receipt_type)
            required = rule.required_fields if rule else ()

            if "amount" in required and receipt.effective_amount <= 0:
                issues.append(ValidationIssue(
                    "MISSING_AMOUNT", "Receipt amount is missing or zero", Severity.ERROR, [receipt.title],
                ))
            if "date" in required and receipt.receipt_date is None:
                issues.append(ValidationIssue(
                    "MISSING_DATE", "Receipt date is missing", Severity.ERROR, [receipt.title],
                ))
            if "merchant" in required and not receipt.merchant_name.strip():
                warnings.append(ValidationWarning(
                    "MISSING_MERCHANT", "Receipt merchant is missing", "Add the merchant name",
                ))
            if (
                "attendees" in required
                and receipt.receipt_type == ReceiptType.DINING
                and not receipt.attendees
            ):
                warnings.append(ValidationWarning(
                    "MISSING_ATTENDEES", "Dining receipts should list attendees", "Add who attended",
                ))
            if (
                "itemDescription" in required
                and receipt.receipt_type == ReceiptType.OFFICE
                and not receipt.description.strip()
            ):
                warnings.append(ValidationWarning(
                    "MISSING_DESCRIPTION", "Office receipts should describe the items", "Add what was bought",
                ))

            if not receipt.image_path.strip():
                warnings.append(ValidationWarning(
                    "MISSING_IMAGE", "Receipt has no image attached", "Attaching an image speeds up review",
                ))
            if not receipt.ocr_text.strip():
                warnings.append(ValidationWarning(
                    "NO_OCR", "Receipt has not been through OCR", "Run OCR to speed up review",
                ))

    def _check_amounts(
        self,
        reimbursement: Reimbursement,
        receipts: list[Receipt],
        issues: list[ValidationIssue],
        warnings: list[ValidationWarning],
    ) -> None:
        receipt_total = sum(r.effective_amount for r in receipts)
        if abs(reimbursement.total_amount - receipt_total) > self.amount_tolerance:
            currency = reimbursement.currency
            warnings.append(ValidationWarning(
                "AMOUNT_MISMATCH",
                "Claimed amount does not match the receipts",
                f"Claimed {reimbursement.total_amount:.2f} {currency}, receipts total {receipt_total:.2f} {currency}",
            ))

        by_type: dict[ReceiptType, list[Receipt]] = defaultdict(list)
        for receipt in receipts:
            by_type[receipt.receipt_type].append(receipt)

        for receipt_type, typed in by_type.items():
            rule = self._rules.get(receipt_type)
            if rule is None:
                continue

            if rule.single_limit is not None:
                for receipt in typed:
                    if receipt.effective_amount > rule.single_limit:
                        issues.append(ValidationIssue(
                            "EXCEED_SINGLE_LIMIT",
                            f"{rule.category} receipt exceeds the single-receipt limit of {rule.single_limit:.2f}",
                            Severity.WARNING,
                            [receipt.title],
                        ))

            if rule.monthly_limit is not None:
                by_month: dict[str, list[Receipt]] = defaultdict(list)
                for receipt in typed:
                    if receipt.receipt_date is not None:
                        by_month[receipt.receipt_date.strftime("%Y-%m")].append(receipt)
                for month, monthly in sorted(by_month.items()):
                    spent = sum(r.effective_amount for r in monthly)
                    if spent > rule.monthly_limit:
                        issues.append(ValidationIssue(
                            "EXCEED_MONTHLY_LIMIT",
                            f"{rule.category} spending in {month} ({spent:.2f}) exceeds the monthly limit "
                            f"of {rule.monthly_limit:.2f}",
                            Severity.WARNING,
                            [r.title for r in monthly],
                        ))

    def _check_time_period(
        self,
        reimbursement: Reimbursement,
        receipts: list[Receipt],
        warnings: list[ValidationWarning],
    ) -> None:
        dates = [r.receipt_date for r in receipts if r.receipt_date is not None]
        if not dates:
            return

        span = (max(dates) - min(dates)).days
        if span > self.max_date_span_days:
            warnings.append(ValidationWarning(
                "WIDE_DATE_RANGE",
                f"Receipt dates span {span} days",
                "Consider one reimbursement per month",
            ))

        claim_month = reimbursement.created_at.strftime("%Y-%m")
        outside = sum(1 for d in dates if d.strftime("%Y-%m") != claim_month)
        if outside:
            warnings.append(ValidationWarning(
                "OUT_OF_MONTH",
                f"{outside} receipt(s) fall outside the claim month {claim_month}",
                "Confirm the cross-month claim is intended",
            ))

    def _check_duplicates(self, receipts: list[Receipt], issues: list[ValidationIssue]) -> None:
        keys = Counter(self._duplicate_key(r) for r in receipts)
        duplicates = [key for key, count in keys.items() if count > 1]
        if duplicates:
            issues.append(ValidationIssue(
                "DUPLICATE_RECEIPTS",
                f"Found {len(duplicates)} group(s) of possible duplicate receipts",
                Severity.WARNING,
                duplicates,
            ))

    @staticmethod
    def _duplicate_key(receipt: Receipt) -> str:
        day = receipt.receipt_date.isoformat() if receipt.receipt_date else ""
        return f"{receipt.effective_amount}_{receipt.merchant_name}_{day}"

    def _score(self, issues: list[ValidationIssue], warnings: list[ValidationWarning]) -> int:
        errors = sum(1 for i in issues if i.severity == Severity.ERROR)
        score = 100 - errors * self.error_penalty - len(warnings) * self.warning_penalty
        return max(0, min(100, score))
