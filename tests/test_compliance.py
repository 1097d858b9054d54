"""Tests for the compliance validator."""

from __future__ import annotations

from datetime import date, datetime

from receiptflow.compliance.validator import ComplianceValidator, Severity, ValidationIssue
from receiptflow.config import ComplianceConfig, LimitOverride
from receiptflow.models.receipt import Receipt, ReceiptType
from receiptflow.models.reimbursement import Reimbursement


def _make_receipt(receipt_id: str = "r1", **overrides) -> Receipt:
    data = {
        "id": receipt_id,
        "receipt_type": ReceiptType.TRANSPORT,
        "amount": 100.0,
        "merchant": "Metro",
        "invoice_date": date(2024, 3, 5),
        "file_name": f"{receipt_id}.jpg",
        "image_path": f"img/{receipt_id}.jpg",
        "ocr_text": "METRO 100.00",
    }
    data.update(overrides)
    return Receipt(**data)


def _make_reimbursement(total: float = 100.0, **overrides) -> Reimbursement:
    data = {
        "id": "rb1",
        "title": "March travel",
        "applicant": "alice",
        "total_amount": total,
        "created_at": datetime(2024, 3, 20, 9, 0),
    }
    data.update(overrides)
    return Reimbursement(**data)


def _issue(result, code: str) -> ValidationIssue:
    return next(i for i in result.issues if i.code == code)


class TestBasicChecks:
    def test_clean_reimbursement_scores_full(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(), [_make_receipt()])
        assert result.is_compliant is True
        assert result.issues == []
        assert result.warnings == []
        assert result.score == 100

    def test_blank_title_blocks(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(title="  "), [_make_receipt()])
        assert result.is_compliant is False
        assert _issue(result, "EMPTY_TITLE").severity == Severity.ERROR
        assert result.score == 80

    def test_blank_applicant_blocks(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(applicant=""), [_make_receipt()])
        assert "EMPTY_APPLICANT" in result.codes
        assert result.is_compliant is False

    def test_no_receipts(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(), [])
        assert result.is_compliant is False
        assert "NO_RECEIPTS" in result.codes
        assert "AMOUNT_MISMATCH" in [w.code for w in result.warnings]
        assert result.score == 75

    def test_score_never_negative(self) -> None:
        receipts = [_make_receipt(f"r{i}", amount=0.0, invoice_date=None) for i in range(3)]
        reimbursement = _make_reimbursement(total=0.0, title="", applicant="")
        result = ComplianceValidator().validate(reimbursement, receipts)
        assert len(result.errors) == 9
        assert result.score == 0


class TestReceiptChecks:
    def test_missing_amount_is_blocking(self) -> None:
        receipts = [_make_receipt("r1"), _make_receipt("zero", amount=0.0)]
        result = ComplianceValidator().validate(_make_reimbursement(), receipts)
        issue = _issue(result, "MISSING_AMOUNT")
        assert issue.severity == Severity.ERROR
        assert issue.affected_items == ["zero.jpg"]
        assert result.is_compliant is False

    def test_total_amount_counts_as_amount(self) -> None:
        receipt = _make_receipt(amount=None, total_amount=100.0)
        result = ComplianceValidator().validate(_make_reimbursement(), [receipt])
        assert "MISSING_AMOUNT" not in result.codes

    def test_missing_date_is_blocking(self) -> None:
        receipt = _make_receipt(invoice_date=None)
        result = ComplianceValidator().validate(_make_reimbursement(), [receipt])
        assert _issue(result, "MISSING_DATE").severity == Severity.ERROR

    def test_expense_date_counts_as_date(self) -> None:
        receipt = _make_receipt(invoice_date=None, expense_date=date(2024, 3, 6))
        result = ComplianceValidator().validate(_make_reimbursement(), [receipt])
        assert "MISSING_DATE" not in result.codes

    def test_missing_merchant_warns(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(), [_make_receipt(merchant=None)])
        assert result.is_compliant is True
        assert "MISSING_MERCHANT" in result.codes
        assert result.score == 95

    def test_seller_name_counts_as_merchant(self) -> None:
        receipt = _make_receipt(merchant=None, seller_name="City Rail Co")
        result = ComplianceValidator().validate(_make_reimbursement(), [receipt])
        assert "MISSING_MERCHANT" not in result.codes

    def test_dining_needs_attendees(self) -> None:
        dinner = _make_receipt(receipt_type=ReceiptType.DINING)
        result = ComplianceValidator().validate(_make_reimbursement(), [dinner])
        assert "MISSING_ATTENDEES" in result.codes

        dinner = _make_receipt(receipt_type=ReceiptType.DINING, attendees=["alice", "client"])
        result = ComplianceValidator().validate(_make_reimbursement(), [dinner])
        assert "MISSING_ATTENDEES" not in result.codes

    def test_office_needs_description(self) -> None:
        supplies = _make_receipt(receipt_type=ReceiptType.OFFICE)
        result = ComplianceValidator().validate(_make_reimbursement(), [supplies])
        assert "MISSING_DESCRIPTION" in result.codes

    def test_missing_image_and_ocr_warn(self) -> None:
        receipt = _make_receipt(receipt_type=ReceiptType.UNKNOWN, image_path="", ocr_text="")
        result = ComplianceValidator().validate(_make_reimbursement(), [receipt])
        assert result.codes == ["MISSING_IMAGE", "NO_OCR"]
        assert result.score == 90


class TestAmountChecks:
    def test_claimed_amount_mismatch_warns(self) -> None:
        receipts = [
            _make_receipt("r1", amount=475.0, invoice_date=date(2024, 3, 4)),
            _make_receipt("r2", amount=475.0, invoice_date=date(2024, 3, 5)),
        ]
        result = ComplianceValidator().validate(_make_reimbursement(total=1000.0), receipts)

        assert result.is_compliant is True
        warning = next(w for w in result.warnings if w.code == "AMOUNT_MISMATCH")
        assert "1000.00" in warning.suggestion
        assert "950.00" in warning.suggestion

    def test_difference_within_tolerance_passes(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(total=100.005), [_make_receipt()])
        assert "AMOUNT_MISMATCH" not in result.codes

    def test_single_limit_is_warning(self) -> None:
        result = ComplianceValidator().validate(_make_reimbursement(total=600.0), [_make_receipt(amount=600.0)])
        issue = _issue(result, "EXCEED_SINGLE_LIMIT")
        assert issue.severity == Severity.WARNING
        assert result.is_compliant is True
        assert result.score == 100

    def test_monthly_limit(self) -> None:
        receipts = [
            _make_receipt(f"r{day}", amount=450.0, invoice_date=date(2024, 3, day))
            for day in range(1, 6)
        ]
        result = ComplianceValidator().validate(_make_reimbursement(total=2250.0), receipts)
        issue = _issue(result, "EXCEED_MONTHLY_LIMIT")
        assert "2024-03" in issue.message
        assert len(issue.affected_items) == 5


class TestTimeChecks:
    def test_wide_date_range(self) -> None:
        receipts = [
            _make_receipt("r1", invoice_date=date(2024, 3, 1)),
            _make_receipt("r2", invoice_date=date(2024, 4, 15)),
        ]
        result = ComplianceValidator().validate(_make_reimbursement(total=200.0), receipts)
        assert "WIDE_DATE_RANGE" in result.codes

    def test_thirty_day_span_allowed(self) -> None:
        receipts = [
            _make_receipt("r1", invoice_date=date(2024, 3, 1)),
            _make_receipt("r2", invoice_date=date(2024, 3, 31)),
        ]
        result = ComplianceValidator().validate(_make_reimbursement(total=200.0), receipts)
        assert "WIDE_DATE_RANGE" not in result.codes

    def test_receipt_outside_claim_month(self) -> None:
        receipts = [_make_receipt("r1"), _make_receipt("r2", invoice_date=date(2024, 2, 27))]
        result = ComplianceValidator().validate(_make_reimbursement(total=200.0), receipts)
        warning = next(w for w in result.warnings if w.code == "OUT_OF_MONTH")
        assert warning.message.startswith("1 receipt(s)")
        assert "2024-03" in warning.message


class TestDuplicates:
    def test_identical_receipts_flagged(self) -> None:
        receipts = [_make_receipt("r1"), _make_receipt("r2")]
        result = ComplianceValidator().validate(_make_reimbursement(total=200.0), receipts)
        issue = _issue(result, "DUPLICATE_RECEIPTS")
        assert issue.severity == Severity.WARNING
        assert issue.affected_items == ["100.0_Metro_2024-03-05"]
        assert result.is_compliant is True

    def test_groups_counted(self) -> None:
        receipts = [
            _make_receipt("a1"),
            _make_receipt("a2"),
            _make_receipt("b1", amount=80.0, merchant="Taxi"),
            _make_receipt("b2", amount=80.0, merchant="Taxi"),
        ]
        result = ComplianceValidator().validate(_make_reimbursement(total=360.0), receipts)
        assert _issue(result, "DUPLICATE_RECEIPTS").message == "Found 2 group(s) of possible duplicate receipts"


class TestValidatorConfiguration:
    def test_crashing_check_is_isolated(self) -> None:
        class BrokenValidator(ComplianceValidator):
            def _check_duplicates(self, receipts, issues):
                raise RuntimeError("boom")

        result = BrokenValidator().validate(_make_reimbursement(title=""), [_make_receipt()])
        failed = _issue(result, "CHECK_FAILED")
        assert failed.severity == Severity.INFO
        assert "duplicates" in failed.message
        assert "EMPTY_TITLE" in result.codes
        assert result.score == 80

    def test_from_config_overrides_limits(self) -> None:
        config = ComplianceConfig(limits={
            "TRANSPORT": LimitOverride(single_limit=50.0),
            "SPACESHIP": LimitOverride(single_limit=1.0),
        })
        validator = ComplianceValidator.from_config(config)
        rule = validator.compliance_rules()[ReceiptType.TRANSPORT]
        assert rule.single_limit == 50.0
        assert rule.monthly_limit == 2000.0

        result = validator.validate(_make_reimbursement(), [_make_receipt()])
        assert "EXCEED_SINGLE_LIMIT" in result.codes

    def test_from_config_penalties(self) -> None:
        validator = ComplianceValidator.from_config(ComplianceConfig(error_penalty=50, warning_penalty=10))
        result = validator.validate(_make_reimbursement(title=""), [_make_receipt(merchant=None)])
        assert result.score == 40

    def test_default_rules_table(self) -> None:
        rules = ComplianceValidator().compliance_rules()
        assert "attendees" in rules[ReceiptType.DINING].required_fields
        assert rules[ReceiptType.ACCOMMODATION].single_limit == 800.0

    def test_suggestions(self) -> None:
        receipts = [
            _make_receipt("r1", merchant=None),
            _make_receipt("r2", receipt_type=ReceiptType.OTHER),
            _make_receipt("r3", receipt_type=ReceiptType.DINING),
            _make_receipt("r4", receipt_type=ReceiptType.OFFICE),
        ]
        hints = ComplianceValidator().suggestions(_make_reimbursement(), receipts)
        assert "Add the merchant for 'r1.jpg'" in hints
        assert "Describe what 'r2.jpg' was for" in hints
        assert "Split this claim into one reimbursement per expense type" in hints
