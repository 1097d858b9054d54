"""
Receipt data models — one scanned expense document and its enumerations.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class ReceiptType(str, Enum):
    """Kind of document the OCR collaborator recognized."""

    TRANSPORT = "transport"
    DINING = "dining"
    ACCOMMODATION = "accommodation"
    OFFICE = "office"
    COMMUNICATION = "communication"
    OTHER = "other"

    # Invoices
    VAT_SPECIAL_INVOICE = "vat_special_invoice"
    VAT_ORDINARY_INVOICE = "vat_ordinary_invoice"
    VAT_ELECTRONIC_INVOICE = "vat_electronic_invoice"

    # Travel tickets
    TRAIN_TICKET = "train_ticket"
    FLIGHT_ITINERARY = "flight_itinerary"
    BUS_TICKET = "bus_ticket"
    TAXI_RECEIPT = "taxi_receipt"

    UNKNOWN = "unknown"


class ReceiptCategory(str, Enum):
    """Filing category; drives the archive-number category code."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSPORTATION = "transportation"
    ACCOMMODATION = "accommodation"
    FOOD = "food"
    OFFICE = "office"
    OTHER = "other"


# Three-letter codes used inside archive numbers
CATEGORY_CODES: dict[ReceiptCategory, str] = {
    ReceiptCategory.INCOME: "INC",
    ReceiptCategory.EXPENSE: "EXP",
    ReceiptCategory.TRANSPORTATION: "TRA",
    ReceiptCategory.ACCOMMODATION: "ACC",
    ReceiptCategory.FOOD: "FOD",
    ReceiptCategory.OFFICE: "OFF",
    ReceiptCategory.OTHER: "OTH",
}

# Fields the classifier owns; everything else on a receipt is left alone
CLASSIFICATION_FIELDS = frozenset({
    "category",
    "sub_category",
    "expense_type",
    "tags",
    "department",
    "project",
    "archived",
    "archived_at",
    "archive_number",
    "processed",
    "processed_at",
    "updated_at",
})


class ExpenseSubCategory(str, Enum):
    """Accounting sub-category of an expense."""

    PROCUREMENT = "procurement"
    EXPENSE = "expense"
    ASSET = "asset"
    TRAVEL = "travel"
    OFFICE = "office"
    BUSINESS_ENTERTAINMENT = "business_entertainment"
    WELFARE = "welfare"
    OTHER = "other"


class OcrStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    WARNING = "warning"
    INVALID = "invalid"


class Receipt(BaseModel):
    """A single scanned expense document.

    Created by the OCR collaborator with classification fields mostly empty,
    then completed by the classifier. ``archive_number`` is write-once and
    ``reimbursement_id`` only changes through an explicit link/unlink.
    """

    id: str | None = None

    # Classification
    receipt_type: ReceiptType = ReceiptType.UNKNOWN
    category: ReceiptCategory = ReceiptCategory.OTHER
    sub_category: ExpenseSubCategory | None = None
    expense_type: str | None = None
    tags: str | None = None
    department: str | None = None
    project: str | None = None

    # Money
    amount: float | None = Field(default=None, ge=0.0)
    total_amount: float | None = Field(default=None, ge=0.0)
    amount_without_tax: float | None = Field(default=None, ge=0.0)
    tax_amount: float | None = Field(default=None, ge=0.0)
    tax_rate: float | None = Field(default=None, ge=0.0)

    # Provenance
    merchant: str | None = None
    seller_name: str | None = None
    buyer_name: str | None = None
    issuer: str | None = None
    invoice_code: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    expense_date: date | None = None
    departure_place: str | None = None
    destination: str | None = None
    description: str = ""
    remarks: str | None = None
    attendees: list[str] = Field(default_factory=list)
    file_name: str = ""
    file_path: str = ""
    file_type: str = ""
    image_path: str = ""
    ocr_text: str = ""
    ocr_status: OcrStatus = OcrStatus.PENDING
    validation_status: ValidationStatus = ValidationStatus.PENDING
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime | None = None

    # Lifecycle
    processed: bool = False
    processed_at: datetime | None = None
    archive_number: str | None = None
    archived: bool = False
    archived_at: datetime | None = None
    reimbursement_id: str | None = None

    @property
    def effective_amount(self) -> float:
        """Tax-inclusive total when known, otherwise the plain amount."""
        if self.total_amount is not None:
            return self.total_amount
        return self.amount if self.amount is not None else 0.0

    @property
    def merchant_name(self) -> str:
        return self.merchant or self.seller_name or self.issuer or ""

    @property
    def receipt_date(self) -> date | None:
        """Date the expense happened, as printed on the document."""
        return self.invoice_date or self.expense_date

    @property
    def title(self) -> str:
        """Human label used when reporting findings about this receipt."""
        return self.file_name or self.invoice_number or self.id or "receipt"

    @property
    def tag_list(self) -> list[str]:
        if not self.tags:
            return []
        return [t.strip() for t in self.tags.split(",") if t.strip()]

    @property
    def is_linked(self) -> bool:
        return self.reimbursement_id is not None
