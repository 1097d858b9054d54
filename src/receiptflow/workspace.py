"""
Workspace files — receipts, rules and reimbursements on disk.

A workspace document is YAML or JSON with three optional top-level lists:

    receipts:
      - id: r1
        receipt_type: DINING
        amount: 120
        invoice_date: 2024-03-15
    rules:
      - name: Meals
        priority: 1
        conditions: [{field: RECEIPT_TYPE, operator: EQUALS, value: DINING}]
        actions: [{type: SET_CATEGORY, value: EXPENSE}]
    reimbursements: []

Receipts exported by an OCR tool as CSV can be read with
``load_receipts_csv``; column names are matched through common aliases.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd
import yaml

from receiptflow.models.receipt import Receipt, ReceiptType
from receiptflow.models.reimbursement import Reimbursement
from receiptflow.models.rules import ClassificationRule, lookup_member

logger = logging.getLogger("receiptflow.workspace")

# Receipt field -> accepted CSV column names
_COLUMN_ALIASES: dict[str, list[str]] = {
    "id": ["id", "receipt_id"],
    "receipt_type": ["receipt_type", "type", "document_type"],
    "amount": ["amount", "value", "sum"],
    "total_amount": ["total_amount", "total", "gross"],
    "tax_amount": ["tax_amount", "tax", "vat"],
    "merchant": ["merchant", "vendor", "payee", "store"],
    "seller_name": ["seller_name", "seller"],
    "invoice_number": ["invoice_number", "invoice_no", "number"],
    "invoice_date": ["invoice_date", "date", "receipt_date"],
    "description": ["description", "memo", "note", "details"],
    "image_path": ["image_path", "image", "file"],
    "ocr_text": ["ocr_text", "text"],
}


@dataclass
class Workspace:
    receipts: list[Receipt] = field(default_factory=list)
    rules: list[ClassificationRule] = field(default_factory=list)
    reimbursements: list[Reimbursement] = field(default_factory=list)


def _read_document(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Workspace file not found: {path}")
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


_RECEIPT_ENUMS = ("receipt_type", "category", "sub_category", "ocr_status", "validation_status")
_REIMBURSEMENT_ENUMS = ("status", "workflow_status")


def _normalize_enums(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    # Files use member names ("DINING"); models store lowercase values
    normalized = dict(data)
    for key in keys:
        if isinstance(normalized.get(key), str):
            normalized[key] = normalized[key].strip().lower()
    return normalized


def load_workspace(path: str | Path) -> Workspace:
    """Read a YAML or JSON workspace document."""
    path = Path(path)
    data = _read_document(path) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Workspace file must contain a mapping: {path}")

    workspace = Workspace(
        receipts=[Receipt.model_validate(_normalize_enums(r, _RECEIPT_ENUMS)) for r in data.get("receipts") or []],
        rules=[ClassificationRule.model_validate(r) for r in data.get("rules") or []],
        reimbursements=[
            Reimbursement.model_validate(_normalize_enums(r, _REIMBURSEMENT_ENUMS))
            for r in data.get("reimbursements") or []
        ],
    )
    logger.info(
        "Loaded %d receipts, %d rules, %d reimbursements from %s",
        len(workspace.receipts), len(workspace.rules), len(workspace.reimbursements), path.name,
    )
    return workspace


def load_rules(path: str | Path) -> list[ClassificationRule]:
    """Read rules from a file holding either a list or a ``rules:`` mapping."""
    path = Path(path)
    data = _read_document(path) or []
    if isinstance(data, dict):
        data = data.get("rules") or []
    return [ClassificationRule.model_validate(r) for r in data]


def save_workspace(workspace: Workspace, path: str | Path) -> Path:
    """Write a workspace as JSON or YAML, chosen by file suffix."""
    path = Path(path)
    data = {
        "receipts": [r.model_dump(mode="json", exclude_none=True) for r in workspace.receipts],
        "rules": [r.model_dump(mode="json", exclude_none=True) for r in workspace.rules],
        "reimbursements": [r.model_dump(mode="json", exclude_none=True) for r in workspace.reimbursements],
    }
    if path.suffix.lower() == ".json":
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    else:
        path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return path


def load_receipts_csv(path: str | Path, encoding: str = "utf-8") -> list[Receipt]:
    """Parse a CSV of OCR output into receipts; unreadable rows are skipped."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    df = pd.read_csv(path, encoding=encoding, dtype=str, keep_default_na=False)
    df.columns = df.columns.str.strip().str.lower()
    col_map = _detect_columns(df)
    if "amount" not in col_map and "total_amount" not in col_map:
        logger.warning("CSV %s has no amount column", path.name)

    receipts: list[Receipt] = []
    for index, row in df.iterrows():
        data: dict[str, Any] = {}
        for receipt_field, column in col_map.items():
            value = str(row[column]).strip()
            if value:
                data[receipt_field] = value
        if "receipt_type" in data:
            receipt_type = lookup_member(ReceiptType, data["receipt_type"])
            data["receipt_type"] = receipt_type or ReceiptType.UNKNOWN
        try:
            if "invoice_date" in data:
                data["invoice_date"] = pd.to_datetime(data["invoice_date"]).date()
            receipts.append(Receipt.model_validate(data))
        except ValueError as e:
            logger.debug("Skipping row %s: %s", index, e)

    logger.info("Parsed %d receipts from %s", len(receipts), path.name)
    return receipts


def _detect_columns(df: pd.DataFrame) -> dict[str, str]:
    col_map: dict[str, str] = {}
    columns = set(df.columns)
    for receipt_field, aliases in _COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in columns:
                col_map[receipt_field] = alias
                break
    return col_map
