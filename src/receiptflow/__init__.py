"""
ReceiptFlow — receipt classification and reimbursement workflow engine.

Classify. Validate. Approve.
"""

__version__ = "0.1.0"
__all__ = ["ReceiptFlow"]

from receiptflow.flow import ReceiptFlow  # noqa: E402
