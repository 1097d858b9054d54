"""Store package — repository interfaces and their in-memory implementations."""
from receiptflow.store.base import ReceiptRepository, ReimbursementRepository
from receiptflow.store.memory import InMemoryReceiptStore, InMemoryReimbursementStore

__all__ = [
    "InMemoryReceiptStore",
    "InMemoryReimbursementStore",
    "ReceiptRepository",
    "ReimbursementRepository",
]
