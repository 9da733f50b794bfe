"""SQLAlchemy models."""

from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.models.receipt import Receipt

__all__ = [
    "Receipt",
    "ReceiptStatus",
]
