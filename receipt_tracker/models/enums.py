"""Enums for model fields."""

from enum import Enum


class ReceiptStatus(str, Enum):
    """Lifecycle status of a receipt.

    Values double as the wire representation, so they keep the exact casing
    clients see in API payloads and error messages.
    """

    UPLOADED = "Uploaded"
    PROCESSING = "Processing"
    NEEDS_REVIEW = "NeedsReview"
    COMPLETED = "Completed"
    FAILED = "Failed"

    def is_settled(self) -> bool:
        """Check if extraction already produced a usable outcome."""
        return self in (ReceiptStatus.NEEDS_REVIEW, ReceiptStatus.COMPLETED)
