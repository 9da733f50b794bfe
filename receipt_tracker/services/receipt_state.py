"""Receipt status transitions and the review patch.

Transitions mutate a Receipt row in memory; committing is the caller's job.
The order of transitions is:

    Uploaded -> Processing -> Failed | NeedsReview | Completed
    NeedsReview -> Completed (review)
"""

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.models.mixins import utcnow
from receipt_tracker.models.receipt import Receipt
from receipt_tracker.services.extraction import ExtractionResult


class ReviewNotAllowedError(Exception):
    """A review was submitted for a receipt that is not waiting for one."""

    def __init__(self, current: ReceiptStatus):
        self.current = current
        super().__init__(
            "Only receipts with status 'NeedsReview' can be reviewed. "
            f"Current status: {current.value}"
        )


@dataclass(frozen=True)
class ReceiptFields:
    """The user-editable fields of a receipt."""

    merchant_name: str | None = None
    total_amount: Decimal | None = None
    transaction_date: date | None = None
    currency: str | None = None

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "ReceiptFields":
        return cls(
            merchant_name=receipt.merchant_name,
            total_amount=receipt.total_amount,
            transaction_date=receipt.transaction_date,
            currency=receipt.currency,
        )

    def write_to(self, receipt: Receipt) -> None:
        for field in dataclasses.fields(self):
            setattr(receipt, field.name, getattr(self, field.name))


@dataclass(frozen=True)
class ReviewPatch:
    """User corrections; a field left as None (or blank) keeps its value."""

    merchant_name: str | None = None
    total_amount: Decimal | None = None
    transaction_date: date | None = None
    currency: str | None = None

    def overrides(self) -> dict[str, object]:
        """Fields the caller actually supplied."""
        supplied = {}
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            supplied[field.name] = value
        return supplied


def apply_patch(fields: ReceiptFields, patch: ReviewPatch) -> ReceiptFields:
    """Return the fields with the patch's supplied values applied."""
    return dataclasses.replace(fields, **patch.overrides())


def mark_processing(receipt: Receipt) -> None:
    """Worker picked up the staged object."""
    receipt.status = ReceiptStatus.PROCESSING.value
    receipt.error_message = None


def mark_failed(receipt: Receipt, error_message: str | None, now: datetime | None = None) -> None:
    """Extraction failed; keep the reason for the user."""
    receipt.status = ReceiptStatus.FAILED.value
    receipt.error_message = error_message or "Extraction failed."
    receipt.processed_at = now or utcnow()


def apply_extraction(
    receipt: Receipt, result: ExtractionResult, now: datetime | None = None
) -> ReceiptStatus:
    """Record an extraction outcome and move the receipt to its next status.

    Values and their confidences are copied together; fields the backend did
    not find stay empty.

    Returns:
        The status the receipt ended up in
    """
    if not result.success:
        mark_failed(receipt, result.error_message, now)
        return ReceiptStatus.FAILED

    receipt.merchant_name = result.merchant_name
    receipt.merchant_name_confidence = result.merchant_name_confidence

    receipt.total_amount = result.total_amount
    receipt.total_amount_confidence = result.total_amount_confidence
    receipt.currency = result.currency

    receipt.transaction_date = result.transaction_date
    receipt.transaction_date_confidence = result.transaction_date_confidence

    status = ReceiptStatus.NEEDS_REVIEW if result.needs_review else ReceiptStatus.COMPLETED
    receipt.status = status.value
    receipt.error_message = None
    receipt.processed_at = now or utcnow()
    return status


def submit_review(receipt: Receipt, patch: ReviewPatch, now: datetime | None = None) -> None:
    """Apply user corrections and complete the receipt.

    Raises:
        ReviewNotAllowedError: the receipt is not in NeedsReview; nothing changes
    """
    current = receipt.receipt_status
    if current != ReceiptStatus.NEEDS_REVIEW:
        raise ReviewNotAllowedError(current)

    apply_patch(ReceiptFields.from_receipt(receipt), patch).write_to(receipt)
    receipt.status = ReceiptStatus.COMPLETED.value
    receipt.processed_at = now or utcnow()
