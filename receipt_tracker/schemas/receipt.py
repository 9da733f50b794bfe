"""Receipt schemas."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from receipt_tracker.services.receipt_state import ReviewPatch


class CamelModel(BaseModel):
    """Base for payloads exchanged with the frontend in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReceiptResponse(CamelModel):
    """A receipt and its extracted fields."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    merchant_name: str | None = None
    total_amount: Decimal | None = None
    transaction_date: date | None = None
    currency: str | None = None
    merchant_name_confidence: float | None = None
    total_amount_confidence: float | None = None
    transaction_date_confidence: float | None = None
    created_at: datetime
    processed_at: datetime | None = None
    needs_review: bool
    error_message: str | None = None


class ReceiptUploadResponse(CamelModel):
    """Response when a receipt upload is accepted."""

    id: uuid.UUID
    status: str
    message: str


class ReceiptReviewRequest(CamelModel):
    """User corrections for a receipt in NeedsReview; omitted fields are kept."""

    merchant_name: str | None = Field(default=None, max_length=512)
    total_amount: Decimal | None = Field(default=None, max_digits=18, decimal_places=2)
    transaction_date: date | None = None
    currency: str | None = Field(default=None, max_length=10)

    def to_patch(self) -> ReviewPatch:
        return ReviewPatch(
            merchant_name=self.merchant_name,
            total_amount=self.total_amount,
            transaction_date=self.transaction_date,
            currency=self.currency,
        )
