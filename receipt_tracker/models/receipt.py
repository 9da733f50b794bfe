"""Receipt model for tracking uploads through extraction and review."""

import uuid

from sqlalchemy import Column, Date, DateTime, Float, Index, Integer, Numeric, String, Text, Uuid

from receipt_tracker.database import Base
from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.models.mixins import TimestampMixin


class Receipt(Base, TimestampMixin):
    """An uploaded receipt and the fields extracted from it."""

    __tablename__ = "receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Currently the X-User-Id header; every query filters on it
    owner_id = Column(String(256), nullable=False, index=True)

    original_file_name = Column(String(512), nullable=False)

    # Object path: "{owner_id}/{id}{extension}"
    blob_name = Column(String(1024), nullable=False)

    status = Column(String(20), nullable=False, default=ReceiptStatus.UPLOADED.value)

    # Extracted fields
    merchant_name = Column(String(512), nullable=True)
    total_amount = Column(Numeric(18, 2), nullable=True)
    transaction_date = Column(Date, nullable=True)
    currency = Column(String(10), nullable=True)

    # Extraction confidence scores (0.0 - 1.0)
    merchant_name_confidence = Column(Float, nullable=True)
    total_amount_confidence = Column(Float, nullable=True)
    transaction_date_confidence = Column(Float, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    # Optimistic concurrency counter, bumped on every UPDATE
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (Index("ix_receipts_owner_id_created_at", "owner_id", "created_at"),)
    __mapper_args__ = {"version_id_col": version}

    @property
    def receipt_status(self) -> ReceiptStatus:
        """Status as an enum member."""
        return ReceiptStatus(self.status)

    @property
    def needs_review(self) -> bool:
        """Check if the receipt is waiting on user corrections."""
        return self.receipt_status == ReceiptStatus.NEEDS_REVIEW
