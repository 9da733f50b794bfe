"""Pydantic schemas for API requests and responses."""

from receipt_tracker.schemas.receipt import (
    ReceiptResponse,
    ReceiptReviewRequest,
    ReceiptUploadResponse,
)

__all__ = [
    "ReceiptResponse",
    "ReceiptReviewRequest",
    "ReceiptUploadResponse",
]
