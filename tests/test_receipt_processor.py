"""Tests for the receipt processing worker."""

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.services.extraction import (
    ExtractionResult,
    FieldReading,
    RawExtraction,
    ReceiptExtractionService,
)
from receipt_tracker.services.receipt_processor import ReceiptProcessor
from receipt_tracker.services.vision_extraction import parse_vision_response

JPEG_BYTES = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10])


def _extraction(merchant_confidence: float = 0.95, **overrides) -> ExtractionResult:
    values = {
        "success": True,
        "merchant_name": "Konzum d.d.",
        "merchant_name_confidence": merchant_confidence,
        "total_amount": Decimal("12.50"),
        "total_amount_confidence": 0.97,
        "currency": "KM",
        "transaction_date": date(2025, 6, 15),
        "transaction_date_confidence": 0.92,
        "needs_review": merchant_confidence < 0.80,
    }
    values.update(overrides)
    return ExtractionResult(**values)


@pytest.fixture
def extraction_service():
    service = MagicMock()
    service.extract = AsyncMock(return_value=_extraction())
    return service


@pytest.fixture
def relocate():
    return MagicMock()


@pytest.fixture
def processor(db, extraction_service, relocate):
    return ReceiptProcessor(db, extraction_service=extraction_service, dispatch_relocation=relocate)


def test_high_confidence_extraction_completes(db, processor, make_receipt, relocate):
    receipt = make_receipt()

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.COMPLETED
    assert receipt.status == "Completed"
    assert receipt.needs_review is False
    assert receipt.merchant_name == "Konzum d.d."
    assert receipt.total_amount == Decimal("12.50")
    assert receipt.currency == "KM"
    assert receipt.processed_at is not None
    relocate.assert_called_once_with(receipt.blob_name)


def test_low_confidence_extraction_needs_review(
    db, processor, make_receipt, extraction_service, relocate
):
    extraction_service.extract.return_value = _extraction(merchant_confidence=0.45)
    receipt = make_receipt()

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.NEEDS_REVIEW
    assert receipt.status == "NeedsReview"
    assert receipt.merchant_name_confidence == 0.45
    assert receipt.processed_at is not None
    relocate.assert_called_once_with(receipt.blob_name)


def test_failed_extraction_is_recorded_and_not_relocated(
    db, processor, make_receipt, extraction_service, relocate
):
    extraction_service.extract.return_value = ExtractionResult.failure("no receipt found")
    receipt = make_receipt()

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.FAILED
    assert receipt.status == "Failed"
    assert receipt.error_message == "no receipt found"
    assert receipt.processed_at is not None
    relocate.assert_not_called()


def test_receipt_marked_processing_before_extraction(db, processor, make_receipt, extraction_service):
    receipt = make_receipt()
    seen_statuses = []

    async def _extract(content, media_type):
        seen_statuses.append(db.get(type(receipt), receipt.id).status)
        return _extraction()

    extraction_service.extract.side_effect = _extract

    processor.run(JPEG_BYTES, receipt.blob_name)

    assert seen_statuses == ["Processing"]


def test_media_type_follows_extension(db, processor, make_receipt, extraction_service):
    receipt_id = uuid.uuid4()
    receipt = make_receipt(id=receipt_id, blob_name=f"u1/{receipt_id}.pdf")

    processor.run(b"%PDF-1.7", receipt.blob_name)

    extraction_service.extract.assert_awaited_once_with(b"%PDF-1.7", "application/pdf")


def test_path_without_separator_is_ignored(processor, extraction_service):
    with patch.object(processor.repository, "get_by_id") as get_by_id:
        result = processor.run(JPEG_BYTES, "invalid-no-separator.jpg")

    assert result is None
    get_by_id.assert_not_called()
    extraction_service.extract.assert_not_called()


def test_path_with_extra_segments_is_ignored(processor, extraction_service):
    result = processor.run(JPEG_BYTES, f"u1/nested/{uuid.uuid4()}.jpg")

    assert result is None
    extraction_service.extract.assert_not_called()


def test_non_uuid_file_name_is_ignored(processor, extraction_service):
    result = processor.run(JPEG_BYTES, "u1/not-a-guid.jpg")

    assert result is None
    extraction_service.extract.assert_not_called()


def test_unsupported_extension_is_ignored(processor, make_receipt, extraction_service):
    receipt = make_receipt()

    result = processor.run(JPEG_BYTES, f"u1/{receipt.id}.gif")

    assert result is None
    extraction_service.extract.assert_not_called()


def test_missing_receipt_is_ignored(processor, extraction_service, relocate):
    result = processor.run(JPEG_BYTES, f"u1/{uuid.uuid4()}.jpg")

    assert result is None
    extraction_service.extract.assert_not_called()
    relocate.assert_not_called()


def test_receipt_of_another_owner_is_ignored(processor, make_receipt, extraction_service):
    receipt = make_receipt(owner_id="u2")

    result = processor.run(JPEG_BYTES, f"u1/{receipt.id}.jpg")

    assert result is None
    extraction_service.extract.assert_not_called()


def test_relocation_failure_keeps_completed_status(db, processor, make_receipt, relocate):
    relocate.side_effect = Exception("Storage service unavailable")
    receipt = make_receipt()

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.COMPLETED
    assert receipt.status == "Completed"


def test_redelivery_after_review_does_not_reextract(
    db, processor, make_receipt, extraction_service, relocate
):
    receipt = make_receipt(status=ReceiptStatus.COMPLETED, merchant_name="Corrected by user")

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.COMPLETED
    assert receipt.merchant_name == "Corrected by user"
    extraction_service.extract.assert_not_called()
    # The pending move is retried in case the first attempt failed
    relocate.assert_called_once_with(receipt.blob_name)


def test_rerun_after_failure_processes_again(db, processor, make_receipt):
    receipt = make_receipt(status=ReceiptStatus.FAILED, error_message="timeout")

    status = processor.run(JPEG_BYTES, receipt.blob_name)

    db.refresh(receipt)
    assert status == ReceiptStatus.COMPLETED
    assert receipt.error_message is None


def test_concurrent_update_is_abandoned(processor, make_receipt, extraction_service, relocate):
    receipt = make_receipt()

    with patch.object(processor.repository, "update", side_effect=StaleDataError("stale")):
        result = processor.run(JPEG_BYTES, receipt.blob_name)

    assert result is None
    extraction_service.extract.assert_not_called()
    relocate.assert_not_called()


class TestMalformedBackendOutput:
    """Whatever a backend reports, the receipt never stays at Processing."""

    def _run(self, db, make_receipt, relocate, analyze):
        extractor = MagicMock()
        extractor.analyze = analyze
        processor = ReceiptProcessor(
            db,
            extraction_service=ReceiptExtractionService(extractor),
            dispatch_relocation=relocate,
        )
        receipt = make_receipt()

        status = processor.run(JPEG_BYTES, receipt.blob_name)

        db.refresh(receipt)
        return status, receipt

    def test_non_numeric_total_from_vision_reply(self, db, make_receipt, relocate):
        raw = parse_vision_response(
            '{"is_receipt": true,'
            ' "merchant_name": {"value": "Konzum", "confidence": 0.95},'
            ' "total_amount": {"value": "12,50", "confidence": 0.97},'
            ' "currency": "EUR",'
            ' "transaction_date": {"value": "2025-06-15", "confidence": 0.92}}'
        )

        status, receipt = self._run(db, make_receipt, relocate, AsyncMock(return_value=raw))

        assert status == ReceiptStatus.NEEDS_REVIEW
        assert receipt.status == "NeedsReview"
        assert receipt.merchant_name == "Konzum"
        assert receipt.total_amount is None
        assert receipt.currency is None
        relocate.assert_called_once_with(receipt.blob_name)

    def test_total_too_large_for_column(self, db, make_receipt, relocate):
        raw = RawExtraction(
            success=True,
            merchant_name=FieldReading("Konzum", 0.95),
            total_amount=FieldReading("1e20", 0.97),
            transaction_date=FieldReading(date(2025, 6, 15), 0.92),
            currency="EUR",
        )

        status, receipt = self._run(db, make_receipt, relocate, AsyncMock(return_value=raw))

        assert status == ReceiptStatus.NEEDS_REVIEW
        assert receipt.total_amount is None

    def test_invalid_confidences_need_review(self, db, make_receipt, relocate):
        raw = RawExtraction(
            success=True,
            merchant_name=FieldReading("Konzum", float("nan")),
            total_amount=FieldReading(1, 95),
            transaction_date=FieldReading(date(2025, 6, 15), 0.92),
        )

        status, receipt = self._run(db, make_receipt, relocate, AsyncMock(return_value=raw))

        assert status == ReceiptStatus.NEEDS_REVIEW
        assert receipt.merchant_name == "Konzum"
        assert receipt.merchant_name_confidence is None
        assert receipt.total_amount == Decimal("1.00")
        assert receipt.total_amount_confidence is None

    def test_backend_error_fails_receipt(self, db, make_receipt, relocate):
        analyze = AsyncMock(side_effect=ValueError("Failed to parse receipt: Expecting value"))

        status, receipt = self._run(db, make_receipt, relocate, analyze)

        assert status == ReceiptStatus.FAILED
        assert receipt.status == "Failed"
        assert receipt.error_message == (
            "Document extraction error: Failed to parse receipt: Expecting value"
        )
        relocate.assert_not_called()
