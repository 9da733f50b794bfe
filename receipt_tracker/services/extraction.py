"""Receipt field extraction: result model, confidence classification, service.

Backends (Document Intelligence, Claude Vision) only report what they saw as a
``RawExtraction``. Deciding whether a receipt can be accepted as-is or needs a
human to look at it happens here, once, for every backend.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Protocol

from receipt_tracker.config import get_settings

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.80

NO_RECEIPT_FOUND_MESSAGE = "No receipt could be identified in the uploaded document."

_CENTS = Decimal("0.01")

# Totals are stored as Numeric(18, 2)
MAX_AMOUNT = Decimal(10) ** 16
MAX_MERCHANT_NAME_LENGTH = 512
MAX_CURRENCY_LENGTH = 10


class FieldVerdict(StrEnum):
    """Outcome of checking one extracted field against the threshold."""

    ACCEPTED = "accepted"
    NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class FieldReading:
    """A value recognized by the extraction backend and its confidence."""

    value: Any
    confidence: float


@dataclass(frozen=True)
class RawExtraction:
    """What a backend recognized, before any review decision.

    A field is None when the backend did not find it (or found it with the
    wrong type). Currency carries no confidence of its own.
    """

    success: bool
    error_message: str | None = None
    merchant_name: FieldReading | None = None
    total_amount: FieldReading | None = None
    transaction_date: FieldReading | None = None
    currency: str | None = None

    @classmethod
    def failed(cls, error_message: str) -> "RawExtraction":
        return cls(success=False, error_message=error_message)


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of one extraction attempt, ready to be applied to a receipt."""

    success: bool
    error_message: str | None = None
    merchant_name: str | None = None
    merchant_name_confidence: float | None = None
    total_amount: Decimal | None = None
    total_amount_confidence: float | None = None
    currency: str | None = None
    transaction_date: date | None = None
    transaction_date_confidence: float | None = None
    needs_review: bool = False

    @classmethod
    def failure(cls, error_message: str) -> "ExtractionResult":
        return cls(success=False, error_message=error_message)


def is_valid_confidence(confidence: Any) -> bool:
    """Check that a confidence is a finite score in [0.0, 1.0]."""
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        return False
    return math.isfinite(confidence) and 0.0 <= confidence <= 1.0


def classify_field(
    present: bool, confidence: float | None, threshold: float = CONFIDENCE_THRESHOLD
) -> FieldVerdict:
    """Decide whether a single field can be accepted without review.

    A missing field, one whose confidence is strictly below the threshold, or
    one whose confidence is not a score in [0.0, 1.0] needs review.
    """
    if not present or not is_valid_confidence(confidence) or confidence < threshold:
        return FieldVerdict.NEEDS_REVIEW
    return FieldVerdict.ACCEPTED


def to_amount(value: Any) -> Decimal | None:
    """Convert a recognized total to cents, or None if it is not a usable amount.

    Amounts must be finite and fit ``Numeric(18, 2)``.
    """
    if isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
        return None
    amount = amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
    return amount if abs(amount) < MAX_AMOUNT else None


def _field_value(name: str, reading: FieldReading | None) -> Any:
    if reading is None or reading.value is None:
        return None
    if name == "total_amount":
        amount = to_amount(reading.value)
        if amount is None:
            logger.warning(f"Discarding unusable total amount: {reading.value!r}")
        return amount
    if name == "merchant_name":
        if not isinstance(reading.value, str) or not reading.value.strip():
            return None
        return reading.value.strip()[:MAX_MERCHANT_NAME_LENGTH]
    if name == "transaction_date" and not isinstance(reading.value, date):
        return None
    return reading.value


def _currency(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    currency = value.strip()
    return currency if len(currency) <= MAX_CURRENCY_LENGTH else None


def classify_extraction(
    raw: RawExtraction, threshold: float = CONFIDENCE_THRESHOLD
) -> ExtractionResult:
    """Turn a backend's raw extraction into an ExtractionResult.

    Values that cannot be stored count as missing. A confidence outside
    [0.0, 1.0] is dropped and its field needs review.
    """
    if not raw.success:
        return ExtractionResult.failure(raw.error_message or "Extraction failed.")

    readings = {
        "merchant_name": raw.merchant_name,
        "total_amount": raw.total_amount,
        "transaction_date": raw.transaction_date,
    }

    fields: dict[str, Any] = {}
    verdicts: list[FieldVerdict] = []
    for name, reading in readings.items():
        value = _field_value(name, reading)
        present = value is not None
        confidence = reading.confidence if present else None
        verdict = classify_field(present, confidence, threshold)
        verdicts.append(verdict)

        if present:
            fields[name] = value
            fields[f"{name}_confidence"] = confidence if is_valid_confidence(confidence) else None

        if verdict is FieldVerdict.NEEDS_REVIEW:
            if not present:
                logger.info(f"{name} not found in extraction result")
            elif not is_valid_confidence(confidence):
                logger.warning(f"{name} has an invalid confidence {confidence!r}")
            else:
                logger.info(f"{name} confidence {confidence:.2f} is below threshold {threshold}")

    if "total_amount" in fields:
        fields["currency"] = _currency(raw.currency)

    return ExtractionResult(
        success=True,
        needs_review=any(v is FieldVerdict.NEEDS_REVIEW for v in verdicts),
        **fields,
    )


class ReceiptExtractor(Protocol):
    """A backend that reads receipt fields out of a document."""

    async def analyze(self, content: bytes, media_type: str) -> RawExtraction: ...


class ReceiptExtractionService:
    """Runs a backend and classifies what it found.

    Backend errors never escape: they come back as a failed result so the
    caller can record them on the receipt.
    """

    def __init__(self, extractor: ReceiptExtractor, threshold: float = CONFIDENCE_THRESHOLD):
        self.extractor = extractor
        self.threshold = threshold

    async def extract(self, content: bytes, media_type: str = "image/jpeg") -> ExtractionResult:
        """Extract and classify receipt fields from raw document bytes."""
        try:
            logger.info(f"Calling {type(self.extractor).__name__} ({len(content)} bytes)")
            raw = await self.extractor.analyze(content, media_type)
            result = classify_extraction(raw, self.threshold)
        except Exception as e:
            logger.exception("Receipt extraction failed")
            return ExtractionResult.failure(f"Document extraction error: {e}")

        if result.success:
            logger.info(
                f"Extraction complete. Merchant: '{result.merchant_name}', "
                f"Total: {result.total_amount} {result.currency}, "
                f"NeedsReview: {result.needs_review}"
            )
        else:
            logger.warning(f"Extraction unsuccessful: {result.error_message}")
        return result


def get_extraction_service() -> ReceiptExtractionService:
    """Build the extraction service for the configured provider."""
    settings = get_settings()
    provider = settings.extraction_provider.lower()

    if provider == "anthropic":
        from receipt_tracker.services.vision_extraction import VisionReceiptExtractor

        return ReceiptExtractionService(VisionReceiptExtractor())
    if provider == "document_intelligence":
        from receipt_tracker.services.document_intelligence import DocumentIntelligenceClient

        return ReceiptExtractionService(DocumentIntelligenceClient())
    raise ValueError(f"Unknown extraction provider: {settings.extraction_provider}")
