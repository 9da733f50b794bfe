"""Drives a staged receipt through extraction.

Triggered once per object landing in quarantine; delivery is at-least-once,
so every step here is safe to repeat for the same object.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.services import receipt_state
from receipt_tracker.services.extraction import ReceiptExtractionService, get_extraction_service
from receipt_tracker.services.file_validator import content_type_for
from receipt_tracker.services.object_stage import parse_staged_path
from receipt_tracker.services.receipt_repository import ReceiptRepository

logger = logging.getLogger(__name__)


def enqueue_relocation(blob_name: str) -> None:
    """Hand the quarantine -> processed move to a background task."""
    from receipt_tracker.tasks.receipt_processing import relocate_receipt_object

    relocate_receipt_object.delay(blob_name)


class ReceiptProcessor:
    """Runs extraction for one staged object and records the outcome."""

    def __init__(
        self,
        db: Session,
        extraction_service: ReceiptExtractionService | None = None,
        dispatch_relocation: Callable[[str], None] | None = None,
    ):
        self.repository = ReceiptRepository(db)
        self.extraction_service = extraction_service or get_extraction_service()
        self.dispatch_relocation = dispatch_relocation or enqueue_relocation

    def run(self, content: bytes, blob_name: str) -> ReceiptStatus | None:
        """Process a staged receipt file.

        Args:
            content: The staged file's bytes
            blob_name: Object path, "{owner_id}/{receipt_id}{extension}"

        Returns:
            The receipt's resulting status, or None when nothing was processed
        """
        logger.info(f"Receipt processor triggered. Object: {blob_name}")

        staged = parse_staged_path(blob_name)
        if staged is None:
            return None

        try:
            media_type = content_type_for(staged.extension)
        except ValueError:
            logger.error(f"Unsupported extension on staged object: '{blob_name}'")
            return None

        receipt = self.repository.get_by_id(staged.receipt_id, staged.owner_id)
        if receipt is None:
            logger.error(
                f"No receipt record found for ID {staged.receipt_id} and owner "
                f"'{staged.owner_id}'. The object may have been staged without an upload."
            )
            return None

        current = receipt.receipt_status
        if current.is_settled():
            # A redelivered trigger; don't overwrite the outcome (or a user's review)
            logger.info(f"Receipt {receipt.id} already {current.value}, skipping extraction")
            self._relocate(blob_name)
            return current

        try:
            receipt_state.mark_processing(receipt)
            self.repository.update(receipt)
            logger.info(f"Receipt {receipt.id} status set to Processing.")

            result = asyncio.run(self.extraction_service.extract(content, media_type))

            status = receipt_state.apply_extraction(receipt, result)
            self.repository.update(receipt)
        except StaleDataError:
            logger.warning(
                f"Receipt {staged.receipt_id} was modified concurrently; "
                "leaving it to the other writer"
            )
            return None

        if status == ReceiptStatus.FAILED:
            logger.warning(f"Receipt {receipt.id} processing failed: {receipt.error_message}")
            return status

        logger.info(
            f"Receipt {receipt.id} updated. Status: {status.value}. "
            f"Merchant: '{receipt.merchant_name}'. Total: {receipt.total_amount} {receipt.currency}."
        )
        self._relocate(blob_name)
        return status

    def _relocate(self, blob_name: str) -> None:
        # The status is already committed; a failed move must not touch it
        try:
            self.dispatch_relocation(blob_name)
        except Exception:
            logger.exception(f"Failed to dispatch move of '{blob_name}' to the processed area")
