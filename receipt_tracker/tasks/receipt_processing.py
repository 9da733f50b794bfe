"""Celery tasks for receipt processing.

``process_staged_receipt`` plays the role of the storage trigger: it fires
once per object landing in quarantine and may fire more than once.
"""

import logging

from receipt_tracker.celery_app import app as celery_app
from receipt_tracker.database import SessionLocal
from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.services.object_stage import (
    ObjectNotFoundError,
    get_object_stage,
    parse_staged_path,
)
from receipt_tracker.services.receipt_processor import ReceiptProcessor
from receipt_tracker.services.receipt_repository import ReceiptRepository

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.process_staged_receipt")
def process_staged_receipt(blob_name: str) -> dict:
    """Run extraction for a file staged in quarantine.

    Args:
        blob_name: Object path, "{owner_id}/{receipt_id}{extension}"

    Returns:
        Dict with the resulting status (None when processing was skipped)
    """
    try:
        content = get_object_stage().read(blob_name)
    except ObjectNotFoundError:
        logger.error(f"Staged object '{blob_name}' not found in quarantine")
        return {"blob_name": blob_name, "status": None}
    except ValueError as e:
        logger.error(f"Rejected staged object path '{blob_name}': {e}")
        return {"blob_name": blob_name, "status": None}

    db = SessionLocal()
    try:
        status = ReceiptProcessor(db).run(content, blob_name)
        return {"blob_name": blob_name, "status": status.value if status else None}
    finally:
        db.close()


@celery_app.task(name="tasks.relocate_receipt_object")
def relocate_receipt_object(blob_name: str) -> dict:
    """Move a processed file out of quarantine.

    Best effort: failures are logged and never retried here, since the
    receipt's status is already committed.
    """
    try:
        moved = get_object_stage().relocate(blob_name)
    except Exception as e:
        logger.exception(f"Failed to move '{blob_name}' to the processed area")
        return {"blob_name": blob_name, "moved": False, "error": str(e)}

    if moved:
        logger.info(f"Object '{blob_name}' moved to the processed area.")
    return {"blob_name": blob_name, "moved": moved}


@celery_app.task(name="tasks.requeue_stale_uploads")
def requeue_stale_uploads(include_failed: bool = False) -> dict:
    """Re-trigger processing for objects still sitting in quarantine.

    Stands in for the storage layer's redelivery; objects whose receipts
    are already settled only get their pending move retried. Failed
    receipts are left alone unless ``include_failed`` is set, and objects
    without a receipt row are skipped.

    Args:
        include_failed: Also retry extraction for Failed receipts
    """
    blob_names = get_object_stage().list_quarantined()

    requeued = []
    skipped_failed = 0
    orphaned = 0
    db = SessionLocal()
    try:
        repository = ReceiptRepository(db)
        for blob_name in blob_names:
            staged = parse_staged_path(blob_name)
            receipt = (
                repository.get_by_id(staged.receipt_id, staged.owner_id) if staged else None
            )
            if receipt is None:
                orphaned += 1
                continue
            if receipt.receipt_status == ReceiptStatus.FAILED and not include_failed:
                skipped_failed += 1
                continue
            requeued.append(blob_name)
    finally:
        db.close()

    for blob_name in requeued:
        process_staged_receipt.delay(blob_name)

    logger.info(
        f"Requeued {len(requeued)} quarantined object(s); "
        f"skipped {skipped_failed} failed and {orphaned} without a receipt"
    )
    return {"requeued": len(requeued), "skipped_failed": skipped_failed, "orphaned": orphaned}
