"""Receipt upload, polling and review endpoints."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm.exc import StaleDataError

from receipt_tracker.api.dependencies import get_owner_id, get_receipt_repository, get_storage
from receipt_tracker.api.error_handlers import ReceiptNotFoundError
from receipt_tracker.models.enums import ReceiptStatus
from receipt_tracker.models.receipt import Receipt
from receipt_tracker.schemas.receipt import (
    ReceiptResponse,
    ReceiptReviewRequest,
    ReceiptUploadResponse,
)
from receipt_tracker.services.file_validator import (
    MAX_FILE_SIZE_BYTES,
    extension_for,
    has_valid_signature,
    is_allowed_type,
)
from receipt_tracker.services.object_stage import ObjectStage, build_object_path
from receipt_tracker.services.receipt_repository import ReceiptRepository
from receipt_tracker.services.receipt_state import ReviewNotAllowedError, submit_review

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/receipts", tags=["receipts"])


def _reject_upload(reason: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"reason": reason, "message": message},
    )


def get_owned_receipt(
    repository: ReceiptRepository, receipt_id: uuid.UUID, owner_id: str
) -> Receipt:
    """Get a receipt that belongs to the owner."""
    receipt = repository.get_by_id(receipt_id, owner_id)
    if receipt is None:
        raise ReceiptNotFoundError(receipt_id)
    return receipt


@router.post(
    "/upload",
    response_model=ReceiptUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_receipt(
    file: Annotated[UploadFile, File(description="Receipt image or PDF (JPEG, PNG or PDF)")],
    owner_id: Annotated[str, Depends(get_owner_id)],
    repository: Annotated[ReceiptRepository, Depends(get_receipt_repository)],
    storage: Annotated[ObjectStage, Depends(get_storage)],
):
    """Upload a receipt for extraction.

    The receipt is processed asynchronously. Poll GET /api/receipts/{id} to
    follow its status.

    Note: This endpoint must remain async because UploadFile.read() is async;
    storage and database calls block, so they run in the threadpool.
    """
    from receipt_tracker.tasks.receipt_processing import process_staged_receipt

    # Read at most one byte past the limit; that is enough to reject
    content = await file.read(MAX_FILE_SIZE_BYTES + 1)

    if not content:
        raise _reject_upload("file_empty", "File is empty.")
    if len(content) > MAX_FILE_SIZE_BYTES:
        raise _reject_upload("file_too_large", "File exceeds the 10 MB size limit.")
    if not is_allowed_type(file.content_type):
        raise _reject_upload("unsupported_type", "Only JPEG, PNG, and PDF files are accepted.")
    if not has_valid_signature(content, file.content_type):
        raise _reject_upload(
            "signature_mismatch", "File content does not match its declared type."
        )

    content_type = file.content_type.lower()
    receipt_id = uuid.uuid4()
    blob_name = build_object_path(owner_id, receipt_id, extension_for(content_type))

    try:
        await run_in_threadpool(storage.stage, content, blob_name, content_type)
    except Exception:
        logger.exception(f"Failed to stage upload '{blob_name}'")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"reason": "storage_unavailable", "message": "Could not store the file."},
        ) from None

    receipt = await run_in_threadpool(
        repository.create,
        Receipt(
            id=receipt_id,
            owner_id=owner_id,
            original_file_name=file.filename or f"receipt{extension_for(content_type)}",
            blob_name=blob_name,
            status=ReceiptStatus.UPLOADED.value,
        ),
    )
    logger.info(f"Receipt {receipt.id} uploaded. Owner: {owner_id}. Object: {blob_name}")

    try:
        process_staged_receipt.delay(blob_name)
    except Exception as e:
        # Stays Uploaded and in quarantine; requeue_stale_uploads picks it up
        logger.error(f"Failed to queue processing for receipt {receipt.id}: {e}")

    return ReceiptUploadResponse(
        id=receipt.id,
        status=receipt.status,
        message="Receipt uploaded successfully. Processing in background.",
    )


@router.get("", response_model=list[ReceiptResponse])
def list_receipts(
    owner_id: Annotated[str, Depends(get_owner_id)],
    repository: Annotated[ReceiptRepository, Depends(get_receipt_repository)],
):
    """List the owner's receipts, newest first."""
    return repository.list_by_owner(owner_id)


@router.get("/{receipt_id}", response_model=ReceiptResponse)
def get_receipt(
    receipt_id: uuid.UUID,
    owner_id: Annotated[str, Depends(get_owner_id)],
    repository: Annotated[ReceiptRepository, Depends(get_receipt_repository)],
):
    """Get a single receipt. Used for polling."""
    return get_owned_receipt(repository, receipt_id, owner_id)


@router.patch("/{receipt_id}/review", response_model=ReceiptResponse)
def review_receipt(
    receipt_id: uuid.UUID,
    review: ReceiptReviewRequest,
    owner_id: Annotated[str, Depends(get_owner_id)],
    repository: Annotated[ReceiptRepository, Depends(get_receipt_repository)],
):
    """Submit corrections for a receipt in NeedsReview and complete it."""
    receipt = get_owned_receipt(repository, receipt_id, owner_id)

    try:
        submit_review(receipt, review.to_patch())
    except ReviewNotAllowedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None

    try:
        repository.update(receipt)
    except StaleDataError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Receipt was modified while the review was submitted. Reload and retry.",
        ) from None

    logger.info(f"Receipt {receipt_id} reviewed and completed by owner {owner_id}")
    return receipt
