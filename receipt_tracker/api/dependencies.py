"""FastAPI dependencies for the requesting owner, storage and persistence."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from receipt_tracker.config import get_settings
from receipt_tracker.database import get_db
from receipt_tracker.services.object_stage import ObjectStage, get_object_stage, is_safe_owner_id
from receipt_tracker.services.receipt_repository import ReceiptRepository


def get_owner_id(
    x_user_id: Annotated[str | None, Header(description="Placeholder owner identifier")] = None,
) -> str:
    """Get the requesting owner from the X-User-Id header.

    This is not authentication: the header is trusted as-is until requests
    carry a verified identity. Blank or missing means the default owner.
    """
    if x_user_id is None or not x_user_id.strip():
        return get_settings().default_owner_id

    owner_id = x_user_id.strip()
    if not is_safe_owner_id(owner_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "reason": "invalid_owner",
                "message": "X-User-Id may only contain letters, digits, '.', '_', '-' and '@'.",
            },
        )
    return owner_id


def get_receipt_repository(
    db: Annotated[Session, Depends(get_db)],
) -> ReceiptRepository:
    """Get receipt repository bound to the request's session."""
    return ReceiptRepository(db)


def get_storage() -> ObjectStage:
    """Get the configured object stage."""
    return get_object_stage()
