"""Exception handlers for receipt lookups.

Missing receipts and receipts owned by someone else look the same to the
caller: an empty 404.
"""

import uuid

from fastapi import FastAPI, Request, Response, status


class ReceiptNotFoundError(Exception):
    """No receipt with this id belongs to the requesting owner."""

    def __init__(self, receipt_id: uuid.UUID):
        self.receipt_id = receipt_id
        super().__init__(f"Receipt {receipt_id} not found")


def receipt_not_found_handler(request: Request, exc: ReceiptNotFoundError) -> Response:
    return Response(status_code=status.HTTP_404_NOT_FOUND)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReceiptNotFoundError, receipt_not_found_handler)
