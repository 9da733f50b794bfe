"""Receipt persistence, always scoped to the owning user."""

import uuid

from sqlalchemy.orm import Session

from receipt_tracker.models.receipt import Receipt


class ReceiptRepository:
    """CRUD over receipts keyed by (id, owner)."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, receipt: Receipt) -> Receipt:
        self.db.add(receipt)
        self.db.commit()
        self.db.refresh(receipt)
        return receipt

    def get_by_id(self, receipt_id: uuid.UUID, owner_id: str) -> Receipt | None:
        """Get a receipt only if it belongs to the owner."""
        return (
            self.db.query(Receipt)
            .filter(
                Receipt.id == receipt_id,
                Receipt.owner_id == owner_id,
            )
            .first()
        )

    def list_by_owner(self, owner_id: str) -> list[Receipt]:
        """List an owner's receipts, newest first."""
        return (
            self.db.query(Receipt)
            .filter(Receipt.owner_id == owner_id)
            .order_by(Receipt.created_at.desc())
            .all()
        )

    def update(self, receipt: Receipt) -> Receipt:
        """Persist changes made to a receipt loaded from this session.

        Raises:
            sqlalchemy.orm.exc.StaleDataError: another writer updated the row first
        """
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(receipt)
        return receipt
