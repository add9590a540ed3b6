from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_REVERSED = "reversed"


class Transfer(db.Model):
    """
    Inter-branch stock transfer.

    Transfers complete immediately: the source is decremented and the
    destination incremented in the same transaction. Reversing the transfer
    activity moves the quantities back and marks the transfer reversed.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("from_branch_id <> to_branch_id", name="ck_transfers_distinct_branches"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_COMPLETED, index=True)
    transfer_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("TransferItem", backref="transfer", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "user_id": self.user_id,
            "notes": self.notes,
            "status": self.status,
            "transfer_date": to_utc_z(self.transfer_date),
        }


class TransferItem(db.Model):
    __tablename__ = "transfer_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
        }
