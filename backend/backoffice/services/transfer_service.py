# Overview: Service-layer operations for inter-branch transfers; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import BackOfficeError, StoreError, ValidationError
from ..extensions import db
from ..models import Transfer, TransferItem
from ..models.documents import TRANSFER_STATUS_COMPLETED
from ..validation import require_int
from .activity_deltas import ACTIVITY_TRANSFER, TransferDelta, TransferLine
from .activity_service import record_activity
from .concurrency import run_with_retry
from .inventory_service import (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    decrement_stock,
    increment_stock,
    record_movement,
    require_branch,
    require_product,
)


def transfer_stock(
    ctx: RequestContext,
    from_branch_id: int,
    to_branch_id: int,
    items: list[dict],
    notes: str | None = None,
) -> Transfer:
    """
    Move stock between two branches in one transaction.

    The caller must have access to the source branch. Source decrements are
    guarded (InsufficientStockError) and the destination row is created on
    first receipt.
    """
    from_branch_id = require_int(from_branch_id, "from_branch_id", minimum=1)
    to_branch_id = require_int(to_branch_id, "to_branch_id", minimum=1)
    if from_branch_id == to_branch_id:
        raise ValidationError("Cannot transfer to the same branch")
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Transfer must contain at least one item")
    lines = [TransferLine.from_dict(item) for item in items]
    require_branch_access(ctx, from_branch_id)

    def _op():
        require_branch(from_branch_id)
        require_branch(to_branch_id)
        for line in lines:
            require_product(line.product_id)

        transfer = Transfer(
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            user_id=ctx.user_id,
            notes=notes,
            status=TRANSFER_STATUS_COMPLETED,
        )
        db.session.add(transfer)
        db.session.flush()

        for line in lines:
            decrement_stock(line.product_id, from_branch_id, line.quantity)
            increment_stock(line.product_id, to_branch_id, line.quantity)
            db.session.add(TransferItem(
                transfer_id=transfer.id,
                product_id=line.product_id,
                quantity=line.quantity,
            ))
            for branch_id, movement_type in ((from_branch_id, MOVEMENT_OUT), (to_branch_id, MOVEMENT_IN)):
                record_movement(
                    line.product_id,
                    branch_id,
                    movement_type,
                    line.quantity,
                    user_id=ctx.user_id,
                    reason="Transfer",
                    reference_type="transfer",
                    reference_id=transfer.id,
                )

        record_activity(
            ACTIVITY_TRANSFER,
            TransferDelta(from_branch_id=from_branch_id, to_branch_id=to_branch_id, items=tuple(lines)),
            branch_id=from_branch_id,
            user_id=ctx.user_id,
            related_entity=("transfer", transfer.id),
            title="Stock transferred",
            description=f"Branch {from_branch_id} -> {to_branch_id}, items: {len(lines)}",
        )
        db.session.commit()
        return transfer

    try:
        transfer = run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Transfer failed")
        raise StoreError("Failed to transfer stock") from exc

    current_app.logger.info("Transfer %s completed (%s -> %s)", transfer.id, from_branch_id, to_branch_id)
    return transfer
