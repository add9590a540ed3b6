# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/backoffice/services/inventory_service.py

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import (
    BackOfficeError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from ..extensions import db
from ..models import Branch, Inventory, Product, StockMovement
from ..time_utils import utcnow
from ..validation import require_int
from .activity_deltas import ACTIVITY_STOCK_ADD, ACTIVITY_STOCK_REDUCE, StockMovementDelta
from .activity_service import record_activity
from .concurrency import run_with_retry
"""
Inventory Invariants (authoritative)

Stock model:
- inventory.quantity is a stored counter per (product, branch).
- Every change is a single set-based UPDATE (quantity = quantity +/- q);
  no read-modify-write in Python, so concurrent writers serialize on the
  store's row lock.
- Decrements are guarded in the WHERE clause (quantity >= q). Zero rows
  updated means insufficient stock, never a silent clamp.
- Floored decrements (used only when undoing a stock_add) clamp at zero.
- quantity never goes negative (CHECK constraint backs this up).

Audit:
- Every change appends a StockMovement ("in" / "out").
- Business entry points (adjust_stock) also record an activity.

The primitives below never commit; callers own the transaction.
"""

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
FLOORED_DECREMENT_ATTEMPTS = 5


def _inventory_filter(product_id: int, branch_id: int):
    return (Inventory.product_id == product_id, Inventory.branch_id == branch_id)


def get_quantity(product_id: int, branch_id: int) -> int:
    """Quantity on hand; 0 when the product has never been stocked at the branch."""
    qty = db.session.execute(
        select(Inventory.quantity).where(*_inventory_filter(product_id, branch_id))
    ).scalar_one_or_none()
    return int(qty or 0)


def increment_stock(product_id: int, branch_id: int, quantity: int) -> int:
    """Add quantity at a branch, creating the inventory row if needed. Returns new quantity."""
    result = db.session.execute(
        update(Inventory)
        .where(*_inventory_filter(product_id, branch_id))
        .values(quantity=Inventory.quantity + quantity, last_restocked=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.add(
            Inventory(
                product_id=product_id,
                branch_id=branch_id,
                quantity=quantity,
                last_restocked=utcnow(),
            )
        )
        db.session.flush()
    return get_quantity(product_id, branch_id)


def decrement_stock(product_id: int, branch_id: int, quantity: int) -> int:
    """
    Remove quantity at a branch. Returns new quantity.

    Raises:
        InsufficientStockError: fewer than `quantity` units on hand
    """
    result = db.session.execute(
        update(Inventory)
        .where(*_inventory_filter(product_id, branch_id), Inventory.quantity >= quantity)
        .values(quantity=Inventory.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientStockError(
            product_id=product_id,
            branch_id=branch_id,
            available=get_quantity(product_id, branch_id),
            required=quantity,
        )
    return get_quantity(product_id, branch_id)


def decrement_stock_floored(product_id: int, branch_id: int, quantity: int) -> tuple[int, int]:
    """
    Remove up to `quantity`, never going below zero.

    The UPDATE is conditional on the quantity just read, so `removed` always
    describes the write that landed; a concurrent change makes it retry.

    Returns:
        (removed, new_quantity)

    Raises:
        InvalidStateError: quantity kept changing underneath us
    """
    for _ in range(FLOORED_DECREMENT_ATTEMPTS):
        current = get_quantity(product_id, branch_id)
        if current == 0:
            return 0, 0
        result = db.session.execute(
            update(Inventory)
            .where(*_inventory_filter(product_id, branch_id), Inventory.quantity == current)
            .values(
                quantity=case(
                    (Inventory.quantity > quantity, Inventory.quantity - quantity),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            removed = min(current, quantity)
            return removed, current - removed
    raise InvalidStateError(
        "Stock changed concurrently; try again",
        product_id=product_id,
        branch_id=branch_id,
    )


def record_movement(
    product_id: int,
    branch_id: int,
    movement_type: str,
    quantity: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement | None:
    if quantity <= 0:
        return None
    movement = StockMovement(
        product_id=product_id,
        branch_id=branch_id,
        user_id=user_id,
        movement_type=movement_type,
        quantity=quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.session.add(movement)
    return movement


def require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", product_id=product_id)
    return product


def require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch not found", branch_id=branch_id)
    return branch


def adjust_stock(
    ctx: RequestContext,
    product_id: int,
    branch_id: int,
    quantity_delta: int,
    reason: str | None = None,
) -> dict:
    """
    Manual stock adjustment (receiving or shrinkage).

    Positive deltas record a stock_add activity, negative ones stock_reduce.

    Returns:
        dict: {"product_id", "branch_id", "previous_quantity", "quantity", "activity_id"}
    """
    product_id = require_int(product_id, "product_id", minimum=1)
    branch_id = require_int(branch_id, "branch_id", minimum=1)
    quantity_delta = require_int(quantity_delta, "quantity_delta")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta cannot be zero")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string")
    require_branch_access(ctx, branch_id)

    def _op():
        require_product(product_id)
        require_branch(branch_id)

        previous = get_quantity(product_id, branch_id)
        qty = abs(quantity_delta)
        if quantity_delta > 0:
            new_quantity = increment_stock(product_id, branch_id, qty)
            activity_type, movement_type = ACTIVITY_STOCK_ADD, MOVEMENT_IN
        else:
            new_quantity = decrement_stock(product_id, branch_id, qty)
            activity_type, movement_type = ACTIVITY_STOCK_REDUCE, MOVEMENT_OUT

        record_movement(
            product_id,
            branch_id,
            movement_type,
            qty,
            user_id=ctx.user_id,
            reason=reason or "Manual adjustment",
            reference_type="adjustment",
        )
        activity = record_activity(
            activity_type,
            StockMovementDelta(
                product_id=product_id,
                branch_id=branch_id,
                quantity=qty,
                previous_quantity=previous,
                new_quantity=new_quantity,
            ),
            branch_id=branch_id,
            user_id=ctx.user_id,
            related_entity=("product", product_id),
            title="Stock added" if quantity_delta > 0 else "Stock reduced",
            description=reason,
        )
        db.session.commit()
        return {
            "product_id": product_id,
            "branch_id": branch_id,
            "previous_quantity": previous,
            "quantity": new_quantity,
            "activity_id": activity.id if activity else None,
        }

    try:
        return run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Stock adjustment failed")
        raise StoreError("Failed to adjust stock") from exc
