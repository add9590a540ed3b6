# Overview: Service-layer operations for sales; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import BackOfficeError, StoreError, ValidationError
from ..extensions import db
from ..models import Sale, SaleItem
from ..models.sales import SALE_STATUS_COMPLETED
from ..validation import require_amount_cents, require_int
from .activity_deltas import ACTIVITY_SELL, SaleLine, SellDelta
from .activity_service import record_activity
from .concurrency import run_with_retry
from .inventory_service import MOVEMENT_OUT, decrement_stock, record_movement, require_branch, require_product

PAYMENT_METHODS = ("cash", "card", "mobile", "bank_transfer")


def _normalize_lines(items) -> list[dict]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Sale must contain at least one item")
    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        unit_price = raw.get("unit_price")
        lines.append({
            "product_id": require_int(raw.get("product_id"), "items.product_id", minimum=1),
            "quantity": require_int(raw.get("quantity"), "items.quantity", minimum=1),
            "unit_price": require_amount_cents(unit_price, "items.unit_price") if unit_price is not None else None,
        })
    return lines


def create_sale(
    ctx: RequestContext,
    branch_id: int,
    items: list[dict],
    *,
    discount: int = 0,
    payment_method: str = "cash",
    customer_name: str | None = None,
    customer_phone: str | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Complete a point-of-sale transaction.

    Each line decrements the branch inventory (InsufficientStockError when
    short), lines default to the product's list price, and the sell activity
    captures exactly what a restore needs to restock the branch.

    Args:
        items: [{"product_id", "quantity", "unit_price"?}] (prices in cents)
        discount: Whole-sale discount in cents

    Returns:
        Sale: The committed sale
    """
    branch_id = require_int(branch_id, "branch_id", minimum=1)
    lines = _normalize_lines(items)
    discount = require_amount_cents(discount or 0, "discount")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    require_branch_access(ctx, branch_id)

    def _op():
        require_branch(branch_id)

        priced = []
        for line in lines:
            product = require_product(line["product_id"])
            unit_price = line["unit_price"]
            if unit_price is None:
                if product.price_cents is None:
                    raise ValidationError(
                        "Product has no price; unit_price is required",
                        product_id=product.id,
                    )
                unit_price = product.price_cents
            priced.append(SaleLine(product_id=product.id, quantity=line["quantity"], unit_price=unit_price))

        subtotal = sum(line.quantity * line.unit_price for line in priced)
        if discount > subtotal:
            raise ValidationError("discount cannot exceed the sale subtotal")

        sale = Sale(
            branch_id=branch_id,
            user_id=ctx.user_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            payment_method=payment_method,
            total_amount_cents=subtotal - discount,
            discount_cents=discount,
            notes=notes,
            status=SALE_STATUS_COMPLETED,
        )
        db.session.add(sale)
        db.session.flush()

        for line in priced:
            decrement_stock(line.product_id, branch_id, line.quantity)
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price,
                total_price_cents=line.quantity * line.unit_price,
            ))
            record_movement(
                line.product_id,
                branch_id,
                MOVEMENT_OUT,
                line.quantity,
                user_id=ctx.user_id,
                reason="Sale",
                reference_type="sale",
                reference_id=sale.id,
            )

        record_activity(
            ACTIVITY_SELL,
            SellDelta(total_amount=sale.total_amount_cents, discount=discount, items=tuple(priced)),
            branch_id=branch_id,
            user_id=ctx.user_id,
            related_entity=("sale", sale.id),
            title="Sale completed",
            description=f"Items: {len(priced)}, Total: {sale.total_amount_cents}",
        )
        db.session.commit()
        return sale

    try:
        sale = run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Sale creation failed")
        raise StoreError("Failed to create sale") from exc

    current_app.logger.info("Sale %s completed at branch %s", sale.id, branch_id)
    return sale
