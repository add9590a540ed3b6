# backend/backoffice/services/products_service.py
"""
Product master data and direct record corrections.

Every edit captures a before/after snapshot of exactly the fields it
changed, so the history screen can put the previous values back:
- create_product      -> product_create
- update_product      -> product_update   (products only)
- correct_entity      -> edit_correction  (product, inventory, expense, sale)

Only fields listed in EDITABLE_ENTITY_FIELDS can be written here, and the
same allow-list bounds what a restore may write back.
"""
from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import BackOfficeError, InvalidStateError, NotFoundError, StoreError, ValidationError
from ..extensions import db
from ..models import Category, Expense, Inventory, Product, Sale
from ..validation import MAX_AMOUNT_CENTS, coerce_column_value, require_int, require_text
from .activity_deltas import (
    ACTIVITY_EDIT_CORRECTION,
    ACTIVITY_PRODUCT_CREATE,
    ACTIVITY_PRODUCT_UPDATE,
    EDITABLE_ENTITY_FIELDS,
    FieldChangeDelta,
    ProductCreateDelta,
)
from .activity_service import record_activity
from .concurrency import run_with_retry

ENTITY_MODELS = {
    "product": Product,
    "inventory": Inventory,
    "expense": Expense,
    "sale": Sale,
}

_NON_NEGATIVE_FIELDS = {
    "price_cents", "cost_cents", "amount_cents", "discount_cents", "total_amount_cents",
    "quantity", "min_stock_level", "max_stock_level",
}
_REQUIRED_FIELDS = {"sku", "name", "category", "amount_cents", "quantity"}


def clean_entity_fields(entity_type: str, patch: Any) -> dict:
    """
    Validate a field patch against the allow-list and the column types.

    Raises:
        ValidationError: unknown entity/field, bad type, negative amount
    """
    if entity_type not in ENTITY_MODELS:
        raise ValidationError(f"Unsupported entity_type: {entity_type!r}")
    if not isinstance(patch, dict):
        raise ValidationError("fields must be an object")

    allowed = EDITABLE_ENTITY_FIELDS[entity_type]
    table = ENTITY_MODELS[entity_type].__table__
    cleaned = {}
    for name, value in patch.items():
        if name not in allowed:
            raise ValidationError(f"Field not editable on {entity_type}: {name}")
        column = table.c[name]
        if value is None and name in _REQUIRED_FIELDS:
            raise ValidationError(f"{name} cannot be empty")
        value = coerce_column_value(column, value)
        if name in _NON_NEGATIVE_FIELDS and value is not None:
            if value < 0:
                raise ValidationError(f"{name} cannot be negative")
            if value > MAX_AMOUNT_CENTS:
                raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS}")
        cleaned[name] = value
    return cleaned


def sku_in_use(sku: str, product_id: int | None = None) -> bool:
    """True when another product (not `product_id`) already holds the SKU."""
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if product_id is not None:
        q = q.filter(Product.id != product_id)
    return q.first() is not None


def _ensure_sku_available(sku: str, product_id: int | None = None) -> None:
    if sku_in_use(sku, product_id):
        raise InvalidStateError("SKU already exists", sku=sku)


def _ensure_category(fields: dict) -> None:
    category_id = fields.get("category_id")
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise ValidationError("Category not found", category_id=category_id)


def _run(op, failure_message: str):
    try:
        return run_with_retry(op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(failure_message)
        raise StoreError(failure_message) from exc


def create_product(ctx: RequestContext, patch: dict) -> Product:
    """Create a product; sku and name are required."""
    fields = clean_entity_fields("product", patch)
    fields["sku"] = require_text(fields.get("sku"), "sku", max_length=64)
    fields["name"] = require_text(fields.get("name"), "name", max_length=255)

    def _op():
        _ensure_sku_available(fields["sku"])
        _ensure_category(fields)
        product = Product(**fields)
        db.session.add(product)
        db.session.flush()

        record_activity(
            ACTIVITY_PRODUCT_CREATE,
            ProductCreateDelta(product_id=product.id, fields=fields),
            branch_id=ctx.identity.branch_id,
            user_id=ctx.user_id,
            related_entity=("product", product.id),
            title="Product created",
            description=product.name,
        )
        db.session.commit()
        return product

    return _run(_op, "Failed to create product")


def _apply_changes(entity, fields: dict) -> tuple[dict, dict]:
    """Set fields on entity; returns (before, after) for the fields that changed."""
    before, after = {}, {}
    for name, value in fields.items():
        current = getattr(entity, name)
        if current == value:
            continue
        before[name] = current
        after[name] = value
        setattr(entity, name, value)
    return before, after


def update_product(ctx: RequestContext, product_id: int, patch: dict) -> Product:
    """
    Edit product master data.

    A patch that changes nothing is a no-op and records no activity.
    """
    product_id = require_int(product_id, "product_id", minimum=1)
    fields = clean_entity_fields("product", patch)
    if not fields:
        raise ValidationError("No fields to update")

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found", product_id=product_id)
        if "sku" in fields:
            _ensure_sku_available(fields["sku"], product_id)
        _ensure_category(fields)

        before, after = _apply_changes(product, fields)
        if not before:
            return product
        db.session.flush()

        record_activity(
            ACTIVITY_PRODUCT_UPDATE,
            FieldChangeDelta(entity_type="product", entity_id=product.id, before=before, after=after),
            branch_id=ctx.identity.branch_id,
            user_id=ctx.user_id,
            related_entity=("product", product.id),
            title="Product updated",
            description=", ".join(sorted(after)),
        )
        db.session.commit()
        return product

    return _run(_op, "Failed to update product")


def correct_entity(ctx: RequestContext, entity_type: str, entity_id: int, patch: dict):
    """
    Direct correction of a recorded value (e.g. a mistyped expense amount).

    Branch-scoped entities require access to their branch.
    """
    entity_id = require_int(entity_id, "entity_id", minimum=1)
    fields = clean_entity_fields(entity_type, patch)
    if not fields:
        raise ValidationError("No fields to correct")
    model = ENTITY_MODELS[entity_type]

    def _op():
        entity = db.session.get(model, entity_id)
        if entity is None:
            raise NotFoundError(f"{entity_type} not found", entity_id=entity_id)
        branch_id = getattr(entity, "branch_id", None)
        require_branch_access(ctx, branch_id)

        before, after = _apply_changes(entity, fields)
        if not before:
            return entity
        db.session.flush()

        record_activity(
            ACTIVITY_EDIT_CORRECTION,
            FieldChangeDelta(entity_type=entity_type, entity_id=entity_id, before=before, after=after),
            branch_id=branch_id if branch_id is not None else ctx.identity.branch_id,
            user_id=ctx.user_id,
            related_entity=(entity_type, entity_id),
            title=f"{entity_type.capitalize()} corrected",
            description=", ".join(sorted(after)),
        )
        db.session.commit()
        return entity

    return _run(_op, f"Failed to correct {entity_type}")
