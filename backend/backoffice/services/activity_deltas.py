# backend/backoffice/services/activity_deltas.py
"""
Typed delta payloads, one per activity type.

Each payload is validated when the activity is recorded so the restore
engine never has to guess at the shape of an untyped map. The stored JSON
is exactly ``payload.to_dict()``; ``parse_delta`` turns it back into the
typed form.

Money values are integer cents.

| type                           | payload            |
|--------------------------------|--------------------|
| sell                           | SellDelta          |
| stock_add / stock_reduce       | StockMovementDelta |
| transfer                       | TransferDelta      |
| expense_add                    | ExpenseDelta       |
| product_create                 | ProductCreateDelta |
| product_update/edit_correction | FieldChangeDelta   |
| refund                         | RefundDelta        |
| restore                        | RestoreDelta       |
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields as dc_fields
from typing import Any

from ..errors import ValidationError
from ..validation import (
    is_safe_identifier,
    require_amount_cents,
    require_int,
    require_optional_int,
    require_text,
)

ACTIVITY_SELL = "sell"
ACTIVITY_STOCK_ADD = "stock_add"
ACTIVITY_STOCK_REDUCE = "stock_reduce"
ACTIVITY_PRODUCT_CREATE = "product_create"
ACTIVITY_PRODUCT_UPDATE = "product_update"
ACTIVITY_EXPENSE_ADD = "expense_add"
ACTIVITY_TRANSFER = "transfer"
ACTIVITY_REFUND = "refund"
ACTIVITY_RESTORE = "restore"
ACTIVITY_EDIT_CORRECTION = "edit_correction"

ACTIVITY_TYPES = (
    ACTIVITY_SELL,
    ACTIVITY_STOCK_ADD,
    ACTIVITY_STOCK_REDUCE,
    ACTIVITY_PRODUCT_CREATE,
    ACTIVITY_PRODUCT_UPDATE,
    ACTIVITY_EXPENSE_ADD,
    ACTIVITY_TRANSFER,
    ACTIVITY_REFUND,
    ACTIVITY_RESTORE,
    ACTIVITY_EDIT_CORRECTION,
)

# Entities whose fields may be captured in a FieldChangeDelta and written
# back by a restore. Anything outside this allow-list is rejected.
EDITABLE_ENTITY_FIELDS = {
    "product": frozenset({
        "name", "sku", "description", "brand", "barcode",
        "price_cents", "cost_cents", "category_id", "is_active",
    }),
    "inventory": frozenset({"quantity", "min_stock_level", "max_stock_level"}),
    "expense": frozenset({"category", "amount_cents", "description"}),
    "sale": frozenset({
        "customer_name", "customer_phone", "payment_method", "notes",
        "discount_cents", "total_amount_cents",
    }),
}


def _require_mapping(data: Any, label: str) -> dict:
    if not isinstance(data, dict):
        raise ValidationError(f"{label} must be an object")
    return data


def _require_items(data: dict, label: str = "items") -> list:
    items = data.get(label)
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError(f"{label} must be a non-empty list")
    return list(items)


def _plain(value: Any) -> Any:
    if isinstance(value, DeltaPayload):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


class DeltaPayload:
    """Base for all typed payloads: dataclass fields -> JSON-ready dict."""

    def to_dict(self) -> dict:
        return {f.name: _plain(getattr(self, f.name)) for f in dc_fields(self)}


@dataclass(frozen=True)
class SaleLine(DeltaPayload):
    product_id: int
    quantity: int
    unit_price: int

    @classmethod
    def from_dict(cls, data: Any) -> "SaleLine":
        data = _require_mapping(data, "sale item")
        return cls(
            product_id=require_int(data.get("product_id"), "items.product_id", minimum=1),
            quantity=require_int(data.get("quantity"), "items.quantity", minimum=1),
            unit_price=require_amount_cents(data.get("unit_price"), "items.unit_price"),
        )


@dataclass(frozen=True)
class SellDelta(DeltaPayload):
    total_amount: int
    items: tuple
    discount: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "SellDelta":
        data = _require_mapping(data, "delta")
        return cls(
            total_amount=require_amount_cents(data.get("total_amount"), "total_amount"),
            discount=require_amount_cents(data.get("discount", 0) or 0, "discount"),
            items=tuple(SaleLine.from_dict(item) for item in _require_items(data)),
        )


@dataclass(frozen=True)
class StockMovementDelta(DeltaPayload):
    product_id: int
    branch_id: int
    quantity: int
    previous_quantity: int | None = None
    new_quantity: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "StockMovementDelta":
        data = _require_mapping(data, "delta")
        return cls(
            product_id=require_int(data.get("product_id"), "product_id", minimum=1),
            branch_id=require_int(data.get("branch_id"), "branch_id", minimum=1),
            quantity=require_int(data.get("quantity"), "quantity", minimum=1),
            previous_quantity=require_optional_int(data.get("previous_quantity"), "previous_quantity", minimum=0),
            new_quantity=require_optional_int(data.get("new_quantity"), "new_quantity", minimum=0),
        )


@dataclass(frozen=True)
class TransferLine(DeltaPayload):
    product_id: int
    quantity: int

    @classmethod
    def from_dict(cls, data: Any) -> "TransferLine":
        data = _require_mapping(data, "transfer item")
        return cls(
            product_id=require_int(data.get("product_id"), "items.product_id", minimum=1),
            quantity=require_int(data.get("quantity"), "items.quantity", minimum=1),
        )


@dataclass(frozen=True)
class TransferDelta(DeltaPayload):
    from_branch_id: int
    to_branch_id: int
    items: tuple

    @classmethod
    def from_dict(cls, data: Any) -> "TransferDelta":
        data = _require_mapping(data, "delta")
        from_branch_id = require_int(data.get("from_branch_id"), "from_branch_id", minimum=1)
        to_branch_id = require_int(data.get("to_branch_id"), "to_branch_id", minimum=1)
        if from_branch_id == to_branch_id:
            raise ValidationError("Cannot transfer to the same branch")
        return cls(
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            items=tuple(TransferLine.from_dict(item) for item in _require_items(data)),
        )


@dataclass(frozen=True)
class ExpenseDelta(DeltaPayload):
    amount: int
    category: str

    @classmethod
    def from_dict(cls, data: Any) -> "ExpenseDelta":
        data = _require_mapping(data, "delta")
        return cls(
            amount=require_amount_cents(data.get("amount"), "amount"),
            category=require_text(data.get("category"), "category", max_length=64),
        )


def _require_field_map(data: Any, label: str, allowed: frozenset | None) -> dict:
    values = _require_mapping(data, label)
    for name in values:
        if not is_safe_identifier(name):
            raise ValidationError(f"Invalid field name in {label}: {name!r}")
        if allowed is not None and name not in allowed:
            raise ValidationError(f"Field not allowed in {label}: {name}")
    return dict(values)


@dataclass(frozen=True)
class ProductCreateDelta(DeltaPayload):
    product_id: int
    fields: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ProductCreateDelta":
        data = _require_mapping(data, "delta")
        return cls(
            product_id=require_int(data.get("product_id"), "product_id", minimum=1),
            fields=_require_field_map(data.get("fields") or {}, "fields", EDITABLE_ENTITY_FIELDS["product"]),
        )


@dataclass(frozen=True)
class FieldChangeDelta(DeltaPayload):
    """
    Before/after snapshot of the fields an edit touched.

    Only the changed fields are captured; both maps carry the same keys.
    """
    entity_type: str
    entity_id: int
    before: dict
    after: dict

    @classmethod
    def from_dict(cls, data: Any, *, entity_types: tuple | None = None) -> "FieldChangeDelta":
        data = _require_mapping(data, "delta")
        entity_type = data.get("entity_type")
        if entity_type not in EDITABLE_ENTITY_FIELDS:
            raise ValidationError(f"Unsupported entity_type: {entity_type!r}")
        if entity_types is not None and entity_type not in entity_types:
            raise ValidationError(f"entity_type must be one of: {', '.join(entity_types)}")
        allowed = EDITABLE_ENTITY_FIELDS[entity_type]
        before = _require_field_map(data.get("before"), "before", allowed)
        after = _require_field_map(data.get("after"), "after", allowed)
        if not before:
            raise ValidationError("before must capture at least one field")
        if set(before) != set(after):
            raise ValidationError("before and after must capture the same fields")
        return cls(
            entity_type=entity_type,
            entity_id=require_int(data.get("entity_id"), "entity_id", minimum=1),
            before=before,
            after=after,
        )


@dataclass(frozen=True)
class RefundDelta(DeltaPayload):
    amount: int | None = None
    reason: str | None = None
    items: tuple = ()

    @classmethod
    def from_dict(cls, data: Any) -> "RefundDelta":
        data = _require_mapping(data or {}, "delta")
        amount = data.get("amount")
        items = data.get("items") or []
        if not isinstance(items, (list, tuple)):
            raise ValidationError("items must be a list")
        return cls(
            amount=require_amount_cents(amount, "amount") if amount is not None else None,
            reason=data.get("reason"),
            items=tuple(dict(_require_mapping(i, "refund item")) for i in items),
        )


@dataclass(frozen=True)
class RestoreDelta(DeltaPayload):
    reason: str
    reversed_type: str
    effect: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "RestoreDelta":
        data = _require_mapping(data, "delta")
        reversed_type = data.get("reversed_type")
        if reversed_type not in ACTIVITY_TYPES:
            raise ValidationError(f"Unknown reversed_type: {reversed_type!r}")
        return cls(
            reason=require_text(data.get("reason"), "reason"),
            reversed_type=reversed_type,
            effect=dict(_require_mapping(data.get("effect") or {}, "effect")),
        )


def _product_update_from_dict(data: Any) -> FieldChangeDelta:
    return FieldChangeDelta.from_dict(data, entity_types=("product",))


DELTA_TYPES = {
    ACTIVITY_SELL: SellDelta,
    ACTIVITY_STOCK_ADD: StockMovementDelta,
    ACTIVITY_STOCK_REDUCE: StockMovementDelta,
    ACTIVITY_TRANSFER: TransferDelta,
    ACTIVITY_EXPENSE_ADD: ExpenseDelta,
    ACTIVITY_PRODUCT_CREATE: ProductCreateDelta,
    ACTIVITY_PRODUCT_UPDATE: FieldChangeDelta,
    ACTIVITY_EDIT_CORRECTION: FieldChangeDelta,
    ACTIVITY_REFUND: RefundDelta,
    ACTIVITY_RESTORE: RestoreDelta,
}

_PARSERS = {
    **{activity_type: cls.from_dict for activity_type, cls in DELTA_TYPES.items()},
    ACTIVITY_PRODUCT_UPDATE: _product_update_from_dict,
}


def parse_delta(activity_type: str, data: Any) -> DeltaPayload:
    """
    Validate and type a delta for the given activity type.

    Accepts either a raw mapping (as stored in the activities table) or an
    already-typed payload, which is re-validated through its dict form.
    """
    if activity_type not in DELTA_TYPES:
        raise ValidationError(f"Unknown activity type: {activity_type!r}")
    if isinstance(data, DeltaPayload):
        expected = DELTA_TYPES[activity_type]
        if not isinstance(data, expected):
            raise ValidationError(
                f"{activity_type} expects {expected.__name__}, got {type(data).__name__}"
            )
        data = data.to_dict()
    return _PARSERS[activity_type](data)
