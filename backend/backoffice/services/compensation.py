# Overview: Per-activity-type compensation rules used by the restore engine.

"""
Compensation rules

Each rule knows how to preview (read-only projection) and apply (inverse
mutation, inside the restore engine's transaction) one activity type.
apply() never commits; it returns a JSON-safe "effect" summary that the
restore activity stores in its delta.

Types without a rule here are rejected, never guessed.
"""
from __future__ import annotations

from sqlalchemy import delete

from ..context import RequestContext
from ..errors import InvalidStateError, NotFoundError
from ..extensions import db
from ..models import Activity, Expense, Sale, Transfer
from ..models.documents import TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_REVERSED
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED
from ..time_utils import json_safe
from .activity_deltas import (
    ACTIVITY_EDIT_CORRECTION,
    ACTIVITY_EXPENSE_ADD,
    ACTIVITY_PRODUCT_CREATE,
    ACTIVITY_PRODUCT_UPDATE,
    ACTIVITY_REFUND,
    ACTIVITY_RESTORE,
    ACTIVITY_SELL,
    ACTIVITY_STOCK_ADD,
    ACTIVITY_STOCK_REDUCE,
    ACTIVITY_TRANSFER,
)
from .inventory_service import (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    decrement_stock,
    decrement_stock_floored,
    get_quantity,
    increment_stock,
    record_movement,
    require_branch,
    require_product,
)
from .products_service import ENTITY_MODELS, sku_in_use

RESTORE_REFERENCE = "restore"


def _related_id(activity: Activity, entity_type: str) -> int | None:
    if activity.related_entity_type != entity_type:
        return None
    return activity.related_entity_id


def _require_stock_target(product_id: int, *branch_ids: int) -> None:
    """The product and branches a stock restore writes to must still exist."""
    try:
        require_product(product_id)
        for branch_id in branch_ids:
            require_branch(branch_id)
    except NotFoundError as exc:
        raise InvalidStateError(f"{exc.message}; stock cannot be restored", **exc.details) from exc


class CompensationRule:
    activity_type: str = ""

    def preview(self, activity: Activity, delta) -> dict:
        raise NotImplementedError

    def apply(self, ctx: RequestContext, activity: Activity, delta) -> dict:
        raise NotImplementedError


class SellRule(CompensationRule):
    """Restock every sold line at the sale's branch and void the sale."""

    activity_type = ACTIVITY_SELL

    def _branch_id(self, activity: Activity) -> int:
        if activity.branch_id is None:
            raise InvalidStateError("Sale activity has no branch to restock", activity_id=activity.id)
        return activity.branch_id

    def preview(self, activity, delta):
        branch_id = self._branch_id(activity)
        for line in delta.items:
            _require_stock_target(line.product_id, branch_id)
        return {
            "items": [line.to_dict() for line in delta.items],
            "total_amount": delta.total_amount,
        }

    def apply(self, ctx, activity, delta):
        branch_id = self._branch_id(activity)
        for line in delta.items:
            _require_stock_target(line.product_id, branch_id)
        restocked = []
        for line in delta.items:
            new_quantity = increment_stock(line.product_id, branch_id, line.quantity)
            record_movement(
                line.product_id,
                branch_id,
                MOVEMENT_IN,
                line.quantity,
                user_id=ctx.user_id,
                reason="Sale restored",
                reference_type=RESTORE_REFERENCE,
                reference_id=activity.id,
            )
            restocked.append({"product_id": line.product_id, "quantity": line.quantity, "new_quantity": new_quantity})

        sale_voided = False
        sale_id = _related_id(activity, "sale")
        sale = db.session.get(Sale, sale_id) if sale_id is not None else None
        if sale is not None and sale.status == SALE_STATUS_COMPLETED:
            sale.status = SALE_STATUS_VOIDED
            sale_voided = True
        return {"branch_id": branch_id, "restocked": restocked, "sale_id": sale_id, "sale_voided": sale_voided}


class _StockRule(CompensationRule):
    def _projected(self, current: int, quantity: int) -> int:
        raise NotImplementedError

    def preview(self, activity, delta):
        _require_stock_target(delta.product_id, delta.branch_id)
        current = get_quantity(delta.product_id, delta.branch_id)
        return {
            "product_id": delta.product_id,
            "branch_id": delta.branch_id,
            "quantity": delta.quantity,
            "current_quantity": current,
            "projected_quantity": self._projected(current, delta.quantity),
        }


class StockAddRule(_StockRule):
    """Undo a stock_add: remove Q, floored at zero."""

    activity_type = ACTIVITY_STOCK_ADD

    def _projected(self, current, quantity):
        return max(0, current - quantity)

    def apply(self, ctx, activity, delta):
        _require_stock_target(delta.product_id, delta.branch_id)
        removed, new_quantity = decrement_stock_floored(delta.product_id, delta.branch_id, delta.quantity)
        record_movement(
            delta.product_id,
            delta.branch_id,
            MOVEMENT_OUT,
            removed,
            user_id=ctx.user_id,
            reason="Stock add restored",
            reference_type=RESTORE_REFERENCE,
            reference_id=activity.id,
        )
        return {"product_id": delta.product_id, "branch_id": delta.branch_id, "removed": removed, "new_quantity": new_quantity}


class StockReduceRule(_StockRule):
    """Undo a stock_reduce: add exactly Q back."""

    activity_type = ACTIVITY_STOCK_REDUCE

    def _projected(self, current, quantity):
        return current + quantity

    def apply(self, ctx, activity, delta):
        _require_stock_target(delta.product_id, delta.branch_id)
        new_quantity = increment_stock(delta.product_id, delta.branch_id, delta.quantity)
        record_movement(
            delta.product_id,
            delta.branch_id,
            MOVEMENT_IN,
            delta.quantity,
            user_id=ctx.user_id,
            reason="Stock reduce restored",
            reference_type=RESTORE_REFERENCE,
            reference_id=activity.id,
        )
        return {"product_id": delta.product_id, "branch_id": delta.branch_id, "added": delta.quantity, "new_quantity": new_quantity}


class TransferRule(CompensationRule):
    """Move transferred quantities back from the destination to the source."""

    activity_type = ACTIVITY_TRANSFER

    def preview(self, activity, delta):
        items = []
        for line in delta.items:
            _require_stock_target(line.product_id, delta.from_branch_id, delta.to_branch_id)
            available = get_quantity(line.product_id, delta.to_branch_id)
            items.append({
                "product_id": line.product_id,
                "quantity": line.quantity,
                "available_at_destination": available,
                "sufficient": available >= line.quantity,
            })
        return {"from_branch": delta.from_branch_id, "to_branch": delta.to_branch_id, "items": items}

    def apply(self, ctx, activity, delta):
        for line in delta.items:
            _require_stock_target(line.product_id, delta.from_branch_id, delta.to_branch_id)
        moved = []
        for line in delta.items:
            # InsufficientStockError (an InvalidStateError) when the destination sold it on
            decrement_stock(line.product_id, delta.to_branch_id, line.quantity)
            increment_stock(line.product_id, delta.from_branch_id, line.quantity)
            for branch_id, movement_type in ((delta.to_branch_id, MOVEMENT_OUT), (delta.from_branch_id, MOVEMENT_IN)):
                record_movement(
                    line.product_id,
                    branch_id,
                    movement_type,
                    line.quantity,
                    user_id=ctx.user_id,
                    reason="Transfer restored",
                    reference_type=RESTORE_REFERENCE,
                    reference_id=activity.id,
                )
            moved.append({"product_id": line.product_id, "quantity": line.quantity})

        transfer_id = _related_id(activity, "transfer")
        transfer = db.session.get(Transfer, transfer_id) if transfer_id is not None else None
        if transfer is not None and transfer.status == TRANSFER_STATUS_COMPLETED:
            transfer.status = TRANSFER_STATUS_REVERSED
        return {"from_branch": delta.from_branch_id, "to_branch": delta.to_branch_id, "items": moved, "transfer_id": transfer_id}


class ExpenseAddRule(CompensationRule):
    """Remove the recorded expense row."""

    activity_type = ACTIVITY_EXPENSE_ADD

    def preview(self, activity, delta):
        return {"amount": delta.amount, "category": delta.category}

    def apply(self, ctx, activity, delta):
        expense_id = _related_id(activity, "expense")
        if expense_id is None:
            raise InvalidStateError("Activity does not reference an expense", activity_id=activity.id)
        result = db.session.execute(
            delete(Expense).where(Expense.id == expense_id).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidStateError("Expense no longer exists", expense_id=expense_id)
        return {"expense_id": expense_id, "amount": delta.amount, "category": delta.category}


def _load_entity(entity_type: str, entity_id: int):
    entity = db.session.get(ENTITY_MODELS[entity_type], entity_id)
    if entity is None:
        raise InvalidStateError(f"{entity_type} no longer exists", entity_id=entity_id)
    return entity


class ProductCreateRule(CompensationRule):
    """Deactivate the created product; there are no prior values to restore."""

    activity_type = ACTIVITY_PRODUCT_CREATE

    def preview(self, activity, delta):
        product = _load_entity("product", delta.product_id)
        return {
            "entity_type": "product",
            "entity_id": delta.product_id,
            "changes": {"is_active": {"current": product.is_active, "restore_to": False}},
        }

    def apply(self, ctx, activity, delta):
        product = _load_entity("product", delta.product_id)
        product.is_active = False
        return {"entity_type": "product", "entity_id": product.id, "is_active": False}


class FieldRestoreRule(CompensationRule):
    """
    Put back the captured `before` values.

    Refused when the row has drifted from the recorded `after` values, so a
    later edit is never silently clobbered.
    """

    def __init__(self, activity_type: str):
        self.activity_type = activity_type

    def _conflicts(self, entity, delta) -> list[str]:
        return sorted(name for name, value in delta.after.items() if getattr(entity, name) != value)

    def _sku_taken(self, delta) -> bool:
        sku = delta.before.get("sku")
        return delta.entity_type == "product" and sku is not None and sku_in_use(sku, delta.entity_id)

    def preview(self, activity, delta):
        entity = _load_entity(delta.entity_type, delta.entity_id)
        changes = {
            name: {"current": json_safe(getattr(entity, name)), "restore_to": value}
            for name, value in delta.before.items()
        }
        conflicts = self._conflicts(entity, delta)
        if self._sku_taken(delta) and "sku" not in conflicts:
            conflicts = sorted(conflicts + ["sku"])
        return {
            "entity_type": delta.entity_type,
            "entity_id": delta.entity_id,
            "changes": changes,
            "conflicts": conflicts,
        }

    def apply(self, ctx, activity, delta):
        entity = _load_entity(delta.entity_type, delta.entity_id)
        conflicts = self._conflicts(entity, delta)
        if conflicts:
            raise InvalidStateError(
                "Record changed since this activity; restore would overwrite newer values",
                fields=conflicts,
            )
        if self._sku_taken(delta):
            raise InvalidStateError(
                "SKU now belongs to another product; restore would duplicate it",
                sku=delta.before["sku"],
            )
        for name, value in delta.before.items():
            setattr(entity, name, value)
        return {"entity_type": delta.entity_type, "entity_id": delta.entity_id, "restored": dict(delta.before)}


class TerminalRule(CompensationRule):
    """Activities that are themselves corrections cannot be undone independently."""

    def __init__(self, activity_type: str):
        self.activity_type = activity_type

    def _refuse(self, activity):
        raise InvalidStateError(
            f"{activity.type} activities cannot be restored",
            activity_id=activity.id,
        )

    def preview(self, activity, delta):
        self._refuse(activity)

    def apply(self, ctx, activity, delta):
        self._refuse(activity)


COMPENSATION_RULES: dict[str, CompensationRule] = {
    ACTIVITY_SELL: SellRule(),
    ACTIVITY_STOCK_ADD: StockAddRule(),
    ACTIVITY_STOCK_REDUCE: StockReduceRule(),
    ACTIVITY_TRANSFER: TransferRule(),
    ACTIVITY_EXPENSE_ADD: ExpenseAddRule(),
    ACTIVITY_PRODUCT_CREATE: ProductCreateRule(),
    ACTIVITY_PRODUCT_UPDATE: FieldRestoreRule(ACTIVITY_PRODUCT_UPDATE),
    ACTIVITY_EDIT_CORRECTION: FieldRestoreRule(ACTIVITY_EDIT_CORRECTION),
    ACTIVITY_REFUND: TerminalRule(ACTIVITY_REFUND),
    ACTIVITY_RESTORE: TerminalRule(ACTIVITY_RESTORE),
}


def get_rule(activity_type: str) -> CompensationRule:
    rule = COMPENSATION_RULES.get(activity_type)
    if rule is None:
        raise InvalidStateError(
            f"No restore rule defined for activity type {activity_type!r}",
            activity_type=activity_type,
        )
    return rule
