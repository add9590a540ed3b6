# Overview: Pytest coverage for the business flows that write activities.

"""
Activity Producer Tests

Sales, stock adjustments, transfers, expenses and record edits each commit
their change together with exactly one activity carrying a restorable delta.
"""

import pytest
from sqlalchemy import select

from backoffice.errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backoffice.extensions import db
from backoffice.models import Activity, Category, Expense, Sale, SaleItem, StockMovement
from backoffice.services import restore_service
from backoffice.services.expense_service import add_expense
from backoffice.services.inventory_service import adjust_stock
from backoffice.services.products_service import correct_entity, create_product, update_product
from backoffice.services.sales_service import create_sale
from backoffice.services.transfer_service import transfer_stock

from conftest import quantity_of


def _activities(activity_type: str) -> list:
    return db.session.execute(
        select(Activity).where(Activity.type == activity_type).order_by(Activity.id)
    ).scalars().all()


class TestSales:
    def test_sale_decrements_stock_and_records_activity(
        self, db_session, employee_ctx, employee, product, main_branch, stocked
    ):
        sale = create_sale(
            employee_ctx,
            main_branch.id,
            [{"product_id": product.id, "quantity": 3}],
            discount=500,
            payment_method="card",
        )

        assert sale.total_amount_cents == 4000
        assert sale.discount_cents == 500
        assert quantity_of(product.id, main_branch.id) == 7
        assert db.session.query(SaleItem).filter_by(sale_id=sale.id).count() == 1
        assert db.session.query(StockMovement).filter_by(reference_type="sale").count() == 1

        [activity] = _activities("sell")
        assert activity.branch_id == main_branch.id
        assert activity.user_id == employee.id
        assert activity.related_entity_type == "sale"
        assert activity.related_entity_id == sale.id
        assert activity.delta == {
            "total_amount": 4000,
            "discount": 500,
            "items": [{"product_id": product.id, "quantity": 3, "unit_price": 1500}],
        }

    def test_explicit_unit_price(self, db_session, employee_ctx, product, main_branch, stocked):
        sale = create_sale(employee_ctx, main_branch.id, [{"product_id": product.id, "quantity": 2, "unit_price": 1200}])
        assert sale.total_amount_cents == 2400

    def test_insufficient_stock_changes_nothing(self, db_session, employee_ctx, product, main_branch, stocked):
        with pytest.raises(InsufficientStockError) as exc_info:
            create_sale(employee_ctx, main_branch.id, [{"product_id": product.id, "quantity": 11}])

        assert exc_info.value.details["available"] == 10
        assert quantity_of(product.id, main_branch.id) == 10
        assert db.session.query(Sale).count() == 0
        assert _activities("sell") == []

    def test_discount_cannot_exceed_subtotal(self, db_session, employee_ctx, product, main_branch, stocked):
        with pytest.raises(ValidationError):
            create_sale(employee_ctx, main_branch.id, [{"product_id": product.id, "quantity": 1}], discount=2000)

    @pytest.mark.parametrize("items", [[], [{"product_id": 1}], "not-a-list"])
    def test_bad_items_rejected(self, db_session, employee_ctx, main_branch, items):
        with pytest.raises(ValidationError):
            create_sale(employee_ctx, main_branch.id, items)

    def test_unknown_payment_method(self, db_session, employee_ctx, product, main_branch, stocked):
        with pytest.raises(ValidationError):
            create_sale(employee_ctx, main_branch.id, [{"product_id": product.id, "quantity": 1}], payment_method="gold")

    def test_other_branch_forbidden(self, db_session, north_ctx, product, main_branch, stocked):
        with pytest.raises(AuthorizationError):
            create_sale(north_ctx, main_branch.id, [{"product_id": product.id, "quantity": 1}])


class TestStockAdjustments:
    def test_positive_adjustment_records_stock_add(self, db_session, employee_ctx, product, main_branch, stocked):
        result = adjust_stock(employee_ctx, product.id, main_branch.id, 5, reason="Delivery")

        assert result["previous_quantity"] == 10
        assert result["quantity"] == 15
        [activity] = _activities("stock_add")
        assert activity.id == result["activity_id"]
        assert activity.delta["quantity"] == 5
        assert activity.delta["new_quantity"] == 15

    def test_first_receipt_creates_inventory_row(self, db_session, employee_ctx, second_product, main_branch):
        result = adjust_stock(employee_ctx, second_product.id, main_branch.id, 4)
        assert result["previous_quantity"] == 0
        assert quantity_of(second_product.id, main_branch.id) == 4

    def test_negative_adjustment_is_guarded(self, db_session, employee_ctx, product, main_branch, stocked):
        with pytest.raises(InsufficientStockError):
            adjust_stock(employee_ctx, product.id, main_branch.id, -11)
        assert quantity_of(product.id, main_branch.id) == 10
        assert _activities("stock_reduce") == []

    def test_zero_rejected(self, db_session, employee_ctx, product, main_branch):
        with pytest.raises(ValidationError):
            adjust_stock(employee_ctx, product.id, main_branch.id, 0)

    def test_unknown_product(self, db_session, employee_ctx, main_branch):
        with pytest.raises(NotFoundError):
            adjust_stock(employee_ctx, 999999, main_branch.id, 1)


class TestTransfers:
    def test_transfer_moves_stock(self, db_session, owner_ctx, product, main_branch, north_branch, stocked):
        transfer = transfer_stock(
            owner_ctx, main_branch.id, north_branch.id, [{"product_id": product.id, "quantity": 4}], notes="Rebalance"
        )

        assert quantity_of(product.id, main_branch.id) == 6
        assert quantity_of(product.id, north_branch.id) == 4
        [activity] = _activities("transfer")
        assert activity.branch_id == main_branch.id
        assert activity.related_entity_id == transfer.id
        assert activity.delta["items"] == [{"product_id": product.id, "quantity": 4}]

    def test_same_branch_rejected(self, db_session, owner_ctx, product, main_branch):
        with pytest.raises(ValidationError):
            transfer_stock(owner_ctx, main_branch.id, main_branch.id, [{"product_id": product.id, "quantity": 1}])

    def test_source_branch_access_required(self, db_session, north_ctx, product, main_branch, north_branch, stocked):
        with pytest.raises(AuthorizationError):
            transfer_stock(north_ctx, main_branch.id, north_branch.id, [{"product_id": product.id, "quantity": 1}])

    def test_short_source_changes_nothing(self, db_session, owner_ctx, product, main_branch, north_branch, stocked):
        with pytest.raises(InsufficientStockError):
            transfer_stock(owner_ctx, main_branch.id, north_branch.id, [{"product_id": product.id, "quantity": 50}])
        assert quantity_of(product.id, main_branch.id) == 10
        assert quantity_of(product.id, north_branch.id) == 0


class TestExpenses:
    def test_expense_records_activity(self, db_session, employee_ctx, main_branch):
        expense = add_expense(employee_ctx, main_branch.id, 500, "utilities", description="Power bill")

        [activity] = _activities("expense_add")
        assert activity.delta == {"amount": 500, "category": "utilities"}
        assert activity.related_entity_type == "expense"
        assert activity.related_entity_id == expense.id

    @pytest.mark.parametrize("amount", [0, -100, 1.5, True])
    def test_amount_must_be_positive_integer(self, db_session, employee_ctx, main_branch, amount):
        with pytest.raises(ValidationError):
            add_expense(employee_ctx, main_branch.id, amount, "utilities")

    def test_other_branch_forbidden(self, db_session, north_ctx, main_branch):
        with pytest.raises(AuthorizationError):
            add_expense(north_ctx, main_branch.id, 500, "utilities")


class TestProductEdits:
    def test_create_product(self, db_session, owner_ctx):
        category = Category(name="Lighting")
        db.session.add(category)
        db.session.commit()

        product = create_product(owner_ctx, {"sku": "LAMP-1", "name": "Desk Lamp", "category_id": category.id})

        [activity] = _activities("product_create")
        assert activity.delta["product_id"] == product.id
        assert activity.delta["fields"]["sku"] == "LAMP-1"

    def test_duplicate_sku(self, db_session, owner_ctx, product):
        with pytest.raises(InvalidStateError):
            create_product(owner_ctx, {"sku": "SKU-001", "name": "Clone"})

    def test_sku_and_name_required(self, db_session, owner_ctx):
        with pytest.raises(ValidationError):
            create_product(owner_ctx, {"name": "No SKU"})

    def test_unknown_category(self, db_session, owner_ctx):
        with pytest.raises(ValidationError):
            create_product(owner_ctx, {"sku": "X-1", "name": "Orphan", "category_id": 999999})

    def test_update_captures_only_changed_fields(self, db_session, owner_ctx, product):
        update_product(owner_ctx, product.id, {"name": "Blue Mug", "price_cents": 1800})

        [activity] = _activities("product_update")
        assert activity.delta["before"] == {"price_cents": 1500}
        assert activity.delta["after"] == {"price_cents": 1800}

    def test_noop_update_records_nothing(self, db_session, owner_ctx, product):
        update_product(owner_ctx, product.id, {"price_cents": 1500})
        assert _activities("product_update") == []

    @pytest.mark.parametrize("patch", [{"stock": 5}, {"price_cents": -1}, {"price_cents": "cheap"}])
    def test_bad_patch_rejected(self, db_session, owner_ctx, product, patch):
        with pytest.raises(ValidationError):
            update_product(owner_ctx, product.id, patch)


class TestCorrections:
    def test_expense_correction_round_trip(self, db_session, employee_ctx, main_branch):
        expense_id = add_expense(employee_ctx, main_branch.id, 500, "utilities").id

        correct_entity(employee_ctx, "expense", expense_id, {"amount_cents": 750})
        [activity] = _activities("edit_correction")
        assert activity.delta["before"] == {"amount_cents": 500}
        assert db.session.get(Expense, expense_id).amount_cents == 750

        restore_service.restore_activity(employee_ctx, activity.id, reason="Typo in correction")

        assert db.session.get(Expense, expense_id).amount_cents == 500

    def test_correction_respects_branch(self, db_session, employee_ctx, north_ctx, main_branch):
        expense_id = add_expense(employee_ctx, main_branch.id, 500, "utilities").id
        with pytest.raises(AuthorizationError):
            correct_entity(north_ctx, "expense", expense_id, {"amount_cents": 1})

    def test_unsupported_entity(self, db_session, owner_ctx):
        with pytest.raises(ValidationError):
            correct_entity(owner_ctx, "user", 1, {"email": "x"})
