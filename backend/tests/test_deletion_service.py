# Overview: Pytest coverage for cascade and bulk delete.

"""
Administrative Deletion Tests

Verifies that:
1. Cascade delete removes the reviewed dependents and the row in one transaction
2. An unlisted dependent blocks the delete and nothing changes
3. Bulk delete requires the typed confirmation and honors critical tables
4. Soft bulk delete flags every row inactive
5. Every successful delete leaves an admin audit entry
"""

import pytest
from sqlalchemy import func, select

from backoffice.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from backoffice.extensions import db
from backoffice.models import Category, Inventory, Product
from backoffice.services import dependency_service, deletion_service
from backoffice.services.admin_audit_service import list_admin_audit

INVENTORY_DEPENDENT = {"table": "inventory", "column": "product_id"}


def _count(model) -> int:
    return db.session.execute(select(func.count()).select_from(model)).scalar_one()


class TestCascadeDelete:
    def test_deletes_dependents_then_row(self, db_session, owner_ctx, product, stocked):
        product_id = product.id

        result = deletion_service.cascade_delete(owner_ctx, "products", "id", product_id, [INVENTORY_DEPENDENT])

        assert result == {"success": True, "deleted": {"inventory": 1, "products": 1}}
        assert db.session.execute(select(Product.id).where(Product.id == product_id)).first() is None
        assert dependency_service.list_dependents("products", "id", product_id) == []

    def test_unlisted_dependent_blocks_and_rolls_back(self, db_session, owner_ctx, product, stocked):
        product_id = product.id

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            deletion_service.cascade_delete(owner_ctx, "products", "id", product_id, [])

        error = exc_info.value
        assert error.code == "REFERENTIAL_INTEGRITY"
        assert error.to_dict()["sqlstate"] == "23503"
        assert [(d["table"], d["column"]) for d in error.dependents] == [("inventory", "product_id")]
        assert error.referencing_table == "inventory"
        assert _count(Product) == 1
        assert _count(Inventory) == 1

    def test_partial_dependent_list_changes_nothing(self, db_session, owner_ctx, main_branch, employee, stocked):
        branch_id = main_branch.id

        with pytest.raises(ReferentialIntegrityError) as exc_info:
            deletion_service.cascade_delete(
                owner_ctx, "branches", "id", branch_id, [{"table": "inventory", "column": "branch_id"}]
            )

        assert [d["table"] for d in exc_info.value.dependents] == ["users"]
        assert _count(Inventory) == 1

    def test_missing_target(self, db_session, owner_ctx):
        with pytest.raises(NotFoundError):
            deletion_service.cascade_delete(owner_ctx, "products", "id", 999999, [])

    def test_owner_only(self, db_session, employee_ctx, product):
        with pytest.raises(AuthorizationError):
            deletion_service.cascade_delete(employee_ctx, "products", "id", product.id, [])
        assert _count(Product) == 1

    @pytest.mark.parametrize("dependents", [
        [{"table": "inventory"}],
        [{"table": "inventory; --", "column": "product_id"}],
        [{"table": "activities", "column": "branch_id"}],
        "inventory.product_id",
    ])
    def test_invalid_dependents_rejected(self, db_session, owner_ctx, product, dependents):
        with pytest.raises(ValidationError):
            deletion_service.cascade_delete(owner_ctx, "products", "id", product.id, dependents)

    def test_ledger_tables_refused(self, db_session, owner_ctx):
        with pytest.raises(ValidationError):
            deletion_service.cascade_delete(owner_ctx, "activities", "id", 1, [])

    def test_writes_audit_entry(self, db_session, owner_ctx, product, stocked):
        product_id = product.id
        deletion_service.cascade_delete(owner_ctx, "products", "id", product_id, [INVENTORY_DEPENDENT])

        entry = list_admin_audit(table_name="products", operation="delete")[0]
        assert entry.primary_key == "id"
        assert entry.primary_key_value == str(product_id)
        assert entry.before_row["sku"] == "SKU-001"
        assert entry.after_row is None
        assert entry.user_email == "owner@test.local"
        assert entry.ip == "127.0.0.1"


class TestBulkDelete:
    def test_confirmation_must_match(self, db_session, owner_ctx, product):
        with pytest.raises(ValidationError):
            deletion_service.bulk_delete(owner_ctx, "products", True, "product")
        with pytest.raises(ValidationError):
            deletion_service.bulk_delete(owner_ctx, "products", True, None)

    def test_soft_delete_flags_every_row(self, db_session, owner_ctx, product, second_product):
        result = deletion_service.bulk_delete(owner_ctx, "products", True, "products")

        assert result == {"success": True, "affected": 2}
        active = db.session.execute(
            select(func.count()).select_from(Product).where(Product.is_active.is_(True))
        ).scalar_one()
        assert active == 0
        assert _count(Product) == 2

        entry = list_admin_audit(table_name="products", operation="soft_delete")[0]
        assert entry.before_row == {"count": 2}
        assert entry.after_row == {"count": 0}

    def test_soft_delete_requires_is_active(self, db_session, owner_ctx, stocked):
        with pytest.raises(InvalidStateError):
            deletion_service.bulk_delete(owner_ctx, "inventory", True, "inventory")

    def test_hard_delete_blocked_by_references(self, db_session, owner_ctx, product, second_product, stocked):
        with pytest.raises(ReferentialIntegrityError) as exc_info:
            deletion_service.bulk_delete(owner_ctx, "products", False, "products")

        assert "inventory" in {d["table"] for d in exc_info.value.dependents}
        assert _count(Product) == 2

    def test_hard_delete_of_unreferenced_table(self, db_session, owner_ctx):
        db.session.add_all([Category(name="Kitchen"), Category(name="Garden")])
        db.session.commit()

        result = deletion_service.bulk_delete(owner_ctx, "categories", False, "categories")

        assert result["affected"] == 2
        assert _count(Category) == 0

    def test_critical_table_hard_delete_refused(self, db_session, owner_ctx, main_branch):
        with pytest.raises(ValidationError):
            deletion_service.bulk_delete(owner_ctx, "branches", False, "branches")

    def test_critical_table_soft_delete_allowed(self, db_session, owner_ctx, main_branch, north_branch):
        result = deletion_service.bulk_delete(owner_ctx, "branches", True, "branches")
        assert result["affected"] == 2

    def test_ledger_refused(self, db_session, owner_ctx):
        with pytest.raises(ValidationError):
            deletion_service.bulk_delete(owner_ctx, "admin_audit_log", False, "admin_audit_log")

    def test_owner_only(self, db_session, employee_ctx, product):
        with pytest.raises(AuthorizationError):
            deletion_service.bulk_delete(employee_ctx, "products", True, "products")
