# Overview: Pytest coverage for dependency discovery.

import pytest
from sqlalchemy import text

from backoffice.errors import ValidationError
from backoffice.extensions import db
from backoffice.models import User
from backoffice.services import dependency_service, schema_service


def _by_table(dependents):
    return {(d.table, d.column): d for d in dependents}


class TestListDependents:
    def test_branch_dependents(self, db_session, main_branch, employee, stocked):
        found = _by_table(dependency_service.list_dependents("branches", "id", main_branch.id))

        assert set(found) == {("users", "branch_id"), ("inventory", "branch_id")}
        assert found[("users", "branch_id")].count == 1
        assert found[("inventory", "branch_id")].count == 1
        assert found[("inventory", "branch_id")].declared is True

    def test_samples_are_redacted(self, db_session, main_branch, employee):
        found = _by_table(dependency_service.list_dependents("branches", "id", main_branch.id))

        sample = found[("users", "branch_id")].samples[0]
        assert sample["email"] == "clerk@test.local"
        assert sample["password_hash"] == "***"

    def test_samples_are_capped(self, db_session, north_branch):
        for i in range(7):
            db.session.add(User(
                email=f"temp{i}@test.local",
                full_name=f"Temp {i}",
                role="employee",
                branch_id=north_branch.id,
            ))
        db.session.commit()

        found = _by_table(dependency_service.list_dependents("branches", "id", north_branch.id))

        users = found[("users", "branch_id")]
        assert users.count == 7
        assert len(users.samples) == 5

    def test_unreferenced_row_has_no_dependents(self, db_session, north_branch):
        assert dependency_service.list_dependents("branches", "id", north_branch.id) == []

    def test_string_key_value_is_coerced(self, db_session, main_branch, employee):
        found = dependency_service.list_dependents("branches", "id", str(main_branch.id))
        assert [d.table for d in found] == ["users"]

    def test_to_dict_shape(self, db_session, main_branch, employee):
        payload = dependency_service.list_dependents("branches", "id", main_branch.id)[0].to_dict()
        assert set(payload) == {"table", "column", "count", "samples", "declared"}

    @pytest.mark.parametrize("table, column, value", [
        ("no_such_table", "id", 1),
        ("branches; DROP TABLE users", "id", 1),
        ("branches", "nope", 1),
        ("branches", "id", "12.5"),
        ("branches", "id", ""),
    ])
    def test_invalid_input_rejected(self, db_session, table, column, value):
        with pytest.raises(ValidationError):
            dependency_service.list_dependents(table, column, value)


class TestReferenceDiscovery:
    def test_declared_references_to_products(self, db_session):
        refs = {(r.table, r.column) for r in schema_service.find_references("products", "id")}
        assert {
            ("inventory", "product_id"),
            ("stock_movements", "product_id"),
            ("sale_items", "product_id"),
            ("transfer_items", "product_id"),
        } <= refs

    def test_ledger_is_not_a_declared_reference(self, db_session):
        refs = {r.table for r in schema_service.find_references("branches", "id")}
        assert "activities" not in refs

    def test_naming_convention_candidates(self):
        assert "category_id" in schema_service._singular_candidates("categories")
        assert "branch_id" in schema_service._singular_candidates("branches")
        assert "product_id" in schema_service._singular_candidates("products")


@pytest.fixture
def legacy_tables(db_session):
    """widgets / widget_parts created without any declared foreign key."""
    db.session.execute(text("CREATE TABLE widgets (id INTEGER PRIMARY KEY, name VARCHAR(40))"))
    db.session.execute(text("CREATE TABLE widget_parts (id INTEGER PRIMARY KEY, widget_id INTEGER, label VARCHAR(40))"))
    db.session.execute(text("INSERT INTO widgets (id, name) VALUES (1, 'Crank'), (2, 'Lever')"))
    db.session.execute(text(
        "INSERT INTO widget_parts (id, widget_id, label) VALUES (1, 1, 'Handle'), (2, 1, 'Pin'), (3, 2, 'Arm')"
    ))
    db.session.commit()

    yield

    db.session.rollback()
    db.session.execute(text("DROP TABLE IF EXISTS widget_parts"))
    db.session.execute(text("DROP TABLE IF EXISTS widgets"))
    db.session.commit()


class TestUndeclaredReferences:
    def test_column_name_fallback(self, legacy_tables):
        [dependent] = dependency_service.list_dependents("widgets", "id", 1)

        assert (dependent.table, dependent.column) == ("widget_parts", "widget_id")
        assert dependent.count == 2
        assert dependent.declared is False
        assert {s["label"] for s in dependent.samples} == {"Handle", "Pin"}

    def test_fallback_only_without_declared_keys(self, legacy_tables):
        refs = schema_service.find_references("widgets", "id")
        assert [(r.table, r.column, r.declared) for r in refs] == [("widget_parts", "widget_id", False)]
