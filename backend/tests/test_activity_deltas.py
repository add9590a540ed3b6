"""
Typed activity delta tests.

Verifies:
- Raw mappings are validated per activity type
- Typed payloads serialize to the stored JSON shape
- Field snapshots are restricted to the restorable allow-list
"""

import pytest

from backoffice.errors import ValidationError
from backoffice.services.activity_deltas import (
    ExpenseDelta,
    FieldChangeDelta,
    SaleLine,
    SellDelta,
    StockMovementDelta,
    TransferDelta,
    parse_delta,
)


class TestParseDelta:
    def test_sell_delta_from_mapping(self):
        delta = parse_delta("sell", {
            "total_amount": 3000,
            "discount": 0,
            "items": [{"product_id": 1, "quantity": 2, "unit_price": 1500}],
        })
        assert isinstance(delta, SellDelta)
        assert delta.items == (SaleLine(product_id=1, quantity=2, unit_price=1500),)

    def test_sell_delta_requires_items(self):
        with pytest.raises(ValidationError):
            parse_delta("sell", {"total_amount": 100, "items": []})

    def test_expense_delta_round_trips_exact_shape(self):
        delta = parse_delta("expense_add", {"amount": 500, "category": "utilities"})
        assert delta.to_dict() == {"amount": 500, "category": "utilities"}

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            parse_delta("expense_add", {"amount": -1, "category": "rent"})

    def test_boolean_is_not_an_integer(self):
        with pytest.raises(ValidationError):
            parse_delta("stock_reduce", {"product_id": True, "branch_id": 1, "quantity": 1})

    def test_stock_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            parse_delta("stock_add", {"product_id": 1, "branch_id": 1, "quantity": 0})

    def test_transfer_between_same_branch_rejected(self):
        with pytest.raises(ValidationError):
            parse_delta("transfer", {
                "from_branch_id": 2,
                "to_branch_id": 2,
                "items": [{"product_id": 1, "quantity": 1}],
            })

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_delta("teleport", {})

    def test_typed_payload_must_match_type(self):
        with pytest.raises(ValidationError):
            parse_delta("expense_add", StockMovementDelta(product_id=1, branch_id=1, quantity=1))

    def test_typed_payload_is_revalidated(self):
        with pytest.raises(ValidationError):
            parse_delta("transfer", TransferDelta(from_branch_id=1, to_branch_id=2, items=()))


class TestFieldChangeDelta:
    def test_captures_matching_before_and_after(self):
        delta = parse_delta("edit_correction", {
            "entity_type": "expense",
            "entity_id": 4,
            "before": {"amount_cents": 500},
            "after": {"amount_cents": 700},
        })
        assert isinstance(delta, FieldChangeDelta)
        assert delta.before == {"amount_cents": 500}

    def test_field_outside_allow_list_rejected(self):
        with pytest.raises(ValidationError):
            parse_delta("edit_correction", {
                "entity_type": "product",
                "entity_id": 1,
                "before": {"password_hash": "a"},
                "after": {"password_hash": "b"},
            })

    def test_mismatched_keys_rejected(self):
        with pytest.raises(ValidationError):
            parse_delta("edit_correction", {
                "entity_type": "product",
                "entity_id": 1,
                "before": {"name": "a"},
                "after": {"name": "b", "brand": "c"},
            })

    def test_product_update_only_targets_products(self):
        with pytest.raises(ValidationError):
            parse_delta("product_update", {
                "entity_type": "expense",
                "entity_id": 1,
                "before": {"category": "a"},
                "after": {"category": "b"},
            })

    def test_expense_delta_serializes_plain_fields(self):
        assert ExpenseDelta(amount=1, category="rent").to_dict() == {"amount": 1, "category": "rent"}
