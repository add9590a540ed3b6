# Overview: Pytest coverage for the HTTP surface (history, admin DB, health).

"""
API Route Tests

Verifies that:
1. Requests without a gateway identity get 401
2. Restore responses carry the dry-run envelope and error codes
3. Admin DB endpoints are owner-only and obey the kill switch
"""

from sqlalchemy import select

from backoffice.extensions import db
from backoffice.models import Activity
from backoffice.services.inventory_service import adjust_stock
from backoffice.services.sales_service import create_sale

from conftest import identity_headers, quantity_of


def _reduce_three(ctx, product, branch):
    return adjust_stock(ctx, product.id, branch.id, -3)["activity_id"]


class TestAuthentication:
    def test_missing_identity_is_401(self, client, db_session):
        response = client.post("/api/history/restore", json={"activity_id": 1})

        assert response.status_code == 401
        assert response.get_json()["code"] == "AUTHENTICATION_REQUIRED"

    def test_headers_ignored_when_untrusted(self, app, client, db_session, owner_headers, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_IDENTITY_HEADERS", False)
        response = client.get("/api/history/1", headers=owner_headers)
        assert response.status_code == 401


class TestHistoryRoutes:
    def test_dry_run(self, client, db_session, employee_ctx, employee_headers, product, main_branch, stocked):
        activity_id = _reduce_three(employee_ctx, product, main_branch)

        response = client.post(
            "/api/history/restore",
            json={"activity_id": activity_id, "dry_run": True},
            headers=employee_headers,
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["dry_run"] is True
        assert body["message"] == "Dry run only. No changes applied."
        assert body["data"]["projected_quantity"] == 10
        assert quantity_of(product.id, main_branch.id) == 7

    def test_restore_then_conflict(self, client, db_session, employee_ctx, employee_headers, product, main_branch, stocked):
        activity_id = _reduce_three(employee_ctx, product, main_branch)

        first = client.post(
            "/api/history/restore",
            json={"activity_id": str(activity_id), "reason": "Miscount"},
            headers=employee_headers,
        )
        second = client.post("/api/history/restore", json={"activity_id": activity_id}, headers=employee_headers)

        assert first.status_code == 200
        assert first.get_json()["data"]["restored_activity_id"] == activity_id
        assert second.status_code == 409
        assert second.get_json()["code"] == "INVALID_STATE"
        assert quantity_of(product.id, main_branch.id) == 10

    def test_show_activity_with_restore_child(
        self, client, db_session, employee_ctx, employee_headers, product, main_branch, stocked
    ):
        activity_id = _reduce_three(employee_ctx, product, main_branch)
        client.post("/api/history/restore", json={"activity_id": activity_id}, headers=employee_headers)

        response = client.get(f"/api/history/{activity_id}", headers=employee_headers)

        data = response.get_json()["data"]
        assert data["status"] == "reversed"
        assert data["restore_activity"]["parent_activity_id"] == activity_id
        assert data["restore_activity"]["type"] == "restore"

    def test_error_codes(self, client, db_session, employee_ctx, employee_headers, north_employee, product, main_branch, stocked):
        activity_id = _reduce_three(employee_ctx, product, main_branch)

        missing = client.post("/api/history/restore", json={"activity_id": 999999}, headers=employee_headers)
        invalid = client.post("/api/history/restore", json={"activity_id": "abc"}, headers=employee_headers)
        forbidden = client.post(
            "/api/history/restore",
            json={"activity_id": activity_id},
            headers=identity_headers(north_employee),
        )

        assert (missing.status_code, missing.get_json()["code"]) == (404, "NOT_FOUND")
        assert (invalid.status_code, invalid.get_json()["code"]) == (400, "VALIDATION_ERROR")
        assert (forbidden.status_code, forbidden.get_json()["code"]) == (403, "AUTHORIZATION_ERROR")
        assert forbidden.get_json()["success"] is False

    def test_dry_run_must_be_boolean(self, client, db_session, employee_ctx, employee_headers, product, main_branch, stocked):
        activity_id = _reduce_three(employee_ctx, product, main_branch)

        response = client.post(
            "/api/history/restore",
            json={"activity_id": activity_id, "dry_run": "false"},
            headers=employee_headers,
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"
        assert quantity_of(product.id, main_branch.id) == 7

    def test_detail_names_branch_user_and_items(
        self, client, db_session, employee_ctx, employee_headers, product, main_branch, stocked
    ):
        product_id = product.id
        create_sale(employee_ctx, main_branch.id, [{"product_id": product_id, "quantity": 2}])
        activity_id = db.session.execute(select(Activity.id).where(Activity.type == "sell")).scalar_one()

        response = client.get(f"/api/history/{activity_id}", headers=employee_headers)

        data = response.get_json()["data"]
        assert data["branch_name"] == "Main Branch"
        assert data["user_email"] == "clerk@test.local"
        assert data["user_full_name"] == "Main Clerk"
        assert data["items"] == [{
            "product_id": product_id,
            "product_name": "Blue Mug",
            "sku": "SKU-001",
            "quantity": 2,
            "unit_price": 1500,
        }]
        assert data["restore_activity"] is None


class TestAdminRoutes:
    def test_employee_forbidden(self, client, db_session, employee_headers):
        response = client.get("/api/admin/db/tables", headers=employee_headers)
        assert response.status_code == 403

    def test_kill_switch(self, app, client, db_session, owner_headers, monkeypatch):
        monkeypatch.setitem(app.config, "ADMIN_TOOLS_ENABLED", False)
        response = client.get("/api/admin/db/tables", headers=owner_headers)

        assert response.status_code == 403
        assert response.get_json()["code"] == "AUTHORIZATION_ERROR"

    def test_dependents_then_cascade(self, client, db_session, owner_headers, product, stocked):
        product_id = product.id
        listed = client.get(
            "/api/admin/db/dependents",
            query_string={"table": "products", "primary_key": "id", "primary_key_value": product_id},
            headers=owner_headers,
        )
        dependents = listed.get_json()["data"]["dependents"]
        assert [(d["table"], d["column"]) for d in dependents] == [("inventory", "product_id")]

        deleted = client.post(
            "/api/admin/db/cascade-delete",
            json={
                "table": "products",
                "primary_key": "id",
                "primary_key_value": product_id,
                "dependents": [{"table": d["table"], "column": d["column"]} for d in dependents],
            },
            headers=owner_headers,
        )

        assert deleted.status_code == 200
        assert deleted.get_json()["deleted"] == {"inventory": 1, "products": 1}

    def test_blocked_delete_is_409(self, client, db_session, owner_headers, product, stocked):
        response = client.delete(
            "/api/admin/db/rows",
            query_string={"table": "products", "primary_key": "id", "primary_key_value": product.id},
            headers=owner_headers,
        )

        body = response.get_json()
        assert response.status_code == 409
        assert body["code"] == "REFERENTIAL_INTEGRITY"
        assert body["sqlstate"] == "23503"
        assert body["dependents"][0]["table"] == "inventory"

    def test_soft_delete_row_message(self, client, db_session, owner_headers, product):
        response = client.delete(
            "/api/admin/db/rows",
            query_string={"table": "products", "primary_key": "id", "primary_key_value": product.id, "soft": "true"},
            headers=owner_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["message"] == "Archived (is_active=false)"

    def test_bulk_delete_confirmation(self, client, db_session, owner_headers, product):
        response = client.post(
            "/api/admin/db/bulk-delete",
            json={"table": "products", "soft": True, "confirm": "nope"},
            headers=owner_headers,
        )
        assert response.status_code == 400

    def test_insert_and_page_rows(self, client, db_session, owner_headers):
        created = client.post(
            "/api/admin/db/rows",
            json={"table": "categories", "values": {"name": "Garden"}},
            headers=owner_headers,
        )
        assert created.status_code == 201

        page = client.get("/api/admin/db/rows", query_string={"table": "categories", "page": 1}, headers=owner_headers)
        assert page.get_json()["data"]["total"] == 1

        audit = client.get("/api/admin/db/audit", query_string={"operation": "insert"}, headers=owner_headers)
        assert audit.get_json()["data"][0]["table_name"] == "categories"

    def test_body_must_be_object(self, client, db_session, owner_headers):
        response = client.post("/api/admin/db/bulk-delete", json=["products"], headers=owner_headers)
        assert response.status_code == 400


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get("/health")

        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["schema"]["details"]["admin_tools_enabled"] is True
