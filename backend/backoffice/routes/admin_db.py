# backend/backoffice/routes/admin_db.py
"""
Administrative database tooling API routes.

Owner-only, and only when ADMIN_TOOLS_ENABLED is set for the deployment.
Every mutation is written to the admin audit trail by the services.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import admin_tools_disabled_response, require_auth, require_owner
from ..errors import BackOfficeError, ValidationError
from ..extensions import db
from ..services import admin_audit_service, admin_rows_service, dependency_service, deletion_service

admin_db_bp = Blueprint("admin_db", __name__, url_prefix="/api/admin/db")


@admin_db_bp.before_request
def _check_admin_tools_enabled():
    """Kill switch: ADMIN_TOOLS_ENABLED=false disables every endpoint here."""
    return admin_tools_disabled_response()


def _error_response(e: BackOfficeError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"success": False, "error": message, "code": "STORE_ERROR"}), 500


def _query_int(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def _query_flag(name: str) -> bool:
    return (request.args.get(name) or "false").strip().lower() == "true"


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@admin_db_bp.route("/dependents", methods=["GET"])
@require_auth
@require_owner
def list_dependents():
    """
    List rows in other tables that reference one row.

    Query params: table, primary_key, primary_key_value

    Returns:
        200: {"success": true, "data": {"dependents": [...]}}
        400: Invalid identifier or key value
    """
    try:
        dependents = dependency_service.list_dependents(
            request.args.get("table"),
            request.args.get("primary_key"),
            request.args.get("primary_key_value"),
        )
        return jsonify({"success": True, "data": {"dependents": [d.to_dict() for d in dependents]}}), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to fetch dependents")


@admin_db_bp.route("/cascade-delete", methods=["POST"])
@require_auth
@require_owner
def cascade_delete():
    """
    Delete a row together with the reviewed dependents, atomically.

    Request body:
    {
        "table": str,
        "primary_key": str,
        "primary_key_value": any,
        "dependents": [{"table": str, "column": str}]
    }

    Returns:
        200: Deleted
        404: Target row not found
        409: Still referenced by unlisted tables (REFERENTIAL_INTEGRITY)
    """
    try:
        data = _json_body()
        result = deletion_service.cascade_delete(
            g.request_context,
            data.get("table"),
            data.get("primary_key"),
            data.get("primary_key_value"),
            data.get("dependents") or [],
        )
        return jsonify(result), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Cascade delete failed")


@admin_db_bp.route("/bulk-delete", methods=["POST"])
@require_auth
@require_owner
def bulk_delete():
    """
    Soft- or hard-delete every row of a table.

    Request body:
    {
        "table": str,
        "soft": bool,
        "confirm": str (must equal table)
    }
    """
    try:
        data = _json_body()
        result = deletion_service.bulk_delete(
            g.request_context,
            data.get("table"),
            bool(data.get("soft")),
            data.get("confirm"),
        )
        return jsonify(result), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Bulk delete failed")


@admin_db_bp.route("/tables", methods=["GET"])
@require_auth
@require_owner
def list_tables():
    try:
        return jsonify({"success": True, "data": {"tables": admin_rows_service.list_tables()}}), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to list tables")


@admin_db_bp.route("/rows", methods=["GET"])
@require_auth
@require_owner
def list_rows():
    """
    Query params: table, limit (max 200), offset or page (1-indexed)
    """
    try:
        limit = _query_int("limit", admin_rows_service.DEFAULT_ROW_LIMIT)
        if "page" in request.args and "offset" not in request.args:
            page = _query_int("page", 1)
            if page < 1:
                raise ValidationError("page must be >= 1")
            offset = (page - 1) * min(max(limit, 1), admin_rows_service.MAX_ROW_LIMIT)
        else:
            offset = _query_int("offset", 0)
        result = admin_rows_service.list_rows(request.args.get("table"), limit=limit, offset=offset)
        return jsonify({"success": True, "data": result}), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to list rows")


@admin_db_bp.route("/rows", methods=["POST"])
@require_auth
@require_owner
def insert_row():
    """Request body: {"table": str, "values": {column: value}}"""
    try:
        data = _json_body()
        row = admin_rows_service.insert_row(g.request_context, data.get("table"), data.get("values") or {})
        return jsonify({"success": True, "data": row}), 201
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Insert failed")


@admin_db_bp.route("/rows", methods=["PUT"])
@require_auth
@require_owner
def update_row():
    """Request body: {"table", "primary_key", "primary_key_value", "updates": {column: value}}"""
    try:
        data = _json_body()
        row = admin_rows_service.update_row(
            g.request_context,
            data.get("table"),
            data.get("primary_key"),
            data.get("primary_key_value"),
            data.get("updates"),
        )
        return jsonify({"success": True, "data": row}), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Update failed")


@admin_db_bp.route("/rows", methods=["DELETE"])
@require_auth
@require_owner
def delete_row():
    """Query params: table, primary_key, primary_key_value, soft=true|false"""
    try:
        soft = _query_flag("soft")
        row = admin_rows_service.delete_row(
            g.request_context,
            request.args.get("table"),
            request.args.get("primary_key"),
            request.args.get("primary_key_value"),
            soft=soft,
        )
        payload = {"success": True, "data": row}
        if soft:
            payload["message"] = "Archived (is_active=false)"
        return jsonify(payload), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Delete failed")


@admin_db_bp.route("/audit", methods=["GET"])
@require_auth
@require_owner
def list_audit():
    """Query params: table, operation, limit (max 500). Newest first."""
    try:
        entries = admin_audit_service.list_admin_audit(
            table_name=request.args.get("table") or None,
            operation=request.args.get("operation") or None,
            limit=_query_int("limit", 100),
        )
        return jsonify({"success": True, "data": [e.to_dict() for e in entries]}), 200
    except BackOfficeError as e:
        return _error_response(e)
    except Exception:
        return _internal_error("Failed to list audit log")
