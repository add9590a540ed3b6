# backend/backoffice/routes/history.py
"""
Activity history API routes: inspect and restore recorded activities.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..context import require_branch_access
from ..decorators import require_auth
from ..errors import BackOfficeError, ValidationError
from ..extensions import db
from ..services import restore_service
from ..services.activity_service import describe_activity, get_activity

history_bp = Blueprint("history", __name__, url_prefix="/api/history")


def _parse_activity_id(raw):
    if raw is None or raw == "":
        raise ValidationError("activity_id is required")
    if isinstance(raw, bool):
        raise ValidationError("activity_id must be an integer")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    raise ValidationError("activity_id must be an integer")


def _internal_error():
    return jsonify({"success": False, "error": "Internal server error", "code": "STORE_ERROR"}), 500


@history_bp.route("/restore", methods=["POST"])
@require_auth
def restore():
    """
    Restore (reverse) a completed activity, or preview the restore.

    Request body:
    {
        "activity_id": int,
        "reason": str (optional, defaults to "Restore via API"),
        "dry_run": bool (optional)
    }

    Returns:
        200: Restored, or dry-run projection
        400: Invalid request
        403: Activity belongs to another branch
        404: Activity not found
        409: Activity already restored, not restorable, or insufficient stock
    """
    data = request.get_json(silent=True) or {}

    try:
        activity_id = _parse_activity_id(data.get("activity_id"))
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        dry_run = data.get("dry_run")
        if dry_run is None:
            dry_run = False
        elif not isinstance(dry_run, bool):
            raise ValidationError("dry_run must be a boolean")

        result = restore_service.restore_activity(
            g.request_context,
            activity_id,
            reason=reason,
            dry_run=dry_run,
        )
        return jsonify(result), 200

    except BackOfficeError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Restore request failed")
        return _internal_error()


@history_bp.route("/<int:activity_id>", methods=["GET"])
@require_auth
def get_history_entry(activity_id: int):
    """
    Fetch one activity, with its restore child when it has been reversed,
    plus branch/user display names and product names for line items.

    Returns:
        200: Activity
        403: Activity belongs to another branch
        404: Activity not found
    """
    try:
        activity = get_activity(activity_id)
        require_branch_access(g.request_context, activity.branch_id)
        return jsonify({"success": True, "data": describe_activity(activity)}), 200

    except BackOfficeError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Failed to load activity %s", activity_id)
        return _internal_error()
