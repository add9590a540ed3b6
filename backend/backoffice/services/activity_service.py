# Overview: Service-layer operations for the activity ledger; encapsulates business logic and database work.

from __future__ import annotations

from typing import Any

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError
from ..models import Activity, Branch, Product, User
from ..models.activity import ACTIVITY_STATUS_COMPLETED
from .activity_deltas import ACTIVITY_TYPES, DeltaPayload, parse_delta
"""
Activity Ledger Invariants (authoritative)

- Append-only log of business mutations (sell, stock moves, transfers, ...).
- Recording never raises to the caller: a failed insert is logged as a
  warning and the surrounding business operation carries on.
- The insert runs inside a SAVEPOINT, so a failed insert never poisons the
  caller's transaction; the caller's commit makes the activity durable.
- Deltas are typed per activity type and validated here, at recording time.
- Rows are mutated at most once (status flip by the restore engine) and
  never deleted.
"""


def record_activity(
    activity_type: str,
    delta: DeltaPayload | dict | None,
    *,
    branch_id: int | None = None,
    user_id: int | None = None,
    related_entity: tuple[str, int] | None = None,
    metadata: dict[str, Any] | None = None,
    title: str | None = None,
    description: str | None = None,
    commit: bool = False,
) -> Activity | None:
    """
    Record a completed business mutation.

    Args:
        activity_type: One of ACTIVITY_TYPES (restore activities are written
            by the restore engine itself, inside its own transaction)
        delta: Typed payload or raw mapping for the activity type
        related_entity: (entity_type, entity_id) of the affected row
        commit: Commit the session afterwards (fire-and-forget callers that
            have already finished their own transaction)

    Returns:
        Activity | None: The new activity, or None when recording failed
    """
    try:
        if activity_type not in ACTIVITY_TYPES:
            raise ValueError(f"Unknown activity type: {activity_type!r}")

        payload = parse_delta(activity_type, delta)
        entity_type, entity_id = related_entity if related_entity else (None, None)

        activity = Activity(
            type=activity_type,
            title=title,
            description=description,
            status=ACTIVITY_STATUS_COMPLETED,
            branch_id=branch_id,
            user_id=user_id,
            related_entity_type=entity_type,
            related_entity_id=entity_id,
            delta=payload.to_dict(),
            metadata_json=metadata,
        )

        with db.session.begin_nested():
            db.session.add(activity)

        if commit:
            db.session.commit()
        return activity
    except Exception as exc:
        # Never throw from logging in business paths
        current_app.logger.warning(
            "Activity recording failed (type=%s, branch_id=%s): %s",
            activity_type,
            branch_id,
            exc,
        )
        if commit:
            db.session.rollback()
        return None


def get_activity(activity_id: int) -> Activity:
    """Fetch one activity by id (the only read the ledger exposes)."""
    activity = db.session.get(Activity, activity_id)
    if activity is None:
        raise NotFoundError("Activity not found", activity_id=activity_id)
    return activity


def _describe_items(lines: list) -> list[dict]:
    product_ids = {line.get("product_id") for line in lines if isinstance(line, dict)}
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    } if product_ids else {}

    items = []
    for line in lines:
        if not isinstance(line, dict):
            continue
        product = products.get(line.get("product_id"))
        items.append({
            "product_id": line.get("product_id"),
            "product_name": product.name if product is not None else str(line.get("product_id")),
            "sku": product.sku if product is not None else None,
            "quantity": line.get("quantity"),
            "unit_price": line.get("unit_price"),
        })
    return items


def describe_activity(activity: Activity) -> dict:
    """
    Detail view of one activity.

    Adds the restore child (if reversed), branch name, acting user's email
    and full name, and product name/SKU for delta line items. Rows deleted
    since the activity was recorded come back as None (the ledger keeps no
    foreign keys).
    """
    payload = activity.to_dict()
    child = activity.restore_activity
    payload["restore_activity"] = child.to_dict() if child is not None else None

    branch = db.session.get(Branch, activity.branch_id) if activity.branch_id is not None else None
    payload["branch_name"] = branch.name if branch is not None else None

    user = db.session.get(User, activity.user_id) if activity.user_id is not None else None
    payload["user_email"] = user.email if user is not None else None
    payload["user_full_name"] = user.full_name if user is not None else None

    delta = activity.delta if isinstance(activity.delta, dict) else {}
    lines = delta.get("items")
    payload["items"] = _describe_items(lines) if isinstance(lines, list) else []
    return payload
