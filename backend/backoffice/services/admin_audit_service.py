# Overview: Service-layer operations for the admin audit trail; encapsulates business logic and database work.

"""
Admin Audit Trail

WHY: Administrative DB tooling can edit or delete any row outside normal
business flows. Every such mutation is appended here with before/after
snapshots so it stays reconstructable, independently of the activity
ledger.

INVARIANTS:
- Append-only: no update or delete API exists, and the admin tooling
  refuses to mutate this table.
- Best-effort: append never raises to its caller. It runs in a SAVEPOINT
  inside the caller's transaction, so the entry commits (or rolls back)
  together with the mutation it describes.
- The table is created on first use when a deployment has not migrated it.
"""
from __future__ import annotations

from typing import Any

from flask import current_app

from ..context import RequestContext
from ..errors import ValidationError
from ..extensions import db
from ..models import AdminAuditLogEntry
from ..models.audit import ADMIN_OPERATIONS
from ..time_utils import json_safe

MAX_AUDIT_LIST_LIMIT = 500


def ensure_audit_table() -> None:
    AdminAuditLogEntry.__table__.create(bind=db.session.connection(), checkfirst=True)


def append_admin_audit(
    ctx: RequestContext | None,
    operation: str,
    table_name: str,
    *,
    primary_key: str | None = None,
    primary_key_value: Any = None,
    before_row: dict | None = None,
    after_row: dict | None = None,
) -> AdminAuditLogEntry | None:
    """
    Append one audit entry. Returns the entry, or None if logging failed.

    Logging must never crash the main operation.
    """
    try:
        if operation not in ADMIN_OPERATIONS:
            raise ValueError(f"Unknown admin operation: {operation!r}")

        identity = ctx.identity if ctx else None
        entry = AdminAuditLogEntry(
            user_id=str(identity.user_id) if identity and identity.user_id is not None else None,
            user_email=identity.email if identity else None,
            operation=operation,
            table_name=table_name,
            primary_key=primary_key,
            primary_key_value=str(primary_key_value) if primary_key_value is not None else None,
            before_row=json_safe(before_row) if before_row is not None else None,
            after_row=json_safe(after_row) if after_row is not None else None,
            ip=(ctx.ip_address if ctx else None) or "",
        )

        with db.session.begin_nested():
            ensure_audit_table()
            db.session.add(entry)
        return entry
    except Exception as exc:
        current_app.logger.warning(
            "Admin audit log failed (operation=%s, table=%s): %s",
            operation,
            table_name,
            exc,
        )
        return None


def list_admin_audit(
    *,
    table_name: str | None = None,
    operation: str | None = None,
    limit: int = 100,
) -> list[AdminAuditLogEntry]:
    """Newest-first forensic query over the audit trail."""
    if operation is not None and operation not in ADMIN_OPERATIONS:
        raise ValidationError(f"operation must be one of: {', '.join(ADMIN_OPERATIONS)}")
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    limit = min(limit, MAX_AUDIT_LIST_LIMIT)

    ensure_audit_table()
    q = db.session.query(AdminAuditLogEntry)
    if table_name:
        q = q.filter(AdminAuditLogEntry.table_name == table_name)
    if operation:
        q = q.filter(AdminAuditLogEntry.operation == operation)
    return q.order_by(AdminAuditLogEntry.id.desc()).limit(limit).all()
