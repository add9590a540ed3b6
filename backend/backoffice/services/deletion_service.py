# Overview: Service-layer operations for administrative deletes; cascade and bulk delete engines.

"""
Referential-integrity-aware administrative deletion.

CASCADE DELETE:
- The dependent set is supplied by the operator (usually straight from
  dependency_service.list_dependents), never re-discovered at delete time,
  so nobody deletes rows they have not reviewed.
- One transaction: delete every listed dependent, then the target row.
- If an unlisted table still references the target, the store rejects the
  delete, everything rolls back, and a ReferentialIntegrityError names the
  blocking tables.

BULK DELETE:
- Guarded by a typed confirmation that must equal the table name. This is
  friction against accidents, not a security boundary.
- soft: set-based UPDATE ... SET is_active = false over every row.
- hard: unscoped DELETE with no auto-cascade; referencing rows elsewhere
  make the store reject it and nothing changes.

Both append an admin audit entry inside the same transaction.
"""
from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..context import RequestContext, require_owner
from ..errors import (
    BackOfficeError,
    InvalidStateError,
    NotFoundError,
    ReferentialIntegrityError,
    StoreError,
    ValidationError,
)
from ..extensions import db
from ..validation import require_identifier
from . import dependency_service, schema_service
from .admin_audit_service import append_admin_audit
from .concurrency import run_with_retry

DEFAULT_CRITICAL_TABLES = ("users", "branches")


def _require_mutable_table(table: str) -> None:
    if table in schema_service.PROTECTED_TABLES:
        raise ValidationError(f"Table {table} is append-only and cannot be modified", table=table)


def _normalize_dependents(dependents: Any) -> list[tuple[str, str]]:
    if dependents is None:
        return []
    if not isinstance(dependents, (list, tuple)):
        raise ValidationError("dependents must be a list")
    normalized = []
    for dep in dependents:
        if not isinstance(dep, dict):
            raise ValidationError("Each dependent must be an object with table and column")
        dep_table = require_identifier(dep.get("table"), "dependent table")
        dep_column = require_identifier(dep.get("column"), "dependent column")
        _require_mutable_table(dep_table)
        normalized.append((dep_table, dep_column))
    return normalized


def _critical_tables() -> tuple:
    return tuple(current_app.config.get("CRITICAL_TABLES", DEFAULT_CRITICAL_TABLES))


def cascade_delete(
    ctx: RequestContext,
    table: str,
    primary_key: str,
    primary_key_value: Any,
    dependents: list[dict] | None,
) -> dict:
    """
    Delete operator-approved dependents, then the target row, atomically.

    Args:
        ctx: Acting identity (owner only)
        table: Target table
        primary_key: Target key column
        primary_key_value: Target key value
        dependents: [{"table", "column"}] rows to delete first, where
            column = primary_key_value

    Returns:
        dict: {"success": True, "deleted": {table: rowcount, ...}}

    Raises:
        ValidationError, AuthorizationError, NotFoundError,
        ReferentialIntegrityError, StoreError
    """
    require_identifier(table, "table")
    require_identifier(primary_key, "primary key")
    approved = _normalize_dependents(dependents)
    _require_mutable_table(table)
    require_owner(ctx)
    schema_service.require_table(table)

    def _op():
        target = schema_service.reflect_table(table)
        key_column = schema_service.require_column(target, primary_key, "primary key")
        value = schema_service.coerce_key_value(key_column, primary_key_value)

        deleted: dict[str, int] = {}
        for dep_table_name, dep_column_name in approved:
            schema_service.require_table(dep_table_name)
            dep_table = schema_service.reflect_table(dep_table_name)
            dep_column = schema_service.require_column(dep_table, dep_column_name, "dependent column")
            result = db.session.execute(delete(dep_table).where(dep_column == value))
            deleted[dep_table_name] = deleted.get(dep_table_name, 0) + (result.rowcount or 0)

        before = db.session.execute(select(target).where(key_column == value)).first()
        if before is None:
            raise NotFoundError(f"No row in {table} with {primary_key}={primary_key_value}", table=table)

        result = db.session.execute(delete(target).where(key_column == value))
        deleted[table] = deleted.get(table, 0) + (result.rowcount or 0)

        append_admin_audit(
            ctx,
            "delete",
            table,
            primary_key=primary_key,
            primary_key_value=primary_key_value,
            before_row=schema_service.row_to_dict(before),
            after_row=None,
        )
        db.session.commit()
        return deleted

    try:
        deleted = run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if not schema_service.is_foreign_key_violation(exc):
            current_app.logger.exception("Cascade delete failed on %s", table)
            raise StoreError("Cascade delete failed") from exc
        raise _blocked_cascade_error(exc, table, primary_key, primary_key_value, approved) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Cascade delete failed on %s", table)
        raise StoreError("Cascade delete failed") from exc

    current_app.logger.info(
        "Cascade delete on %s.%s=%s by user %s: %s",
        table, primary_key, primary_key_value, ctx.user_id, deleted,
    )
    return {"success": True, "deleted": deleted}


def _blocked_cascade_error(
    exc: IntegrityError,
    table: str,
    primary_key: str,
    primary_key_value: Any,
    approved: list[tuple[str, str]],
) -> ReferentialIntegrityError:
    details = schema_service.foreign_key_violation_details(exc)
    unlisted = []
    try:
        remaining = dependency_service.list_dependents(table, primary_key, primary_key_value)
        unlisted = [d.to_dict() for d in remaining if (d.table, d.column) not in set(approved)]
    except BackOfficeError:
        current_app.logger.warning("Could not resolve unlisted dependents for %s", table)

    if unlisted:
        tables = ", ".join(sorted({d["table"] for d in unlisted}))
        message = f"Row is still referenced by unlisted tables: {tables}"
    else:
        # A listed dependent is itself referenced (nested dependency chain)
        message = "Foreign key constraint prevents deletion"

    return ReferentialIntegrityError(
        message,
        table=table,
        constraint=details["constraint"],
        referencing_table=details["referencing_table"] or (unlisted[0]["table"] if unlisted else None),
        dependents=unlisted,
    )


def bulk_delete(ctx: RequestContext, table: str, soft: bool, confirm: str | None) -> dict:
    """
    Soft- or hard-delete every row of a table behind a typed confirmation.

    Returns:
        dict: {"success": True, "affected": n}

    Raises:
        ValidationError: bad identifier, confirm != table, critical/protected table
        AuthorizationError: not an owner
        InvalidStateError: soft delete on a table without is_active
        ReferentialIntegrityError: hard delete blocked by referencing rows
        StoreError: unexpected store failure
    """
    require_identifier(table, "table")
    if (confirm or "") != table:
        raise ValidationError("Confirmation string does not match table name", table=table)
    _require_mutable_table(table)
    if not soft and table in _critical_tables():
        raise ValidationError(f"Hard delete disabled for critical table {table}", table=table)
    require_owner(ctx)
    schema_service.require_table(table)

    def _op():
        target = schema_service.reflect_table(table)
        if soft:
            if "is_active" not in target.c:
                raise InvalidStateError(
                    f"Table {table} does not support soft delete (missing is_active)",
                    table=table,
                )
            active_before = db.session.execute(
                select(func.count()).select_from(target).where(target.c.is_active.is_(True))
            ).scalar_one()
            result = db.session.execute(update(target).values(is_active=False))
            append_admin_audit(
                ctx,
                "soft_delete",
                table,
                before_row={"count": int(active_before)},
                after_row={"count": 0},
            )
        else:
            total_before = db.session.execute(
                select(func.count()).select_from(target)
            ).scalar_one()
            result = db.session.execute(delete(target))
            append_admin_audit(
                ctx,
                "delete",
                table,
                before_row={"count": int(total_before)},
                after_row={"count": 0},
            )
        db.session.commit()
        return result.rowcount or 0

    try:
        affected = run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if not schema_service.is_foreign_key_violation(exc):
            current_app.logger.exception("Bulk delete failed on %s", table)
            raise StoreError("Bulk delete failed") from exc
        details = schema_service.foreign_key_violation_details(exc)
        blocking = dependency_service.tables_referencing_rows(table)
        tables = ", ".join(sorted({d.table for d in blocking})) or "other tables"
        raise ReferentialIntegrityError(
            f"Rows in {table} are still referenced by {tables}; resolve dependents first",
            table=table,
            constraint=details["constraint"],
            referencing_table=details["referencing_table"] or (blocking[0].table if blocking else None),
            dependents=[d.to_dict() for d in blocking],
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Bulk delete failed on %s", table)
        raise StoreError("Bulk delete failed") from exc

    current_app.logger.info(
        "Bulk %s delete on %s by user %s: %s rows",
        "soft" if soft else "hard", table, ctx.user_id, affected,
    )
    return {"success": True, "affected": affected}
