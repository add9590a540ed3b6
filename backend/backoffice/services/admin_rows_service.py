# Overview: Service-layer operations for generic admin row tooling; encapsulates business logic and database work.

"""
Generic row browser/editor for operators.

Works on any table the store reports, through reflected SQLAlchemy Core
tables (identifiers are validated and bound, never interpolated):
- Sensitive tables are hidden from listings and refused.
- Redacted columns are shown as "***" and silently dropped from writes.
- Protected ledgers (activities, admin_audit_log) are read-only.
- Every mutation appends an admin audit entry in the same transaction.
"""
from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import delete, func, insert, select, update
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
from ..time_utils import json_safe
from ..validation import coerce_column_value, is_safe_identifier, require_identifier
from . import dependency_service, schema_service
from .admin_audit_service import append_admin_audit
from .concurrency import run_with_retry

DEFAULT_ROW_LIMIT = 25
MAX_ROW_LIMIT = 200


def _require_visible_table(table: Any) -> str:
    require_identifier(table, "table")
    if table in schema_service.SENSITIVE_TABLES:
        raise ValidationError("Table is not accessible", table=table)
    return schema_service.require_table(table)


def _require_writable_table(table: Any) -> str:
    _require_visible_table(table)
    if table in schema_service.PROTECTED_TABLES:
        raise ValidationError(f"Table {table} is append-only and cannot be modified", table=table)
    return table


def _writable_values(target, values: Any, *, label: str) -> dict:
    if not isinstance(values, dict):
        raise ValidationError(f"Invalid {label}")
    cleaned = {}
    for key, value in values.items():
        if not is_safe_identifier(key):
            raise ValidationError(f"Invalid column name: {key!r}")
        if key in schema_service.REDACT_COLUMNS or key not in target.c:
            continue
        cleaned[key] = coerce_column_value(target.c[key], value)
    if not cleaned:
        raise ValidationError(f"No valid fields to {label}")
    return cleaned


def list_tables() -> list[dict]:
    """Every non-sensitive table with its columns."""
    try:
        return [
            {"name": name, "columns": schema_service.describe_columns(name)}
            for name in schema_service.table_names()
            if name not in schema_service.SENSITIVE_TABLES
        ]
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list tables")
        raise StoreError("Failed to list tables") from exc


def list_rows(table: str, *, limit: int = DEFAULT_ROW_LIMIT, offset: int = 0) -> dict:
    """One page of rows (ordered by the first column) plus the table's total count."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("limit must be a positive integer")
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError("offset must be a non-negative integer")
    limit = min(limit, MAX_ROW_LIMIT)
    _require_visible_table(table)

    try:
        target = schema_service.reflect_table(table)
        order_col = list(target.primary_key.columns) or [list(target.c)[0]]
        total = db.session.execute(select(func.count()).select_from(target)).scalar_one()
        rows = db.session.execute(
            select(target).order_by(*order_col).limit(limit).offset(offset)
        ).all()
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to list rows of %s", table)
        raise StoreError("Failed to list rows") from exc

    return {
        "rows": [schema_service.row_to_dict(r) for r in rows],
        "total": int(total),
        "limit": limit,
        "offset": offset,
    }


def _fetch_row(target, key_column, value):
    return db.session.execute(select(target).where(key_column == value)).first()


def _run_mutation(op, table: str, action: str, dependents_lookup=None):
    try:
        return run_with_retry(op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if schema_service.is_foreign_key_violation(exc):
            details = schema_service.foreign_key_violation_details(exc)
            dependents = dependents_lookup() if dependents_lookup else []
            raise ReferentialIntegrityError(
                "Foreign key constraint violation",
                table=table,
                constraint=details["constraint"],
                referencing_table=details["referencing_table"] or (dependents[0]["table"] if dependents else None),
                dependents=dependents,
            ) from exc
        raise ValidationError(f"Constraint violation: {exc.orig}", table=table) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Admin %s failed on %s", action, table)
        raise StoreError(f"Failed to {action} row") from exc


def insert_row(ctx: RequestContext, table: str, values: dict) -> dict:
    """Insert one row; unknown and redacted columns are ignored."""
    _require_writable_table(table)
    require_owner(ctx)

    def _op():
        target = schema_service.reflect_table(table)
        cleaned = _writable_values(target, values, label="insert")
        result = db.session.execute(insert(target).values(**cleaned))

        row = None
        pk_cols = list(target.primary_key.columns)
        inserted_pk = result.inserted_primary_key
        if pk_cols and inserted_pk is not None:
            row = db.session.execute(
                select(target).where(*[col == val for col, val in zip(pk_cols, inserted_pk)])
            ).first()
        after = schema_service.row_to_dict(row) if row is not None else json_safe(cleaned)

        append_admin_audit(
            ctx,
            "insert",
            table,
            primary_key=pk_cols[0].name if len(pk_cols) == 1 else None,
            primary_key_value=inserted_pk[0] if inserted_pk and len(pk_cols) == 1 else None,
            before_row=None,
            after_row=after,
        )
        db.session.commit()
        return after

    row = _run_mutation(_op, table, "insert")
    current_app.logger.info("Admin insert into %s by user %s", table, ctx.user_id)
    return row


def update_row(ctx: RequestContext, table: str, primary_key: str, primary_key_value: Any, updates: dict) -> dict:
    """Update one row by key; redacted columns are dropped from the patch."""
    _require_writable_table(table)
    require_identifier(primary_key, "primary key")
    require_owner(ctx)

    def _op():
        target = schema_service.reflect_table(table)
        key_column = schema_service.require_column(target, primary_key, "primary key")
        value = schema_service.coerce_key_value(key_column, primary_key_value)
        cleaned = _writable_values(target, updates, label="update")

        before = _fetch_row(target, key_column, value)
        if before is None:
            raise NotFoundError("Row not found", table=table)
        db.session.execute(update(target).where(key_column == value).values(**cleaned))
        after = _fetch_row(target, key_column, cleaned.get(primary_key, value))

        after_dict = schema_service.row_to_dict(after)
        append_admin_audit(
            ctx,
            "update",
            table,
            primary_key=primary_key,
            primary_key_value=primary_key_value,
            before_row=schema_service.row_to_dict(before),
            after_row=after_dict,
        )
        db.session.commit()
        return after_dict

    row = _run_mutation(_op, table, "update")
    current_app.logger.info("Admin update on %s.%s=%s by user %s", table, primary_key, primary_key_value, ctx.user_id)
    return row


def delete_row(
    ctx: RequestContext,
    table: str,
    primary_key: str,
    primary_key_value: Any,
    soft: bool = False,
) -> dict:
    """
    Delete (or soft-delete via is_active) one row by key.

    A hard delete blocked by referencing rows raises ReferentialIntegrityError
    carrying the dependents, so the caller can offer a cascade delete.
    """
    _require_writable_table(table)
    require_identifier(primary_key, "primary key")
    require_owner(ctx)

    def _op():
        target = schema_service.reflect_table(table)
        key_column = schema_service.require_column(target, primary_key, "primary key")
        value = schema_service.coerce_key_value(key_column, primary_key_value)

        before = _fetch_row(target, key_column, value)
        if before is None:
            raise NotFoundError("Row not found", table=table)
        before_dict = schema_service.row_to_dict(before)

        if soft:
            if "is_active" not in target.c:
                raise InvalidStateError(
                    f"Table {table} does not support soft delete (missing is_active)",
                    table=table,
                )
            db.session.execute(update(target).where(key_column == value).values(is_active=False))
            after_dict = schema_service.row_to_dict(_fetch_row(target, key_column, value))
            operation = "soft_delete"
        else:
            db.session.execute(delete(target).where(key_column == value))
            after_dict = None
            operation = "delete"

        append_admin_audit(
            ctx,
            operation,
            table,
            primary_key=primary_key,
            primary_key_value=primary_key_value,
            before_row=before_dict,
            after_row=after_dict,
        )
        db.session.commit()
        return after_dict if soft else before_dict

    def _dependents():
        try:
            return [
                d.to_dict()
                for d in dependency_service.list_dependents(table, primary_key, primary_key_value)
            ]
        except BackOfficeError:
            return []

    row = _run_mutation(_op, table, "delete", dependents_lookup=_dependents)
    current_app.logger.info(
        "Admin %s on %s.%s=%s by user %s",
        "soft delete" if soft else "delete", table, primary_key, primary_key_value, ctx.user_id,
    )
    return row
