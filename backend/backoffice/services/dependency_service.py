# Overview: Service-layer operations for dependency discovery; read-only schema and row inspection.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BackOfficeError, StoreError
from ..extensions import db
from . import schema_service

DEFAULT_SAMPLE_LIMIT = 5


@dataclass
class DependencyDescriptor:
    """Rows in `table` whose `column` holds the target value. Transient."""
    table: str
    column: str
    count: int
    samples: list = field(default_factory=list)
    declared: bool = True

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "column": self.column,
            "count": self.count,
            "samples": self.samples,
            "declared": self.declared,
        }


def _sample_limit(sample_limit: int | None) -> int:
    if sample_limit is not None:
        return sample_limit
    return int(current_app.config.get("DEPENDENT_SAMPLE_LIMIT", DEFAULT_SAMPLE_LIMIT))


def list_dependents(
    table: str,
    primary_key: str,
    primary_key_value: Any,
    *,
    sample_limit: int | None = None,
) -> list[DependencyDescriptor]:
    """
    Find every table/column pair holding rows that reference the target row.

    Read-only. Returns an empty list when nothing references the row, and
    never fails merely because the schema declares no foreign keys.

    Raises:
        ValidationError: malformed/unknown table or column, bad key value
        StoreError: unexpected store failure
    """
    schema_service.require_table(table)
    try:
        target = schema_service.reflect_table(table)
        key_column = schema_service.require_column(target, primary_key, "primary key")
        value = schema_service.coerce_key_value(key_column, primary_key_value)
        return _collect_dependents(table, primary_key, value, _sample_limit(sample_limit))
    except BackOfficeError:
        raise
    except SQLAlchemyError as exc:
        current_app.logger.exception("Dependency lookup failed for %s.%s", table, primary_key)
        raise StoreError("Failed to fetch dependents") from exc


def _collect_dependents(
    table: str,
    primary_key: str,
    value: Any,
    sample_limit: int,
) -> list[DependencyDescriptor]:
    dependents: list[DependencyDescriptor] = []
    for ref in schema_service.find_references(table, primary_key):
        ref_table = schema_service.reflect_table(ref.table)
        ref_col = ref_table.c[ref.column]

        count = db.session.execute(
            select(func.count()).select_from(ref_table).where(ref_col == value)
        ).scalar_one()
        if not count:
            continue

        rows = db.session.execute(
            select(ref_table).where(ref_col == value).limit(sample_limit)
        ).all() if sample_limit > 0 else []
        dependents.append(
            DependencyDescriptor(
                table=ref.table,
                column=ref.column,
                count=int(count),
                samples=[schema_service.row_to_dict(r) for r in rows],
                declared=ref.declared,
            )
        )
    return dependents


def tables_referencing_rows(table: str) -> list[DependencyDescriptor]:
    """
    Which tables currently hold references to ANY row of `table`.

    Used to explain a blocked bulk delete; samples are not collected.
    """
    found: list[DependencyDescriptor] = []
    target = schema_service.reflect_table(table)
    for pk_col in target.primary_key.columns:
        for ref in schema_service.find_references(table, pk_col.name):
            if ref.table == table:
                continue  # self-references go away with the rows themselves
            ref_table = schema_service.reflect_table(ref.table)
            ref_col = ref_table.c[ref.column]
            count = db.session.execute(
                select(func.count()).select_from(ref_table).where(ref_col.isnot(None))
            ).scalar_one()
            if count:
                found.append(DependencyDescriptor(ref.table, ref.column, int(count), declared=ref.declared))
    return found
