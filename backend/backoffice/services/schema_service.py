# Overview: Live schema introspection over the store catalog (tables, columns, foreign keys).

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.exc import IntegrityError, NoSuchTableError

from ..errors import ValidationError
from ..extensions import db
from ..time_utils import json_safe
from ..validation import coerce_column_value, require_identifier

# Append-only ledgers: admin tooling never deletes or edits their rows.
PROTECTED_TABLES = frozenset({"activities", "admin_audit_log"})

# Hidden from table listings entirely.
SENSITIVE_TABLES = frozenset({"auth_tokens", "sessions", "secrets"})

# Shown as "***" and never writable through admin tooling.
REDACT_COLUMNS = frozenset({"password_hash", "token", "secret"})

FK_VIOLATION_SQLSTATE = "23503"


@dataclass(frozen=True)
class Reference:
    """One (table, column) pair expected to hold values of a target column."""
    table: str
    column: str
    constraint: str | None = None
    declared: bool = True


def _inspector():
    # Bind to the session's connection so introspection sees the same
    # transaction (and the same in-memory database under test).
    return inspect(db.session.connection())


def table_names() -> list[str]:
    return sorted(_inspector().get_table_names())


def require_table(name: Any) -> str:
    """Validate a table identifier and ensure the table exists."""
    require_identifier(name, "table")
    if name not in _inspector().get_table_names():
        raise ValidationError("Unknown table", table=name)
    return name


def reflect_table(name: str) -> Table:
    try:
        return Table(name, MetaData(), autoload_with=db.session.connection())
    except NoSuchTableError:
        raise ValidationError("Unknown table", table=name)


def require_column(table: Table, name: Any, label: str = "column"):
    require_identifier(name, label)
    if name not in table.c:
        raise ValidationError(f"Unknown {label}: {name}", table=table.name)
    return table.c[name]


def has_column(table_name: str, column_name: str) -> bool:
    return any(c["name"] == column_name for c in _inspector().get_columns(table_name))


def describe_columns(table_name: str) -> list[dict]:
    return [
        {"name": c["name"], "type": str(c["type"]), "nullable": bool(c.get("nullable", True))}
        for c in _inspector().get_columns(table_name)
    ]


def coerce_key_value(column, value: Any):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Missing primary key value")
    return coerce_column_value(column, value)


def row_to_dict(row, *, redact: bool = True) -> dict | None:
    if row is None:
        return None
    data = dict(row._mapping)
    if redact:
        for key in data:
            if key in REDACT_COLUMNS:
                data[key] = "***"
    return json_safe(data)


def _singular_candidates(table_name: str) -> set[str]:
    """Naming-convention guesses for columns referencing table_name."""
    candidates = {f"{table_name}_id"}
    if table_name.endswith("ies"):
        candidates.add(f"{table_name[:-3]}y_id")
    if table_name.endswith("es"):
        candidates.add(f"{table_name[:-2]}_id")
    if table_name.endswith("s"):
        candidates.add(f"{table_name[:-1]}_id")
    return candidates


def find_references(table_name: str, column_name: str) -> list[Reference]:
    """
    Every (table, column) pair expected to reference table_name.column_name.

    Declared foreign keys come first. When no declared foreign key points at
    table_name at all (legacy tables created without constraints), fall back
    to the <singular>_id naming convention. Protected ledgers are skipped by
    the fallback: their ids are historical, not live references.
    """
    insp = _inspector()
    all_tables = insp.get_table_names()

    declared: list[Reference] = []
    table_is_referenced = False
    for other in all_tables:
        for fk in insp.get_foreign_keys(other):
            if fk.get("referred_table") != table_name:
                continue
            table_is_referenced = True
            referred = fk.get("referred_columns") or []
            constrained = fk.get("constrained_columns") or []
            for ref_col, con_col in zip(referred, constrained):
                if ref_col == column_name:
                    declared.append(Reference(other, con_col, fk.get("name"), declared=True))

    if table_is_referenced:
        return declared

    candidates = _singular_candidates(table_name)
    guessed: list[Reference] = []
    for other in all_tables:
        if other == table_name or other in PROTECTED_TABLES:
            continue
        for col in insp.get_columns(other):
            if col["name"] in candidates:
                guessed.append(Reference(other, col["name"], None, declared=False))
    return guessed


def is_foreign_key_violation(exc: Exception) -> bool:
    """True for PostgreSQL SQLSTATE 23503 and SQLite 'FOREIGN KEY constraint failed'."""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == FK_VIOLATION_SQLSTATE:
        return True
    return "foreign key constraint" in str(orig).lower()


def foreign_key_violation_details(exc: IntegrityError) -> dict:
    """Constraint/table metadata from the driver, where it reports any."""
    diag = getattr(exc.orig, "diag", None)
    return {
        "constraint": getattr(diag, "constraint_name", None),
        "referencing_table": getattr(diag, "table_name", None),
    }
