# backend/backoffice/errors.py
"""
Error taxonomy shared by the ledger, restore, and admin deletion services.

Every error carries a machine-readable ``code`` and an HTTP ``status`` so
routes and CLI commands can translate failures without string matching.
Callers route REFERENTIAL_INTEGRITY failures into the dependency flow
(list dependents -> review -> cascade delete).
"""
from __future__ import annotations


class BackOfficeError(Exception):
    """Base class for all domain errors raised by the services."""

    code = "BACKOFFICE_ERROR"
    status = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(BackOfficeError, ValueError):
    """400-level input problem, raised before any store access."""

    code = "VALIDATION_ERROR"
    status = 400


class AuthorizationError(BackOfficeError):
    """Role or branch scope insufficient for the requested operation."""

    code = "AUTHORIZATION_ERROR"
    status = 403


class NotFoundError(BackOfficeError):
    code = "NOT_FOUND"
    status = 404


class InvalidStateError(BackOfficeError):
    """Target exists but is not in a state that allows the operation."""

    code = "INVALID_STATE"
    status = 409


class InsufficientStockError(InvalidStateError):
    """Not enough stock on hand to apply an inventory decrement."""

    def __init__(self, product_id: int, branch_id: int, available: int, required: int):
        super().__init__(
            f"Insufficient stock for product {product_id} at branch {branch_id}. "
            f"Available: {available}, required: {required}",
            product_id=product_id,
            branch_id=branch_id,
            available=available,
            required=required,
        )


class ReferentialIntegrityError(BackOfficeError):
    """A delete was blocked by rows that still reference the target."""

    code = "REFERENTIAL_INTEGRITY"
    status = 409
    sqlstate = "23503"

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        constraint: str | None = None,
        referencing_table: str | None = None,
        dependents: list | None = None,
    ):
        super().__init__(
            message,
            sqlstate=self.sqlstate,
            table=table,
            constraint=constraint,
            referencing_table=referencing_table,
            dependents=dependents,
        )
        self.table = table
        self.constraint = constraint
        self.referencing_table = referencing_table
        self.dependents = dependents or []


class StoreError(BackOfficeError):
    """Connection, timeout, or otherwise unexpected store failure."""

    code = "STORE_ERROR"
    status = 500
