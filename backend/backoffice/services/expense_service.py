# Overview: Service-layer operations for expenses; encapsulates business logic and database work.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import BackOfficeError, StoreError, ValidationError
from ..extensions import db
from ..models import Expense
from ..time_utils import utcnow
from ..validation import require_amount_cents, require_int, require_text
from .activity_deltas import ACTIVITY_EXPENSE_ADD, ExpenseDelta
from .activity_service import record_activity
from .concurrency import run_with_retry
from .inventory_service import require_branch


def add_expense(
    ctx: RequestContext,
    branch_id: int,
    amount: int,
    category: str,
    description: str | None = None,
    expense_date: date | None = None,
) -> Expense:
    """Record a branch expense (amount in cents) and its expense_add activity."""
    branch_id = require_int(branch_id, "branch_id", minimum=1)
    amount = require_amount_cents(amount, "amount")
    if amount == 0:
        raise ValidationError("amount must be greater than zero")
    category = require_text(category, "category", max_length=64)
    if expense_date is not None and not isinstance(expense_date, date):
        raise ValidationError("expense_date must be a date")
    require_branch_access(ctx, branch_id)

    def _op():
        require_branch(branch_id)
        expense = Expense(
            branch_id=branch_id,
            category=category,
            amount_cents=amount,
            description=description,
            expense_date=expense_date or utcnow().date(),
            created_by=ctx.user_id,
        )
        db.session.add(expense)
        db.session.flush()

        record_activity(
            ACTIVITY_EXPENSE_ADD,
            ExpenseDelta(amount=amount, category=category),
            branch_id=branch_id,
            user_id=ctx.user_id,
            related_entity=("expense", expense.id),
            title="Expense added",
            description=description,
        )
        db.session.commit()
        return expense

    try:
        return run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Expense creation failed")
        raise StoreError("Failed to add expense") from exc
