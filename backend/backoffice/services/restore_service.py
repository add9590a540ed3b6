# Overview: Service-layer operations for restoring (reversing) recorded activities.

"""
Restore Engine Invariants (authoritative)

- Only activities in status "completed" can be restored; each at most once.
- Preview (dry run) is read-only, idempotent and safe to call concurrently.
- Commit is one transaction:
    1. claim the activity with a conditional UPDATE (completed -> reversed)
    2. apply the type's compensation rule (set-based inventory updates)
    3. insert the type="restore" child with parent_activity_id
    4. commit
  Any failure rolls back all of it, including the claim.
- Two concurrent restores race on the claim; the loser updates zero rows
  and gets InvalidStateError. parent_activity_id is UNIQUE as a backstop.
- Owners may restore anything; other roles only their own branch's
  activities (branchless activities are shared).
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..context import RequestContext, require_branch_access
from ..errors import BackOfficeError, InvalidStateError, StoreError, ValidationError
from ..extensions import db
from ..models import Activity
from ..models.activity import ACTIVITY_STATUS_COMPLETED, ACTIVITY_STATUS_REVERSED
from ..time_utils import json_safe
from ..validation import require_int, require_text
from .activity_deltas import ACTIVITY_RESTORE, RestoreDelta, parse_delta
from .activity_service import get_activity
from .compensation import get_rule
from .concurrency import run_with_retry

DRY_RUN_MESSAGE = "Dry run only. No changes applied."
DEFAULT_RESTORE_REASON = "Restore via API"
MAX_REASON_LENGTH = 500


def _load_restorable(ctx: RequestContext, activity_id: int):
    """NotFound -> authorization -> status -> rule -> delta, in that order."""
    activity = get_activity(activity_id)
    require_branch_access(ctx, activity.branch_id)
    if activity.status != ACTIVITY_STATUS_COMPLETED:
        raise InvalidStateError(
            "Activity has already been restored",
            activity_id=activity.id,
            status=activity.status,
        )
    rule = get_rule(activity.type)
    try:
        delta = parse_delta(activity.type, activity.delta)
    except ValidationError as exc:
        raise InvalidStateError(
            f"Activity delta is malformed: {exc.message}",
            activity_id=activity.id,
        ) from exc
    return activity, rule, delta


def preview_restore(ctx: RequestContext, activity_id: int) -> dict:
    """Projected effect of restoring the activity. Writes nothing."""
    activity_id = require_int(activity_id, "activity_id", minimum=1)
    try:
        activity, rule, delta = _load_restorable(ctx, activity_id)
        return json_safe(rule.preview(activity, delta))
    except BackOfficeError:
        raise
    except SQLAlchemyError as exc:
        current_app.logger.exception("Restore preview failed for activity %s", activity_id)
        raise StoreError("Failed to preview restore") from exc
    finally:
        # Preview must never leave pending state behind
        db.session.rollback()


def commit_restore(ctx: RequestContext, activity_id: int, reason: str) -> dict:
    """
    Apply the compensation for a completed activity.

    Returns:
        dict: {"success": True, "restored_activity_id", "restore_activity_id", "effect"}

    Raises:
        ValidationError, NotFoundError, AuthorizationError,
        InvalidStateError (incl. InsufficientStockError), StoreError
    """
    activity_id = require_int(activity_id, "activity_id", minimum=1)
    reason = require_text(reason, "reason", max_length=MAX_REASON_LENGTH)

    def _op():
        activity, rule, delta = _load_restorable(ctx, activity_id)

        claimed = db.session.execute(
            update(Activity)
            .where(Activity.id == activity.id, Activity.status == ACTIVITY_STATUS_COMPLETED)
            .values(status=ACTIVITY_STATUS_REVERSED)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed == 0:
            raise InvalidStateError("Activity was restored concurrently", activity_id=activity.id)

        effect = json_safe(rule.apply(ctx, activity, delta))

        restore = Activity(
            type=ACTIVITY_RESTORE,
            title=f"Restored {activity.type}",
            description=reason,
            status=ACTIVITY_STATUS_COMPLETED,
            branch_id=activity.branch_id,
            user_id=ctx.user_id,
            related_entity_type=activity.related_entity_type,
            related_entity_id=activity.related_entity_id,
            delta=RestoreDelta(reason=reason, reversed_type=activity.type, effect=effect).to_dict(),
            metadata_json={"ip": ctx.ip_address} if ctx.ip_address else None,
            parent_activity_id=activity.id,
        )
        db.session.add(restore)
        db.session.commit()
        return {
            "success": True,
            "restored_activity_id": activity_id,
            "restore_activity_id": restore.id,
            "effect": effect,
        }

    try:
        result = run_with_retry(_op)
    except BackOfficeError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if "parent_activity_id" in str(exc.orig):
            raise InvalidStateError("Activity was restored concurrently", activity_id=activity_id) from exc
        current_app.logger.exception("Restore failed for activity %s", activity_id)
        raise StoreError("Failed to restore activity") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Restore failed for activity %s", activity_id)
        raise StoreError("Failed to restore activity") from exc

    current_app.logger.info(
        "Activity %s restored by user %s (restore activity %s)",
        activity_id, ctx.user_id, result["restore_activity_id"],
    )
    return result


def restore_activity(
    ctx: RequestContext,
    activity_id: int,
    reason: str | None = None,
    dry_run: bool = False,
) -> dict:
    """
    Single entry point used by the HTTP route and the CLI.

    Returns:
        dry run: {"success": True, "dry_run": True, "message", "data": projection}
        commit:  {"success": True, "dry_run": False, "data": commit result}
    """
    if dry_run:
        return {
            "success": True,
            "dry_run": True,
            "message": DRY_RUN_MESSAGE,
            "data": preview_restore(ctx, activity_id),
        }
    result = commit_restore(ctx, activity_id, reason or DEFAULT_RESTORE_REASON)
    return {"success": True, "dry_run": False, "data": result}
