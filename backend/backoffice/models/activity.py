from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ACTIVITY_STATUS_COMPLETED = "completed"
ACTIVITY_STATUS_REVERSED = "reversed"


class Activity(db.Model):
    """
    Business activity ledger entry.

    IMMUTABLE: Created once, mutated at most once (status completed -> reversed
    by the restore engine), never deleted.

    delta holds a typed payload (see services/activity_deltas.py) that is
    self-sufficient to compute the compensation for the activity type.

    branch_id, user_id and related_entity_id deliberately carry no foreign
    keys: the ledger must outlive the rows it describes, and admin deletes
    of branches/users/products must not be blocked by history.

    A reversed activity has exactly one child with type="restore" whose
    parent_activity_id points back at it.
    """
    __tablename__ = "activities"
    __table_args__ = (
        db.Index("ix_activities_branch_created", "branch_id", "created_at"),
        db.Index("ix_activities_related", "related_entity_type", "related_entity_id"),
        db.CheckConstraint(
            "status IN ('completed', 'reversed')",
            name="ck_activities_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ACTIVITY_STATUS_COMPLETED, index=True)

    branch_id = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    related_entity_type = db.Column(db.String(64), nullable=True)
    related_entity_id = db.Column(db.Integer, nullable=True)

    delta = db.Column(db.JSON, nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    parent_activity_id = db.Column(
        db.Integer, db.ForeignKey("activities.id"), nullable=True, unique=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    parent = db.relationship("Activity", remote_side=[id], backref=db.backref("restore_activity", uselist=False))

    def __repr__(self) -> str:
        return f"<Activity id={self.id} type={self.type!r} status={self.status!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "delta": self.delta,
            "metadata": self.metadata_json,
            "parent_activity_id": self.parent_activity_id,
            "created_at": to_utc_z(self.created_at),
        }
