from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ADMIN_OPERATIONS = ("insert", "update", "delete", "soft_delete")


class AdminAuditLogEntry(db.Model):
    """
    Forensic record of an administrative table mutation.

    Decoupled from the activity ledger: ad-hoc edits made through the admin
    DB tooling stay reconstructable even when no business flow ran.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    The table is created on first use if a deployment has not migrated it.
    """
    __tablename__ = "admin_audit_log"
    __table_args__ = (
        db.Index("ix_admin_audit_log_table_created", "table_name", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(64), nullable=True)
    user_email = db.Column(db.String(255), nullable=True)

    operation = db.Column(db.String(16), nullable=False, index=True)
    table_name = db.Column(db.String(128), nullable=False)
    primary_key = db.Column(db.String(128), nullable=True)
    primary_key_value = db.Column(db.String(255), nullable=True)

    before_row = db.Column(db.JSON, nullable=True)
    after_row = db.Column(db.JSON, nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "operation": self.operation,
            "table_name": self.table_name,
            "primary_key": self.primary_key,
            "primary_key_value": self.primary_key_value,
            "before_row": self.before_row,
            "after_row": self.after_row,
            "ip": self.ip,
            "created_at": to_utc_z(self.created_at),
        }
