from __future__ import annotations

from ..extensions import db
from localpos.time_utils import to_utc_z


class SecurityLog(db.Model):
    """
    Security event audit log.

    `username` is resolved when the row is written, not joined from users,
    so the entry survives renames and deletions of the acting account.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_logs"
    __table_args__ = (
        db.Index("ix_security_logs_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True)  # Nullable for anonymous
    username = db.Column(db.Text, nullable=True)

    action = db.Column(db.Text, nullable=False)  # LOGIN_SUCCESS, LOGIN_FAILED, USER_CREATED, ...
    details = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.Text, nullable=True)  # Part of the stored image format; not written here

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "action": self.action,
            "details": self.details,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }
