from __future__ import annotations

from ..extensions import db
from localpos.time_utils import to_utc_z

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)


class User(db.Model):
    """
    User accounts for authentication and attribution.

    Single tenant: username is globally unique.

    SECURITY NOTE: `password` holds whatever auth_service.hash_password
    produced. Under the default "plaintext" scheme that is the password
    itself, exactly as typed.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.Text, nullable=False, unique=True)
    password = db.Column(db.Text, nullable=False)
    role = db.Column(db.Text, nullable=False, default=ROLE_USER, server_default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True, server_default=db.true())

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    last_login = db.Column(db.DateTime, nullable=True)

    def to_dict(self, include_password: bool = False) -> dict:
        data = {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "is_active": bool(self.is_active),
            "created_at": to_utc_z(self.created_at),
            "last_login": to_utc_z(self.last_login) if self.last_login else None,
        }
        if include_password:
            data["password"] = self.password
        return data
