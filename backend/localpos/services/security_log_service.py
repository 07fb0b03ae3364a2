# Overview: Append-only security log written alongside the action it describes.

"""
Audit Log

WHY: Every security-relevant action must be attributable after the fact.

IMMUTABLE: rows are inserted, never updated or deleted. record() only adds
the row to the current session; the caller commits it together with the
change it describes, so the two land (or roll back) as one unit.

`username` is resolved from the session at write time, falling back to
"Unknown" when nobody is signed in.

action examples:
- LOGIN_SUCCESS / LOGIN_FAILED / LOGIN_ERROR
- LOGOUT
- PASSWORD_CHANGED
- USER_CREATED / USER_STATUS_CHANGED / USER_DELETED
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import SecurityLog
from localpos.time_utils import utcnow

UNKNOWN_USERNAME = "Unknown"


def _acting_username() -> str:
    from . import session_service

    user = session_service.current_user()
    if user and user.get("username"):
        return user["username"]
    return UNKNOWN_USERNAME


def record(action: str, details: str, user_id: int | None = None) -> SecurityLog:
    """Add one audit row to the current transaction. The caller commits."""
    entry = SecurityLog(
        user_id=user_id,
        username=_acting_username(),
        action=action,
        details=details,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def recent(limit: int | None = None) -> list[SecurityLog]:
    """Most recent entries first, capped at `limit` (default SECURITY_LOG_LIMIT)."""
    if limit is None:
        limit = current_app.config.get("SECURITY_LOG_LIMIT", 100)
    return (
        db.session.query(SecurityLog)
        .order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        .limit(limit)
        .all()
    )


def count(action: str | None = None) -> int:
    query = db.session.query(SecurityLog)
    if action is not None:
        query = query.filter(SecurityLog.action == action)
    return query.count()
