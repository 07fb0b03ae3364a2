# Overview: Session manager; authentication state, role-gated user admin, and session persistence.

"""
Session Manager

STATES: anonymous -> authenticating -> authenticated -> anonymous

The signed-in user is held in process memory and mirrored to the local
storage slot SESSION_KEY so the next start can re-enter silently.

SECURITY:
- The persisted copy is a snapshot of the user row taken at login. It is a
  hint, never authority: restore_session() re-reads the row and requires it
  to exist and be active before trusting it.
- Privileged operations return False (never raise) when the caller is not
  an admin or targets their own account. Authorization checks alone are
  not audited; only attempted state changes are.
- Every state-changing operation runs under the store's writer gate and
  commits its audit row in the same transaction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from flask import Flask, current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import User, ROLE_ADMIN, ROLE_USER
from ..signals import store_replaced
from ..validation import ConstraintViolation, ValidationError
from . import auth_service, security_log_service, store_service
from .local_storage import StorageError
from localpos.time_utils import utcnow

EXTENSION_KEY = "localpos.session"

STATE_ANONYMOUS = "anonymous"
STATE_AUTHENTICATING = "authenticating"
STATE_AUTHENTICATED = "authenticated"


@dataclass
class SessionState:
    """Process-wide authentication state for one app."""
    status: str = STATE_ANONYMOUS
    user: dict | None = field(default=None)

    def adopt(self, user: dict) -> None:
        self.user = dict(user)
        self.status = STATE_AUTHENTICATED

    def clear(self) -> None:
        self.user = None
        self.status = STATE_ANONYMOUS


def init_app(app: Flask) -> SessionState:
    state = SessionState()
    app.extensions[EXTENSION_KEY] = state
    return state


def _state() -> SessionState:
    return current_app.extensions[EXTENSION_KEY]


def _session_key() -> str:
    return current_app.config["SESSION_KEY"]


def _persist(user: dict) -> None:
    store_service.local_storage().set_item(_session_key(), json.dumps(user))


def _forget() -> None:
    store_service.local_storage().remove_item(_session_key())


# ----------------------------------------------------------------------
# Accessors
# ----------------------------------------------------------------------


def current_user() -> dict | None:
    user = _state().user
    return dict(user) if user is not None else None


def is_authenticated() -> bool:
    return _state().status == STATE_AUTHENTICATED


def is_admin() -> bool:
    user = _state().user
    return bool(user) and user.get("role") == ROLE_ADMIN


def status() -> str:
    return _state().status


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------


def login(username: str, password: str) -> bool:
    """
    Sign in with username and password.

    Success updates last_login, records LOGIN_SUCCESS, and persists the
    session. Failure records LOGIN_FAILED without a user id and without
    saying which field was wrong.
    """
    state = _state()
    previous_status, previous_user = state.status, state.user
    state.status = STATE_AUTHENTICATING

    with store_service.write_gate():
        try:
            user = auth_service.authenticate(username, password)
            if user is None:
                state.status = previous_status
                security_log_service.record("LOGIN_FAILED", f"Failed login attempt for {username}")
                db.session.commit()
                return False

            user.last_login = utcnow()
            db.session.flush()
            snapshot = user.to_dict(include_password=True)

            # Adopt first so the audit row is attributed to the new user.
            state.adopt(snapshot)
            security_log_service.record("LOGIN_SUCCESS", f"User {username} logged in", user.id)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            state.status, state.user = previous_status, previous_user
            current_app.logger.exception("Failed to login user")
            _record_login_error(username, exc)
            return False
        except Exception:
            db.session.rollback()
            state.status, state.user = previous_status, previous_user
            raise

    try:
        _persist(snapshot)
    except StorageError:
        # Signed in for this process; silent re-entry just won't be available.
        current_app.logger.exception("Failed to persist session")
    return True


def _record_login_error(username: str, exc: Exception) -> None:
    try:
        security_log_service.record("LOGIN_ERROR", f"Error logging in {username} - {exc}")
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to record login error")


def logout() -> None:
    """Record LOGOUT for the outgoing user and clear the session everywhere."""
    state = _state()
    user = state.user

    if user is not None:
        with store_service.write_gate():
            try:
                security_log_service.record(
                    "LOGOUT", f"User {user['username']} logged out", user["id"]
                )
                db.session.commit()
            except SQLAlchemyError:
                db.session.rollback()
                current_app.logger.exception("Failed to record logout")

    state.clear()
    try:
        _forget()
    except StorageError:
        current_app.logger.exception("Failed to clear persisted session")


def restore_session() -> bool:
    """
    Re-enter a persisted session if its user still exists and is active.

    Anything else (no slot, unreadable slot, deleted or deactivated user)
    discards the slot and leaves the session anonymous.
    """
    state = _state()
    try:
        raw = store_service.local_storage().get_item(_session_key())
    except StorageError:
        current_app.logger.exception("Failed to read persisted session")
        state.clear()
        return False

    if raw is None:
        state.clear()
        return False

    try:
        user_id = int(json.loads(raw)["id"])
    except (ValueError, KeyError, TypeError):
        current_app.logger.warning("Discarding unreadable persisted session")
        return _discard_session()

    user = db.session.query(User).filter_by(id=user_id, is_active=True).first()
    if user is None:
        return _discard_session()

    state.adopt(user.to_dict(include_password=True))
    return True


def _discard_session() -> bool:
    _state().clear()
    try:
        _forget()
    except StorageError:
        current_app.logger.exception("Failed to clear persisted session")
    return False


@store_replaced.connect
def _revalidate_after_replace(sender, **extra):
    """After an import the signed-in user must still exist in the new store."""
    with sender.app_context():
        state = _state()
        if state.user is None:
            return
        user = db.session.query(User).filter_by(id=state.user["id"], is_active=True).first()
        if user is None:
            sender.logger.info("Signed-in user not present in imported store; signing out")
            _discard_session()
        else:
            state.adopt(user.to_dict(include_password=True))


def change_password(current_password: str, new_password: str) -> bool:
    """
    Change the signed-in user's password.

    `current_password` is checked against the stored row, not the session
    copy. The row and the persisted session either both change or neither
    does.
    """
    state = _state()
    if state.user is None or not new_password:
        return False

    with store_service.write_gate():
        user = db.session.get(User, state.user["id"])
        if user is None or not auth_service.verify_password(current_password, user.password):
            return False

        storage = store_service.local_storage()
        previous_slot = None
        try:
            previous_slot = storage.get_item(_session_key())
            user.password = auth_service.hash_password(new_password)
            security_log_service.record(
                "PASSWORD_CHANGED", f"User {user.username} changed password", user.id
            )
            updated = {**state.user, "password": user.password}
            _persist(updated)
        except (StorageError, SQLAlchemyError):
            db.session.rollback()
            current_app.logger.exception("Change password error")
            return False

        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Change password error")
            _restore_slot(previous_slot)
            return False

    state.adopt(updated)
    return True


def _restore_slot(previous: str | None) -> None:
    storage = store_service.local_storage()
    try:
        if previous is None:
            storage.remove_item(_session_key())
        else:
            storage.set_item(_session_key(), previous)
    except StorageError:
        current_app.logger.exception("Failed to roll back persisted session")


# ----------------------------------------------------------------------
# Admin operations
# ----------------------------------------------------------------------


def _acting_admin() -> dict | None:
    user = _state().user
    if user is None or user.get("role") != ROLE_ADMIN:
        return None
    return user


def create_user(username: str, password: str, role: str = ROLE_USER, is_active: bool = True) -> bool:
    admin = _acting_admin()
    if admin is None:
        return False

    with store_service.write_gate():
        try:
            auth_service.create_user(username, password, role=role, is_active=is_active)
            security_log_service.record(
                "USER_CREATED",
                f"Admin {admin['username']} created user {username} ({role})",
                admin["id"],
            )
            db.session.commit()
        except (ValidationError, ConstraintViolation) as exc:
            db.session.rollback()
            current_app.logger.warning("Create user rejected: %s", exc)
            return False
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning("Create user rejected: username %r already exists", username)
            return False
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Create user error")
            return False
    return True


def toggle_user_status(user_id: int, is_active: bool) -> bool:
    """Activate or deactivate another user. Never the caller's own account."""
    admin = _acting_admin()
    if admin is None or user_id == admin["id"]:
        return False

    with store_service.write_gate():
        try:
            target = db.session.get(User, user_id)
            if target is None:
                return False
            target.is_active = bool(is_active)
            verb = "activated" if is_active else "deactivated"
            security_log_service.record(
                "USER_STATUS_CHANGED",
                f"Admin {admin['username']} {verb} {target.username}",
                admin["id"],
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Toggle user status error")
            return False
    return True


def delete_user(user_id: int) -> bool:
    """Delete another user. Never the caller's own account."""
    admin = _acting_admin()
    if admin is None or user_id == admin["id"]:
        return False

    with store_service.write_gate():
        try:
            target = db.session.get(User, user_id)
            if target is None:
                return False
            username = target.username
            db.session.delete(target)
            security_log_service.record(
                "USER_DELETED",
                f"Admin {admin['username']} deleted {username}",
                admin["id"],
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Delete user error")
            return False
    return True


def get_users() -> list[dict]:
    """All users, newest first. Empty for non-admins."""
    if _acting_admin() is None:
        return []
    users = db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
    return [user.to_dict(include_password=True) for user in users]


def get_security_logs(limit: int | None = None) -> list[dict]:
    """Recent audit entries, newest first. Empty for non-admins."""
    if _acting_admin() is None:
        return []
    return [entry.to_dict() for entry in security_log_service.recent(limit)]
