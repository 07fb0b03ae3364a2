# Overview: Credential primitives for the session manager; password storage and user lookup.

"""
Credential Handling

SECURITY NOTES:
- PASSWORD_SCHEME = "plaintext" (default) stores and compares passwords
  exactly as typed. This matches the behavior existing store images rely on
  and is a KNOWN DEFECT: anyone holding a snapshot or the session slot can
  read every password.
- PASSWORD_SCHEME = "bcrypt" stores bcrypt hashes (cost BCRYPT_ROUNDS).
  Under this scheme rows that still hold plaintext never verify; those
  accounts must have their password reset by an admin.
"""

from __future__ import annotations

import secrets

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, ROLES, ROLE_USER
from ..validation import ConstraintViolation, ValidationError, require_choice, require_text

SCHEME_PLAINTEXT = "plaintext"
SCHEME_BCRYPT = "bcrypt"
SCHEMES = (SCHEME_PLAINTEXT, SCHEME_BCRYPT)


def password_scheme() -> str:
    scheme = current_app.config.get("PASSWORD_SCHEME", SCHEME_PLAINTEXT)
    if scheme not in SCHEMES:
        raise ValueError(f"Unknown PASSWORD_SCHEME {scheme!r}")
    return scheme


def hash_password(password: str) -> str:
    """Produce the stored form of `password` under the configured scheme."""
    if password_scheme() == SCHEME_PLAINTEXT:
        return password

    rounds = int(current_app.config.get("BCRYPT_ROUNDS", 12))
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, stored: str | None) -> bool:
    """
    Check `password` against the stored value.

    Returns False rather than raising for malformed stored values.
    """
    if stored is None or password is None:
        return False

    if password_scheme() == SCHEME_PLAINTEXT:
        return secrets.compare_digest(password.encode('utf-8'), stored.encode('utf-8'))

    if not stored.startswith("$2"):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), stored.encode('utf-8'))
    except ValueError:
        return False


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching both username and password, else None.

    The caller cannot tell which of the two was wrong.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password, user.password):
        return None
    return user


def validate_new_user(username: str, password: str, role: str) -> None:
    require_text(username, "Username")
    if not password:
        raise ValidationError("Password is required")
    require_choice(role, "Role", ROLES)


def create_user(username: str, password: str, role: str = ROLE_USER, is_active: bool = True) -> User:
    """
    Add a user row to the current session (not committed).

    Raises ValidationError for bad input and ConstraintViolation when the
    username is taken.
    """
    validate_new_user(username, password, role)

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ConstraintViolation(f"Username {username!r} already exists")

    user = User(
        username=username,
        password=hash_password(password),
        role=role,
        is_active=bool(is_active),
    )
    db.session.add(user)
    db.session.flush()
    return user
