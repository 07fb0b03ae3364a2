# backend/localpos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # The relational store lives in memory; the engine is bound to the
    # live handle by the store manager (see services/store_service.py).
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Local persistent key-value storage and export artifacts.
    # None means "under the Flask instance folder".
    LOCALPOS_STORAGE_DIR = os.environ.get("LOCALPOS_STORAGE_DIR")
    LOCALPOS_EXPORT_DIR = os.environ.get("LOCALPOS_EXPORT_DIR")

    # Slot names in local storage
    DURABILITY_KEY = "pos_database"
    SESSION_KEY = "pos_current_user"

    AUTOSAVE_ENABLED = _env_flag("LOCALPOS_AUTOSAVE", True)
    AUTOSAVE_INTERVAL_SECONDS = float(os.environ.get("LOCALPOS_AUTOSAVE_INTERVAL", "30"))

    BOOTSTRAP_ADMIN_USERNAME = os.environ.get("LOCALPOS_ADMIN_USERNAME", "admin")
    BOOTSTRAP_ADMIN_PASSWORD = os.environ.get("LOCALPOS_ADMIN_PASSWORD", "admin123")
    SEED_SAMPLE_PRODUCTS = True

    # "plaintext" keeps the stored-as-typed behavior; "bcrypt" opts into hashing.
    PASSWORD_SCHEME = os.environ.get("LOCALPOS_PASSWORD_SCHEME", "plaintext")
    BCRYPT_ROUNDS = 12

    SECURITY_LOG_LIMIT = 100

