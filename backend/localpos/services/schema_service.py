# Overview: Schema guard; idempotent DDL, ordered migrations, and one-time seed data.

"""
Schema Guard

Runs at bootstrap, after a restore, and against every imported image.

- DDL comes from the models: db.create_all() skips tables that exist.
- MIGRATIONS is an ordered list of steps for store images written by older
  versions. A step runs only if its revision is not yet recorded in
  schema_migrations AND its shape check says it applies. The step and its
  bookkeeping row commit in one SQLite transaction, so a failure leaves the
  image exactly as it was.
- The bootstrap admin is created whenever no admin row exists.
- Sample products are inserted only when a brand new store is bootstrapped.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Callable

from flask import current_app
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from ..extensions import db
from ..models import Product, ROLE_ADMIN, User
from . import auth_service
from .snapshot_service import CorruptSnapshotError
from localpos.time_utils import utcnow

SCHEMA_MIGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    revision TEXT NOT NULL PRIMARY KEY,
    applied_at DATETIME DEFAULT (CURRENT_TIMESTAMP) NOT NULL
)
"""

SAMPLE_PRODUCTS = (
    {"name": "Coca Cola 600ml", "price": 2.5, "cost": 1.5, "stock": 50, "category": "Bebidas"},
    {"name": "Pan Integral", "price": 3.0, "cost": 2.0, "stock": 20, "category": "Panadería"},
    {"name": "Leche Entera 1L", "price": 4.0, "cost": 3.0, "stock": 30, "category": "Lácteos"},
)


@dataclass(frozen=True)
class Migration:
    revision: str
    description: str
    applies: Callable[[sqlite3.Connection], bool]
    upgrade: Callable[[sqlite3.Connection], None]


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


def _table_columns(conn: sqlite3.Connection, name: str) -> list[str]:
    return [row[1] for row in conn.execute(f'PRAGMA table_info("{name}")')]


# ----------------------------------------------------------------------
# 0001: tasks gains assigned_to / assigned_by
# ----------------------------------------------------------------------

TASK_COLUMNS = ("id", "title", "description", "completed", "created_at", "due_date")

TASKS_ASSIGNMENT_DDL = """
CREATE TABLE tasks_new (
    id INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    completed BOOLEAN DEFAULT 0,
    assigned_to INTEGER,
    assigned_by INTEGER,
    created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
    due_date TEXT,
    FOREIGN KEY(assigned_to) REFERENCES users (id),
    FOREIGN KEY(assigned_by) REFERENCES users (id)
)
"""


def _tasks_need_assignment(conn: sqlite3.Connection) -> bool:
    return _table_exists(conn, "tasks") and "assigned_to" not in _table_columns(conn, "tasks")


def _upgrade_tasks_assignment(conn: sqlite3.Connection) -> None:
    legacy = set(_table_columns(conn, "tasks"))
    copied = ", ".join(col for col in TASK_COLUMNS if col in legacy)

    # A crash in an older, non-transactional version could leave this behind.
    conn.execute("DROP TABLE IF EXISTS tasks_new")
    conn.execute(TASKS_ASSIGNMENT_DDL)
    conn.execute(f"INSERT INTO tasks_new ({copied}) SELECT {copied} FROM tasks")
    conn.execute("DROP TABLE tasks")
    conn.execute("ALTER TABLE tasks_new RENAME TO tasks")


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        revision="0001_tasks_assignment",
        description="Rebuild legacy tasks table with assignment columns",
        applies=_tasks_need_assignment,
        upgrade=_upgrade_tasks_assignment,
    ),
)


def applied_revisions(conn: sqlite3.Connection) -> set[str]:
    if not _table_exists(conn, "schema_migrations"):
        return set()
    return {row[0] for row in conn.execute("SELECT revision FROM schema_migrations")}


def apply_migrations(conn: sqlite3.Connection, migrations=MIGRATIONS) -> list[str]:
    """
    Run pending migration steps against a raw connection.

    Returns the revisions applied by this call. Each step is atomic; a
    failing step is rolled back and its exception propagates.
    """
    if conn.in_transaction:
        conn.commit()

    conn.execute(SCHEMA_MIGRATIONS_DDL)
    done = applied_revisions(conn)
    applied = []

    for migration in migrations:
        if migration.revision in done or not migration.applies(conn):
            continue

        conn.execute("BEGIN")
        try:
            migration.upgrade(conn)
            conn.execute(
                "INSERT INTO schema_migrations (revision, applied_at) VALUES (?, ?)",
                (migration.revision, utcnow().isoformat(sep=" ")),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        applied.append(migration.revision)

    return applied


def ensure_bootstrap_admin(session=None) -> bool:
    """Create the bootstrap admin when no admin row exists. Returns True if created."""
    session = session if session is not None else db.session
    admin_count = session.query(User).filter(User.role == ROLE_ADMIN).count()
    if admin_count:
        return False

    config = current_app.config
    session.add(User(
        username=config["BOOTSTRAP_ADMIN_USERNAME"],
        password=auth_service.hash_password(config["BOOTSTRAP_ADMIN_PASSWORD"]),
        role=ROLE_ADMIN,
        is_active=True,
    ))
    return True


def seed_sample_products() -> None:
    for product in SAMPLE_PRODUCTS:
        db.session.add(Product(**product))


def ensure_schema(seed: bool = False) -> bool:
    """
    Bring the live store up to the current schema.

    Caller holds the writer gate. Returns True if anything was changed,
    so a restored store knows whether it needs saving.
    """
    raw = db.session.connection().connection.driver_connection
    db.session.commit()

    applied = apply_migrations(raw)
    if applied:
        current_app.logger.info("Applied schema migrations: %s", ", ".join(applied))

    before = set(db.inspect(db.engine).get_table_names())
    db.create_all()
    after = set(db.inspect(db.engine).get_table_names())

    admin_created = ensure_bootstrap_admin()
    if admin_created:
        current_app.logger.info("Created bootstrap admin account")

    if seed and current_app.config.get("SEED_SAMPLE_PRODUCTS", True):
        seed_sample_products()

    db.session.commit()
    return bool(applied) or after != before or admin_created or seed


def check_columns(conn: sqlite3.Connection) -> None:
    """Raise CorruptSnapshotError if a model table is missing model columns."""
    for table in db.metadata.sorted_tables:
        present = set(_table_columns(conn, table.name))
        missing = [column.name for column in table.columns if column.name not in present]
        if missing:
            raise CorruptSnapshotError(
                f"Table {table.name!r} is missing columns: {', '.join(missing)}"
            )


def prepare_image(conn: sqlite3.Connection) -> list[str]:
    """
    Run the whole schema guard against an image that is not live yet.

    Used by import before the swap: migrations, missing tables, the column
    check and the bootstrap admin all land on `conn`, so once this returns
    the live ensure_schema() has nothing left to do. Engine errors propagate
    for the caller to convert.
    """
    applied = apply_migrations(conn)

    # No dispose(): StaticPool would close the handle's connection with it.
    engine = create_engine("sqlite://", creator=lambda: conn, poolclass=StaticPool)
    db.metadata.create_all(engine)
    check_columns(conn)

    with Session(engine) as session:
        ensure_bootstrap_admin(session)
        session.commit()
    return applied
