# Overview: Durable store manager; owns the live handle, saves, exports and imports it.

"""
Durable Store Manager

WHY: The whole relational store lives in memory. This module is the only
owner of the live StoreHandle and the only code that swaps it. Everything
else reaches the data through execute()/query() or the ORM session, both of
which are bound to whichever handle is live right now.

LIFECYCLE:
    uninitialized -> restoring | bootstrapping -> ready
    ready -> saving -> ready
    ready -> replacing -> ready          (import)

CONCURRENCY: save, export-serialize, import-swap and every statement issued
through this module run under one reentrant writer gate, so the autosave
thread can never serialize a handle that is being swapped out.

DURABILITY:
- save() overwrites the durability slot with the current image.
- export_snapshot() writes a new artifact and never touches the slot.
- import_snapshot() installs the new handle and saves it before returning,
  so a crash right after import restores the imported data.
"""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

from flask import Flask, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from .. import signals
from . import snapshot_service
from .concurrency import AutosaveScheduler, ImportInProgressError, WriterGate
from .local_storage import LocalStorage, StorageError
from .snapshot_service import (
    CorruptSnapshotError,
    EngineInitError,
    StaleHandleError,
    StoreError,
    StoreHandle,
)
from localpos.time_utils import backup_stamp

__all__ = [
    "StoreManager",
    "StoreError",
    "EngineInitError",
    "CorruptSnapshotError",
    "StaleHandleError",
    "StorageError",
    "ImportInProgressError",
    "init_app",
    "initialize",
    "save",
    "export_snapshot",
    "import_snapshot",
    "import_snapshot_file",
    "execute",
    "query",
    "write_gate",
    "local_storage",
    "handle_generation",
    "state",
]

EXTENSION_KEY = "localpos.store"

STATE_UNINITIALIZED = "uninitialized"
STATE_RESTORING = "restoring"
STATE_BOOTSTRAPPING = "bootstrapping"
STATE_READY = "ready"
STATE_SAVING = "saving"
STATE_REPLACING = "replacing"


class StoreManager:
    """
    Per-app owner of the live store handle and its durable copies.

    Registered as app.extensions["localpos.store"]. The Flask-SQLAlchemy
    engine connects through `connect`, so after a swap the next ORM or
    execute()/query() call lands on the new handle.
    """

    def __init__(self, app: Flask, storage: LocalStorage, export_dir: str | os.PathLike):
        self.app = app
        self.storage = storage
        self.export_dir = Path(export_dir)
        self.durability_key = app.config["DURABILITY_KEY"]
        self.gate = WriterGate()
        self.state = STATE_UNINITIALIZED
        self._handle: StoreHandle | None = None
        self._autosave: AutosaveScheduler | None = None

    # ------------------------------------------------------------------
    # Handle ownership
    # ------------------------------------------------------------------

    @property
    def handle(self) -> StoreHandle:
        if self._handle is None:
            raise StoreError("Store is not initialized")
        return self._handle

    @property
    def generation(self) -> int | None:
        return self._handle.generation if self._handle is not None else None

    def connect(self):
        """DBAPI connection factory handed to SQLAlchemy (engine `creator`)."""
        return self.handle.connection

    def open_handle(self) -> bool:
        """
        Create the live handle: restore from the durability slot when one
        exists, otherwise start an empty store.

        Returns True when restored, False when bootstrapping.

        A corrupt durability image raises CorruptSnapshotError. It is never
        discarded in favor of a fresh store, since that would silently drop
        every saved row.
        """
        if self._handle is not None:
            raise StoreError("Store is already initialized")

        raw = self.storage.get_item(self.durability_key)
        if raw is not None:
            self.state = STATE_RESTORING
            data = snapshot_service.decode_from_storage(raw)
            self._handle = snapshot_service.deserialize(data)
            self.app.logger.info(
                "Restored store from durability slot %r (%d bytes)", self.durability_key, len(data)
            )
            return True

        self.state = STATE_BOOTSTRAPPING
        self._handle = snapshot_service.new_handle()
        self.app.logger.info("No durability snapshot found; bootstrapping a new store")
        return False

    def mark_ready(self) -> None:
        self.state = STATE_READY

    def swap(self, new_handle: StoreHandle) -> StoreHandle | None:
        """Install `new_handle` as the live handle. Caller holds the gate."""
        old = self._handle
        self._handle = new_handle
        return old

    # ------------------------------------------------------------------
    # Durability
    # ------------------------------------------------------------------

    def save(self, reason: str = "explicit") -> int:
        """
        Overwrite the durability slot with the current image.

        Idempotent. Returns the snapshot size in bytes.
        Raises StorageError if the slot cannot be written.
        """
        with self.gate:
            handle = self.handle
            previous = self.state
            self.state = STATE_SAVING
            try:
                data = snapshot_service.serialize(handle)
                self.storage.set_item(self.durability_key, snapshot_service.encode_for_storage(data))
            finally:
                self.state = previous

        signals.snapshot_saved.send(self.app, reason=reason, size=len(data))
        return len(data)

    def export_snapshot(self) -> Path:
        """
        Write the current image to a new, never-overwritten artifact.

        Raises StorageError on write failure; the durability slot is
        unaffected either way.
        """
        with self.gate:
            data = snapshot_service.serialize(self.handle)

        # File I/O happens outside the gate; `data` is an independent copy.
        try:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            path = self._write_new_artifact(data)
        except OSError as exc:
            raise StorageError(f"Failed to write export artifact: {exc}") from exc

        self.app.logger.info("Exported store snapshot to %s (%d bytes)", path, len(data))
        signals.snapshot_exported.send(self.app, path=path)
        return path

    def _write_new_artifact(self, data: bytes) -> Path:
        stem = f"pos_backup_{backup_stamp()}"
        suffix = 0
        while True:
            name = f"{stem}.sqlite" if suffix == 0 else f"{stem}_{suffix}.sqlite"
            path = self.export_dir / name
            try:
                # "xb": exclusive create, an existing artifact is never replaced
                with open(path, "xb") as fh:
                    fh.write(data)
                return path
            except FileExistsError:
                suffix += 1

    # ------------------------------------------------------------------
    # Autosave
    # ------------------------------------------------------------------

    def start_autosave(self, interval: float) -> None:
        if self._autosave is None:
            self._autosave = AutosaveScheduler(
                lambda: self.save(reason="autosave"),
                interval,
                on_error=self._autosave_failed,
            )
        self._autosave.start()

    def stop_autosave(self) -> None:
        if self._autosave is not None:
            self._autosave.stop()

    @property
    def autosave_running(self) -> bool:
        return self._autosave is not None and self._autosave.running

    def _autosave_failed(self, exc: Exception) -> None:
        self.app.logger.error("Autosave failed: %s", exc, exc_info=exc)


# ----------------------------------------------------------------------
# App wiring
# ----------------------------------------------------------------------


def init_app(app: Flask) -> StoreManager:
    """Create the manager and bind Flask-SQLAlchemy to its live handle."""
    storage_dir = app.config.get("LOCALPOS_STORAGE_DIR") or os.path.join(app.instance_path, "storage")
    export_dir = app.config.get("LOCALPOS_EXPORT_DIR") or os.path.join(app.instance_path, "exports")

    manager = StoreManager(app, LocalStorage(storage_dir), export_dir)
    app.extensions[EXTENSION_KEY] = manager

    engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    engine_options["creator"] = manager.connect
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    db.init_app(app)
    return manager


def _manager() -> StoreManager:
    return current_app.extensions[EXTENSION_KEY]


def initialize() -> bool:
    """
    Restore or bootstrap the store, then run the schema guard.

    Must run inside an app context. Returns True when restored from the
    durability slot. A fresh store is saved immediately; a restored one is
    saved only if the schema guard changed it.
    """
    from . import schema_service

    manager = _manager()
    restored = manager.open_handle()

    with manager.gate:
        changed = schema_service.ensure_schema(seed=not restored)
        manager.mark_ready()

    if not restored:
        manager.save(reason="bootstrap")
    elif changed:
        manager.save(reason="schema")
    return restored


def save(reason: str = "explicit") -> int:
    """Persist the live store to the durability slot. Safe to call redundantly."""
    return _manager().save(reason=reason)


def export_snapshot() -> Path:
    return _manager().export_snapshot()


def import_snapshot(data: bytes) -> int:
    """
    Replace the live store with the image in `data`.

    On CorruptSnapshotError the live handle is left exactly as it was.
    On success the new handle is saved to the durability slot before this
    returns. Returns the new handle's generation.
    """
    manager = _manager()
    with manager.gate.import_slot():
        return _replace_live_handle(manager, data)


def import_snapshot_file(path: str | os.PathLike) -> int:
    """Read a user-supplied artifact and import it. Rejects a concurrent import."""
    manager = _manager()
    with manager.gate.import_slot():
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read import file {path}: {exc}") from exc
        return _replace_live_handle(manager, data)


def _replace_live_handle(manager: StoreManager, data: bytes) -> int:
    from . import schema_service

    # The whole schema guard runs on a private handle; nothing live changes
    # until it has passed.
    new_handle = snapshot_service.deserialize(data)
    try:
        applied = schema_service.prepare_image(new_handle.connection)
    except (sqlite3.Error, SQLAlchemyError) as exc:
        new_handle.close()
        raise CorruptSnapshotError(f"Store image has an incompatible schema: {exc}") from exc
    except Exception:
        new_handle.close()
        raise
    if applied:
        current_app.logger.info("Migrated imported image: %s", ", ".join(applied))

    with manager.gate:
        manager.state = STATE_REPLACING
        db.session.remove()
        old_handle = manager.swap(new_handle)
        # Drops the pooled connection so the next checkout calls connect()
        db.engine.dispose()
        if old_handle is not None:
            old_handle.close()
        manager.mark_ready()
        manager.save(reason="import")

    current_app.logger.info("Imported store snapshot (%d bytes) as handle #%d", len(data), new_handle.generation)
    signals.store_replaced.send(manager.app, generation=new_handle.generation)
    return new_handle.generation


# ----------------------------------------------------------------------
# Query/execute surface for UI-layer collaborators
# ----------------------------------------------------------------------


def execute(sql: str, params=()) -> None:
    """Run one statement with positional (?) parameters and commit it."""
    with _manager().gate:
        try:
            db.session.connection().exec_driver_sql(sql, tuple(params))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise


def query(sql: str, params=()) -> list[dict]:
    """Run one statement and return its rows as dicts keyed by column name."""
    with _manager().gate:
        try:
            result = db.session.connection().exec_driver_sql(sql, tuple(params))
            rows = [dict(row) for row in result.mappings()] if result.returns_rows else []
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
    return rows


def write_gate() -> WriterGate:
    """The writer gate, for services that run several ORM statements as one unit."""
    return _manager().gate


def local_storage() -> LocalStorage:
    return _manager().storage


def handle_generation() -> int | None:
    return _manager().generation


def state() -> str:
    return _manager().state
