"""
Durable store manager tests.

Verifies:
- Fresh start bootstraps schema, seed rows and exactly one admin, then saves
- Restart restores from the durability slot
- Corrupt durability slot halts start-up instead of bootstrapping over it
- Export never overwrites and never touches the durability slot
- Import replaces in place, persists immediately, and rejects corrupt bytes
- The writer gate excludes autosave from swaps and statements
"""

import sqlite3
import threading

import pytest

from localpos import shutdown
from localpos import signals
from localpos.services import session_service, snapshot_service, store_service
from localpos.services.local_storage import LocalStorage
from localpos.services.snapshot_service import CorruptSnapshotError, StaleHandleError
from localpos.services.concurrency import ImportInProgressError


def _slot(app):
    manager = app.extensions[store_service.EXTENSION_KEY]
    return manager.storage.get_item(manager.durability_key)


def _image(*statements):
    """Raw bytes of a throwaway SQLite database built from `statements`."""
    conn = sqlite3.connect(":memory:")
    try:
        for statement in statements:
            conn.execute(statement)
        conn.commit()
        return conn.serialize()
    finally:
        conn.close()


def _rows_in_slot(app, table):
    handle = snapshot_service.deserialize(snapshot_service.decode_from_storage(_slot(app)))
    try:
        return handle.connection.execute(f"SELECT * FROM {table} ORDER BY id").fetchall()
    finally:
        handle.close()


# =============================================================================
# INITIALIZE
# =============================================================================


class TestInitialize:
    def test_fresh_store_has_exactly_one_admin(self, app):
        rows = store_service.query("SELECT COUNT(*) AS n FROM users WHERE role = ?", ("admin",))
        assert rows == [{"n": 1}]

    def test_fresh_store_is_seeded_and_saved(self, app):
        names = [row["name"] for row in store_service.query("SELECT name FROM products ORDER BY id")]
        assert names == ["Coca Cola 600ml", "Pan Integral", "Leche Entera 1L"]

        assert _slot(app) is not None
        assert len(_rows_in_slot(app, "products")) == 3
        assert store_service.state() == store_service.STATE_READY

    def test_all_tables_exist(self, app):
        tables = {
            row["name"]
            for row in store_service.query("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {
            "users", "security_logs", "products", "sales", "cash_movements",
            "tasks", "suppliers", "purchases", "schema_migrations",
        } <= tables

    def test_restart_restores_saved_rows(self, make_app):
        first = make_app()
        with first.app_context():
            store_service.execute(
                "INSERT INTO products (name, price, cost, stock, category) VALUES (?, ?, ?, ?, ?)",
                ["Agua 500ml", 1.0, 0.4, 12, "Bebidas"],
            )
            store_service.save()

        second = make_app()
        with second.app_context():
            names = [row["name"] for row in store_service.query("SELECT name FROM products")]
            assert "Agua 500ml" in names
            # Seed rows are not inserted a second time
            assert len(names) == 4
            assert store_service.query(
                "SELECT COUNT(*) AS n FROM users WHERE role = 'admin'"
            ) == [{"n": 1}]

    def test_unsaved_rows_are_lost_on_restart(self, make_app):
        first = make_app()
        with first.app_context():
            store_service.execute("DELETE FROM products")

        second = make_app()
        with second.app_context():
            assert len(store_service.query("SELECT id FROM products")) == 3

    def test_corrupt_durability_slot_halts_startup(self, make_app, app_config):
        storage = LocalStorage(app_config["LOCALPOS_STORAGE_DIR"])
        storage.set_item("pos_database", "[1,2,3]")

        with pytest.raises(CorruptSnapshotError):
            make_app()

        # The slot is left for recovery, not overwritten by a fresh bootstrap
        assert storage.get_item("pos_database") == "[1,2,3]"

    def test_restored_store_without_admin_regains_one(self, make_app):
        first = make_app()
        with first.app_context():
            store_service.execute("DELETE FROM users")
            store_service.save()

        second = make_app()
        with second.app_context():
            admins = store_service.query("SELECT username FROM users WHERE role = 'admin'")
            assert admins == [{"username": "admin"}]


# =============================================================================
# SAVE / QUERY SURFACE
# =============================================================================


class TestSaveAndQuery:
    def test_query_returns_dicts_with_positional_binding(self, app):
        rows = store_service.query(
            "SELECT name, stock FROM products WHERE stock >= ? AND category = ? ORDER BY name",
            (30, "Bebidas"),
        )
        assert rows == [{"name": "Coca Cola 600ml", "stock": 50}]

    def test_query_on_statement_without_rows(self, app):
        assert store_service.query("UPDATE products SET stock = stock + 1") == []
        assert store_service.query("SELECT stock FROM products WHERE id = 1") == [{"stock": 51}]

    def test_failed_statement_raises_and_store_stays_usable(self, app):
        from sqlalchemy.exc import SQLAlchemyError

        with pytest.raises(SQLAlchemyError):
            store_service.execute("INSERT INTO no_such_table VALUES (?)", (1,))

        assert len(store_service.query("SELECT id FROM products")) == 3

    def test_two_saves_on_unchanged_store_are_identical(self, app):
        store_service.save()
        first = _slot(app)
        store_service.save()
        second = _slot(app)

        assert first == second

    def test_save_emits_signal(self, app):
        seen = []

        def receiver(sender, **extra):
            seen.append((sender, extra))

        with signals.snapshot_saved.connected_to(receiver, sender=app):
            size = store_service.save()

        assert seen == [(app, {"reason": "explicit", "size": size})]

    def test_shutdown_saves(self, app):
        store_service.execute("DELETE FROM products WHERE id = ?", (1,))
        shutdown(app)
        assert len(_rows_in_slot(app, "products")) == 2


# =============================================================================
# EXPORT
# =============================================================================


class TestExport:
    def test_export_writes_a_loadable_artifact(self, app):
        path = store_service.export_snapshot()

        assert path.name.startswith("pos_backup_")
        assert path.suffix == ".sqlite"
        handle = snapshot_service.deserialize(path.read_bytes())
        assert handle.connection.execute("SELECT COUNT(*) FROM products").fetchone()[0] == 3

    def test_exports_are_never_overwritten(self, app):
        paths = {store_service.export_snapshot() for _ in range(5)}
        assert len(paths) == 5
        assert all(p.exists() for p in paths)

    def test_export_does_not_touch_durability_slot(self, app):
        before = _slot(app)
        store_service.execute("DELETE FROM products")
        store_service.export_snapshot()

        assert _slot(app) == before

    def test_export_emits_signal(self, app):
        seen = []
        with signals.snapshot_exported.connected_to(lambda sender, **kw: seen.append(kw["path"]), sender=app):
            path = store_service.export_snapshot()
        assert seen == [path]


# =============================================================================
# IMPORT
# =============================================================================


class TestImport:
    def test_corrupt_import_leaves_live_store_unchanged(self, app, store_dump):
        before = store_dump()
        slot_before = _slot(app)
        generation = store_service.handle_generation()

        for bad in (b"", b"garbage", snapshot_service.SQLITE_HEADER + b"\x00" * 10,
                    _image("CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT)",
                           "INSERT INTO users (username) VALUES ('x')")):
            with pytest.raises(CorruptSnapshotError):
                store_service.import_snapshot(bad)

        assert store_dump() == before
        assert _slot(app) == slot_before
        assert store_service.handle_generation() == generation
        assert store_service.state() == store_service.STATE_READY

    @pytest.mark.parametrize("statements", [
        # users without role/password/is_active
        ("CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT)",
         "INSERT INTO users (username) VALUES ('x')"),
        # security_logs in an unrelated shape
        ("CREATE TABLE security_logs (id INTEGER PRIMARY KEY, message TEXT)",),
        # a view where a table is expected
        ("CREATE VIEW products AS SELECT 1 AS id",),
    ])
    def test_foreign_schema_is_rejected_before_swap(self, app, store_dump, statements):
        before = store_dump()
        slot_before = _slot(app)
        generation = store_service.handle_generation()

        with pytest.raises(CorruptSnapshotError):
            store_service.import_snapshot(_image(*statements))

        assert store_dump() == before
        assert _slot(app) == slot_before
        assert store_service.handle_generation() == generation
        assert store_service.state() == store_service.STATE_READY

    def test_image_whose_admin_cannot_be_restored_is_rejected(self, app, store_dump):
        manager = app.extensions[store_service.EXTENSION_KEY]
        scratch = snapshot_service.deserialize(snapshot_service.serialize(manager.handle))
        # No admin left, but the bootstrap username is taken
        scratch.connection.execute("UPDATE users SET role = 'user'")
        scratch.connection.commit()
        data = snapshot_service.serialize(scratch)
        scratch.close()
        before = store_dump()

        with pytest.raises(CorruptSnapshotError):
            store_service.import_snapshot(data)

        assert store_dump() == before
        assert store_service.query("SELECT role FROM users WHERE username = 'admin'") == [
            {"role": "admin"}
        ]

    def test_import_replaces_store_and_persists_it(self, app, make_app):
        path = store_service.export_snapshot()
        store_service.execute("DELETE FROM products")
        store_service.save()
        old_generation = store_service.handle_generation()

        new_generation = store_service.import_snapshot_file(path)

        assert new_generation != old_generation
        assert store_service.handle_generation() == new_generation
        assert len(store_service.query("SELECT id FROM products")) == 3
        # Persisted immediately: the slot already holds the imported rows
        assert len(_rows_in_slot(app, "products")) == 3

        restarted = make_app()
        with restarted.app_context():
            assert len(store_service.query("SELECT id FROM products")) == 3

    def test_old_handle_is_invalidated(self, app):
        manager = app.extensions[store_service.EXTENSION_KEY]
        old_handle = manager.handle
        store_service.import_snapshot(snapshot_service.serialize(old_handle))

        assert old_handle.closed
        with pytest.raises(StaleHandleError):
            old_handle.connection

    def test_import_emits_store_replaced(self, app):
        seen = []
        data = snapshot_service.serialize(app.extensions[store_service.EXTENSION_KEY].handle)

        with signals.store_replaced.connected_to(lambda sender, **kw: seen.append(kw["generation"]), sender=app):
            generation = store_service.import_snapshot(data)

        assert seen == [generation]

    def test_concurrent_import_is_rejected(self, app):
        manager = app.extensions[store_service.EXTENSION_KEY]
        data = snapshot_service.serialize(manager.handle)

        with manager.gate.import_slot():
            assert manager.gate.import_pending
            with pytest.raises(ImportInProgressError):
                store_service.import_snapshot(data)

        # Slot released again
        assert not manager.gate.import_pending
        store_service.import_snapshot(data)

    def test_missing_import_file_is_storage_error(self, app, tmp_path):
        from localpos.services.local_storage import StorageError

        with pytest.raises(StorageError):
            store_service.import_snapshot_file(tmp_path / "nope.sqlite")

    def test_import_restores_deleted_user(self, app, admin_session):
        assert session_service.create_user("bob", "pw1", role="user")
        path = store_service.export_snapshot()

        bob_id = store_service.query("SELECT id FROM users WHERE username = ?", ("bob",))[0]["id"]
        assert session_service.delete_user(bob_id)
        session_service.logout()
        assert not session_service.login("bob", "pw1")

        store_service.import_snapshot_file(path)

        assert session_service.login("bob", "pw1")


# =============================================================================
# WRITER GATE
# =============================================================================


class TestWriterGate:
    def test_save_waits_for_gate_holder(self, app):
        manager = app.extensions[store_service.EXTENSION_KEY]
        finished = threading.Event()

        def background_save():
            manager.save(reason="autosave")
            finished.set()

        with store_service.write_gate():
            worker = threading.Thread(target=background_save)
            worker.start()
            assert not finished.wait(0.2)

        assert finished.wait(5)
        worker.join(5)
