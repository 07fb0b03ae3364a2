# Overview: Snapshot codec; converts the live store handle to bytes and back.

"""
Snapshot Codec

A snapshot is the engine's native on-disk image of the whole store: the
exact bytes SQLite would have written to a database file. The same format
is used for the durability channel (wrapped as a JSON byte array) and for
export artifacts (written raw), so any export can be imported again.

INVARIANTS:
- serialize() reflects every committed statement on the handle.
- deserialize() never hands back a partially usable store: the image is
  loaded into a brand new connection and checked before it is returned.
  The live handle is not touched here at all.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from itertools import count

SQLITE_HEADER = b"SQLite format 3\x00"

_generations = count(1)
_generation_lock = threading.Lock()


class StoreError(Exception):
    """Base class for store lifecycle failures."""
    pass


class EngineInitError(StoreError):
    """The embedded engine could not be constructed; no store is usable."""
    pass


class CorruptSnapshotError(StoreError):
    """Bytes do not form a valid store image. Prior state is kept."""
    pass


class StaleHandleError(StoreError):
    """A handle was used after it was replaced by an import."""
    pass


def _next_generation() -> int:
    with _generation_lock:
        return next(_generations)


class StoreHandle:
    """
    Owner of one in-memory SQLite connection.

    Exactly one handle is live per app. Once replaced it is closed and any
    further use raises StaleHandleError.
    """

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection
        self.generation = _next_generation()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StaleHandleError(f"Store handle #{self.generation} has been replaced")
        return self._connection

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._connection.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "live"
        return f"<StoreHandle #{self.generation} {state}>"


def _connect() -> sqlite3.Connection:
    # check_same_thread=False: the autosave scheduler serializes from its own
    # thread. Access is serialized by the store manager's writer gate.
    return sqlite3.connect(":memory:", check_same_thread=False)


def new_handle() -> StoreHandle:
    """
    Create an empty store.

    Raises EngineInitError when the engine is unavailable or lacks
    serialize/deserialize support (SQLite builds without it, Python < 3.11).
    """
    try:
        connection = _connect()
    except sqlite3.Error as exc:
        raise EngineInitError(f"Cannot open in-memory store: {exc}") from exc

    if not hasattr(connection, "serialize") or not hasattr(connection, "deserialize"):
        connection.close()
        raise EngineInitError("sqlite3 build does not support serialize/deserialize")

    return StoreHandle(connection)


def serialize(handle: StoreHandle) -> bytes:
    """
    Return the full store image.

    Callers go through the store manager, which holds the writer gate, so no
    multi-statement operation is in flight here.
    """
    return bytes(handle.connection.serialize())


def deserialize(data: bytes) -> StoreHandle:
    """
    Build a new handle from a store image.

    Raises CorruptSnapshotError if the bytes are not a readable SQLite
    database or fail the engine's integrity check.
    """
    data = bytes(data)
    if len(data) < len(SQLITE_HEADER) or not data.startswith(SQLITE_HEADER):
        raise CorruptSnapshotError("Not a store image (missing SQLite header)")

    handle = new_handle()
    try:
        handle.connection.deserialize(data)
        row = handle.connection.execute("PRAGMA integrity_check").fetchone()
        # Force a read of the schema too; some damage only shows up here.
        handle.connection.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except (sqlite3.Error, OverflowError) as exc:
        handle.close()
        raise CorruptSnapshotError(f"Store image rejected by engine: {exc}") from exc

    if row is None or row[0] != "ok":
        handle.close()
        detail = row[0] if row else "no result"
        raise CorruptSnapshotError(f"Store image failed integrity check: {detail}")

    return handle


def encode_for_storage(data: bytes) -> str:
    """Durability channel encoding: a JSON array of byte values."""
    return json.dumps(list(data), separators=(",", ":"))


def decode_from_storage(raw: str) -> bytes:
    """
    Inverse of encode_for_storage.

    Raises CorruptSnapshotError when the slot holds anything other than a
    JSON array of integers in 0..255.
    """
    try:
        values = json.loads(raw)
        if not isinstance(values, list):
            raise ValueError("expected a JSON array")
        return bytes(values)
    except (ValueError, TypeError) as exc:
        raise CorruptSnapshotError(f"Durability slot is not a byte array: {exc}") from exc
