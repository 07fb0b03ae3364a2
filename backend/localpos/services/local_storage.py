# Overview: File-backed key-value slots used as the process's local persistent storage.

from __future__ import annotations

import os
import re
from pathlib import Path

from .snapshot_service import StoreError

_KEY_RE = re.compile(r"[A-Za-z0-9_.-]+")


class StorageError(StoreError):
    """A local storage read or write failed. Never retried automatically."""
    pass


class LocalStorage:
    """
    Named string slots, one file per key.

    Writes land in a temporary sibling first and are moved into place with
    os.replace, so a reader sees either the previous value or the new one.
    """

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.fullmatch(key or ""):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read slot {key!r}: {exc}") from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to write slot {key!r}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to remove slot {key!r}: {exc}") from exc

    def has_item(self, key: str) -> bool:
        return self._path(key).is_file()
