# Overview: Single-writer gate and the autosave scheduler built on it.

from __future__ import annotations

import threading
from contextlib import contextmanager

from .snapshot_service import StoreError


class ImportInProgressError(StoreError):
    """A second import was requested while one is still pending."""
    pass


class WriterGate:
    """
    Mutual exclusion for everything that reads or swaps the store handle.

    Reentrant: import holds the gate while it saves the new handle.
    The separate import flag is taken without blocking so a second import
    is rejected instead of queued behind the first.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._import_pending = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False

    @contextmanager
    def import_slot(self):
        if not self._import_pending.acquire(blocking=False):
            raise ImportInProgressError("Another import is already in progress")
        try:
            yield
        finally:
            self._import_pending.release()

    @property
    def import_pending(self) -> bool:
        return self._import_pending.locked()


class AutosaveScheduler:
    """
    Calls `task` every `interval` seconds on a daemon thread until stopped.

    `task` is expected to take the writer gate itself. Exceptions are handed
    to `on_error` and the schedule keeps running; a failed save is reported,
    not retried early.
    """

    def __init__(self, task, interval: float, *, on_error=None, name: str = "localpos-autosave"):
        if interval <= 0:
            raise ValueError("Autosave interval must be positive")
        self.task = task
        self.interval = interval
        self.on_error = on_error
        self.name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        # Event.wait returns True once stop() is called
        while not self._stop.wait(self.interval):
            try:
                self.task()
            except Exception as exc:
                if self.on_error is None:
                    raise
                self.on_error(exc)
