"""Filesystem watcher that hot-reloads changed units."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .loader import Loader, iter_file_units

LOGGER = logging.getLogger(__name__)


class UnitWatcher:
    """Watch the directories of loaded units and reload them on change."""

    def __init__(
        self,
        loader: Loader,
        *,
        cascade: bool = False,
        debounce_seconds: float = 0.2,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._loader = loader
        self._cascade = cascade
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._debounce = max(0.0, debounce_seconds)
        self._lock = threading.Lock()
        self._reload_callbacks: list[Callable[[str, Any], None]] = []

    def on_reload(self, callback: Callable[[str, Any], None]) -> None:
        """Register callback invoked with (identity, value) after each reload."""

        self._reload_callbacks.append(callback)

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = self._observer_factory()
            handler = _UnitEventHandler(self.handle_change, debounce_seconds=self._debounce)
            for directory in self.watched_directories():
                observer.schedule(handler, str(directory), recursive=False)
                LOGGER.debug("Watching %s", directory)
            observer.start()
            self._observer = observer

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join unit observer thread")
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def watched_directories(self) -> list[Path]:
        directories = {Path(identity).parent for identity in iter_file_units(self._loader)}
        return sorted(directory for directory in directories if directory.is_dir())

    def handle_change(self, path: Path) -> list[str]:
        """Reload the unit stored at ``path`` (and its dependents when cascading)."""

        identity = os.path.abspath(path)
        if identity not in self._loader.registry:
            return []
        targets = [identity]
        if self._cascade:
            targets.extend(self._loader.traverse_dependents(identity))
        reloaded = []
        for target in targets:
            try:
                value = self._loader.reload(target)
            except Exception:
                LOGGER.exception("Reload of %s failed", target)
                continue
            reloaded.append(target)
            self._emit_reload(target, value)
        return reloaded

    def _emit_reload(self, identity: str, value: Any) -> None:
        for callback in list(self._reload_callbacks):
            try:
                callback(identity, value)
            except Exception:  # pragma: no cover
                LOGGER.exception("Reload callback failed for %s", identity)


class _UnitEventHandler(FileSystemEventHandler):
    """Forward file modifications to the watcher, debounced per path."""

    def __init__(self, callback: Callable[[Path], Any], *, debounce_seconds: float) -> None:
        super().__init__()
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._recent: dict[Path, float] = {}
        self._recent_lock = threading.Lock()

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.src_path))

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.dest_path))

    def _handle_path(self, path: Path) -> None:
        if not self._should_emit(path):
            return
        self._callback(path)

    def _should_emit(self, path: Path) -> bool:
        if self._debounce_seconds <= 0:
            return True
        now = time.monotonic()
        with self._recent_lock:
            last = self._recent.get(path)
            if last is not None and now - last < self._debounce_seconds:
                return False
            self._recent[path] = now
            threshold = now - max(self._debounce_seconds * 4, 1.0)
            for candidate in [key for key, ts in self._recent.items() if ts < threshold]:
                self._recent.pop(candidate, None)
            return True


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["UnitWatcher"]
