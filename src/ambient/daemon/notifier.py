"""File-system notifications for the change watcher (watchdog).

The observer thread only records paths; batching and debouncing stay with
`ChangeWatcher.scan()` on the engine's interval.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .watcher import ChangeWatcher

logger = logging.getLogger("ambient.notifier")

_RELEVANT = frozenset({"created", "modified", "deleted", "moved"})


class TreeEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: ChangeWatcher) -> None:
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT:
            return
        self._push(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._push(dest)

    def _push(self, raw) -> None:
        path = os.fsdecode(raw)
        if ".git" in Path(path).parts:
            return
        self.watcher.notify(path)


def start_notifier(watcher: ChangeWatcher) -> Optional[Observer]:
    """Start a recursive observer on the watched root; None when the platform refuses."""
    observer = Observer()
    try:
        observer.schedule(TreeEventHandler(watcher), str(watcher.root), recursive=True)
        observer.start()
    except OSError as e:
        logger.warning(f"file-system notifications unavailable, polling only: {e}")
        return None
    logger.info(f"watching {watcher.root} for file-system events")
    return observer


def stop_notifier(observer: Optional[Observer]) -> None:
    if observer is None:
        return
    observer.stop()
    observer.join(timeout=5)
