"""Keep an index fresh by re-indexing files as they change on disk."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .indexer import Indexer

logger = logging.getLogger(__name__)

INDEX = "index"
REMOVE = "remove"


class _ChangeHandler(FileSystemEventHandler):
    """Route watchdog events (observer thread) to the watcher."""

    def __init__(self, watcher: "IndexWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue(event.src_path, INDEX)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue(event.src_path, INDEX)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue(event.src_path, REMOVE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.queue(event.src_path, REMOVE)
            self.watcher.queue(event.dest_path, INDEX)


class IndexWatcher:
    """Watch *root* and replay changes onto *indexer* from the event loop.

    watchdog delivers events on its own thread; they are collected per path
    and flushed on *loop* after ``debounce`` seconds of quiet, so an editor
    writing a file several times triggers one re-index.
    """

    def __init__(
        self,
        indexer: Indexer,
        root: Union[str, Path],
        loop: Optional[asyncio.AbstractEventLoop] = None,
        debounce: float = 0.5,
    ) -> None:
        self.indexer = indexer
        self.root = Path(root).resolve()
        self.loop = loop
        self.debounce = debounce
        self.reindexed = 0
        self.removed = 0
        self._pending: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        if self._observer is not None:
            return
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.root)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info("Stopped watching %s", self.root)

    @property
    def running(self) -> bool:
        return self._observer is not None

    # ------------------------------------------------------------------
    # Event intake (any thread)
    # ------------------------------------------------------------------

    def queue(self, src_path: str, action: str) -> None:
        rel = self.indexer.relative_path(src_path)
        if action == INDEX and not self.indexer.should_index(rel):
            return
        with self._lock:
            self._pending[rel] = action
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._arm)

    def _arm(self) -> None:
        # Each new event pushes the flush back by another debounce period
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.loop.call_later(self.debounce, self._spawn_flush)

    def _spawn_flush(self) -> None:
        self._timer = None
        self.loop.create_task(self.flush())

    # ------------------------------------------------------------------
    # Replay (event loop)
    # ------------------------------------------------------------------

    async def flush(self) -> int:
        """Apply every pending change; returns how many were applied."""
        with self._lock:
            pending, self._pending = self._pending, {}
        for rel, action in sorted(pending.items()):
            if action == REMOVE:
                if await self.indexer.remove_file(rel):
                    self.removed += 1
            elif await self.indexer.index_file(rel) is not None:
                self.reindexed += 1
        if pending:
            logger.debug("Applied %d file changes", len(pending))
        return len(pending)
