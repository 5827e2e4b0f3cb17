"""Hot-reload watcher — filesystem changes to typed collection events.

Two watchdog observers feed one queue:

- the manifest observer watches the static base directory of every
  manifest pattern and reacts to manifests appearing, changing, or
  disappearing;
- the collection observer watches each known collection directory and
  reacts to every other file (logic modules, helpers, data files).

A single consumer thread drains the queue in order, applies each event
to the loader, asks the application to rebuild its routes, then
publishes the event on the ``EventBus``. Observer callbacks only touch
the finder and the queue, so a slow reload never blocks event
delivery.
"""

import logging
import os
import queue
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from perch.events import (
    CollectionAdded,
    CollectionChanged,
    CollectionRemoved,
    EventBus,
    LogicChanged,
    WatchEvent,
)
from perch.registry.descriptor import Descriptor
from perch.registry.finder import CollectionFinder
from perch.registry.loader import CollectionLoader

logger = logging.getLogger("perch.registry")

type FileChange = Literal["created", "modified", "deleted"]
type State = Literal["idle", "watching", "closed"]

_STOP = object()
_IGNORED_PARTS = frozenset({"__pycache__", ".git"})


class _Forward(FileSystemEventHandler):
    """Flattens watchdog callbacks into ``callback(change, path)``.

    Moves become a delete of the source plus a create of the destination.
    Directory events are ignored; their files report individually.
    """

    def __init__(self, callback: Callable[[FileChange, str], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._callback("created", os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._callback("modified", os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._callback("deleted", os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._callback("deleted", os.fsdecode(event.src_path))
        self._callback("created", os.fsdecode(event.dest_path))


class CollectionWatcher:
    """Keeps the loader in sync with the collection tree on disk.

    Usage::

        watcher = CollectionWatcher(finder, loader, events=bus,
                                    on_reload=app.reload_routes)
        watcher.start()
        ...
        watcher.stop()

    ``handle_manifest()``, ``handle_file()`` and ``process()`` are the
    observer and consumer entry points; they can also be driven directly,
    with ``drain()`` applying whatever is queued, while the watcher is
    idle.
    """

    def __init__(
        self,
        finder: CollectionFinder,
        loader: CollectionLoader,
        *,
        events: EventBus | None = None,
        on_reload: Callable[[], None] | None = None,
        observer_factory: Callable[[], Any] = Observer,
        join_timeout: float = 5.0,
    ) -> None:
        self._finder = finder
        self._loader = loader
        self._events = events or EventBus()
        self._on_reload = on_reload
        self._observer_factory = observer_factory
        self._join_timeout = join_timeout
        self._queue: queue.Queue[object] = queue.Queue()
        self._lock = threading.Lock()
        self._watches: dict[Path, Any] = {}
        self._manifest_observer: Any = None
        self._collection_observer: Any = None
        self._file_handler: _Forward | None = None
        self._consumer: threading.Thread | None = None
        self._state: State = "idle"

    @property
    def state(self) -> State:
        return self._state

    # -- Lifecycle --

    def start(self) -> None:
        """Begin watching. A second call while watching does nothing."""
        with self._lock:
            if self._state == "watching":
                return
            if self._state == "closed":
                msg = "CollectionWatcher cannot be restarted after stop()"
                raise RuntimeError(msg)

            self._finder.find()

            manifest_handler = _Forward(self._guarded(self.handle_manifest))
            self._manifest_observer = self._observer_factory()
            for root in self._finder.watch_roots():
                if not root.is_dir():
                    self._events.warn(f"Collection root {root} does not exist, not watching it")
                    continue
                self._manifest_observer.schedule(manifest_handler, str(root), recursive=True)

            self._file_handler = _Forward(self._guarded(self.handle_file))
            self._collection_observer = self._observer_factory()
            self._state = "watching"

        for directory in self._finder.directories():
            self._watch_directory(directory)

        self._consumer = threading.Thread(
            target=self._consume, name="perch-watcher", daemon=True
        )
        self._consumer.start()
        self._manifest_observer.start()
        self._collection_observer.start()
        logger.info("Watching collections under %s", ", ".join(self._finder.patterns))

    def stop(self) -> None:
        """Stop observers and the consumer. The watcher cannot be restarted."""
        with self._lock:
            if self._state != "watching":
                self._state = "closed"
                return
            self._state = "closed"
            observers = (self._manifest_observer, self._collection_observer)
            self._watches.clear()

        for observer in observers:
            observer.stop()
        for observer in observers:
            observer.join(self._join_timeout)

        self._queue.put(_STOP)
        if self._consumer is not None:
            self._consumer.join(self._join_timeout)
            self._consumer = None
        logger.info("Stopped watching collections")

    # -- Raw filesystem events --

    def handle_manifest(self, change: FileChange, path: str) -> None:
        """React to a change of a file under a manifest pattern root."""
        if _ignored(path) or not self._finder.matches(path):
            return

        current = self._finder.by_manifest(path)
        if change == "deleted":
            if current is not None:
                self._finder.remove(current)
                self._loader.invalidate(current.logic_path)
                self._unwatch_directory(current.directory)
                self._queue.put(CollectionRemoved(current))
            return

        replacement = self._finder.create_descriptor(path)
        if replacement is None:
            # Error already reported; an existing registration stays live.
            return

        if current is not None:
            self._finder.remove(current)
            self._loader.invalidate(current.logic_path)
            self._queue.put(CollectionRemoved(current))

        if self._finder.add(replacement):
            self._watch_directory(replacement.directory)
            self._queue.put(CollectionAdded(replacement))
        elif current is not None:
            self._unwatch_directory(current.directory)

    def handle_file(self, change: FileChange, path: str) -> None:
        """React to a change of any non-manifest file inside a collection."""
        if _ignored(path) or self._finder.matches(path):
            return

        descriptor = self._finder.recognize(path)
        if descriptor is None:
            return

        touched = Path(path).resolve()
        self._loader.invalidate(descriptor.logic_path)
        if touched != descriptor.logic_path:
            self._loader.invalidate(touched)
        else:
            self._queue.put(LogicChanged(descriptor))
        self._queue.put(CollectionChanged(str(touched), descriptor))
        logger.debug("File %s %s in collection %s", path, change, descriptor.name)

    # -- Applying events --

    def process(self, event: WatchEvent) -> None:
        """Apply one watch event, rebuild routes, then publish it."""
        match event:
            case CollectionAdded(descriptor=descriptor):
                self._loader.load_one(descriptor)
            case CollectionChanged(descriptor=descriptor):
                registered = self._registered(descriptor)
                if registered is not None:
                    self._loader.load_one(registered)
            case CollectionRemoved(descriptor=descriptor):
                self._loader.remove(descriptor.name)
            case LogicChanged():
                pass

        if self._on_reload is not None:
            self._on_reload()
        self._events.emit(event)

    def drain(self) -> int:
        """Apply every queued event on the calling thread. Returns the count."""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return count
            if event is _STOP:
                continue
            self._apply(event)
            count += 1

    def pending(self) -> list[object]:
        """Snapshot of queued events (oldest first)."""
        with self._queue.mutex:
            return [event for event in self._queue.queue if event is not _STOP]

    # -- Internal --

    def _registered(self, descriptor: Descriptor) -> Descriptor | None:
        current = self._finder.find().get(descriptor.name)
        if current is None or current.manifest_path != descriptor.manifest_path:
            return None
        return current

    def _consume(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                return
            self._apply(event)

    def _apply(self, event: Any) -> None:
        try:
            self.process(event)
        except Exception as exc:
            self._events.error(f"Failed to apply {type(event).__name__}: {exc}", exc)

    def _guarded(self, handler: Callable[[FileChange, str], None]) -> Callable[[FileChange, str], None]:
        # An exception escaping a watchdog callback kills its emitter thread.
        def run(change: FileChange, path: str) -> None:
            try:
                handler(change, path)
            except Exception as exc:
                self._events.error(f"Failed to handle {change} event for {path}: {exc}", exc)

        return run

    def _watch_directory(self, directory: Path) -> None:
        with self._lock:
            if self._state != "watching" or directory in self._watches:
                return
            if not directory.is_dir():
                return
            self._watches[directory] = self._collection_observer.schedule(
                self._file_handler, str(directory), recursive=True
            )

    def _unwatch_directory(self, directory: Path) -> None:
        with self._lock:
            watch = self._watches.pop(directory, None)
            if watch is None or self._state != "watching":
                return
            try:
                self._collection_observer.unschedule(watch)
            except (KeyError, OSError) as exc:
                logger.debug("Could not unschedule watch for %s: %s", directory, exc)


def _ignored(path: str) -> bool:
    return not _IGNORED_PARTS.isdisjoint(Path(path).parts)
