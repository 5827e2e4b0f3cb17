"""Registry and dispatch events — typed records plus a broadcast bus.

Discovery, loading, and watching never raise to the host application.
Instead they publish events here: lifecycle notifications
(``CollectionLoaded``, ``RoutesCompiled``), watch events
(``CollectionAdded`` ... ``CollectionRemoved``), and ``Diagnostic``
records for warnings and errors.

Free-threading safety:
    - Every event is a frozen dataclass (immutable, safe to share)
    - EventBus uses a Lock to protect the subscriber list
    - Callbacks run on the emitting thread (watchdog observer, watcher
      consumer, or the event loop for request events)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from perch.registry.descriptor import Descriptor
    from perch.registry.loader import Collection
    from perch.routing.route import Route

logger = logging.getLogger("perch.registry")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# -- Diagnostics --


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """A non-fatal problem or notice from the registry or dispatcher."""

    level: str
    message: str
    exc: BaseException | None = None


# -- Lifecycle --


@dataclass(frozen=True, slots=True)
class CollectionFound:
    descriptor: Descriptor


@dataclass(frozen=True, slots=True)
class CollectionLoaded:
    collection: Collection


@dataclass(frozen=True, slots=True)
class AllCollectionsLoaded:
    collections: Mapping[str, Collection]


@dataclass(frozen=True, slots=True)
class RoutesCompiled:
    routes: tuple[Route, ...]


@dataclass(frozen=True, slots=True)
class IncomingRequest:
    method: str
    path: str


@dataclass(frozen=True, slots=True)
class Forwarding:
    collection_name: str
    handle_name: str


# -- Watch events (queued by the watcher, published once applied) --


@dataclass(frozen=True, slots=True)
class CollectionAdded:
    descriptor: Descriptor


@dataclass(frozen=True, slots=True)
class CollectionChanged:
    filename: str
    descriptor: Descriptor


@dataclass(frozen=True, slots=True)
class LogicChanged:
    descriptor: Descriptor


@dataclass(frozen=True, slots=True)
class CollectionRemoved:
    descriptor: Descriptor


WatchEvent = CollectionAdded | CollectionChanged | LogicChanged | CollectionRemoved

type Listener = Callable[[Any], None]


class EventBus:
    """Synchronous broadcast channel for perch events.

    Subscribers register for one event type (or ``None`` for every
    event). ``Diagnostic`` events are also written to the
    ``perch.registry`` logger at their level, so a host that never
    subscribes still sees warnings and errors.

    Usage::

        bus = EventBus()
        bus.subscribe(Diagnostic, lambda d: print(d.level, d.message))
        bus.warn("Collection name 'a b' is incorrect, skipping...")
    """

    __slots__ = ("_listeners", "_lock")

    def __init__(self) -> None:
        self._listeners: list[tuple[type | None, Listener]] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: type | None, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        entry = (event_type, listener)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe

    def emit(self, event: object) -> None:
        """Deliver *event* to matching listeners.

        A failing listener is logged and skipped; it never stops delivery
        to the others or propagates to the emitter.
        """
        if isinstance(event, Diagnostic):
            logger.log(
                _LEVELS.get(event.level, logging.INFO),
                event.message,
                exc_info=event.exc if event.level == "error" else None,
            )

        with self._lock:
            listeners = list(self._listeners)
        for event_type, listener in listeners:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed for %s", listener, type(event).__name__)

    # -- Diagnostic shortcuts --

    def debug(self, message: str) -> None:
        self.emit(Diagnostic("debug", message))

    def info(self, message: str) -> None:
        self.emit(Diagnostic("info", message))

    def warn(self, message: str) -> None:
        self.emit(Diagnostic("warning", message))

    def error(self, message: str, exc: BaseException | None = None) -> None:
        self.emit(Diagnostic("error", message, exc))
