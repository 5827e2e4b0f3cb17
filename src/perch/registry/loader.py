"""Collection loader — turns descriptors into executable collections.

Each descriptor's logic module is executed from source and its handler
factory (``Collection`` by default, see the manifest ``factory`` field)
is looked up::

    # collections/widgets/logic.py
    class Collection:
        def __init__(self, context):
            self.context = context

        async def list(self):
            return [{"id": 1}]

The loader owns the authoritative name -> ``Collection`` mapping. Writers
(initial ``load()`` and watcher-driven reloads) are serialized by a lock
and publish a fresh read-only mapping; readers never lock.
"""

from __future__ import annotations

import hashlib
import importlib.util
import re
import sys
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any

from perch.events import AllCollectionsLoaded, CollectionLoaded, EventBus
from perch.registry.descriptor import Descriptor
from perch.registry.finder import CollectionFinder

_MODULE_PREFIX = "perch_collections"
_UNSAFE_CHARS = re.compile(r"\W")


def _module_name(name: str, path: Path) -> str:
    """Unique ``sys.modules`` key for a logic module.

    The path digest keeps collections such as ``a-b`` and ``a_b`` apart.
    """
    digest = hashlib.sha1(str(path).encode("utf-8"), usedforsecurity=False).hexdigest()[:10]
    return f"{_MODULE_PREFIX}.{_UNSAFE_CHARS.sub('_', name)}_{digest}"


@dataclass(frozen=True, slots=True)
class Collection:
    """A descriptor plus its resolved handler factory."""

    descriptor: Descriptor
    factory: Callable[..., Any]

    @property
    def name(self) -> str:
        return self.descriptor.name


class CollectionLoader:
    """Resolves and keeps loaded collections.

    ``load()`` returns the same mapping object on every call until a
    reload, removal, or ``invalidate_all()`` replaces it.
    """

    __slots__ = ("_events", "_finder", "_loaded", "_lock", "_modules")

    def __init__(self, finder: CollectionFinder, *, events: EventBus | None = None) -> None:
        self._finder = finder
        self._events = events or EventBus()
        self._loaded: Mapping[str, Collection] | None = None
        self._modules: dict[Path, ModuleType] = {}
        self._lock = threading.Lock()

    # -- Bulk loading --

    def load(self) -> Mapping[str, Collection]:
        """Discover (if needed) and load every collection."""
        loaded = self._loaded
        if loaded is not None:
            return loaded

        with self._lock:
            if self._loaded is not None:
                return self._loaded

            result: dict[str, Collection] = {}
            for descriptor in list(self._finder.find().values()):
                collection = self._resolve(descriptor)
                if collection is None:
                    continue
                result[collection.name] = collection
                self._events.emit(CollectionLoaded(collection))

            self._loaded = MappingProxyType(result)
            self._events.emit(AllCollectionsLoaded(self._loaded))
            return self._loaded

    def invalidate_all(self) -> None:
        """Drop every cached module and the loaded mapping."""
        with self._lock:
            for path in list(self._modules):
                self._forget(path)
            self._loaded = None

    # -- Single collection --

    def load_one(self, descriptor: Descriptor) -> Collection | None:
        """Load or reload one collection.

        On failure the previously loaded collection of that name is
        removed and the problem is reported on the event bus. Never
        raises.
        """
        with self._lock:
            collection = self._resolve(descriptor)
            current = dict(self._loaded or {})
            if collection is not None:
                current[descriptor.name] = collection
            elif descriptor.name in current:
                del current[descriptor.name]
            self._loaded = MappingProxyType(current)

        if collection is not None:
            self._events.emit(CollectionLoaded(collection))
        return collection

    def remove(self, name: str) -> None:
        """Remove a collection and forget its cached module."""
        with self._lock:
            if self._loaded is None or name not in self._loaded:
                return
            current = dict(self._loaded)
            removed = current.pop(name)
            self._forget(removed.descriptor.logic_path)
            self._loaded = MappingProxyType(current)

    def invalidate(self, path: str | Path) -> None:
        """Forget the cached module for *path* so the next load re-reads it."""
        with self._lock:
            self._forget(Path(path).resolve())

    # -- Read access --

    def get_by_name(self, name: str) -> Collection | None:
        return (self._loaded or {}).get(name)

    def get_all(self) -> Mapping[str, Collection]:
        return self._loaded or MappingProxyType({})

    # -- Internal --

    def _forget(self, path: Path) -> None:
        module = self._modules.pop(path, None)
        if module is not None:
            sys.modules.pop(module.__name__, None)
        # Helper modules imported by a logic module through sys.path
        for name, mod in list(sys.modules.items()):
            if getattr(mod, "__file__", None) == str(path):
                sys.modules.pop(name, None)
        importlib.invalidate_caches()

    def _resolve(self, descriptor: Descriptor) -> Collection | None:
        """Resolve a descriptor's factory, reporting failures. Caller holds the lock."""
        logic_path = descriptor.logic_path
        try:
            module = self._modules.get(logic_path) or self._import(descriptor)
        except OSError:
            self._events.error(
                f"In collection {descriptor.name} the logic file {logic_path} "
                "has been moved or deleted. Skipping..."
            )
            return None
        except Exception as exc:
            self._events.error(
                f"In collection {descriptor.name} the logic file {logic_path} "
                f"failed to load: {exc}. Skipping...",
                exc,
            )
            return None

        factory = getattr(module, descriptor.factory_name, None)
        if factory is None or not callable(factory):
            self._events.warn(
                f"File at {logic_path} of collection \"{descriptor.name}\" does not "
                f"export a callable {descriptor.factory_name!r}. Skipping..."
            )
            return None

        return Collection(descriptor=descriptor, factory=factory)

    def _import(self, descriptor: Descriptor) -> ModuleType:
        """Execute the logic module from source into a fresh module object.

        Source is compiled directly rather than through the bytecode cache,
        so an edit that keeps the file's size and mtime second still takes
        effect.
        """
        path = descriptor.logic_path
        module_name = _module_name(descriptor.name, path)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            msg = f"Cannot create an import spec for {path}"
            raise ImportError(msg)

        loader = spec.loader
        source = loader.get_data(str(path))  # type: ignore[attr-defined]
        code = loader.source_to_code(source, str(path))  # type: ignore[attr-defined]

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            exec(code, module.__dict__)  # noqa: S102
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        self._modules[path] = module
        return module
