"""Collection discovery — expands manifest globs into descriptors.

Walks every configured glob pattern and builds one ``Descriptor`` per
unique collection name::

    collections/widgets/collection.json   -> "widgets"
    collections/shop/orders/collection.json  (name: "Orders") -> "orders"

The first manifest to claim a name wins; later ones are skipped with a
warning. A manifest that cannot be parsed is reported and skipped; the
rest of the tree is still discovered.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path

from perch.errors import InvalidCollectionName, ManifestError
from perch.events import CollectionFound, EventBus
from perch.registry.descriptor import Descriptor, build_descriptor

_MAGIC_RE = re.compile(r"[*?\[]")


def glob_base(pattern: str) -> str:
    """Return the leading directory of *pattern* that contains no wildcards.

    ``"collections/**/collection.json"`` -> ``"collections"``
    ``"*/collection.json"`` -> ``""``
    """
    parts = pattern.split("/")
    static: list[str] = []
    for part in parts[:-1]:
        if _MAGIC_RE.search(part):
            break
        static.append(part)
    return "/".join(static)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a ``/``-separated glob into a regex over POSIX paths.

    ``*`` and ``?`` never cross a ``/``; ``**`` as a whole segment matches
    zero or more directories.
    """
    out: list[str] = []
    parts = pattern.split("/")
    for index, part in enumerate(parts):
        last = index == len(parts) - 1
        if part == "**":
            out.append(".*" if last else "(?:[^/]+/)*")
            continue
        out.append(_translate_segment(part))
        if not last:
            out.append("/")
    return re.compile("".join(out) + r"\Z")


def _translate_segment(segment: str) -> str:
    result: list[str] = []
    i = 0
    while i < len(segment):
        char = segment[i]
        if char == "*":
            result.append("[^/]*")
        elif char == "?":
            result.append("[^/]")
        elif char == "[":
            end = segment.find("]", i + 1)
            if end == -1:
                result.append(re.escape(char))
            else:
                body = segment[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                result.append(f"[{body}]")
                i = end
        else:
            result.append(re.escape(char))
        i += 1
    return "".join(result)


class CollectionFinder:
    """Finds collection manifests and keeps the descriptor registry.

    ``find()`` is idempotent: the first call walks the globs, later calls
    return the cached mapping until ``invalidate()``. The watcher keeps
    the registry current afterwards through ``add()`` and ``remove()``.

    Thread safety:
        Both watch observers call into the finder, so every mutation and
        lookup takes ``_lock``.
    """

    __slots__ = (
        "_by_dir",
        "_events",
        "_factory_name",
        "_found",
        "_lock",
        "_logic_filename",
        "_matchers",
        "patterns",
        "root",
    )

    def __init__(
        self,
        patterns: Iterable[str],
        *,
        root: str | Path = ".",
        events: EventBus | None = None,
        logic_filename: str = "logic.py",
        factory_name: str = "Collection",
    ) -> None:
        if isinstance(patterns, str):
            patterns = (patterns,)
        self.patterns: tuple[str, ...] = tuple(patterns)
        self.root = Path(root).resolve()
        self._events = events or EventBus()
        self._logic_filename = logic_filename
        self._factory_name = factory_name
        self._found: dict[str, Descriptor] | None = None
        self._by_dir: dict[Path, Descriptor] = {}
        self._lock = threading.RLock()
        self._matchers = tuple(glob_to_regex(self._absolute(p).as_posix()) for p in self.patterns)

    # -- Discovery --

    def find(self) -> Mapping[str, Descriptor]:
        """Return every discovered collection, keyed by name."""
        with self._lock:
            if self._found is not None:
                return self._found

            self._found = {}
            self._by_dir = {}
            for pattern in self.patterns:
                for path in self._expand(pattern):
                    descriptor = self.create_descriptor(path)
                    if descriptor is not None and self.add(descriptor):
                        self._events.emit(CollectionFound(descriptor))
            return self._found

    def invalidate(self) -> None:
        """Forget cached results so the next ``find()`` walks the globs again."""
        with self._lock:
            self._found = None
            self._by_dir = {}

    def _absolute(self, pattern: str) -> Path:
        path = Path(pattern)
        return path if path.is_absolute() else self.root / path

    def _expand(self, pattern: str) -> list[Path]:
        path = Path(pattern)
        if path.is_absolute():
            base = Path(path.anchor)
            relative = str(path.relative_to(path.anchor))
        else:
            base, relative = self.root, pattern
        return sorted(p for p in base.glob(relative) if p.is_file())

    # -- Registry --

    def create_descriptor(self, path: str | Path) -> Descriptor | None:
        """Parse a manifest, reporting problems instead of raising."""
        try:
            return build_descriptor(
                self._absolute(str(path)),
                logic_filename=self._logic_filename,
                factory_name=self._factory_name,
            )
        except InvalidCollectionName as exc:
            self._events.warn(str(exc))
        except ManifestError as exc:
            self._events.error(str(exc), exc)
        return None

    def add(self, descriptor: Descriptor) -> bool:
        """Register *descriptor*. Returns False if its name is already taken."""
        with self._lock:
            if self._found is None:
                self._found = {}
            existing = self._found.get(descriptor.name)
            if existing is not None:
                self._events.warn(
                    f"Collection {descriptor.manifest_path} has the same name as "
                    f"{existing.manifest_path} ({descriptor.name}), skipping..."
                )
                return False
            self._found[descriptor.name] = descriptor
            self._by_dir[descriptor.directory] = descriptor
            return True

    def remove(self, descriptor: Descriptor) -> None:
        """Unregister *descriptor* if it is still the registered one."""
        with self._lock:
            if self._found is not None and self._found.get(descriptor.name) == descriptor:
                del self._found[descriptor.name]
            if self._by_dir.get(descriptor.directory) == descriptor:
                del self._by_dir[descriptor.directory]

    def recognize(self, filename: str | Path) -> Descriptor | None:
        """Return the collection owning *filename* (longest directory prefix)."""
        current = self._absolute(str(filename)).resolve()
        with self._lock:
            for directory in (current, *current.parents):
                descriptor = self._by_dir.get(directory)
                if descriptor is not None:
                    return descriptor
        return None

    def by_manifest(self, filename: str | Path) -> Descriptor | None:
        """Return the registered collection whose manifest is *filename*."""
        path = self._absolute(str(filename)).resolve()
        with self._lock:
            descriptor = self._by_dir.get(path.parent)
        if descriptor is not None and descriptor.manifest_path == path:
            return descriptor
        return None

    def matches(self, filename: str | Path) -> bool:
        """True if *filename* matches one of the manifest patterns."""
        posix = self._absolute(str(filename)).resolve().as_posix()
        return any(matcher.match(posix) for matcher in self._matchers)

    def directories(self) -> list[Path]:
        """Directories of every registered collection."""
        with self._lock:
            return sorted(self._by_dir)

    def watch_roots(self) -> list[Path]:
        """Static base directory of each manifest pattern (for the watcher)."""
        roots: list[Path] = []
        for pattern in self.patterns:
            base = self._absolute(glob_base(pattern) or ".")
            if base not in roots:
                roots.append(base)
        return roots
